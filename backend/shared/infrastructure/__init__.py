"""
Infrastructure module: runtime plumbing.

Provides:
- Connection id correlation for log records (correlation.py)
"""

from shared.infrastructure.correlation import (
    CorrelationIdFilter,
    bind_connection_id,
    connection_id_var,
    get_connection_id,
)

__all__ = [
    "CorrelationIdFilter",
    "bind_connection_id",
    "connection_id_var",
    "get_connection_id",
]
