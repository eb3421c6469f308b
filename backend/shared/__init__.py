"""
Shared module for cross-cutting concerns.

STRUCTURE:
- shared.config: Configuration
  - settings.py: Environment config (pydantic-settings)
  - logging.py: Structured logging, lifecycle log helper

- shared.infrastructure: Runtime plumbing
  - correlation.py: Connection id context for log records

- shared.utils: Utilities
  - exceptions.py: Exceptions with auto-logging

IMPORT EXAMPLES:
    from shared.config.settings import settings
    from shared.config.logging import get_logger
    from shared.infrastructure.correlation import bind_connection_id
    from shared.utils.exceptions import ConnectionClosedError
"""
