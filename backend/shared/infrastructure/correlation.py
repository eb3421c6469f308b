"""
Connection correlation for log records.

Registry operations bind the connection id they act on to a context variable,
and the filter copies it onto every log record emitted meanwhile.
"""

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

# Context variable for the connection under operation (task-local)
connection_id_var: ContextVar[str] = ContextVar("connection_id", default="")


def get_connection_id() -> str:
    """Get the connection id bound to the current context."""
    return connection_id_var.get()


@contextmanager
def bind_connection_id(connection_id: str) -> Iterator[None]:
    """
    Bind a connection id for the duration of the block.

    Usage:
        with bind_connection_id(handle.connection_id):
            logger.info("Sending")  # record carries connection_id
    """
    token = connection_id_var.set(connection_id)
    try:
        yield
    finally:
        connection_id_var.reset(token)


class CorrelationIdFilter:
    """
    Logging filter that adds connection_id to log records.

    Usage:
        import logging
        handler = logging.StreamHandler()
        handler.addFilter(CorrelationIdFilter())
    """

    def filter(self, record) -> bool:
        record.connection_id = connection_id_var.get() or "-"
        return True
