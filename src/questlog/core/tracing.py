"""Logfire tracing initialization and utilities for the progress service."""

import contextvars
import logging
import os
import uuid
from contextvars import Token

logger = logging.getLogger(__name__)

_initialized = False


def init_tracing() -> bool:
    """Initialize Logfire tracing from environment.

    Returns:
        True if tracing was successfully initialized, False otherwise.
    """
    global _initialized
    if _initialized:
        return True

    token = os.getenv("LOGFIRE_TOKEN")
    if not token:
        logger.debug("LOGFIRE_TOKEN not set, tracing disabled")
        return False

    try:
        import logfire

        logfire.configure(
            token=token,
            service_name="questlog",
            service_version="0.1.0",
        )

        # Query-level spans for the progress document store
        try:
            logfire.instrument_asyncpg()
            logger.info("PostgreSQL (asyncpg) instrumentation enabled")
        except Exception as e:
            logger.warning(f"Failed to instrument asyncpg: {e}")

        _initialized = True
        logger.info("Logfire tracing initialized")
        return True
    except ImportError:
        logger.warning("logfire package not installed, tracing disabled")
        return False
    except Exception as e:
        logger.warning(f"Failed to initialize Logfire: {e}")
        return False


def generate_request_id() -> str:
    """Generate a short id correlating the two phases of one task update.

    Returns:
        12-character hex string (e.g., "a1b2c3d4e5f6")
    """
    return uuid.uuid4().hex[:12]


_request_context: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "request_id", default=None
)


def set_request_id(request_id: str) -> Token:
    """Set the request id for the current async context."""
    return _request_context.set(request_id)


def get_request_id() -> str | None:
    """Get the current request id, if set."""
    return _request_context.get()


def reset_request_id(token: Token) -> None:
    """Reset the request id context using a token from set_request_id()."""
    _request_context.reset(token)


class TracingSpan:
    """Context manager that wraps logfire.span when tracing is enabled.

    Falls back to a no-op when tracing is disabled.
    Automatically injects request_id from context if available.
    """

    def __init__(self, name: str, **attributes):
        self.name = name
        self.attributes = attributes
        self._logfire_span = None

        request_id = get_request_id()
        if request_id and "request_id" not in self.attributes:
            self.attributes["request_id"] = request_id

    def set_attribute(self, key: str, value) -> None:
        """Set an attribute on the span after creation."""
        if self._logfire_span is not None:
            self._logfire_span.set_attribute(key, value)

    def set_attributes(self, **attributes) -> None:
        """Set multiple attributes on the span after creation."""
        for key, value in attributes.items():
            self.set_attribute(key, value)

    def __enter__(self):
        if _initialized:
            import logfire

            self._logfire_span = logfire.span(self.name, **self.attributes)
            self._logfire_span.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._logfire_span is not None:
            return self._logfire_span.__exit__(exc_type, exc_val, exc_tb)
        return False

    async def __aenter__(self):
        return self.__enter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return self.__exit__(exc_type, exc_val, exc_tb)


def span(name: str, **attributes) -> TracingSpan:
    """Create a tracing span that works whether or not tracing is enabled.

    Args:
        name: Span name (e.g., "progress.transaction", "progress.dependencies")
        **attributes: Key-value attributes to attach to the span

    Returns:
        TracingSpan context manager
    """
    return TracingSpan(name, **attributes)
