"""Logging utilities for the certwire library."""

import logging
import time
from contextvars import ContextVar, Token

# The library stays silent until the application configures logging
_root = logging.getLogger("certwire")
_root.addHandler(logging.NullHandler())

# Domain currently being authorized; each worker thread sets its own
_current_domain: ContextVar[str | None] = ContextVar("current_domain", default=None)


def set_domain(domain: str | None) -> Token[str | None]:
    """Set the domain attached to log records of the current workflow step.

    Args:
        domain: Domain being authorized, or None to clear.

    Returns:
        Token to restore the previous value.
    """
    return _current_domain.set(domain)


def reset_domain(token: Token[str | None]) -> None:
    """Restore the domain context saved by set_domain()."""
    _current_domain.reset(token)


def get_domain_extra() -> dict[str, str]:
    """Get domain info for log extra fields.

    Returns:
        {"domain": ...} when a domain is set, otherwise an empty dict.
    """
    domain = _current_domain.get()
    if domain is None:
        return {}
    return {"domain": domain}


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the certwire namespace.

    Args:
        name: The module name (typically __name__).

    Returns:
        A logger instance for the module.
    """
    return logging.getLogger(name)


class Timer:
    """Context manager for timing round trips.

    Usage:
        with Timer() as t:
            response = http.request(...)
        logger.debug("done", extra={"elapsed_ms": t.elapsed_ms})
    """

    def __init__(self) -> None:
        self.elapsed_ms: float = 0
        self._start: float = 0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, *args: object) -> None:
        self.elapsed_ms = round((time.perf_counter() - self._start) * 1000, 3)
