"""Optional Logfire integration for tracing and logs."""
from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from typing import Any, Iterator, Optional

logger = logging.getLogger(__name__)

_logfire = None
_configured = False

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for CLI and server entry points."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )


def _load_logfire():
    global _logfire
    if _logfire is not None:
        return _logfire
    try:
        import logfire
    except ImportError:
        _logfire = False
        return _logfire
    _logfire = logfire
    return _logfire


def _env_truthy(value: Optional[str]) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def enabled() -> bool:
    logfire = _load_logfire()
    if not logfire:
        return False
    flag = os.getenv("SANDCTL_LOGFIRE")
    if flag is not None:
        return _env_truthy(flag)
    return True


def configure() -> bool:
    logfire = _load_logfire()
    if not logfire or not enabled():
        return False
    global _configured
    if not _configured:
        try:
            logfire.configure(
                service_name="sandctl",
                send_to_logfire="if-token-present",
                console=False,
            )
        except Exception as exc:  # noqa: BLE001
            logger.debug("Logfire configuration failed: %s", exc)
            return False
        _configured = True
    return True


@contextmanager
def span(name: str, **attrs: Any) -> Iterator[None]:
    """Trace a block as a Logfire span; no-op when Logfire is unavailable."""
    if not configure():
        yield
        return
    with _logfire.span(name, **attrs):
        yield


def log(level: str, message: str, **attrs: Any) -> None:
    """Emit a structured event to Logfire, or to the standard logger."""
    if configure():
        fn = getattr(_logfire, level, None) or _logfire.info
        fn(message, **attrs)
        return
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO
    logger.log(log_level, "%s %s", message, attrs)


def reset() -> None:
    """Forget cached Logfire state. For testing only."""
    global _logfire, _configured
    _logfire = None
    _configured = False
