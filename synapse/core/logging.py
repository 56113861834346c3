"""
Logging for Synapse.

structlog sits on top of the stdlib root logger so uvicorn and httpx records
go through the same renderer. Secrets, e-mail addresses and oversized
payloads (meeting notes, raw model output) are scrubbed before rendering.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import Processor

from synapse.core.config import settings

SENSITIVE_KEYS = frozenset({
    "password",
    "api_key",
    "apikey",
    "token",
    "api_token",
    "secret",
    "authorization",
    "claude_api_key",
    "auth_token",
    "session_id",
    "csrf_token",
})

MAX_LOGGED_STRING = 1000

QUIET_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "httpx", "httpcore")


def add_app_context(
    logger: logging.Logger, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    event_dict["app"] = settings.app_name
    event_dict["env"] = settings.app_env
    return event_dict


def mask_email(email: str) -> str:
    """Keep the first and last character of the local part."""
    local, sep, domain = email.partition("@")
    if not sep or not local:
        return "***"
    if len(local) <= 2:
        return f"{local[0]}***@{domain}"
    return f"{local[0]}***{local[-1]}@{domain}"


def redact_sensitive(
    logger: logging.Logger, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Redact secrets, mask e-mail addresses and truncate long strings."""
    for key, value in list(event_dict.items()):
        if key.lower() in SENSITIVE_KEYS and value:
            event_dict[key] = "[REDACTED]"
        elif key == "email" and isinstance(value, str):
            event_dict[key] = mask_email(value)
        elif isinstance(value, str) and len(value) > MAX_LOGGED_STRING:
            event_dict[key] = value[:MAX_LOGGED_STRING] + "...[TRUNCATED]"
    return event_dict


def _select_renderer() -> Processor:
    if settings.is_development:
        return structlog.dev.ConsoleRenderer(colors=True)
    return structlog.processors.JSONRenderer()


def setup_logging() -> None:
    """
    Install the structlog pipeline on the root logger.

    Console output while developing, one JSON object per line everywhere
    else. Safe to call more than once; existing root handlers are replaced.
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    pre_chain: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ExtraAdder(),
        add_app_context,
        redact_sensitive,
    ]

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    stream = logging.StreamHandler(sys.stdout)
    stream.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _select_renderer(),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(stream)
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("synapse").setLevel(level)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Return a bound structlog logger.

    Example:
        logger = get_logger(__name__)
        logger.info("Analysis started", user_id="557058:alice", analysis_id="analysis_1")
    """
    return structlog.get_logger(name)


class LogContext:
    """
    Bind request-scoped fields for the duration of a block.

    Example:
        with LogContext(request_id="req_abc", user_id="557058:alice", method="analyze"):
            await route.handler(services, payload, caller)
    """

    def __init__(self, **fields: Any) -> None:
        self.fields = fields

    def __enter__(self) -> "LogContext":
        structlog.contextvars.bind_contextvars(**self.fields)
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        structlog.contextvars.unbind_contextvars(*self.fields)
