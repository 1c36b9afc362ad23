"""Structured logging for traders running side by side in one process.

Every trader's run loop binds ``trader_id`` into structlog contextvars, so
lines from concurrent traders stay attributable. Credential-bearing keys are
masked before rendering.
"""

import logging
import os

import structlog

SECRET_KEYS = frozenset(
    {
        "api_key",
        "secret_key",
        "passphrase",
        "custom_api_key",
        "authorization",
        "ok-access-key",
        "ok-access-sign",
        "ok-access-passphrase",
    }
)
REDACTED = "***"

# Per-request INFO chatter from the HTTP and venue libraries
_QUIET_LOGGERS = ("httpx", "httpcore", "ccxt", "aiosqlite")


def redact_secrets(
    logger: structlog.types.WrappedLogger, method_name: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    """Mask credential values, including inside one level of nested dicts."""
    for key, value in event_dict.items():
        if key.lower() in SECRET_KEYS and value:
            event_dict[key] = REDACTED
        elif isinstance(value, dict):
            event_dict[key] = {k: REDACTED if k.lower() in SECRET_KEYS and v else v for k, v in value.items()}
    return event_dict


def setup_logging(log_level: str = "INFO", log_format: str | None = None) -> None:
    """Route structlog and stdlib logging through one formatter.

    ``log_format`` is "json" or "console"; when omitted it is read from the
    LOG_FORMAT environment variable and defaults to console.
    """
    log_format = (log_format or os.environ.get("LOG_FORMAT", "console")).lower()

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_secrets,
    ]

    renderer: structlog.types.Processor
    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
        pre_chain.append(structlog.processors.format_exc_info)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_trader(trader_id: str) -> None:
    """Tag every log line from the current task with ``trader_id``."""
    structlog.contextvars.bind_contextvars(trader_id=trader_id)


def unbind_trader() -> None:
    structlog.contextvars.unbind_contextvars("trader_id")
