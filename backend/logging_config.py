import logging
from typing import Any

from backend.config import LOG_LEVEL

# Correlation fields rendered after the message when bound on a record.
CONTEXT_FIELDS = ("otp_code", "session_id", "claimant_id", "issuer_id")
LOGGER_NAMESPACES = ("backend", "database")


class ContextAdapter(logging.LoggerAdapter):
    """LoggerAdapter that merges bound context with per-call `extra`."""

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs


class ContextFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        context = [
            f"{name}={getattr(record, name)}"
            for name in CONTEXT_FIELDS
            if getattr(record, name, None) is not None
        ]
        if not context:
            return base
        return f"{base} [{' '.join(context)}]"


def bind_logger(logger: logging.Logger | logging.LoggerAdapter, **context: Any) -> ContextAdapter:
    if isinstance(logger, logging.LoggerAdapter):
        merged = {**(logger.extra or {}), **context}
        return ContextAdapter(logger.logger, merged)
    return ContextAdapter(logger, context)


def configure_logging(level: str | None = None) -> None:
    for namespace in LOGGER_NAMESPACES:
        logger = logging.getLogger(namespace)
        logger.setLevel(level or LOG_LEVEL)
        if any(isinstance(h.formatter, ContextFormatter) for h in logger.handlers):
            continue
        handler = logging.StreamHandler()
        handler.setFormatter(ContextFormatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        logger.addHandler(handler)
