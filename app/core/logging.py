import json
import logging
import logging.config
from datetime import datetime, timezone
from typing import Any, Optional

from app.core.context import get_actor_id, get_request_id, get_tenant_id
from app.core.settings import settings

AUDIT_LOGGER = "app.audit"

# Structured attributes callers may attach through ``extra=``.
_EXTRA_KEYS = ("application_id", "action", "resource_type", "resource_id", "audit")
# Applicant identifiers never reach the log stream in clear text.
_MASKED_KEYS = frozenset({"curp", "rfc", "ine_clave", "clabe", "phone", "email", "birth_date", "field_value"})


def mask_sensitive(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: ("***" if key in _MASKED_KEYS and item is not None else mask_sensitive(item))
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [mask_sensitive(item) for item in value]
    return value


class RequestContextFilter(logging.Filter):
    """Stamp every record with the tenant, request and acting staff user."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.tenant_id = get_tenant_id()
        record.request_id = get_request_id()
        record.actor_id = get_actor_id()
        return True


class JsonFormatter(logging.Formatter):
    def __init__(self, stream_label: str = "transactional") -> None:
        super().__init__()
        self.stream_label = stream_label

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "stream": self.stream_label,
        }
        for key in ("tenant_id", "request_id", "actor_id"):
            payload[key] = getattr(record, key, "-")
        for key in _EXTRA_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = mask_sensitive(value)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _handler(formatter: str, level: str) -> dict[str, Any]:
    return {
        "class": "logging.StreamHandler",
        "level": level,
        "formatter": formatter,
        "filters": ["request_context"],
        "stream": "ext://sys.stdout",
    }


def configure_logging(level: Optional[str] = None) -> None:
    log_level = (level or settings.log_level).upper()
    quiet = {"handlers": ["default"], "level": "WARNING", "propagate": False}
    loud = {"handlers": ["default"], "level": log_level, "propagate": False}
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {"request_context": {"()": RequestContextFilter}},
            "formatters": {
                "json": {"()": JsonFormatter, "stream_label": "transactional"},
                "audit_json": {"()": JsonFormatter, "stream_label": "audit"},
            },
            "handlers": {
                "default": _handler("json", log_level),
                "audit": _handler("audit_json", log_level),
            },
            "loggers": {
                "": loud,
                AUDIT_LOGGER: {"handlers": ["audit"], "level": log_level, "propagate": False},
                "sqlalchemy.engine": quiet,
                "uvicorn": loud,
                "uvicorn.access": loud,
            },
        }
    )
    logging.getLogger(__name__).info(
        "Logging configured for environment=%s tenancy_mode=%s",
        settings.environment,
        settings.tenancy_mode,
    )


def get_audit_logger() -> logging.Logger:
    return logging.getLogger(AUDIT_LOGGER)
