"""
Portal logging setup.

Every record passes through ``PortalContextFilter`` before it is
formatted. Inside a request the filter stamps the request id and the
client / delivery / revision request the URL names, so a service log line
can be tied back to its request without each call site passing ``extra``.

Output format follows ``LOG_FORMAT`` (``json`` | ``text``). When unset,
production writes JSON lines and development/testing writes
``key=value`` text.
"""

import json
import logging
import sys
from datetime import datetime, timezone

from flask import g, has_request_context, request

# Fields copied into the output whenever a record carries them
CONTEXT_FIELDS = ("request_id", "client_id", "delivery_id", "revision_request_id", "identity_id")
HTTP_FIELDS = ("method", "path", "status", "duration_ms", "remote_addr")
EVENT_FIELDS = ("event_type",)

# URL converters that identify a portal entity
_VIEW_ARG_FIELDS = ("client_id", "delivery_id", "revision_request_id")


class PortalContextFilter(logging.Filter):
    """Attach request-scoped identifiers to log records.

    Values passed explicitly through ``extra`` win over what the request
    implies. Outside a request context the record is left untouched.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if not has_request_context():
            return True
        if getattr(record, "request_id", None) is None:
            record.request_id = g.get("request_id")
        view_args = request.view_args or {}
        for field in _VIEW_ARG_FIELDS:
            if getattr(record, field, None) is None and view_args.get(field) is not None:
                setattr(record, field, view_args[field])
        return True


def _record_fields(record: logging.LogRecord) -> dict:
    fields = {}
    for key in CONTEXT_FIELDS + HTTP_FIELDS + EVENT_FIELDS:
        val = getattr(record, key, None)
        if val is not None:
            fields[key] = val
    return fields


class JSONFormatter(logging.Formatter):
    """One JSON object per line for log shipping."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "src": f"{record.module}:{record.lineno}",
        }
        entry.update(_record_fields(record))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class KeyValueFormatter(logging.Formatter):
    """``HH:MM:SS LEVEL logger: message key=value ...`` for terminals."""

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"{ts} {record.levelname:<7} {record.name}: {record.getMessage()}"
        fields = _record_fields(record)
        if "duration_ms" in fields:
            fields["duration_ms"] = f"{fields['duration_ms']:.0f}"
        if fields:
            line += " " + " ".join(f"{k}={v}" for k, v in fields.items())
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _pick_formatter(app) -> logging.Formatter:
    fmt = (app.config.get("LOG_FORMAT") or "").lower()
    if not fmt:
        is_prod = not app.config.get("DEBUG", False) and not app.config.get("TESTING", False)
        fmt = "json" if is_prod else "text"
    return JSONFormatter() if fmt == "json" else KeyValueFormatter()


def configure_logging(app):
    """Install one stderr handler on the root logger for this app.

    ``LOG_LEVEL`` defaults to INFO in production and DEBUG elsewhere.
    Calling it again (one app per test session, CLI reloads) replaces the
    handler rather than adding a second one.
    """
    is_prod = not app.config.get("DEBUG", False) and not app.config.get("TESTING", False)
    level_name = (app.config.get("LOG_LEVEL") or ("INFO" if is_prod else "DEBUG")).upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_pick_formatter(app))
    handler.addFilter(PortalContextFilter())
    handler.setLevel(level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    # SQL echo and per-request werkzeug lines drown out the portal's own logs
    for noisy in ("urllib3", "werkzeug", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    app.logger.setLevel(level)
    app.logger.debug("Logging configured: level=%s", level_name)
    return handler
