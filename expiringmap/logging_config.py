import json
import logging
import sys
from datetime import datetime, timezone

from opentelemetry import trace

SERVICE_NAME = "expiringmap"


class JsonFormatter(logging.Formatter):
    def __init__(self, service: str = SERVICE_NAME):
        super().__init__()
        self.service = service

    def format(self, record):
        log = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "service": self.service,
            "message": record.getMessage(),
            "logger": record.name,
        }

        span = trace.get_current_span()
        ctx = span.get_span_context()
        if ctx and ctx.is_valid:
            log["otel_trace_id"] = format(ctx.trace_id, "032x")
            log["otel_span_id"] = format(ctx.span_id, "016x")

        if hasattr(record, "extra") and isinstance(record.extra, dict):
            log.update(record.extra)

        if hasattr(record, "extra_fields") and isinstance(record.extra_fields, dict):
            log.setdefault("fields", {})
            log["fields"].update(record.extra_fields)

        if record.exc_info:
            log["exception"] = self.formatException(record.exc_info)

        return json.dumps(log, default=str)


def setup_logging(level=logging.INFO, service: str = SERVICE_NAME):
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter(service))

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers = [handler]
