import logging

from opentelemetry import trace

from .config import ServiceSettings

NO_TRACE = "-"
LOG_FORMAT = (
    "%(asctime)s | %(levelname)s | %(service)s | %(name)s | "
    "trace_id=%(trace_id)s span_id=%(span_id)s | %(message)s"
)
# Per-statement chatter from the database stack stays at WARNING unless the service runs at DEBUG.
_CHATTY_LOGGERS = ("aiosqlite", "sqlalchemy.engine", "sqlalchemy.pool")


class TraceContextFilter(logging.Filter):
    """Stamp records with the service name and the active span's ids."""

    def __init__(self, service: str = NO_TRACE) -> None:
        super().__init__()
        self.service = service

    def filter(self, record: logging.LogRecord) -> bool:
        context = trace.get_current_span().get_span_context()
        if context.is_valid:
            record.trace_id = format(context.trace_id, "032x")
            record.span_id = format(context.span_id, "016x")
        else:
            record.trace_id = record.span_id = NO_TRACE
        if not hasattr(record, "service"):
            record.service = self.service
        return True


def _context_filter(logger: logging.Logger, service: str) -> TraceContextFilter:
    for existing in logger.filters:
        if isinstance(existing, TraceContextFilter):
            existing.service = service
            return existing
    context_filter = TraceContextFilter(service)
    logger.addFilter(context_filter)
    return context_filter


def configure_logging(settings: ServiceSettings) -> None:
    """Configure root logging for the service; safe to call once per app."""

    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)
    root = logging.getLogger()
    context_filter = _context_filter(root, settings.app_name)
    for handler in root.handlers:
        if context_filter not in handler.filters:
            handler.addFilter(context_filter)

    chatty_level = logging.DEBUG if settings.log_level == "DEBUG" else logging.WARNING
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(chatty_level)
