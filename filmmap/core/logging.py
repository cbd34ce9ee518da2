import logging
from contextvars import ContextVar

operation_id_var: ContextVar[str] = ContextVar("operation_id", default="-")

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(operation_id)s | %(message)s"


class OperationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.operation_id = operation_id_var.get()
        return True


def configure_logging(level: str) -> None:
    handler = logging.StreamHandler()
    handler.addFilter(OperationIdFilter())
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), handlers=[handler], force=True)
    # httpx loguea la URL completa (con access_token) en INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
