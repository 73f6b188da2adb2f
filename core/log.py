import contextvars
import logging
import uuid

from core.config import Settings
from core.constants.main_values import LOG_FORMAT

_request_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "request_id", default=None
)


def get_request_id() -> str:
    return _request_id.get() or "unknown"


def set_request_id(request_id: str | None = None) -> str:
    if not request_id:
        request_id = str(uuid.uuid4())
    _request_id.set(request_id)
    return request_id


def clear_request_id() -> None:
    _request_id.set(None)


class RequestIdFilter(logging.Filter):
    """Stamps every record with the id of the request being served."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id()
        return True


def setup_logging(settings: Settings) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if settings.log_file:
        handlers.append(logging.FileHandler(settings.log_file))

    for handler in handlers:
        handler.addFilter(RequestIdFilter())

    logging.basicConfig(
        level=settings.log_level,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
