import contextlib
import contextvars
import logging
import sys
from typing import Iterator

# Component instance whose property is being resolved on this thread/task
_INSTANCE_ID: contextvars.ContextVar[str] = contextvars.ContextVar("instance_id", default="-")


class _InstanceFilter(logging.Filter):
    """Stamps the current instance id onto every record as ``instance_id``."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        record.instance_id = _INSTANCE_ID.get()
        return True


def _build_formatter() -> logging.Formatter:
    return logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s | inst=%(instance_id)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def configure_root_logger(level: str = "INFO") -> None:
    """
    Attach the propbind handler to the root logger and set the propbind level.

    The root logger stays at INFO so host-editor libraries keep their usual
    verbosity. Only the propbind namespace follows `level`. Records go to
    stderr so the CLI can print JSON on stdout.

    Safe to call multiple times; the handler is added once.
    """
    root = logging.getLogger()
    configured = any(
        isinstance(h, logging.StreamHandler) and any(isinstance(f, _InstanceFilter) for f in h.filters)
        for h in root.handlers
    )
    if not configured:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(_build_formatter())
        handler.addFilter(_InstanceFilter())
        root.addHandler(handler)
        if root.level == logging.NOTSET or root.level > logging.INFO:
            root.setLevel(logging.INFO)

    logging.getLogger("propbind").setLevel(getattr(logging, level.upper(), logging.INFO))


def get_logger(name: str = "propbind") -> logging.Logger:
    """Module logger whose records carry the instance being resolved."""
    logger = logging.getLogger(name)
    if not any(isinstance(f, _InstanceFilter) for f in logger.filters):
        logger.addFilter(_InstanceFilter())
    return logger


@contextlib.contextmanager
def instance_context(instance_id: str) -> Iterator[None]:
    """Tag log records emitted inside the block with `instance_id`."""
    token = _INSTANCE_ID.set(instance_id)
    try:
        yield
    finally:
        _INSTANCE_ID.reset(token)
