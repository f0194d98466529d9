from __future__ import annotations

import contextvars
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Optional

CONTEXT_FIELDS = ("provider", "task_id", "project_id")

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(provider)s | %(task_id)s | %(project_id)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

_log_fields: contextvars.ContextVar[Dict[str, str]] = contextvars.ContextVar("cinegen_log_fields", default={})


def current_log_fields() -> Dict[str, str]:
    return dict(_log_fields.get())


class ContextFilter(logging.Filter):
    """Stamps every record with the job/project the current thread is working on."""

    def filter(self, record: logging.LogRecord) -> bool:
        fields = _log_fields.get()
        for name in CONTEXT_FIELDS:
            setattr(record, name, fields.get(name) or "-")
        return True


@contextmanager
def log_context(**fields: Optional[str]) -> Iterator[None]:
    """
    Add ``provider``, ``task_id`` and/or ``project_id`` to log records emitted
    inside the block. Nested blocks inherit the outer values; ``None`` leaves
    a field untouched.
    """
    unknown = set(fields) - set(CONTEXT_FIELDS)
    if unknown:
        raise TypeError(f"unknown log context field(s): {', '.join(sorted(unknown))}")
    merged = dict(_log_fields.get())
    merged.update({k: str(v) for k, v in fields.items() if v is not None})
    token = _log_fields.set(merged)
    try:
        yield
    finally:
        _log_fields.reset(token)


def configure_logging(
    log_file: str = "logs/cinegen.log",
    level: int = logging.INFO,
    enable_console: bool = False,
    force: bool = False,
) -> logging.Logger:
    root = logging.getLogger()
    if getattr(root, "_cinegen_logging_configured", False) and not force:
        return root

    if force:
        for handler in list(root.handlers):
            root.removeHandler(handler)

    handlers = []
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))
    if enable_console:
        handlers.append(logging.StreamHandler())

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)
    for handler in handlers:
        # on the handler, not the root logger: records from child loggers skip logger filters
        handler.setFormatter(formatter)
        handler.addFilter(ContextFilter())
        root.addHandler(handler)

    root.setLevel(level)
    logging.captureWarnings(True)
    root._cinegen_logging_configured = True
    return root


def setup_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)
