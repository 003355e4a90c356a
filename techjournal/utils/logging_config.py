"""Structured logging configuration for the journal loader.

Worker threads load files concurrently, so the worker/file context is
kept per thread and copied onto each record by a record factory that is
installed once per process.
"""

import json
import logging
import os
import threading
from contextlib import contextmanager
from datetime import datetime, timezone

# Record attributes copied into the JSON line when a context sets them.
CONTEXT_FIELDS = ("worker", "file")

_context = threading.local()
_factory_lock = threading.Lock()
_factory_installed = False


class JSONFormatter(logging.Formatter):
    """One JSON object per line, with worker/file context when present."""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "thread": record.threadName,
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_entry[name] = value

        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)

        # Journal text is often Cyrillic
        return json.dumps(log_entry, ensure_ascii=False)


def setup_logging(level: str = None):
    """Configure JSON logging on the root logger.

    A repeated call only changes the level of the existing stream handler.

    Args:
        level: Log level string (DEBUG, INFO, WARNING, ERROR).
            Defaults to TJ_LOG_LEVEL env var or INFO.
    """
    if level is None:
        level = os.environ.get("TJ_LOG_LEVEL", "INFO")

    log_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    existing = [h for h in root_logger.handlers if isinstance(h, logging.StreamHandler)]
    for handler in existing:
        handler.setLevel(log_level)
    if not existing:
        handler = logging.StreamHandler()
        handler.setLevel(log_level)
        handler.setFormatter(JSONFormatter())
        root_logger.addHandler(handler)


def _install_record_factory() -> None:
    global _factory_installed
    with _factory_lock:
        if _factory_installed:
            return
        base_factory = logging.getLogRecordFactory()

        def record_factory(*args, **kwargs):
            record = base_factory(*args, **kwargs)
            for key, value in (getattr(_context, "values", None) or {}).items():
                setattr(record, key, value)
            return record

        logging.setLogRecordFactory(record_factory)
        _factory_installed = True


@contextmanager
def file_logging_context(worker: str, file: str = None):
    """Tag every record logged by the calling thread with worker/file.

    Contexts nest; leaving one restores the enclosing context.

    Args:
        worker: Worker (thread) name.
        file: Journal file currently being loaded.

    Usage:
        with file_logging_context("worker-1", "/logs/rphost_1234/21102215.log"):
            log.info("This message includes worker/file context")
    """
    _install_record_factory()
    previous = getattr(_context, "values", None)
    values = {"worker": worker}
    if file:
        values["file"] = file
    _context.values = values
    try:
        yield
    finally:
        _context.values = previous
