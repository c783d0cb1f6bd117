from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

RECURRING_LOGGER = "ledger.recurrence"

_MAX_BYTES = 10 * 1024 * 1024
_BACKUP_COUNT = 5


def _has_file_handler(logger: logging.Logger, path: Path) -> bool:
    return any(
        getattr(h, "baseFilename", None) == str(path)
        for h in logger.handlers
        if isinstance(h, logging.FileHandler)
    )


def _file_handler(path: Path, level: int, formatter: logging.Formatter, rotate: bool) -> logging.Handler:
    if rotate:
        handler: logging.Handler = RotatingFileHandler(str(path), maxBytes=_MAX_BYTES, backupCount=_BACKUP_COUNT)
    else:
        handler = logging.FileHandler(str(path))
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def configure_logging(log_dir: Path, production: bool = False) -> None:
    """Configure application logging (file + console) and attach to uvicorn loggers.

    In production the files rotate and ERROR records also go to errors.log.
    Idempotent: safe to call multiple times.
    """
    log_dir.mkdir(parents=True, exist_ok=True)

    server_log_path = log_dir / "server.log"
    recurring_log_path = log_dir / "recurring.log"
    error_log_path = log_dir / "errors.log"

    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    detailed_formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s [%(filename)s:%(lineno)d] %(funcName)s(): %(message)s"
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    server_handler = None
    if not _has_file_handler(root_logger, server_log_path):
        server_handler = _file_handler(
            server_log_path, logging.INFO if production else logging.DEBUG, formatter, production
        )
        root_logger.addHandler(server_handler)

    if production and not _has_file_handler(root_logger, error_log_path):
        root_logger.addHandler(_file_handler(error_log_path, logging.ERROR, detailed_formatter, True))

    if not any(type(h) is logging.StreamHandler for h in root_logger.handlers):
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setLevel(logging.WARNING if production else logging.INFO)
        stream_handler.setFormatter(formatter)
        root_logger.addHandler(stream_handler)

    # Generation runs get their own file so the audit of a night's job is easy to read
    recurring_logger = logging.getLogger(RECURRING_LOGGER)
    recurring_logger.setLevel(logging.DEBUG)
    if not _has_file_handler(recurring_logger, recurring_log_path):
        recurring_logger.addHandler(_file_handler(recurring_log_path, logging.DEBUG, detailed_formatter, production))

    for uv_logger_name in ("uvicorn.error", "uvicorn.access", "uvicorn"):
        lg = logging.getLogger(uv_logger_name)
        lg.setLevel(logging.INFO if production else logging.DEBUG)
        if server_handler is not None and not _has_file_handler(lg, server_log_path):
            lg.addHandler(server_handler)

    logging.getLogger("ledger.startup").info("Logging configured: %s (production=%s)", log_dir, production)
