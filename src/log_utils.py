import logging
import sys
import os
from importlib import import_module
from pathlib import Path

import structlog

LOGFILE = os.getenv("LOG_FILE", "errors.log")
# Keep a module-level flag so we don't reconfigure logging on repeated calls.
_logger_initialized = False
_logger = None


def _extract_tb_lineno(tb):
    """Return the last line number from a traceback."""
    while tb and tb.tb_next:
        tb = tb.tb_next
    return tb.tb_lineno if tb else None


def _add_exc_line(_, __, event_dict):
    """Attach ``line`` from traceback to structured log events."""
    exc_info = event_dict.get("exc_info")
    tb = None
    if isinstance(exc_info, tuple):
        tb = exc_info[2]
    elif exc_info:
        tb = sys.exc_info()[2]
    if tb:
        event_dict.setdefault("line", _extract_tb_lineno(tb))
    return event_dict


def _configured_level() -> str:
    """Return ``LOG_LEVEL`` from the environment or ``config.py``."""
    level_name = os.getenv("LOG_LEVEL")
    if level_name:
        return level_name
    try:
        cfg = import_module("config")
    except ModuleNotFoundError:
        repo_root = Path(__file__).resolve().parent.parent
        if not (repo_root / "config.py").exists():
            return "INFO"
        sys.path.insert(0, str(repo_root))
        try:
            cfg = import_module("config")
        except ModuleNotFoundError:
            return "INFO"
    return getattr(cfg, "LOG_LEVEL", None) or "INFO"


def init_logger(truncate=False):
    """Initialize logger writing to ``LOGFILE``.

    ``LOG_LEVEL`` may be set in ``config.py`` or via an environment
    variable.  The level accepts ``DEBUG``, ``INFO`` or ``ERROR`` and
    defaults to ``INFO``.  Warnings and errors also go to ``LOGFILE`` so a
    long running worker leaves a trail of failed downloads behind.
    """
    global _logger_initialized, _logger
    if _logger_initialized:
        return _logger

    mode = "w" if truncate else "a"
    level_name = _configured_level().upper()
    level = getattr(logging, level_name, logging.INFO)
    file_handler = logging.FileHandler(LOGFILE, mode=mode)
    # Only record warnings and errors in the log file to keep noise low.
    file_handler.setLevel(max(logging.WARNING, level))
    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(level)
    logging.basicConfig(
        handlers=[file_handler, stream_handler],
        level=level,
        format="%(message)s",
        force=True,
    )
    # Route structlog through the standard library so Telethon's own log
    # records and ours end up in the same handlers.
    structlog.configure(
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            _add_exc_line,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ],
        cache_logger_on_first_use=True,
    )
    _logger = structlog.get_logger()
    _logger_initialized = True
    return _logger


def get_logger():
    """Return the singleton logger instance."""
    return init_logger()


def install_excepthook(logger):
    """Redirect uncaught exceptions to ``logger.exception``."""
    def handle_exception(exc_type, exc_value, exc_traceback):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_traceback)
            return
        line = _extract_tb_lineno(exc_traceback)
        logger.exception(
            "Uncaught exception",
            line=line,
            exc_info=(exc_type, exc_value, exc_traceback),
        )
    sys.excepthook = handle_exception
