# chatstream/logging_config.py
from __future__ import annotations
import logging, logging.handlers, sys, traceback
from pathlib import Path
from datetime import datetime
from .constants import DEFAULT_LOG_MAX_BYTES, DEFAULT_LOG_BACKUP_COUNT, DEFAULT_LOG_FILENAME

NOISY_LOGGERS = ("asyncio", "urllib3", "requests", "charset_normalizer", "PyQt6")

class _ConsoleFormatter(logging.Formatter):
    COLORS = {
        "DEBUG": "\x1b[36m",
        "INFO": "\x1b[32m",
        "WARNING": "\x1b[33m",
        "ERROR": "\x1b[31m",
        "CRITICAL": "\x1b[41m",
    }
    RESET = "\x1b[0m"

    def __init__(self, stream=None):
        super().__init__()
        self._stream = stream or sys.stderr

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        reset = self.RESET if color else ""
        base = f"{datetime.fromtimestamp(record.created).isoformat(timespec='seconds')} | {record.levelname:<8} | {record.name} | {record.getMessage()}"
        if record.exc_info:
            base += "\n" + self.formatException(record.exc_info)
        isatty = getattr(self._stream, "isatty", None)
        if isatty and isatty():
            return f"{color}{base}{reset}"
        return base

class _FileFormatter(logging.Formatter):
    def __init__(self):
        super().__init__("%(asctime)s | %(levelname)s | %(name)s | %(message)s", "%Y-%m-%d %H:%M:%S")

def init_logging(log_dir: Path, level: str = "INFO", log_name: str = DEFAULT_LOG_FILENAME,
                 max_bytes: int = DEFAULT_LOG_MAX_BYTES, backup_count: int = DEFAULT_LOG_BACKUP_COUNT,
                 also_console: bool = True) -> Path:
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / log_name
    lvl = getattr(logging, level.upper(), logging.INFO)

    root = logging.getLogger()
    # Re-init replaces handlers (tests call this more than once)
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()
    root.setLevel(lvl)

    fh = logging.handlers.RotatingFileHandler(str(log_path), maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8", delay=True)
    fh.setFormatter(_FileFormatter())
    fh.setLevel(lvl)
    root.addHandler(fh)

    # stdout carries streamed reply text, so the console log goes to stderr
    if also_console:
        ch = logging.StreamHandler(sys.stderr)
        ch.setFormatter(_ConsoleFormatter(sys.stderr))
        ch.setLevel(lvl)
        root.addHandler(ch)

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    install_excepthook()

    logging.getLogger(__name__).info("Logging initialized → %s", log_path)
    return log_path

def install_excepthook():
    def _hook(exc_type, exc, tb):
        logging.getLogger("uncaught").error("Uncaught exception", exc_info=(exc_type, exc, tb))
        msg = "".join(traceback.format_exception_only(exc_type, exc)).strip()
        sys.stderr.write(f"\nFATAL: {msg}\n")
        sys.stderr.flush()
    sys.excepthook = _hook
