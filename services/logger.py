import logging
import sys
import os
from datetime import datetime

import services.util as u

# ANSI colour codes keyed by short level name
COLORS = {
    'DBG': '\033[36m',
    'INF': '\033[32m',
    'WRN': '\033[33m',
    'ERR': '\033[31m',
    'CRT': '\033[91m\033[1m',
    'RST': '\033[0m'
}

IS_TTY = sys.stdout.isatty()


# Secrets (app password, OCR subscription key, bearer tokens) that must never
# reach a log line.  Filled by register_sensitive() once config is loaded.
_sensitive: set[str] = set()


def register_sensitive(values) -> None:
    """Add secret strings that must be redacted from log output."""
    # Short values would mask ordinary words
    _sensitive.update(v for v in values if v and len(v) >= 8)


def unregister_sensitive(values) -> None:
    """Forget secrets that are no longer in use, e.g. an expired token."""
    _sensitive.difference_update(values)


def clear_sensitive() -> None:
    _sensitive.clear()


class MaskingFilter(logging.Filter):
    """Redacts sensitive values from every log record before emission."""

    def filter(self, record: logging.LogRecord) -> bool:
        if _sensitive:
            msg = record.getMessage()
            for secret in _sensitive:
                if secret in msg:
                    msg = msg.replace(secret, "***")
            record.msg = msg
            record.args = ()
        return True


class CustomFormatter(logging.Formatter):
    replaces = {
        'DEBUG': '[DBG]',
        'INFO': '[INF]',
        'WARNING': '[WRN]',
        'ERROR': '[ERR]',
        'CRITICAL': '[CRT]'
    }

    def format(self, record):
        timestamp = datetime.now().strftime('[%Y-%m-%d %H:%M:%S]')
        level = self.replaces.get(record.levelname, f'[{record.levelname}]')
        color_key = level[1:4]

        if IS_TTY and color_key in COLORS:
            colored_level = COLORS[color_key] + level + COLORS['RST']
        else:
            colored_level = level

        try:
            file = os.path.relpath(record.pathname)
        except ValueError:
            # Different drive on Windows
            file = record.pathname

        return f"{timestamp} {colored_level} | {file}:{record.lineno} | {record.getMessage()}"


logger = logging.getLogger('ocrbot')
logger.setLevel(logging.DEBUG)
logger.addFilter(MaskingFilter())

if logger.handlers:
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()
logger.propagate = False

console_handler = logging.StreamHandler(sys.stdout)
console_handler.setFormatter(CustomFormatter())
console_handler.setLevel(logging.INFO)
logger.addHandler(console_handler)


def enable_file_logging(log_dir: str | None = None) -> str:
    """Attach a DEBUG-level file handler and return the log file path.

    File names carry millisecond precision, e.g. ``20250915-150316061.log``.
    """
    log_dir = log_dir or u.get_log_path()
    os.makedirs(log_dir, exist_ok=True)
    filename = datetime.now().strftime("%Y%m%d-%H%M%S%f")[:-3] + ".log"
    path = os.path.join(log_dir, filename)

    file_handler = logging.FileHandler(path, encoding='utf-8')
    file_handler.setFormatter(logging.Formatter(
        '[%(asctime)s] [%(levelname)s] | %(filename)s:%(lineno)d | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    file_handler.setLevel(logging.DEBUG)
    logger.addHandler(file_handler)
    return path


def get_logger(name=None):
    """Return the shared application logger."""
    return logger
