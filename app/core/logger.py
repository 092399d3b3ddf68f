"""
Logging for the RP wager engine.

Every module logs through a child of the `rp-wager` logger. Money movements
pass their identifiers as `extra` fields (player_id, amount, round_id,
duel_id, ...) so the console shows them highlighted and the JSON formatter
emits them as top-level keys that can be grepped or shipped to a collector.
"""

import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

ROOT_LOGGER_NAME = "rp-wager"


class Colors:
    RESET = "\033[0m"
    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    BLUE = "\033[94m"
    MAGENTA = "\033[95m"
    CYAN = "\033[96m"
    GRAY = "\033[90m"


# Fields worth spotting at a glance when reading a payout trail
MONEY_FIELDS = ("player_id", "amount", "balance", "pot", "round_id", "duel_id", "purpose")

_RECORD_ATTRS = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def extra_fields(record: logging.LogRecord) -> dict:
    """Fields attached through `extra=`, in the order they were given."""
    return {k: v for k, v in record.__dict__.items() if k not in _RECORD_ATTRS}


def _format_pairs(fields: dict, highlight: bool = False) -> str:
    pairs = []
    for key, value in fields.items():
        if highlight and key in MONEY_FIELDS:
            pairs.append(f"{Colors.BLUE}{key}={value}{Colors.RESET}")
        elif highlight:
            pairs.append(f"{Colors.GRAY}{key}={value}{Colors.RESET}")
        else:
            pairs.append(f"{key}={value}")
    return " ".join(pairs)


class ColoredFormatter(logging.Formatter):
    LEVEL_COLORS = {
        logging.DEBUG: Colors.GRAY,
        logging.INFO: Colors.GREEN,
        logging.WARNING: Colors.YELLOW,
        logging.ERROR: Colors.RED,
        logging.CRITICAL: Colors.MAGENTA,
    }

    def format(self, record):
        color = self.LEVEL_COLORS.get(record.levelno, Colors.RESET)
        stamp = self.formatTime(record, "%Y-%m-%d %H:%M:%S")
        # Drop the root prefix: "rp-wager.jackpot" -> "jackpot"
        area = record.name.split(".", 1)[-1]

        line = (
            f"{Colors.GRAY}{stamp}{Colors.RESET} "
            f"{color}{record.levelname:<8}{Colors.RESET} "
            f"{Colors.CYAN}[{area}]{Colors.RESET} {record.getMessage()}"
        )
        fields = extra_fields(record)
        if fields:
            line += " " + _format_pairs(fields, highlight=True)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class PlainFormatter(logging.Formatter):
    """File output: same layout as the console, no colours."""

    def format(self, record):
        stamp = self.formatTime(record, "%Y-%m-%d %H:%M:%S")
        line = f"{stamp} {record.levelname:<8} [{record.name}] {record.getMessage()}"
        fields = extra_fields(record)
        if fields:
            line += " " + _format_pairs(fields)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class JsonFormatter(logging.Formatter):
    def format(self, record):
        entry = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S%z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **extra_fields(record),
        }
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


FORMATTERS = {
    "color": ColoredFormatter,
    "plain": PlainFormatter,
    "json": JsonFormatter,
}


def _file_handler(path: Path, max_bytes: int, backup_count: int) -> Optional[logging.Handler]:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backup_count)
    except OSError as e:
        sys.stderr.write(f"WARNING: file logging disabled, cannot open {path}: {e}\n")
        return None
    handler.setFormatter(PlainFormatter())
    return handler


def setup_logger(
    name: str = ROOT_LOGGER_NAME,
    level: str = "INFO",
    log_to_file: bool = False,
    log_file_path: Optional[Path] = None,
    max_file_size: int = 5 * 1024 * 1024,
    backup_count: int = 3,
    formatter: str = "color",
) -> logging.Logger:
    """
    Configure the service logger.

    Args:
        name: Logger name
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        log_to_file: Also write plain lines to a rotating file
        log_file_path: Log file location (defaults to data/app.log)
        max_file_size: Bytes before the file rotates
        backup_count: Rotated files to keep
        formatter: "color", "plain" or "json" for the console handler

    Returns:
        The configured logger
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Calling this again replaces handlers instead of stacking them
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(FORMATTERS.get(formatter, ColoredFormatter)())
    logger.addHandler(console)

    if log_to_file:
        path = log_file_path or Path(__file__).parent.parent.parent / "data" / "app.log"
        handler = _file_handler(path, max_file_size, backup_count)
        if handler is not None:
            logger.addHandler(handler)

    logger.propagate = False
    return logger


_app_logger: Optional[logging.Logger] = None


def get_logger(name: str = None) -> logging.Logger:
    """Service logger, or its `name` child (e.g. "jackpot", "escrow")."""
    global _app_logger

    if _app_logger is None:
        _app_logger = setup_logger()
    return _app_logger.getChild(name) if name else _app_logger


def init_logging(
    level: str = "INFO",
    log_to_file: bool = False,
    formatter: str = "color",
    log_file_path: Optional[Path] = None,
):
    """Configure logging once at startup from the `logging` config section."""
    global _app_logger
    _app_logger = setup_logger(
        level=level,
        log_to_file=log_to_file,
        log_file_path=log_file_path,
        formatter=formatter,
    )
    _app_logger.info(f"Logging initialized at {level} level", extra={"formatter": formatter})
