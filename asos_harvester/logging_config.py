"""Harvest logging: human-readable console output plus JSON log files.

``logs/harvest.log`` receives every record, ``logs/errors.log`` only errors.
Both are JSON lines so a run can be inspected with jq.
"""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

from pythonjsonlogger import jsonlogger

from asos_harvester.config import settings

HARVEST_LOG = "harvest.log"
ERROR_LOG = "errors.log"

CONSOLE_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"

# Libraries that log each request at INFO
NOISY_LOGGERS = ("httpx", "httpcore")


class HarvestJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that stamps every record with UTC time and its origin."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["source"] = f"{record.filename}:{record.lineno}"


def _file_handler(path: Path, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(base_dir: str | Path | None = None) -> logging.Logger:
    """
    Route all harvester logging to the console and the JSON log files.

    Replaces any handlers already on the root logger, so calling it twice
    does not duplicate output.

    Args:
        base_dir: Directory that receives ``logs/``; defaults to ``settings.log_dir``

    Returns:
        The configured root logger
    """
    logs_dir = Path(base_dir or settings.log_dir) / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    root.addHandler(console)

    json_formatter = HarvestJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")
    root.addHandler(_file_handler(logs_dir / HARVEST_LOG, logging.DEBUG, json_formatter))
    root.addHandler(_file_handler(logs_dir / ERROR_LOG, logging.ERROR, json_formatter))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root


class ContextAdapter(logging.LoggerAdapter):
    """Attach fixed context (url, label, page...) to every record as extra fields."""

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def get_logger(name: str, **context) -> ContextAdapter:
    """
    Get a logger that carries request context.

    Args:
        name: Logger name (usually __name__)
        **context: Fields added to each record, e.g. ``url=...``, ``label="DETAIL"``

    Returns:
        ContextAdapter wrapping the named logger
    """
    return ContextAdapter(logging.getLogger(name), context)
