"""
Logging Configuration

Provides:
- CustomJsonFormatter: one JSON object per log record
- setup_logging: load the YAML dictConfig template with env substitution
"""

import json
import logging
import logging.config
import os
import string
from datetime import datetime, timezone
from pathlib import Path

import yaml

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "logging.yml"
FORMATTERS = ("text", "json")

_STANDARD_ATTRS = {
    "args",
    "asctime",
    "created",
    "exc_info",
    "exc_text",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "message",
    "msg",
    "name",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "stack_info",
    "taskName",
    "thread",
    "threadName",
}


class CustomJsonFormatter(logging.Formatter):
    """
    JSON Formatter.

    Fields:
      - _time: ISO8601 timestamp (millisecond precision)
      - level: Log level
      - logger: Logger name (e.g. imgcopy.core.transfer)
      - message: Log message
      - any `extra=` fields passed to the logging call
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "_time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(
                timespec="milliseconds"
            ),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(
    level: str | None = None,
    formatter: str | None = None,
    config_path: Path | str = DEFAULT_CONFIG_PATH,
) -> None:
    """
    Load the YAML config, substitute environment variables, and initialize logging.

    Explicit arguments win over the LOG_LEVEL / LOG_FORMATTER environment values.
    """
    path = Path(config_path)
    mapping = os.environ.copy()
    mapping["LOG_LEVEL"] = (level or mapping.get("LOG_LEVEL") or "INFO").upper()
    mapping["LOG_FORMATTER"] = formatter or mapping.get("LOG_FORMATTER") or "text"
    if mapping["LOG_FORMATTER"] not in FORMATTERS:
        raise ValueError(
            f"unknown log format {mapping['LOG_FORMATTER']!r}, expected one of {FORMATTERS}"
        )

    if not path.is_file():
        logging.basicConfig(level=mapping["LOG_LEVEL"])
        return

    template = string.Template(path.read_text(encoding="utf-8"))
    config = yaml.safe_load(template.safe_substitute(mapping))
    logging.config.dictConfig(config)
