"""Structured logging setup for the flag engine."""

import json
import logging
import sys
from typing import Optional

from flagengine.core.config import get_settings

# Structured fields emitted by the flag service and evaluator
_STRUCTURED_FIELDS = [
    "flag_key",
    "subject_id",
    "reason",
    "rule_id",
    "variant_key",
    "action",
    "detail",
    "depth",
]


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        data = {
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }
        for attr in _STRUCTURED_FIELDS:
            if hasattr(record, attr):
                data[attr] = getattr(record, attr)
        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)
        return json.dumps(data, ensure_ascii=False, default=str)


def setup_logging(level: Optional[str] = None, json_output: Optional[bool] = None) -> None:
    settings = get_settings()
    level = level or settings.log_level
    json_output = settings.log_json if json_output is None else json_output

    root = logging.getLogger()
    root.setLevel(level.upper())
    handler = logging.StreamHandler(sys.stdout)
    if json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
        )
    root.handlers = [handler]
