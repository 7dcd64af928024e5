"""
Structured JSON logging.

Logs go to stdout, one JSON object per line, so that cloud logging systems
can parse and index fields (request id, tool, decision, ...) without regexes.

Attach structured data with the `auth_data` extra:

    logger.info("Tool call authorized", extra={"auth_data": {"tool": "get_submission"}})

Never put tokens, code verifiers or client secrets in `auth_data`.
"""

import json
import logging
import sys


class JSONLogFormatter(logging.Formatter):
    """
    Formats log records as single-line JSON objects.

    Example output:

        {"timestamp": "2026-02-06 10:30:00,123", "level": "INFO", "logger": "submissions_mcp.invoker",
         "message": "Tool call succeeded", "request_id": "1a2b3c4d", "tool": "get_submission"}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if hasattr(record, "auth_data"):
            log_entry.update(record.auth_data)
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


def configure_logging(level: str = "info") -> None:
    """Route the root logger through JSONLogFormatter on stdout."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONLogFormatter())

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        handlers=[handler],
        force=True,
    )
