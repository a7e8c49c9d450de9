"""Log output for applications embedding chatsync.

The library only ever logs through ``logging.getLogger(__name__)``. Nothing
is configured on import; ``setup_logging`` attaches a handler to the
``chatsync`` logger alone, so the host application's root logger is left
untouched.
"""

import json
import logging
import traceback
from datetime import datetime
from typing import IO

LOGGER_NAME = "chatsync"

LEVELS = {
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}

# Attributes every LogRecord has; anything else came in through ``extra``
_RECORD_FIELDS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
}


class JSONFormatter(logging.Formatter):
    """One JSON object per record, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        # Fields passed with extra={...}, e.g. the client id
        for key, value in vars(record).items():
            if key not in _RECORD_FIELDS and not key.startswith("_"):
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        return json.dumps(log_data, default=str, ensure_ascii=False)


def setup_logging(
    level: str = "info",
    json_output: bool = False,
    stream: IO[str] | None = None,
) -> logging.Handler:
    """Send chatsync's log records to a stream.

    Calling it again replaces the handler installed by the previous call.

    Args:
        level: warning, info or debug. Unknown names fall back to info.
        json_output: Emit JSON lines instead of plain text.
        stream: Where to write. Defaults to stderr.

    Returns:
        The installed handler.
    """
    log_level = LEVELS.get(level.lower(), logging.INFO)

    handler = logging.StreamHandler(stream)
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    logger = logging.getLogger(LOGGER_NAME)
    for existing in list(logger.handlers):
        if getattr(existing, "_chatsync_handler", False):
            logger.removeHandler(existing)
    handler._chatsync_handler = True
    logger.addHandler(handler)
    logger.setLevel(log_level)

    # Paho is chatty at debug level
    logging.getLogger("paho").setLevel(max(log_level, logging.INFO))

    return handler
