"""MaxbotLogger — Singleton JSON logger with console and optional rotating file output.

Provides a single, project-wide ``maxbot`` logger that writes structured JSON
to stdout and, when ``MAXBOT_LOG_DIR`` is set, to ``<dir>/maxbot.log`` with
automatic rotation.  Modules that must not depend on this package (the SDK
transport) log through child loggers such as ``maxbot.sdk.client`` and reach
the same handlers by propagation.
"""

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Optional


class _JsonFormatter(logging.Formatter):
    """Format every log record as a single-line JSON object.

    Standard fields (timestamp, level, logger, message, module, func_name)
    are always present.  Any *extra* key-value pairs passed via the ``extra``
    parameter of a logging call are merged into the JSON object, which is how
    the dispatcher attaches ``update_id``, ``update_kind``, ``fsm_key``, etc.

    Example::

        logger.info("Update handled", extra={"update_id": 7, "update_kind": "message"})

    Produces::

        {"timestamp": "…", "level": "INFO", …, "update_id": 7, "update_kind": "message"}
    """

    # Keys that belong to the standard LogRecord; everything else is extra.
    _BUILTIN_ATTRS: frozenset[str] = frozenset(vars(logging.LogRecord(
        name="", level=0, pathname="", lineno=0, msg="", args=(), exc_info=None,
    )))

    def format(self, record: logging.LogRecord) -> str:
        """Serialize *record* to a JSON string."""
        log_entry: dict = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "func_name": record.funcName,
        }

        for key, value in record.__dict__.items():
            if key not in self._BUILTIN_ATTRS and key not in log_entry:
                log_entry[key] = value

        if record.exc_info:
            log_entry["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class MaxbotLogger:
    """Singleton logger with a console handler and an optional rotating file.

    Usage::

        from core.logger import MaxbotLogger

        logger = MaxbotLogger.get_logger()
        logger.info("Polling started")
    """

    _instance: Optional["MaxbotLogger"] = None
    _logger: Optional[logging.Logger] = None

    LOGGER_NAME: str = "maxbot"

    # Rotation settings
    _LOG_FILE: str = "maxbot.log"
    _MAX_BYTES: int = 5 * 1024 * 1024  # 5 MB
    _BACKUP_COUNT: int = 5

    def __new__(cls, level: Optional[int] = None) -> "MaxbotLogger":
        """Ensure only one instance is ever created (Singleton)."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._init_logger(level if level is not None else cls._level_from_env())
        return cls._instance

    # ------------------------------------------------------------------
    # Initialisation helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _level_from_env() -> int:
        """Resolve ``MAXBOT_LOG_LEVEL`` (name or number), defaulting to INFO."""
        raw = os.environ.get("MAXBOT_LOG_LEVEL", "").strip()
        if not raw:
            return logging.INFO
        if raw.isdigit():
            return int(raw)
        level = logging.getLevelName(raw.upper())
        return level if isinstance(level, int) else logging.INFO

    def _init_logger(self, level: int) -> None:
        """Create the underlying :class:`logging.Logger` and attach handlers."""
        self._logger = logging.getLogger(self.LOGGER_NAME)
        self._logger.setLevel(level)

        # Avoid duplicate handlers if the module is reloaded.
        if self._logger.handlers:
            return

        formatter = _JsonFormatter()

        stream_handler = logging.StreamHandler()
        stream_handler.setLevel(level)
        stream_handler.setFormatter(formatter)
        self._logger.addHandler(stream_handler)

        log_dir = os.environ.get("MAXBOT_LOG_DIR", "").strip()
        if not log_dir:
            return

        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, self._LOG_FILE),
            maxBytes=self._MAX_BYTES,
            backupCount=self._BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        self._logger.addHandler(file_handler)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @staticmethod
    def get_logger(level: Optional[int] = None) -> logging.Logger:
        """Return the shared :class:`logging.Logger` instance.

        Creates the singleton on first call; subsequent calls return the
        same logger regardless of the *level* argument.
        """
        instance = MaxbotLogger(level)
        assert instance._logger is not None  # guaranteed by __new__
        return instance._logger

    def cleanup(self) -> None:
        """Flush and close all handlers attached to the logger."""
        if self._logger is None:
            return
        for handler in list(self._logger.handlers):
            handler.flush()
            handler.close()
            self._logger.removeHandler(handler)
