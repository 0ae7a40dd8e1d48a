"""Tests for the JSON logger."""

import sys
import os
import json
import logging

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.logger import MaxbotLogger, _JsonFormatter


def _record(msg: str = "hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="maxbot", level=logging.INFO, pathname=__file__, lineno=1, msg=msg, args=(), exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJsonFormatter:
    """Shape of the emitted JSON lines."""

    def test_standard_fields(self) -> None:
        entry = json.loads(_JsonFormatter().format(_record()))
        assert entry["level"] == "INFO"
        assert entry["logger"] == "maxbot"
        assert entry["message"] == "hello"
        assert {"timestamp", "module", "func_name"} <= set(entry)

    def test_extra_fields_merged(self) -> None:
        entry = json.loads(_JsonFormatter().format(_record(update_id=7, update_kind="message")))
        assert entry["update_id"] == 7
        assert entry["update_kind"] == "message"

    def test_non_serialisable_extra(self) -> None:
        entry = json.loads(_JsonFormatter().format(_record(obj=object())))
        assert entry["obj"].startswith("<object object")

    def test_exc_info(self) -> None:
        try:
            raise ValueError("bad")
        except ValueError:
            record = _record()
            record.exc_info = sys.exc_info()
        entry = json.loads(_JsonFormatter().format(record))
        assert "ValueError: bad" in entry["exc_info"]


class TestSingleton:
    def test_same_logger(self) -> None:
        assert MaxbotLogger.get_logger() is MaxbotLogger.get_logger()
        assert MaxbotLogger.get_logger().name == "maxbot"

    def test_sdk_logger_propagates_to_root(self) -> None:
        child = logging.getLogger("maxbot.sdk.client")
        assert child.parent is MaxbotLogger.get_logger()
