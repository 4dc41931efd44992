"""Tests for JSON log formatting."""

import json
import logging

from packages.common.logging import JSONFormatter, configure_logging, get_request_id, set_request_id


def _record(msg: str) -> logging.LogRecord:
    return logging.LogRecord("forum.api", logging.INFO, __file__, 1, msg, None, None)


def test_json_line_carries_request_id() -> None:
    set_request_id("rid-1")
    try:
        line = json.loads(JSONFormatter().format(_record("post 1 created")))
    finally:
        set_request_id(None)
    assert line["level"] == "INFO"
    assert line["logger"] == "forum.api"
    assert line["msg"] == "post 1 created"
    assert line["request_id"] == "rid-1"
    assert get_request_id() is None


def test_json_line_without_request_id() -> None:
    line = json.loads(JSONFormatter().format(_record("hello")))
    assert "request_id" not in line


def test_configure_logging_names_the_service_logger() -> None:
    log = configure_logging("DEBUG", "askboard-eu")
    try:
        assert log.name == "askboard-eu"
        assert logging.getLogger().level == logging.DEBUG
        assert isinstance(logging.getLogger().handlers[0].formatter, JSONFormatter)
    finally:
        configure_logging("INFO")
