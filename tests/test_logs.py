import io
import json
import logging

import pytest

from forumhub.logs import get_logger, init_logger, set_development_mode


@pytest.fixture(autouse=True)
def production_mode():
    set_development_mode(False)
    yield
    set_development_mode(False)


def _capture(logger):
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(logger.handlers[0].formatter)
    logger.addHandler(handler)
    return stream


def test_init_logger_builds_a_logger():
    log = init_logger()
    assert isinstance(log, logging.Logger)
    assert log.name == "forumhub"
    assert len(log.handlers) == 1


def test_init_logger_builds_fresh_instances():
    first = init_logger()
    second = init_logger()
    assert first is not second
    assert len(second.handlers) == 1
    assert second.isEnabledFor(logging.INFO)
    assert not second.isEnabledFor(logging.DEBUG)


def test_get_logger_is_a_singleton():
    first = get_logger()
    second = get_logger()
    assert first is second
    assert first.name == "forumhub"


def test_set_development_mode_rebuilds_shared_logger():
    first = get_logger()
    set_development_mode(True)
    second = get_logger()
    assert first is not second
    assert second.isEnabledFor(logging.DEBUG)


def test_production_mode_writes_json_lines():
    log = init_logger()
    stream = _capture(log)
    log.info("info message in production mode")
    entry = json.loads(stream.getvalue().splitlines()[-1])
    assert entry["msg"] == "info message in production mode"
    assert entry["level"] == "info"


def test_production_mode_hides_debug():
    log = init_logger()
    stream = _capture(log)
    log.debug("test debug message")
    assert stream.getvalue() == ""
    assert not log.isEnabledFor(logging.DEBUG)


def test_all_levels_are_written():
    log = init_logger()
    stream = _capture(log)
    log.info("test info message")
    log.error("test error message")
    log.warning("test warning message")
    levels = [json.loads(line)["level"] for line in stream.getvalue().splitlines()]
    assert levels == ["info", "error", "warning"]


def test_fields_appear_in_output():
    log = init_logger()
    stream = _capture(log)
    log.info("test message with fields", extra={"key1": "value1", "key2": 123})
    entry = json.loads(stream.getvalue())
    assert entry["key1"] == "value1"
    assert entry["key2"] == 123


def test_context_fields_appear_in_output():
    log = init_logger()
    stream = _capture(log)
    log.info("test message with context", extra={"request_id": "123", "user_id": "456"})
    entry = json.loads(stream.getvalue())
    assert (entry["request_id"], entry["user_id"]) == ("123", "456")


def test_error_with_exception_is_recorded():
    log = init_logger()
    stream = _capture(log)
    log.error("test error", exc_info=ValueError("boom"), extra={"additional_info": "test info"})
    entry = json.loads(stream.getvalue())
    assert "boom" in entry["error"]
    assert entry["additional_info"] == "test info"


def test_development_mode_writes_debug_as_console_text():
    set_development_mode(True)
    log = init_logger()
    stream = _capture(log)
    log.debug("debug message should be enabled in development mode")
    output = stream.getvalue()
    assert "\tDEBUG\t" in output
    assert "debug message should be enabled in development mode" in output