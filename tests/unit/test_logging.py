"""Unit tests for structured JSON logging."""

from __future__ import annotations

import json
import logging

import pytest

from marketplace_service.logging import (
    PACKAGE_LOGGER,
    JSONFormatter,
    get_logger,
    setup_logging,
)


@pytest.mark.unit
def test_get_logger_prefixes_namespace() -> None:
    assert get_logger("thing").name == "marketplace_service.thing"
    assert get_logger("marketplace_service.services.rate_gate").name == (
        "marketplace_service.services.rate_gate"
    )
    assert get_logger(PACKAGE_LOGGER).name == PACKAGE_LOGGER


@pytest.mark.unit
def test_formatter_renders_json_with_extra() -> None:
    formatter = JSONFormatter("marketplace")
    record = logging.LogRecord(
        name="marketplace_service.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="Task created",
        args=(),
        exc_info=None,
    )
    record.task_id = "t-1"

    data = json.loads(formatter.format(record))

    assert data["service"] == "marketplace"
    assert data["level"] == "INFO"
    assert data["message"] == "Task created"
    assert data["timestamp"].endswith("Z")
    assert data["extra"] == {"task_id": "t-1"}


@pytest.mark.unit
def test_setup_logging_writes_daily_file(tmp_path) -> None:
    log_dir = tmp_path / "logs"
    logger = setup_logging("INFO", "marketplace", str(log_dir))
    try:
        get_logger("test").info("hello", extra={"k": "v"})
        for handler in logger.handlers:
            handler.flush()

        files = list(log_dir.glob("*.log"))
        assert len(files) == 1
        line = json.loads(files[0].read_text().strip().splitlines()[-1])
        assert line["message"] == "hello"
        assert line["extra"] == {"k": "v"}
        assert logger.propagate is False
    finally:
        for handler in logger.handlers:
            handler.close()
        logger.handlers.clear()
        logger.propagate = True


@pytest.mark.unit
def test_setup_logging_rejects_unknown_level(tmp_path) -> None:
    with pytest.raises(ValueError, match="Invalid log level"):
        setup_logging("LOUD", "marketplace", str(tmp_path))
