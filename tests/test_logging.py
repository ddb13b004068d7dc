"""Tests for logging setup and helpers."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from winusb_creator import logging as logging_module


def _record(message: str, level: str, tags=None) -> dict:
    return {
        "message": message,
        "extra": {"tags": tags or []},
        "level": logging_module.logger.level(level),
    }


def test_setup_logging_creates_log_files(tmp_path):
    """Test operations and structured sinks are always written."""
    log_dir = tmp_path / "logs"
    logging_module.setup_logging(log_dir=log_dir)

    logging_module.get_logger(source="test").info("Creator started")
    logging_module.logger.complete()

    assert (log_dir / "operations.log").exists()
    assert (log_dir / "structured.jsonl").exists()
    assert not (log_dir / "debug.log").exists()
    assert "Creator started" in (log_dir / "operations.log").read_text()


def test_setup_logging_debug_adds_debug_log(tmp_path):
    """Test --debug adds the detailed debug log."""
    log_dir = tmp_path / "logs"
    logging_module.setup_logging(debug=True, log_dir=log_dir)

    logging_module.get_logger(source="test").debug("Running command: diskutil list")
    logging_module.logger.complete()

    assert "Running command: diskutil list" in (log_dir / "debug.log").read_text()


def test_get_logger_preserves_context_metadata(log_records):
    """Test bound logger keeps job_id, tags, and source metadata."""
    log = logging_module.get_logger(job_id="create-123", tags=["copy"], source="copy")
    log.info("Context test")

    record = log_records[0]
    assert record["extra"]["job_id"] == "create-123"
    assert record["extra"]["tags"] == ["copy"]
    assert record["extra"]["source"] == "copy"


def test_logger_factory_sources(log_records):
    """Test each factory logger is tagged with its component."""
    logging_module.LoggerFactory.for_copy().info("copy")
    logging_module.LoggerFactory.for_disk().info("disk")
    logging_module.LoggerFactory.for_image().info("image")
    logging_module.LoggerFactory.for_creator(job_id="create-1").info("creator")
    logging_module.LoggerFactory.for_system().info("system")

    sources = [record["extra"]["source"] for record in log_records]
    assert sources == ["copy", "disk", "image", "creator", "system"]
    assert "progress" in log_records[0]["extra"]["tags"]
    assert log_records[3]["extra"]["job_id"] == "create-1"


def test_combined_filter_blocks_progress_logs_above_trace():
    """Test combined filter suppresses copy progress above TRACE level."""
    record = _record("Streaming install.wim", "DEBUG", tags=["copy", "progress"])

    assert logging_module._combined_filter(record) is False

    record["level"] = logging_module.logger.level("TRACE")
    assert logging_module._combined_filter(record) is True


def test_combined_filter_command_output():
    """Test raw command output is hidden at INFO but shown at DEBUG."""
    assert logging_module._combined_filter(_record("stdout: Finished erase", "INFO")) is False
    assert logging_module._combined_filter(_record("stdout: Finished erase", "DEBUG")) is True
    assert logging_module._combined_filter(_record("stderr: busy", "WARNING")) is True
    assert logging_module._combined_filter(_record("Format successful", "INFO")) is True


def test_operation_context_logs_success(log_records):
    """Test operation context logs start and completion."""
    with logging_module.operation_context("create", drive="disk4") as log:
        log.info("Step 1: Mounting ISO")

    messages = [record["message"] for record in log_records]
    assert messages == ["Create started", "Step 1: Mounting ISO", "Create completed"]
    assert log_records[0]["extra"]["drive"] == "disk4"
    assert log_records[0]["extra"]["job_id"].startswith("create-")


def test_operation_context_logs_failure_and_reraises(log_records):
    """Test operation context logs failure and propagates the error."""
    with pytest.raises(RuntimeError):
        with logging_module.operation_context("create"):
            raise RuntimeError("boom")

    failure = log_records[-1]
    assert failure["message"] == "Create failed"
    assert failure["level"].name == "ERROR"
    assert failure["extra"]["error_type"] == "RuntimeError"


def test_throttled_logger_suppresses_repeats(log_records):
    """Test throttled logger emits once per interval per key."""
    throttled = logging_module.ThrottledLogger(
        logging_module.get_logger(source="copy"), interval_seconds=5.0
    )

    with patch("winusb_creator.logging.time") as mock_time:
        mock_time.monotonic.side_effect = [100.0, 101.0, 106.0, 106.0]
        throttled.debug("install.wim", "first")
        throttled.debug("install.wim", "suppressed")
        throttled.debug("install.wim", "second")
        throttled.info("boot.wim", "other key")

    assert [record["message"] for record in log_records] == ["first", "second", "other key"]
