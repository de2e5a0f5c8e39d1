"""
spec-trace — unit tests for observability logging

File: tests/unit/observability/test_logging.py

Purpose
- Validate structured JSON logging with correlation metadata and queue-backed delivery.

What this test file should cover
- JSON line validity and stable key layout.
- Correlation field propagation across the listener thread.
- Multi-threaded logging stability.
- Queue drain/shutdown behavior.
"""

from __future__ import annotations

import io
import json
import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest

from spec_trace.observability.logging import (
    ROOT_LOGGER_NAME,
    LoggingConfig,
    correlation_scope,
    get_active_logging_handle,
    get_correlation_context,
    get_logger,
    parse_log_level,
    setup_structured_logging,
    shutdown_logging,
)

if TYPE_CHECKING:
    from collections.abc import Iterator


@pytest.fixture(autouse=True)
def _cleanup_logging() -> Iterator[None]:
    yield
    shutdown_logging()


def _logger_name() -> str:
    return f"{ROOT_LOGGER_NAME}.tests.logging.{uuid4().hex}"


def _read_json_lines(path: Path) -> list[dict[str, object]]:
    lines = path.read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines]


@pytest.mark.unit
def test_json_lines_written_to_file_and_stream(tmp_path: Path) -> None:
    stream = io.StringIO()
    name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(level="DEBUG", log_dir=tmp_path / "logs", logger_name=name, stream=stream)
    )
    logger = logging.getLogger(name)
    logger.info("project finished", extra={"errors": 0, "path": Path("specs/001-demo")})
    shutdown_logging(handle)

    assert handle.log_path == tmp_path / "logs" / "spectrace.jsonl"
    events = _read_json_lines(handle.log_path)
    assert len(events) == 1
    event = events[0]
    assert event["message"] == "project finished"
    assert event["level"] == "INFO"
    assert event["logger"] == name
    assert event["fields"] == {"errors": 0, "path": "specs/001-demo"}
    assert str(event["timestamp"]).endswith("Z")

    stream_events = [json.loads(line) for line in stream.getvalue().splitlines()]
    assert stream_events == events


@pytest.mark.unit
def test_level_filtering() -> None:
    stream = io.StringIO()
    name = _logger_name()
    handle = setup_structured_logging(LoggingConfig(level="WARNING", logger_name=name, stream=stream))
    logger = logging.getLogger(name)
    logger.info("hidden")
    logger.warning("shown")
    handle.flush()
    shutdown_logging(handle)

    messages = [json.loads(line)["message"] for line in stream.getvalue().splitlines()]
    assert messages == ["shown"]


@pytest.mark.unit
def test_correlation_scope_propagates_to_records() -> None:
    stream = io.StringIO()
    name = _logger_name()
    handle = setup_structured_logging(LoggingConfig(logger_name=name, stream=stream))
    logger = logging.getLogger(name)

    with correlation_scope(command="compile", project="001-demo"):
        assert get_correlation_context() == {"command": "compile", "project": "001-demo"}
        with correlation_scope(stage="derive", project=None):
            logger.info("nested")
        logger.info("outer")
    logger.info("bare")
    shutdown_logging(handle)

    events = [json.loads(line) for line in stream.getvalue().splitlines()]
    assert events[0]["command"] == "compile"
    assert events[0]["stage"] == "derive"
    assert "project" not in events[0]
    assert events[1]["project"] == "001-demo"
    assert "command" not in events[2]
    assert get_correlation_context() == {}

    with pytest.raises(ValueError, match="must not be empty"):
        with correlation_scope(project="  "):
            pass


@pytest.mark.unit
def test_multithreaded_logging_keeps_every_line(tmp_path: Path) -> None:
    name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(log_dir=tmp_path, logger_name=name, stream=io.StringIO())
    )
    logger = logging.getLogger(name)

    def _worker(index: int) -> None:
        with correlation_scope(project=f"{index:03d}-p"):
            for _ in range(25):
                logger.info("tick")

    threads = [threading.Thread(target=_worker, args=(index,)) for index in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    shutdown_logging(handle)

    assert handle.log_path is not None
    events = _read_json_lines(handle.log_path)
    assert len(events) + handle.dropped_records == 100
    assert {event["project"] for event in events} <= {"000-p", "001-p", "002-p", "003-p"}


@pytest.mark.unit
def test_setup_replaces_previous_handle_and_shutdown_is_idempotent() -> None:
    first = setup_structured_logging(LoggingConfig(logger_name=_logger_name(), stream=io.StringIO()))
    second = setup_structured_logging(LoggingConfig(logger_name=_logger_name(), stream=io.StringIO()))
    assert first.is_shutdown
    assert get_active_logging_handle() is second

    shutdown_logging()
    shutdown_logging()
    assert second.is_shutdown
    assert get_active_logging_handle() is None


@pytest.mark.unit
def test_helpers() -> None:
    assert parse_log_level("debug") == logging.DEBUG
    assert parse_log_level(15) == 15
    with pytest.raises(ValueError, match="unsupported logging level"):
        parse_log_level("chatty")
    with pytest.raises(ValueError, match="queue_size"):
        setup_structured_logging(LoggingConfig(queue_size=0, stream=io.StringIO()))

    assert get_logger("pipeline").name == f"{ROOT_LOGGER_NAME}.pipeline"
    assert get_logger(f"{ROOT_LOGGER_NAME}.cli").name == f"{ROOT_LOGGER_NAME}.cli"
