"""Tests for the JSONL activity logger."""

import json

import pytest

from xloop.tracking.activity_logger import (
    ActivityEvent,
    ActivityLogger,
    EventType,
    generate_session_id,
)


@pytest.fixture
def logger(tmp_path):
    return ActivityLogger("session-1", tmp_path / "logs", "auth")


def read_lines(logger):
    with open(logger.log_file, encoding="utf-8") as f:
        return [json.loads(line) for line in f]


def test_creates_log_dir_and_file_name(tmp_path):
    logger = ActivityLogger("s", tmp_path / "a" / "b", "search")
    assert logger.logs_dir.is_dir()
    assert logger.log_file.name == "activity-search.jsonl"


def test_session_ids_are_unique():
    assert generate_session_id() != generate_session_id()


def test_event_fields_and_data(logger):
    event = logger.log_event(
        EventType.PHASE_COMPLETE,
        "done",
        task_id="task-1",
        phase="implement",
        duration_ms=1200,
        exit_code=0,
        attempts=2,
    )

    assert event.phase == "implement"
    assert event.duration_ms == 1200
    assert event.data == {"attempts": 2}

    (line,) = read_lines(logger)
    assert line["event_type"] == "phase_complete"
    assert line["session_id"] == "session-1"
    assert line["feature"] == "auth"
    assert line["task_id"] == "task-1"
    assert line["data"]["attempts"] == 2


def test_one_line_per_event(logger):
    logger.log_run_start(".plans/tasks-auth.yml", 3, "claude")
    logger.log_iteration_start(1, 3, "task-1")
    logger.log_phase_start("implement", "task-1", "claude-sonnet")
    logger.log_run_end("iterations_exhausted", 3, ["task-1"], 5000)

    types = [line["event_type"] for line in read_lines(logger)]
    assert types == ["run_start", "iteration_start", "phase_start", "run_end"]


def test_phase_failed_keeps_stderr(logger):
    logger.log_phase_failed("review", "task-1", 1, "network", "ECONNRESET\nstack...")

    (event,) = logger.get_task_events("task-1")
    assert event.event_type == EventType.PHASE_FAILED
    assert event.exit_code == 1
    assert event.data["classification"] == "network"
    assert event.data["stderr"] == "ECONNRESET\nstack..."


def test_get_task_events_filters(logger):
    logger.log_info("a", task_id="task-1")
    logger.log_info("b", task_id="task-2")
    logger.log_error("c", task_id="task-1")

    assert [e.message for e in logger.get_task_events("task-1")] == ["a", "c"]


def test_get_recent_events_skips_corrupt_lines(logger):
    for i in range(5):
        logger.log_info(f"event {i}")
    with open(logger.log_file, "a", encoding="utf-8") as f:
        f.write("not json\n")

    recent = logger.get_recent_events(limit=2)
    assert [e.message for e in recent] == ["event 3", "event 4"]
    assert all(isinstance(e, ActivityEvent) for e in recent)


def test_no_events_when_log_missing(tmp_path):
    logger = ActivityLogger("s", tmp_path, "auth")
    assert logger.get_recent_events() == []
