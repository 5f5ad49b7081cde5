"""Activity logging for xloop runs."""

import json
import threading
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Types of events that can be logged."""

    RUN_START = "run_start"
    RUN_END = "run_end"
    ITERATION_START = "iteration_start"
    PHASE_START = "phase_start"
    PHASE_COMPLETE = "phase_complete"
    PHASE_RETRY = "phase_retry"
    PHASE_FAILED = "phase_failed"
    MARKER_MISSING = "marker_missing"
    TASK_COMPLETED = "task_completed"
    ERROR = "error"
    INFO = "info"


class ActivityEvent(BaseModel):
    """Activity event model."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    event_type: EventType = Field(..., description="Type of event")
    session_id: str = Field(..., description="Run identifier")
    feature: Optional[str] = Field(None, description="Feature being worked on")
    task_id: Optional[str] = Field(None, description="Task identifier")
    phase: Optional[str] = Field(None, description="Phase name")
    message: str = Field(..., description="Event message")

    data: Dict[str, Any] = Field(
        default_factory=dict, description="Additional event data"
    )

    duration_ms: Optional[int] = Field(None, description="Duration in milliseconds")
    exit_code: Optional[int] = Field(None, description="Agent exit code")


def generate_session_id() -> str:
    """Create a sortable, unique run identifier."""
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return f"{stamp}-{uuid.uuid4().hex[:6]}"


class ActivityLogger:
    """Thread-safe JSONL activity logger for one feature's runs."""

    _EVENT_FIELDS = {"phase", "duration_ms", "exit_code"}

    def __init__(self, session_id: str, logs_dir: Path, feature: str):
        """Initialize activity logger.

        Args:
            session_id: Current run identifier
            logs_dir: Directory to store log files
            feature: Feature name; events go to activity-<feature>.jsonl
        """
        self.session_id = session_id
        self.logs_dir = Path(logs_dir)
        self.feature = feature

        self.logs_dir.mkdir(parents=True, exist_ok=True)
        self.log_file = self.logs_dir / f"activity-{feature}.jsonl"

        self._lock = threading.Lock()

    def log_event(
        self,
        event_type: EventType,
        message: str,
        task_id: Optional[str] = None,
        **kwargs,
    ) -> ActivityEvent:
        """Log an activity event.

        Args:
            event_type: Type of event
            message: Event message
            task_id: Optional task identifier
            **kwargs: phase, duration_ms and exit_code become event fields;
                anything else goes into ``data``
        """
        event_fields: Dict[str, Any] = {
            "event_type": event_type,
            "session_id": self.session_id,
            "feature": self.feature,
            "task_id": task_id,
            "message": message,
        }

        data_fields = {}
        for key, value in kwargs.items():
            if key in self._EVENT_FIELDS:
                event_fields[key] = value
            else:
                data_fields[key] = value
        if data_fields:
            event_fields["data"] = data_fields

        event = ActivityEvent(**event_fields)
        self._write_event(event)
        return event

    def log_run_start(self, task_file: str, iterations: int, agent: str) -> None:
        self.log_event(
            EventType.RUN_START,
            f"Run started: {self.feature} ({iterations} iterations, {agent})",
            task_file=task_file,
            iterations=iterations,
            agent=agent,
        )

    def log_run_end(
        self,
        stop_reason: str,
        iterations_run: int,
        completed: List[str],
        duration_ms: int,
        error: Optional[str] = None,
    ) -> None:
        self.log_event(
            EventType.RUN_END,
            f"Run ended: {stop_reason}",
            duration_ms=duration_ms,
            stop_reason=stop_reason,
            iterations_run=iterations_run,
            completed=completed,
            error=error,
        )

    def log_iteration_start(self, iteration: int, total: int, task_id: Optional[str]) -> None:
        self.log_event(
            EventType.ITERATION_START,
            f"Iteration {iteration}/{total}",
            task_id=task_id,
            iteration=iteration,
        )

    def log_phase_start(self, phase: str, task_id: Optional[str], model: Optional[str]) -> None:
        self.log_event(
            EventType.PHASE_START,
            f"Phase {phase} started",
            task_id=task_id,
            phase=phase,
            model=model,
        )

    def log_phase_complete(
        self, phase: str, task_id: Optional[str], duration_ms: int, **kwargs
    ) -> None:
        self.log_event(
            EventType.PHASE_COMPLETE,
            f"Phase {phase} completed",
            task_id=task_id,
            phase=phase,
            duration_ms=duration_ms,
            exit_code=0,
            **kwargs,
        )

    def log_phase_retry(
        self, phase: str, task_id: Optional[str], attempt: int, delay: float, error: str
    ) -> None:
        self.log_event(
            EventType.PHASE_RETRY,
            f"Phase {phase} attempt {attempt} failed, retrying in {delay:g}s",
            task_id=task_id,
            phase=phase,
            attempt=attempt,
            delay=delay,
            error=error,
        )

    def log_phase_failed(
        self,
        phase: str,
        task_id: Optional[str],
        exit_code: int,
        classification: str,
        stderr: str,
    ) -> None:
        """Log a phase that failed for good; the raw stderr is kept."""
        self.log_event(
            EventType.PHASE_FAILED,
            f"Phase {phase} failed: {classification}",
            task_id=task_id,
            phase=phase,
            exit_code=exit_code,
            classification=classification,
            stderr=stderr,
        )

    def log_marker_missing(
        self, phase: str, task_id: Optional[str], expected: str, note: str
    ) -> None:
        self.log_event(
            EventType.MARKER_MISSING,
            f"Ambiguous completion: {note}",
            task_id=task_id,
            phase=phase,
            expected_marker=expected,
        )

    def log_task_completed(self, task_id: str, completed_at: datetime) -> None:
        self.log_event(
            EventType.TASK_COMPLETED,
            f"Task {task_id} completed",
            task_id=task_id,
            completed_at=completed_at.isoformat(),
        )

    def log_error(self, error: str, task_id: Optional[str] = None, **kwargs) -> None:
        self.log_event(EventType.ERROR, error, task_id=task_id, error=error, **kwargs)

    def log_info(self, message: str, task_id: Optional[str] = None, **kwargs) -> None:
        self.log_event(EventType.INFO, message, task_id=task_id, **kwargs)

    def get_task_events(self, task_id: str) -> List[ActivityEvent]:
        """Get all logged events for a specific task."""
        return [event for event in self._read_events() if event.task_id == task_id]

    def get_recent_events(self, limit: int = 100) -> List[ActivityEvent]:
        """Get the most recent events in the log.

        Args:
            limit: Maximum number of events to return
        """
        return self._read_events()[-limit:]

    def _read_events(self) -> List[ActivityEvent]:
        events = []
        if not self.log_file.exists():
            return events

        with open(self.log_file, "r", encoding="utf-8") as f:
            for line in f:
                try:
                    events.append(ActivityEvent(**json.loads(line.strip())))
                except (json.JSONDecodeError, ValueError):
                    continue
        return events

    def _write_event(self, event: ActivityEvent) -> None:
        """Append one event as a JSON line.

        Logging never interrupts a run: if the log cannot be written the
        event is dropped.
        """
        with self._lock:
            try:
                with open(self.log_file, "a", encoding="utf-8") as f:
                    json.dump(
                        event.model_dump(mode="json"),
                        f,
                        default=str,
                        separators=(",", ":"),
                    )
                    f.write("\n")
            except OSError:
                pass
