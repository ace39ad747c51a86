"""Pipeline stages, run tokens and persisted run history."""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

import structlog

from regen.exceptions import StateError

logger = structlog.get_logger()


def _now() -> str:
    return datetime.now(tz=UTC).isoformat()


class Stage(str, Enum):
    """FSM stages of one source's update pipeline."""

    IDLE = "idle"
    VALIDATING_PATHS = "validating_paths"
    SYNCING_REPOS = "syncing_repos"
    RUNNING_EXTERNAL_TOOLS = "running_external_tools"
    PACKING_ARTIFACTS = "packing_artifacts"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Whether the stage ends a run."""
        return self in (Stage.DONE, Stage.FAILED)


# Share of the run each stage has completed when it starts, for progress reports.
STAGE_PROGRESS = {
    Stage.IDLE: 0,
    Stage.VALIDATING_PATHS: 10,
    Stage.SYNCING_REPOS: 30,
    Stage.RUNNING_EXTERNAL_TOOLS: 50,
    Stage.PACKING_ARTIFACTS: 70,
    Stage.DONE: 100,
    Stage.FAILED: 100,
}


class RunToken(str, Enum):
    """Whether a target currently has a run in flight."""

    IDLE = "idle"
    RUNNING = "running"


@dataclass
class StageStatus:
    """Status of a stage execution.

    Attributes:
        stage: The stage.
        status: Execution status (pending/running/completed/failed/skipped).
        started_at: When the stage started.
        completed_at: When the stage completed.
        error: Error message if failed.
    """

    stage: Stage
    status: str = "pending"
    started_at: str | None = None
    completed_at: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "stage": self.stage.value,
            "status": self.status,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StageStatus:
        """Create from dictionary."""
        return cls(
            stage=Stage(data["stage"]),
            status=data.get("status", "pending"),
            started_at=data.get("started_at"),
            completed_at=data.get("completed_at"),
            error=data.get("error"),
        )


@dataclass
class PipelineState:
    """State of one source's pipeline run.

    Attributes:
        source: Name of the data source.
        current_stage: Current stage in the FSM.
        commit_hash: Branch tip after syncing.
        error: First fatal error, if the run failed.
        stage_statuses: Status of each stage.
        started_at: When the run started.
        finished_at: When the run reached a terminal stage.
    """

    source: str
    current_stage: Stage = Stage.IDLE
    commit_hash: str | None = None
    error: str | None = None
    stage_statuses: dict[str, StageStatus] = field(default_factory=dict)
    started_at: str = field(default_factory=_now)
    finished_at: str | None = None

    @property
    def succeeded(self) -> bool:
        """Whether the run reached DONE."""
        return self.current_stage == Stage.DONE

    def transition_to(self, stage: Stage) -> None:
        """Move to ``stage``, completing the previous one if it was running.

        Args:
            stage: The stage to transition to.

        Raises:
            StateError: If the run already reached a terminal stage.
        """
        if self.current_stage.is_terminal:
            msg = f"Cannot leave terminal stage {self.current_stage.value}"
            raise StateError(msg)

        prev = self.stage_statuses.get(self.current_stage.value)
        if prev is not None and prev.status == "running":
            prev.status = "completed"
            prev.completed_at = _now()

        self.current_stage = stage
        status = self.stage_statuses.setdefault(stage.value, StageStatus(stage=stage))
        status.status = "running"
        status.started_at = _now()

        if stage.is_terminal:
            status.status = "completed" if stage == Stage.DONE else "failed"
            status.completed_at = _now()
            self.finished_at = status.completed_at

        logger.debug("Stage transition", source=self.source, stage=stage.value)

    def mark_skipped(self, stage: Stage) -> None:
        """Record that a stage had nothing to do for this source."""
        status = self.stage_statuses.setdefault(stage.value, StageStatus(stage=stage))
        status.status = "skipped"
        status.completed_at = _now()

    def fail(self, error: str) -> None:
        """Mark the current stage failed and move to FAILED.

        Args:
            error: Error message.
        """
        status = self.stage_statuses.setdefault(
            self.current_stage.value, StageStatus(stage=self.current_stage)
        )
        status.status = "failed"
        status.error = error
        status.completed_at = _now()
        self.error = error
        self.current_stage = Stage.FAILED
        failed = self.stage_statuses.setdefault(
            Stage.FAILED.value, StageStatus(stage=Stage.FAILED)
        )
        failed.status = "failed"
        failed.error = error
        failed.completed_at = status.completed_at
        self.finished_at = status.completed_at

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "source": self.source,
            "current_stage": self.current_stage.value,
            "commit_hash": self.commit_hash,
            "error": self.error,
            "stage_statuses": {k: v.to_dict() for k, v in self.stage_statuses.items()},
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PipelineState:
        """Create from dictionary."""
        return cls(
            source=data["source"],
            current_stage=Stage(data.get("current_stage", "idle")),
            commit_hash=data.get("commit_hash"),
            error=data.get("error"),
            stage_statuses={
                k: StageStatus.from_dict(v)
                for k, v in data.get("stage_statuses", {}).items()
            },
            started_at=data.get("started_at", _now()),
            finished_at=data.get("finished_at"),
        )


class StateStore:
    """Persists the most recent pipeline state per source in state.json.

    Example:
        >>> store = StateStore(Path("~/.regen/state.json"))
        >>> store.record(state)
        >>> store.last_success()
        datetime.datetime(2024, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)
    """

    def __init__(self, path: Path) -> None:
        """Initialize the store.

        Args:
            path: Path of the state file.
        """
        self.path = path
        self._lock = threading.Lock()

    def load(self) -> dict[str, Any]:
        """Load the raw state document.

        Returns:
            The document, or an empty one if the file doesn't exist.

        Raises:
            StateError: If the file is invalid.
        """
        if not self.path.exists():
            return {"sources": {}, "last_success_at": None}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            msg = f"Invalid state file: {e}"
            raise StateError(msg, path=self.path) from e
        if not isinstance(data, dict):
            msg = "State file must contain a JSON object"
            raise StateError(msg, path=self.path)
        data.setdefault("sources", {})
        data.setdefault("last_success_at", None)
        return data

    def save(self, data: dict[str, Any]) -> None:
        """Write the state document."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        logger.debug("Saved run state", path=str(self.path))

    def record(self, state: PipelineState) -> None:
        """Store the outcome of a finished pipeline run.

        A corrupt state file is replaced rather than blocking the update, and
        a state file that cannot be written is logged and left as it was.
        """
        with self._lock:
            try:
                data = self.load()
            except StateError as e:
                logger.warning("Discarding unreadable state file", error=str(e))
                data = {"sources": {}, "last_success_at": None}
            data["sources"][state.source] = state.to_dict()
            if state.succeeded:
                data["last_success_at"] = state.finished_at
            try:
                self.save(data)
            except OSError as e:
                logger.error("Failed to save run state", path=str(self.path), error=str(e))

    def get(self, source: str) -> PipelineState | None:
        """Get the last recorded state of a source."""
        entry = self.load()["sources"].get(source)
        return PipelineState.from_dict(entry) if entry else None

    def last_success(self) -> datetime | None:
        """When any source last completed successfully."""
        try:
            value = self.load()["last_success_at"]
        except StateError as e:
            logger.warning("Unreadable state file", error=str(e))
            return None
        return datetime.fromisoformat(value) if value else None
