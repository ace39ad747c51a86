"""Tests for pipeline state and the state store."""

from datetime import datetime
from pathlib import Path

import pytest

from regen.exceptions import StateError
from regen.state import STAGE_PROGRESS, PipelineState, Stage, StageStatus, StateStore


class TestStageStatus:
    """Tests for StageStatus."""

    def test_create(self) -> None:
        """Test creating a StageStatus."""
        status = StageStatus(stage=Stage.SYNCING_REPOS)

        assert status.status == "pending"
        assert status.started_at is None

    def test_round_trip(self) -> None:
        """to_dict/from_dict preserve every field."""
        status = StageStatus(
            stage=Stage.PACKING_ARTIFACTS,
            status="failed",
            started_at="2024-01-01T00:00:00",
            completed_at="2024-01-01T00:01:00",
            error="disk full",
        )

        data = status.to_dict()

        assert data["stage"] == "packing_artifacts"
        assert StageStatus.from_dict(data) == status


class TestPipelineState:
    """Tests for the stage machine."""

    def test_linear_run(self) -> None:
        """Each transition completes the previous stage."""
        state = PipelineState(source="EventsGallery")

        for stage in (
            Stage.VALIDATING_PATHS,
            Stage.SYNCING_REPOS,
            Stage.RUNNING_EXTERNAL_TOOLS,
            Stage.PACKING_ARTIFACTS,
            Stage.DONE,
        ):
            state.transition_to(stage)

        assert state.succeeded
        assert state.finished_at is not None
        assert state.stage_statuses["syncing_repos"].status == "completed"
        assert state.stage_statuses["done"].status == "completed"

    def test_fail(self) -> None:
        """fail() marks the current stage and moves to FAILED."""
        state = PipelineState(source="s")
        state.transition_to(Stage.SYNCING_REPOS)

        state.fail("fetch failed")

        assert state.current_stage == Stage.FAILED
        assert state.error == "fetch failed"
        assert state.stage_statuses["syncing_repos"].status == "failed"
        assert not state.succeeded

    def test_terminal_stage_is_final(self) -> None:
        """Nothing follows DONE or FAILED."""
        state = PipelineState(source="s")
        state.fail("boom")

        with pytest.raises(StateError):
            state.transition_to(Stage.SYNCING_REPOS)

    def test_mark_skipped(self) -> None:
        """Skipped stages are recorded without running."""
        state = PipelineState(source="s")

        state.mark_skipped(Stage.RUNNING_EXTERNAL_TOOLS)

        assert state.stage_statuses["running_external_tools"].status == "skipped"

    def test_round_trip(self) -> None:
        """State survives serialization."""
        state = PipelineState(source="s", commit_hash="abc123")
        state.transition_to(Stage.VALIDATING_PATHS)

        restored = PipelineState.from_dict(state.to_dict())

        assert restored.source == "s"
        assert restored.commit_hash == "abc123"
        assert restored.current_stage == Stage.VALIDATING_PATHS

    def test_progress_is_monotonic(self) -> None:
        """Progress percentages only grow along the happy path."""
        values = [
            STAGE_PROGRESS[s]
            for s in (
                Stage.IDLE,
                Stage.VALIDATING_PATHS,
                Stage.SYNCING_REPOS,
                Stage.RUNNING_EXTERNAL_TOOLS,
                Stage.PACKING_ARTIFACTS,
                Stage.DONE,
            )
        ]
        assert values == sorted(values)
        assert values[-1] == 100


class TestStateStore:
    """Tests for StateStore."""

    def _done(self, source: str) -> PipelineState:
        state = PipelineState(source=source)
        state.transition_to(Stage.VALIDATING_PATHS)
        state.transition_to(Stage.DONE)
        return state

    def test_load_missing(self, tmp_path: Path) -> None:
        """A missing file is an empty document."""
        store = StateStore(tmp_path / "state.json")

        assert store.load() == {"sources": {}, "last_success_at": None}
        assert store.last_success() is None
        assert store.get("s") is None

    def test_record_success(self, tmp_path: Path) -> None:
        """A successful run updates last_success_at."""
        store = StateStore(tmp_path / "state.json")
        state = self._done("s")

        store.record(state)

        assert store.get("s") is not None
        assert store.get("s").succeeded
        last = store.last_success()
        assert isinstance(last, datetime)
        assert last.isoformat() == state.finished_at

    def test_record_failure_keeps_last_success(self, tmp_path: Path) -> None:
        """A failed run does not move last_success_at."""
        store = StateStore(tmp_path / "state.json")
        store.record(self._done("a"))
        before = store.last_success()

        failed = PipelineState(source="b")
        failed.fail("boom")
        store.record(failed)

        assert store.last_success() == before
        assert store.get("b").error == "boom"

    def test_invalid_file(self, tmp_path: Path) -> None:
        """load() raises on a corrupt file, record() replaces it."""
        path = tmp_path / "state.json"
        path.write_text("{not json")
        store = StateStore(path)

        with pytest.raises(StateError):
            store.load()
        assert store.last_success() is None

        store.record(self._done("s"))

        assert store.get("s").succeeded

    def test_record_unwritable_path(self, tmp_path: Path) -> None:
        """A state file that can't be written is logged, never raised."""
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        store = StateStore(blocker / "state.json")

        store.record(self._done("s"))

        assert blocker.read_text() == "not a directory"
        assert store.get("s") is None
