"""Tests for BackupManager."""

from __future__ import annotations

from pathlib import Path

import pytest

from regen.backup import BackupManager
from regen.exceptions import RegenError


@pytest.fixture
def outputs(tmp_path: Path) -> dict[str, Path]:
    """Output directories holding one pickle each."""
    mgdb = tmp_path / "legality" / "mgdb"
    wild = tmp_path / "legality" / "wild"
    mgdb.mkdir(parents=True)
    wild.mkdir(parents=True)
    (mgdb / "wc9.pkl").write_bytes(b"cards")
    (wild / "encounter_go_home.pkl").write_bytes(b"home")
    (wild / "readme.txt").write_text("not a pickle")
    return {"mgdb": mgdb, "wild": wild}


def test_create_snapshots_pickles(tmp_path: Path, outputs: dict[str, Path]) -> None:
    """Only *.pkl files are copied, per output directory."""
    manager = BackupManager(tmp_path / "snapshots", outputs)

    path = manager.create()

    assert path is not None
    assert path.name.startswith("backup_")
    assert (path / "mgdb" / "wc9.pkl").read_bytes() == b"cards"
    assert (path / "wild" / "encounter_go_home.pkl").exists()
    assert not (path / "wild" / "readme.txt").exists()


def test_same_second_snapshots_do_not_collide(
    tmp_path: Path, outputs: dict[str, Path]
) -> None:
    """Two snapshots within a second get distinct names."""
    manager = BackupManager(tmp_path / "snapshots", outputs)

    first = manager.create()
    second = manager.create()

    assert first is not None and second is not None
    assert first != second
    assert len(manager.list_backups()) == 2


def test_prune_keeps_newest(tmp_path: Path, outputs: dict[str, Path]) -> None:
    """Only max_backups snapshots survive, newest first."""
    root = tmp_path / "snapshots"
    for stamp in ("20240101_000000", "20240102_000000", "20240103_000000"):
        (root / f"backup_{stamp}").mkdir(parents=True)
    manager = BackupManager(root, outputs, max_backups=2)

    deleted = manager.prune()

    assert deleted == ["backup_20240101_000000"]
    assert manager.list_backups() == ["backup_20240103_000000", "backup_20240102_000000"]


def test_list_ignores_other_folders(tmp_path: Path, outputs: dict[str, Path]) -> None:
    """Folders without the backup prefix are not snapshots."""
    root = tmp_path / "snapshots"
    (root / "misc").mkdir(parents=True)

    assert BackupManager(root, outputs).list_backups() == []
    assert BackupManager(tmp_path / "missing", outputs).list_backups() == []


def test_restore(tmp_path: Path, outputs: dict[str, Path]) -> None:
    """Restoring puts the snapshot's files back."""
    manager = BackupManager(tmp_path / "snapshots", outputs)
    path = manager.create()
    assert path is not None
    (outputs["mgdb"] / "wc9.pkl").write_bytes(b"corrupted")

    restored = manager.restore(path.name)

    assert restored == 2
    assert (outputs["mgdb"] / "wc9.pkl").read_bytes() == b"cards"


def test_restore_unknown(tmp_path: Path, outputs: dict[str, Path]) -> None:
    """Restoring a missing snapshot raises."""
    manager = BackupManager(tmp_path / "snapshots", outputs)

    with pytest.raises(RegenError, match="Backup not found"):
        manager.restore("backup_19990101_000000")


def test_restore_rejects_path_outside_backups(tmp_path: Path, outputs: dict[str, Path]) -> None:
    """Only names listed by list_backups() can be restored."""
    manager = BackupManager(tmp_path / "snapshots", outputs)
    assert manager.create() is not None
    outside = tmp_path / "backup_outside"
    (outside / "mgdb").mkdir(parents=True)
    (outside / "mgdb" / "wc9.pkl").write_bytes(b"foreign")

    with pytest.raises(RegenError, match="Backup not found"):
        manager.restore("../backup_outside")

    assert (outputs["mgdb"] / "wc9.pkl").read_bytes() == b"cards"
