"""Tests for BinaryPacker."""

from __future__ import annotations

from pathlib import Path

from regen.artifacts.packer import BinaryPacker
from regen.models import GenerationGroup, OverrideTable


def _write(path: Path, data: bytes) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


class TestPack:
    """Tests for pack()."""

    def test_concatenates_matching_files(self, tmp_path: Path) -> None:
        """Every matching file is appended; other extensions are ignored."""
        src = tmp_path / "Gen 9"
        a = b"A" * 10
        b = b"B" * 20
        _write(src / "a.wc9", a)
        _write(src / "nested" / "b.wc9", b)
        _write(src / "notes.txt", b"ignored")
        out = tmp_path / "wc9.pkl"

        result = BinaryPacker().pack(src, "wc9", out)

        assert result.processed == 2
        assert result.skipped == 0
        assert result.total_bytes == 30
        assert out.read_bytes() in (a + b, b + a)

    def test_rewrites_output(self, tmp_path: Path) -> None:
        """Packing twice gives the same blob, never an appended one."""
        src = tmp_path / "Gen 9"
        _write(src / "a.wc9", b"data")
        out = tmp_path / "wc9.pkl"
        packer = BinaryPacker()

        packer.pack(src, "wc9", out)
        first = out.read_bytes()
        packer.pack(src, "wc9", out)

        assert out.read_bytes() == first == b"data"

    def test_missing_source_dir(self, tmp_path: Path) -> None:
        """A missing input folder is a warning with zero counts."""
        out = tmp_path / "wc4.pkl"

        result = BinaryPacker().pack(tmp_path / "missing", "wc4", out)

        assert (result.processed, result.skipped, result.total_bytes) == (0, 0, 0)
        assert not out.exists()

    def test_empty_source_dir_writes_empty_blob(self, tmp_path: Path) -> None:
        """An existing folder without matches produces an empty blob."""
        src = tmp_path / "Gen 5"
        src.mkdir()
        out = tmp_path / "pgf.pkl"

        result = BinaryPacker().pack(src, "pgf", out)

        assert result.processed == 0
        assert out.read_bytes() == b""

    def test_unreadable_file_is_skipped(self, tmp_path: Path) -> None:
        """A file that can't be read is skipped and the pack continues."""
        src = tmp_path / "Gen 8"
        _write(src / "good.wc8", b"good")
        (src / "bad.wc8").symlink_to(src / "does-not-exist")
        out = tmp_path / "wc8.pkl"

        result = BinaryPacker().pack(src, "wc8", out)

        assert result.processed == 1
        assert result.skipped == 1
        assert out.read_bytes() == b"good"


class TestOverrides:
    """Tests for override substitution."""

    def test_override_replaces_bytes(self, tmp_path: Path) -> None:
        """A listed file contributes its replacement's bytes."""
        src = tmp_path / "Released" / "Gen 8"
        _write(src / "0146 SWSH - Dracovish.wc8", b"BROKEN")
        fixes = tmp_path / "PKHeX Legality"
        _write(fixes / "0146 SWSH - Dracovish - Gender Fix.wc8", b"FIXED")
        table = OverrideTable(
            entries={"0146 SWSH - Dracovish.wc8": "0146 SWSH - Dracovish - Gender Fix.wc8"},
            directory=fixes,
        )
        out = tmp_path / "wc8.pkl"

        result = BinaryPacker(table).pack(src, "wc8", out)

        assert out.read_bytes() == b"FIXED"
        assert result.total_bytes == 5

    def test_missing_override_uses_original(self, tmp_path: Path) -> None:
        """When the replacement doesn't exist the original is kept."""
        src = tmp_path / "Gen 6"
        _write(src / "1053 Arceus.wc6", b"ORIGINAL")
        table = OverrideTable(
            entries={"1053 Arceus.wc6": "1053 Arceus - Form Fix.wc6"},
            directory=tmp_path / "missing",
        )
        out = tmp_path / "wc6.pkl"

        BinaryPacker(table).pack(src, "wc6", out)

        assert out.read_bytes() == b"ORIGINAL"

    def test_table_is_read_only(self) -> None:
        """The override mapping cannot be modified after construction."""
        entries = {"a.wc8": "b.wc8"}
        table = OverrideTable(entries=entries)
        entries["c.wc8"] = "d.wc8"

        assert "c.wc8" not in table
        assert len(table) == 1
        try:
            table.entries["x"] = "y"  # type: ignore[index]
        except TypeError:
            pass
        else:
            raise AssertionError("override entries should be immutable")


def test_pack_group(tmp_path: Path) -> None:
    """Each extension of a group becomes <ext>.pkl in the output directory."""
    src = tmp_path / "Gen 6"
    _write(src / "a.wc6", b"short")
    _write(src / "a.wc6full", b"full card")
    mgdb = tmp_path / "legality" / "mgdb"
    group = GenerationGroup(name="Gen 6", input_dir=src, extensions=("wc6", "wc6full"))

    results = BinaryPacker().pack_group(group, mgdb)

    assert [r.extension for r in results] == ["wc6", "wc6full"]
    assert (mgdb / "wc6.pkl").read_bytes() == b"short"
    assert (mgdb / "wc6full.pkl").read_bytes() == b"full card"


def test_pack_group_continues_after_unwritable_output(tmp_path: Path) -> None:
    """An output that can't be opened is reported empty; later extensions still pack."""
    src = tmp_path / "Gen 6"
    _write(src / "a.wc6", b"short")
    _write(src / "a.wc6full", b"full card")
    mgdb = tmp_path / "legality" / "mgdb"
    (mgdb / "wc6.pkl").mkdir(parents=True)
    group = GenerationGroup(name="Gen 6", input_dir=src, extensions=("wc6", "wc6full"))

    results = BinaryPacker().pack_group(group, mgdb)

    assert [(r.extension, r.processed) for r in results] == [("wc6", 0), ("wc6full", 1)]
    assert (mgdb / "wc6.pkl").is_dir()
    assert (mgdb / "wc6full.pkl").read_bytes() == b"full card"


def test_pack_creates_output_parent(tmp_path: Path) -> None:
    """pack() creates a missing output folder instead of failing."""
    src = tmp_path / "Gen 9"
    _write(src / "a.wc9", b"card")
    out = tmp_path / "nope" / "wc9.pkl"

    result = BinaryPacker().pack(src, "wc9", out)

    assert result.processed == 1
    assert out.read_bytes() == b"card"
