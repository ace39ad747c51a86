"""Unit tests for configuration schema and serialization."""

from __future__ import annotations

from pathlib import Path

import pytest

from regen.config import (
    CollectConfig,
    GroupConfig,
    OverrideConfig,
    RegenConfig,
    SourceConfig,
)
from regen.exceptions import ConfigError


def test_config_serialization() -> None:
    """Round-trip keeps sources, groups and unicode override names."""
    config = RegenConfig.default()

    yaml_content = config.to_yaml()

    assert "EventsGallery" in yaml_content
    assert "サトシ" in yaml_content
    loaded = RegenConfig.from_yaml(yaml_content)
    assert loaded == config


def test_default_sources() -> None:
    """Defaults describe the gallery packer and the encounter tool."""
    config = RegenConfig.default()

    gallery = config.get_source("EventsGallery")
    assert gallery.branch == "master"
    assert gallery.groups_root == "Released"
    assert [g.name for g in gallery.groups][0] == "Gen 4"
    assert ["wc6", "wc6full"] in [g.extensions for g in gallery.groups]
    assert len(gallery.overrides.entries) == 2

    pget = config.get_source("PoGoEncTool")
    assert pget.auto_manage is True
    assert pget.build is not None
    assert pget.build.preferred == "WinForms"
    assert pget.tool is not None
    assert pget.tool.args == ["--update"]
    assert pget.tool.seed is not None
    assert pget.collect is not None
    assert pget.collect.expected == ["encounter_go_home.pkl", "encounter_go_lgpe.pkl"]


def test_extensions_are_normalized() -> None:
    """Leading dots are stripped and extensions lower-cased."""
    group = GroupConfig(name="g", path="p", extensions=[".WC9", "pgf"])
    collect = CollectConfig(extension=".PKL")

    assert group.extensions == ["wc9", "pgf"]
    assert collect.extension == "pkl"


def test_empty_extension_rejected() -> None:
    """A blank extension is a validation error."""
    with pytest.raises(ValueError):
        GroupConfig(name="g", path="p", extensions=["."])


def test_duplicate_source_names_rejected() -> None:
    """Source names identify run targets and must be unique."""
    with pytest.raises(ConfigError, match="unique"):
        RegenConfig.from_yaml(
            "sources:\n"
            "  - name: A\n"
            "    path: a\n"
            "  - name: A\n"
            "    path: b\n"
        )


def test_from_yaml_empty_uses_defaults() -> None:
    """An empty document yields the default configuration."""
    assert RegenConfig.from_yaml("") == RegenConfig.default()


def test_from_yaml_rejects_non_mapping() -> None:
    """A list at the top level is invalid."""
    with pytest.raises(ConfigError, match="mapping"):
        RegenConfig.from_yaml("- a\n- b\n")


def test_from_yaml_rejects_invalid_yaml() -> None:
    """Broken YAML is reported as ConfigError."""
    with pytest.raises(ConfigError, match="Invalid YAML"):
        RegenConfig.from_yaml("sources: [\n")


def test_interval_must_be_positive() -> None:
    """auto_update_interval_hours has a lower bound of one hour."""
    with pytest.raises(ConfigError):
        RegenConfig.from_yaml("auto_update_interval_hours: 0\n")


def test_load_missing_file(tmp_path: Path) -> None:
    """load() refuses a missing file."""
    missing = tmp_path / "regen.yaml"

    with pytest.raises(ConfigError) as exc_info:
        RegenConfig.load(missing)

    assert exc_info.value.config_path == missing


def test_save_and_load(tmp_path: Path) -> None:
    """save() creates parent directories and load() reads it back."""
    path = tmp_path / "nested" / "regen.yaml"
    config = RegenConfig(repo_folder="/srv/repos")

    config.save(path)

    assert RegenConfig.load(path).repo_folder == "/srv/repos"


def test_load_or_create_writes_defaults(tmp_path: Path) -> None:
    """First run writes a default config file."""
    path = tmp_path / "regen.yaml"

    config = RegenConfig.load_or_create(path)

    assert path.exists()
    assert config == RegenConfig.default()


def test_load_or_create_replaces_invalid_file(tmp_path: Path) -> None:
    """An unreadable config is replaced by defaults."""
    path = tmp_path / "regen.yaml"
    path.write_text("sources: [\n")

    config = RegenConfig.load_or_create(path)

    assert config == RegenConfig.default()
    assert RegenConfig.load(path) == config


class TestPathResolution:
    """Tests for relative and absolute source paths."""

    def test_relative_path_uses_repo_folder(self, tmp_path: Path) -> None:
        """Relative paths hang off repo_folder."""
        config = RegenConfig(repo_folder=str(tmp_path))
        source = SourceConfig(name="s", path="sub/dir")

        assert config.source_path(source) == tmp_path / "sub" / "dir"

    def test_absolute_path_is_kept(self, tmp_path: Path) -> None:
        """Absolute paths ignore repo_folder."""
        config = RegenConfig(repo_folder="/elsewhere")
        source = SourceConfig(name="s", path=str(tmp_path))

        assert config.source_path(source) == tmp_path

    def test_unknown_source(self) -> None:
        """get_source() names the configured sources in its error."""
        config = RegenConfig.default()

        with pytest.raises(ConfigError, match="EventsGallery"):
            config.get_source("Nope")


class TestSourceConfig:
    """Tests for SourceConfig helpers."""

    def test_generation_groups_resolve_under_groups_root(self, tmp_path: Path) -> None:
        """Group paths are relative to groups_root inside the checkout."""
        source = SourceConfig(
            name="s",
            path="s",
            groups_root="Released",
            groups=[GroupConfig(name="Gen 8", path="Gen 8", extensions=["wc8", "wb8"])],
        )

        groups = source.generation_groups(tmp_path)

        assert groups[0].input_dir == tmp_path / "Released" / "Gen 8"
        assert groups[0].extensions == ("wc8", "wb8")

    def test_override_table(self, tmp_path: Path) -> None:
        """Override entries resolve into the override directory."""
        source = SourceConfig(
            name="s",
            path="s",
            overrides=OverrideConfig(directory="Fixes", entries={"a.wc8": "b.wc8"}),
        )

        table = source.override_table(tmp_path)

        assert "a.wc8" in table
        assert table.replacement_path("a.wc8") == tmp_path / "Fixes" / "b.wc8"

    def test_to_repository(self, tmp_path: Path) -> None:
        """The repository carries name, url and branch."""
        source = SourceConfig(name="s", path="s", url="https://example.com/s.git", branch="dev")

        repo = source.to_repository(tmp_path)

        assert repo.url == "https://example.com/s.git"
        assert repo.branch == "dev"
        assert repo.path == tmp_path
