"""Configuration schema for regen."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from regen.exceptions import ConfigError
from regen.models import GenerationGroup, OverrideTable, RepositorySource

logger = structlog.get_logger()

DEFAULT_CONFIG_NAME = "regen.yaml"


def _normalize_extension(value: str) -> str:
    ext = value.strip().lstrip(".").lower()
    if not ext:
        msg = "Extensions must not be empty"
        raise ValueError(msg)
    return ext


class BuildConfig(BaseModel):
    """How to build a source's tool from its checkout.

    Attributes:
        tool: Build tool binary, invoked as ``<tool> build <project> -c <configuration>``.
        configuration: Build configuration.
        descriptor_suffixes: Recognised project descriptor suffixes, most preferred first.
        preferred: Substring preferred in the descriptor name when several exist.
        timeout: Build timeout in seconds.
    """

    tool: str = "dotnet"
    configuration: str = "Release"
    descriptor_suffixes: list[str] = Field(default_factory=lambda: [".sln", ".csproj"])
    preferred: str = ""
    timeout: int = Field(default=1800, ge=30)


class SeedConfig(BaseModel):
    """A data file downloaded before the tool runs.

    Attributes:
        url: Where to download from.
        filename: File name to write next to the executable.
        repo_subpath: Directory inside the repository that also receives a copy.
        timeout: Download timeout in seconds.
    """

    url: str
    filename: str = "data.json"
    repo_subpath: str = "Resources"
    timeout: int = Field(default=120, ge=1)


class ToolConfig(BaseModel):
    """How to find and run a source's data generation tool.

    Attributes:
        name_patterns: Substrings, one of which the executable name must contain.
        extension: Executable file extension.
        search_dirs: Conventional build output dirs relative to the repo, in priority order.
        args: Arguments passed to the tool.
        timeout: Tool timeout in seconds.
        seed: Optional seed file to download first.
    """

    name_patterns: list[str] = Field(default_factory=list)
    extension: str = ".exe"
    search_dirs: list[str] = Field(default_factory=lambda: ["bin/Release", "bin/Debug", "."])
    args: list[str] = Field(default_factory=lambda: ["--update"])
    timeout: int = Field(default=300, ge=1)
    seed: SeedConfig | None = None


class CollectConfig(BaseModel):
    """Which generated files to copy into the wild output directory.

    Attributes:
        extension: Extension of files to copy.
        extra_roots: Additional search roots relative to the repo ("" is the repo root).
        expected: File names expected to be produced, reported when missing.
    """

    extension: str = "pkl"
    extra_roots: list[str] = Field(default_factory=lambda: ["", "Resources"])
    expected: list[str] = Field(default_factory=list)

    @field_validator("extension")
    @classmethod
    def normalize_extension(cls, v: str) -> str:
        """Strip the leading dot and lower-case the extension."""
        return _normalize_extension(v)


class GroupConfig(BaseModel):
    """A packing group: each extension under ``path`` becomes one blob.

    Attributes:
        name: Logical name for logs.
        path: Input directory relative to the source's ``groups_root``.
        extensions: Extensions to pack.
    """

    name: str
    path: str
    extensions: list[str] = Field(min_length=1)

    @field_validator("extensions")
    @classmethod
    def normalize_extensions(cls, v: list[str]) -> list[str]:
        """Strip leading dots and lower-case every extension."""
        return [_normalize_extension(ext) for ext in v]


class OverrideConfig(BaseModel):
    """Replacement files used instead of known-bad inputs while packing.

    Attributes:
        directory: Directory, relative to the repo, holding the replacements.
        entries: Source filename to replacement filename.
    """

    directory: str = ""
    entries: dict[str, str] = Field(default_factory=dict)


class SourceConfig(BaseModel):
    """One data source: a repository plus what to do with it.

    Attributes:
        name: Unique name of the source.
        url: Git remote URL.
        path: Checkout path, absolute or relative to ``repo_folder``.
        branch: Branch to track.
        auto_manage: Clone and build automatically instead of requiring a prepared checkout.
        build: Build settings (only used when auto-managed).
        tool: Tool settings; when set the tool is run and its output collected.
        collect: Collection settings for tool output.
        groups_root: Directory, relative to the repo, that group paths are relative to.
        groups: Packing groups.
        overrides: Packing overrides.
    """

    name: str
    url: str = ""
    path: str
    branch: str = "main"
    auto_manage: bool = False
    build: BuildConfig | None = None
    tool: ToolConfig | None = None
    collect: CollectConfig | None = None
    groups_root: str = ""
    groups: list[GroupConfig] = Field(default_factory=list)
    overrides: OverrideConfig = Field(default_factory=OverrideConfig)

    def to_repository(self, repo_path: Path) -> RepositorySource:
        """Build the RepositorySource for this source at ``repo_path``."""
        return RepositorySource(
            name=self.name, url=self.url, path=repo_path, branch=self.branch
        )

    def override_table(self, repo_path: Path) -> OverrideTable:
        """Build the immutable override table for this source."""
        directory = repo_path / self.overrides.directory if self.overrides.directory else None
        return OverrideTable(entries=self.overrides.entries, directory=directory)

    def generation_groups(self, repo_path: Path) -> list[GenerationGroup]:
        """Resolve packing groups against the checkout."""
        root = repo_path / self.groups_root if self.groups_root else repo_path
        return [
            GenerationGroup(
                name=group.name,
                input_dir=root / group.path,
                extensions=tuple(group.extensions),
            )
            for group in self.groups
        ]


class BackupConfig(BaseModel):
    """Backup snapshot settings.

    Attributes:
        enabled: Whether to snapshot outputs before each update.
        directory: Backup directory, absolute or relative to ``state_dir``.
        max_backups: Number of snapshots to keep.
    """

    enabled: bool = True
    directory: str = "backups"
    max_backups: int = Field(default=10, ge=1)


def _default_sources() -> list[SourceConfig]:
    return [
        SourceConfig(
            name="EventsGallery",
            url="https://github.com/projectpokemon/EventsGallery.git",
            path="EventsGallery",
            branch="master",
            groups_root="Released",
            groups=[
                GroupConfig(name="Gen 4", path="Gen 4/Wondercards", extensions=["wc4"]),
                GroupConfig(name="Gen 5", path="Gen 5", extensions=["pgf"]),
                GroupConfig(name="Gen 6", path="Gen 6", extensions=["wc6", "wc6full"]),
                GroupConfig(
                    name="Gen 7 (3DS)",
                    path="Gen 7/3DS/Wondercards",
                    extensions=["wc7", "wc7full"],
                ),
                GroupConfig(
                    name="Gen 7 (Switch)",
                    path="Gen 7/Switch/Wondercards",
                    extensions=["wb7full"],
                ),
                GroupConfig(name="Gen 8", path="Gen 8", extensions=["wc8", "wb8", "wa8"]),
                GroupConfig(name="Gen 9", path="Gen 9", extensions=["wc9"]),
            ],
            overrides=OverrideConfig(
                directory="PKHeX Legality",
                entries={
                    "1053 XYORAS - 데세르시티 Arceus (KOR).wc6": (
                        "1053 XYORAS - 데세르시티 Arceus (KOR) - Form Fix.wc6"
                    ),
                    "0146 SWSH - サトシ Dracovish.wc8": (
                        "0146 SWSH - サトシ Dracovish - Gender Fix.wc8"
                    ),
                },
            ),
        ),
        SourceConfig(
            name="PoGoEncTool",
            url="https://github.com/projectpokemon/PoGoEncTool.git",
            path="PoGoEncTool",
            branch="main",
            auto_manage=True,
            build=BuildConfig(preferred="WinForms"),
            tool=ToolConfig(
                name_patterns=["WinForms", "PoGo"],
                search_dirs=[
                    "PoGoEncTool.WinForms/bin/Release/net9.0-windows",
                    "PoGoEncTool.WinForms/bin/Debug/net9.0-windows",
                    "PoGoEncTool.WinForms/bin/Release/net8.0-windows",
                    "PoGoEncTool.WinForms/bin/Debug/net8.0-windows",
                    "bin/Release",
                    "bin/Debug",
                    ".",
                ],
                seed=SeedConfig(
                    url=(
                        "https://raw.githubusercontent.com/projectpokemon/PoGoEncTool/"
                        "refs/heads/main/Resources/data.json"
                    ),
                ),
            ),
            collect=CollectConfig(
                expected=["encounter_go_home.pkl", "encounter_go_lgpe.pkl"],
            ),
        ),
    ]


class RegenConfig(BaseModel):
    """Complete regen configuration.

    Attributes:
        version: Config schema version.
        repo_folder: Root folder that relative source paths resolve against.
        output_path: Destination folder of the consuming application.
        mgdb_dirname: Subdirectory of ``output_path`` receiving packed blobs.
        wild_dirname: Subdirectory of ``output_path`` receiving copied files.
        state_dir: Directory for run state, logs and backups.
        auto_update_interval_hours: Interval used by ``regen watch``.
        backups: Backup settings.
        sources: Data sources, processed in order.

    Example:
        >>> config = RegenConfig.default()
        >>> [s.name for s in config.sources]
        ['EventsGallery', 'PoGoEncTool']
    """

    version: str = "1.0"
    repo_folder: str = "~/source/repos"
    output_path: str = "PKHeX/PKHeX.Core/Resources/legality"
    mgdb_dirname: str = "mgdb"
    wild_dirname: str = "wild"
    state_dir: str = "~/.regen"
    auto_update_interval_hours: int = Field(default=24, ge=1)
    backups: BackupConfig = Field(default_factory=BackupConfig)
    sources: list[SourceConfig] = Field(default_factory=_default_sources)

    @field_validator("sources")
    @classmethod
    def validate_unique_source_names(cls, v: list[SourceConfig]) -> list[SourceConfig]:
        """Ensure source names are unique."""
        names = [s.name for s in v]
        if len(names) != len(set(names)):
            msg = "Source names must be unique"
            raise ValueError(msg)
        return v

    def resolve_path(self, value: str) -> Path:
        """Resolve a configured path, relative paths against ``repo_folder``.

        Args:
            value: Absolute or relative path.

        Returns:
            The absolute path.
        """
        path = Path(value).expanduser()
        if path.is_absolute():
            return path
        return Path(self.repo_folder).expanduser() / path

    def source_path(self, source: SourceConfig) -> Path:
        """Checkout path of a source."""
        return self.resolve_path(source.path)

    def get_source(self, name: str) -> SourceConfig:
        """Look up a source by name.

        Raises:
            ConfigError: If no source has that name.
        """
        for source in self.sources:
            if source.name == name:
                return source
        known = ", ".join(s.name for s in self.sources)
        msg = f"Unknown source '{name}' (configured: {known})"
        raise ConfigError(msg, field="sources")

    def to_yaml(self) -> str:
        """Serialize the config to YAML.

        Returns:
            YAML string representation.
        """
        data = self.model_dump(mode="json")
        return yaml.dump(
            data, default_flow_style=False, sort_keys=False, allow_unicode=True
        )

    def save(self, path: Path) -> None:
        """Save the config to a YAML file.

        Args:
            path: Path to save the file.
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.to_yaml(), encoding="utf-8")
        logger.info("Settings saved", path=str(path))

    @classmethod
    def from_yaml(cls, yaml_content: str, *, config_path: Path | None = None) -> RegenConfig:
        """Parse config from YAML content.

        Args:
            yaml_content: YAML string to parse.
            config_path: Where the content came from, for error messages.

        Returns:
            Parsed RegenConfig instance.

        Raises:
            ConfigError: If the YAML or its contents are invalid.
        """
        try:
            data: Any = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            msg = f"Invalid YAML: {e}"
            raise ConfigError(msg, config_path=config_path) from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            msg = "Config YAML must be a mapping"
            raise ConfigError(msg, config_path=config_path)

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            msg = f"Invalid configuration: {e}"
            raise ConfigError(msg, config_path=config_path) from e

    @classmethod
    def load(cls, path: Path) -> RegenConfig:
        """Load config from a YAML file.

        Args:
            path: Path to the YAML file.

        Returns:
            Parsed RegenConfig instance.

        Raises:
            ConfigError: If the file doesn't exist or is invalid.
        """
        if not path.is_file():
            msg = f"Config file not found: {path}"
            raise ConfigError(msg, config_path=path)
        return cls.from_yaml(path.read_text(encoding="utf-8"), config_path=path)

    @classmethod
    def load_or_create(cls, path: Path) -> RegenConfig:
        """Load config, writing defaults when the file is absent or invalid.

        Args:
            path: Path to the YAML file.

        Returns:
            The loaded or default RegenConfig.
        """
        try:
            return cls.load(path)
        except ConfigError as e:
            if path.exists():
                logger.warning("Error loading settings, using defaults", error=str(e))
            else:
                logger.info("No settings found, writing defaults", path=str(path))
        config = cls.default()
        config.save(path)
        return config

    @classmethod
    def default(cls) -> RegenConfig:
        """Create a default configuration.

        Returns:
            A default RegenConfig instance.
        """
        return cls()
