"""Update orchestrator: sync, build, run tools, collect and pack per source."""

from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from regen.artifacts.collector import ArtifactCollector
from regen.artifacts.packer import BinaryPacker
from regen.backup import BackupManager
from regen.build.locator import ExecutableLocator
from regen.build.runner import BuildRunner
from regen.config import BuildConfig, CollectConfig, RegenConfig, SourceConfig, ToolConfig
from regen.exceptions import (
    BuildError,
    ConfigError,
    RegenError,
    RunInProgressError,
    SyncError,
)
from regen.git.sync import GitSync
from regen.infra.command import CommandRunner
from regen.models import CollectResult, PackResult, SyncResult
from regen.paths import RegenPaths
from regen.state import STAGE_PROGRESS, PipelineState, RunToken, Stage, StateStore
from regen.tools.invoker import ToolInvoker
from regen.tools.seed import SeedFetcher

logger = structlog.get_logger()

ALL_SOURCES = "*"


@dataclass(frozen=True)
class ProgressEvent:
    """A progress report from a running pipeline.

    Attributes:
        source: Source the event belongs to.
        stage: Stage just entered.
        percent: Rough completion percentage.
        message: Human readable status.
    """

    source: str
    stage: Stage
    percent: int
    message: str


ProgressCallback = Callable[[ProgressEvent], None]


@dataclass
class PipelineResult:
    """Everything one source's pipeline produced.

    Attributes:
        source: Source name.
        state: Final pipeline state.
        sync: Git sync outcome.
        built: Whether a build ran and succeeded (None if no build ran).
        executable: Located tool, if any.
        tool_exit_code: Exit code of the tool, if it ran.
        collect: Collected tool outputs.
        packs: Packed blobs.
    """

    source: str
    state: PipelineState
    sync: SyncResult | None = None
    built: bool | None = None
    executable: Path | None = None
    tool_exit_code: int | None = None
    collect: CollectResult | None = None
    packs: list[PackResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """Whether the pipeline reached DONE."""
        return self.state.succeeded

    @property
    def error(self) -> str | None:
        """First fatal error, if any."""
        return self.state.error


class UpdateOrchestrator:
    """Runs the update pipeline for configured data sources.

    Each source is processed as its own linear pipeline
    (VALIDATING_PATHS, SYNCING_REPOS, RUNNING_EXTERNAL_TOOLS,
    PACKING_ARTIFACTS, then DONE or FAILED). A failing source never
    stops the others. At most one run per target is in flight; a second
    request raises RunInProgressError.

    Example:
        >>> orchestrator = UpdateOrchestrator(RegenConfig.load(Path("regen.yaml")))
        >>> results = orchestrator.run_all()
        >>> all(r.success for r in results)
        True
    """

    def __init__(
        self,
        config: RegenConfig,
        *,
        paths: RegenPaths | None = None,
        cmd: CommandRunner | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            config: Loaded configuration.
            paths: Resolved directories (derived from config by default).
            cmd: CommandRunner shared by all stages.
        """
        self.config = config
        self.paths = paths or RegenPaths.from_config(config)
        self.cmd = cmd or CommandRunner()
        self.git = GitSync(self.cmd)
        self.collector = ArtifactCollector()
        self.state_store = StateStore(self.paths.state_json)
        self.backups = BackupManager(
            self.paths.backups_dir,
            self.paths.output_dirs,
            max_backups=config.backups.max_backups,
        )
        self._tokens: dict[str, RunToken] = {}
        self._lock = threading.Lock()
        self._executor: ThreadPoolExecutor | None = None

    # Run tokens

    def _acquire(self, target: str) -> None:
        with self._lock:
            busy = [t for t, token in self._tokens.items() if token == RunToken.RUNNING]
            if target in busy or ALL_SOURCES in busy or (target == ALL_SOURCES and busy):
                msg = f"Update already in progress for {target}"
                raise RunInProgressError(msg, target=target)
            self._tokens[target] = RunToken.RUNNING

    def _release(self, target: str) -> None:
        with self._lock:
            self._tokens[target] = RunToken.IDLE

    def is_running(self, target: str | None = None) -> bool:
        """Check whether a run is in flight.

        Args:
            target: Source name, or None for any run.
        """
        with self._lock:
            if target is None:
                return RunToken.RUNNING in self._tokens.values()
            return self._tokens.get(target) == RunToken.RUNNING

    # Public entry points

    def validate(self, sources: list[SourceConfig] | None = None) -> None:
        """Check configured paths before anything is modified.

        Raises:
            ConfigError: On the first invalid path.
        """
        if not self.paths.output_root.is_dir():
            msg = f"Output path not found: {self.paths.output_root}"
            raise ConfigError(msg, field="output_path")
        for source in sources if sources is not None else self.config.sources:
            self._validate_source(source)

    def run(
        self,
        source_name: str,
        *,
        on_event: ProgressCallback | None = None,
        backup: bool = True,
    ) -> PipelineResult:
        """Run the pipeline for one source.

        Args:
            source_name: Name of the configured source.
            on_event: Progress observer.
            backup: Snapshot outputs first.

        Returns:
            The PipelineResult.

        Raises:
            ConfigError: If the source is unknown or its paths are invalid.
            RunInProgressError: If this source is already being updated.
        """
        source = self.config.get_source(source_name)
        self._acquire(source.name)
        try:
            return self._run_sources([source], on_event=on_event, backup=backup)[0]
        finally:
            self._release(source.name)

    def run_all(
        self,
        *,
        on_event: ProgressCallback | None = None,
        backup: bool = True,
    ) -> list[PipelineResult]:
        """Run the pipeline for every configured source, in order.

        Raises:
            ConfigError: If any configured path is invalid.
            RunInProgressError: If any update is already running.
        """
        self._acquire(ALL_SOURCES)
        try:
            return self._run_sources(self.config.sources, on_event=on_event, backup=backup)
        finally:
            self._release(ALL_SOURCES)

    def submit(
        self,
        source_name: str | None = None,
        *,
        on_event: ProgressCallback | None = None,
        backup: bool = True,
    ) -> Future[list[PipelineResult]]:
        """Run one source, or all of them, on the background worker.

        The run token is claimed before this returns, so a second submit for
        the same target fails immediately.

        Args:
            source_name: Source to run, or None for all sources.
            on_event: Progress observer, called from the worker thread.
            backup: Snapshot outputs first.

        Returns:
            Future resolving to the pipeline results.

        Raises:
            ConfigError: If the source is unknown.
            RunInProgressError: If the target is already running.
        """
        if source_name is None:
            target = ALL_SOURCES
            sources = list(self.config.sources)
        else:
            source = self.config.get_source(source_name)
            target = source.name
            sources = [source]

        self._acquire(target)

        def _work() -> list[PipelineResult]:
            try:
                return self._run_sources(sources, on_event=on_event, backup=backup)
            finally:
                self._release(target)

        try:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=1, thread_name_prefix="regen-update"
                )
            return self._executor.submit(_work)
        except RuntimeError:
            self._release(target)
            raise

    def shutdown(self, wait: bool = True) -> None:
        """Stop the background worker."""
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None

    # Pipeline

    def _run_sources(
        self,
        sources: list[SourceConfig],
        *,
        on_event: ProgressCallback | None,
        backup: bool,
    ) -> list[PipelineResult]:
        log = logger.bind(sources=[s.name for s in sources])
        self.validate(sources)
        self.paths.create_directories()

        if backup and self.config.backups.enabled:
            self.backups.create()

        results = [self._execute(source, on_event) for source in sources]
        failed = [r.source for r in results if not r.success]
        if failed:
            log.warning("Update finished with failures", failed=failed)
        else:
            log.info("Update completed")
        return results

    def _emit(
        self,
        on_event: ProgressCallback | None,
        state: PipelineState,
        message: str,
    ) -> None:
        if on_event is None:
            return
        event = ProgressEvent(
            source=state.source,
            stage=state.current_stage,
            percent=STAGE_PROGRESS[state.current_stage],
            message=message,
        )
        try:
            on_event(event)
        except Exception as e:
            logger.warning("Progress observer failed", error=str(e))

    def _execute(
        self, source: SourceConfig, on_event: ProgressCallback | None
    ) -> PipelineResult:
        log = logger.bind(source=source.name)
        state = PipelineState(source=source.name)
        result = PipelineResult(source=source.name, state=state)
        log.info("Starting update")

        try:
            state.transition_to(Stage.VALIDATING_PATHS)
            self._emit(on_event, state, "Validating paths...")
            repo_path = self._validate_source(source)

            state.transition_to(Stage.SYNCING_REPOS)
            self._emit(on_event, state, f"Updating {source.name} repository...")
            result.sync = self._sync(source, repo_path)
            state.commit_hash = result.sync.commit_hash

            state.transition_to(Stage.RUNNING_EXTERNAL_TOOLS)
            if source.tool is not None:
                self._emit(on_event, state, f"Running {source.name} tool...")
                self._run_tool(source, source.tool, repo_path, result)
            else:
                state.mark_skipped(Stage.RUNNING_EXTERNAL_TOOLS)

            state.transition_to(Stage.PACKING_ARTIFACTS)
            self._emit(on_event, state, f"Processing {source.name} artifacts...")
            self._pack(source, repo_path, result)

            state.transition_to(Stage.DONE)
            log.info("Source updated", sha=(state.commit_hash or "")[:7])
            self._emit(on_event, state, f"{source.name} update completed!")
        except RegenError as e:
            log.error("Source update failed", stage=state.current_stage.value, error=str(e))
            state.fail(str(e))
            self._emit(on_event, state, f"Error: {e}")
        except OSError as e:
            log.error("Source update failed", stage=state.current_stage.value, error=str(e))
            state.fail(f"I/O error: {e}")
            self._emit(on_event, state, f"Error: {e}")
        finally:
            self.state_store.record(state)

        return result

    # Stages

    def _validate_source(self, source: SourceConfig) -> Path:
        repo_path = self.config.source_path(source)
        if source.auto_manage:
            if not repo_path.exists() and not source.url:
                msg = f"{source.name}: {repo_path} does not exist and no url is configured"
                raise ConfigError(msg, field="sources")
            return repo_path
        if not repo_path.is_dir():
            msg = f"{source.name} repository path not found: {repo_path}"
            raise ConfigError(msg, field="sources")
        if not self.git.is_repository(repo_path):
            msg = f"Invalid {source.name} repository path: {repo_path}"
            raise ConfigError(msg, field="sources")
        return repo_path

    def _sync(self, source: SourceConfig, repo_path: Path) -> SyncResult:
        sync = self.git.clone_or_update(source.to_repository(repo_path))
        if not sync.success:
            msg = f"Failed to update {source.name} repository: {sync.error_message}"
            raise SyncError(msg, source=source.name, path=repo_path)
        return sync

    def _locator(self, tool: ToolConfig) -> ExecutableLocator:
        return ExecutableLocator(
            tool.name_patterns,
            search_dirs=tool.search_dirs,
            extension=tool.extension,
        )

    def _build(self, source: SourceConfig, build: BuildConfig, repo_path: Path) -> bool:
        runner = BuildRunner(
            self.cmd,
            tool=build.tool,
            descriptor_suffixes=build.descriptor_suffixes,
            preferred=build.preferred,
            timeout=build.timeout,
            log_path=self.paths.build_log(source.name),
        )
        if not runner.build(repo_path, build.configuration):
            msg = f"Failed to build {source.name}; see {self.paths.build_log(source.name)}"
            raise BuildError(msg)
        return True

    def _run_tool(
        self, source: SourceConfig, tool: ToolConfig, repo_path: Path, result: PipelineResult
    ) -> None:
        log = logger.bind(source=source.name)
        locator = self._locator(tool)

        executable = locator.find(repo_path)
        build = source.build if source.auto_manage else None
        if build is not None and (executable is None or (result.sync and result.sync.was_updated)):
            log.info("Building tool", reason="missing" if executable is None else "updated")
            result.built = self._build(source, build, repo_path)
            executable = locator.find(repo_path)

        if executable is None:
            msg = f"{source.name} executable not found; ensure the tool is built"
            raise RegenError(msg)
        result.executable = executable
        log.info("Found executable", executable=executable.name)

        if tool.seed is not None:
            fetcher = SeedFetcher(
                tool.seed.url, filename=tool.seed.filename, timeout=tool.seed.timeout
            )
            fetcher.install(executable.parent, repo_path / tool.seed.repo_subpath)

        invoker = ToolInvoker(self.cmd, args=tool.args, timeout=tool.timeout)
        result.tool_exit_code = invoker.run_update(executable)

    def _pack(self, source: SourceConfig, repo_path: Path, result: PipelineResult) -> None:
        if result.executable is not None and source.collect is not None:
            result.collect = self._collect(
                source, source.collect, result.executable.parent, repo_path
            )

        if not source.groups:
            return

        if source.groups_root and not (repo_path / source.groups_root).is_dir():
            msg = f"{source.groups_root} folder not found at: {repo_path / source.groups_root}"
            raise RegenError(msg)

        packer = BinaryPacker(source.override_table(repo_path))
        groups = source.generation_groups(repo_path)
        for index, group in enumerate(groups, start=1):
            logger.info("Processing group", source=source.name, group=group.name,
                        position=f"{index}/{len(groups)}")
            result.packs.extend(packer.pack_group(group, self.paths.mgdb_dir))

    def _collect(
        self, source: SourceConfig, collect: CollectConfig, tool_dir: Path, repo_path: Path
    ) -> CollectResult:
        roots = [tool_dir]
        roots.extend(repo_path / extra for extra in collect.extra_roots)
        collected = self.collector.collect(
            roots, self.paths.wild_dir, collect.extension, collect.expected
        )
        if collected.count == 0:
            msg = f"No .{collect.extension} files produced by {source.name}"
            raise RegenError(msg)
        return collected
