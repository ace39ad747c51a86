"""Concatenates source files into flat per-extension pickle blobs."""

from __future__ import annotations

from pathlib import Path

import structlog

from regen.artifacts.collector import iter_matching_files
from regen.models import GenerationGroup, OverrideTable, PackResult

logger = structlog.get_logger()

PROGRESS_EVERY = 100


class BinaryPacker:
    """Writes ``<ext>.pkl`` files by appending the raw bytes of every match.

    Each output is rewritten from scratch on every call. Files named in the
    override table are replaced by their override when it exists. A file
    that cannot be read is logged and skipped; it never aborts the pack.
    An output that cannot be opened yields an empty result, so the other
    extensions of a group are still packed.

    Example:
        >>> packer = BinaryPacker(OverrideTable())
        >>> packer.pack(Path("Released/Gen 9"), "wc9", Path("mgdb/wc9.pkl")).processed
        412
    """

    def __init__(self, overrides: OverrideTable | None = None) -> None:
        """Initialize the packer.

        Args:
            overrides: Filename substitutions to apply.
        """
        self.overrides = overrides or OverrideTable()

    def _select(self, file: Path) -> Path:
        """Return the file whose bytes should be written for ``file``."""
        if file.name not in self.overrides:
            return file
        replacement = self.overrides.replacement_path(file.name)
        if replacement is not None and replacement.is_file():
            logger.debug("Using override", file=file.name, override=replacement.name)
            return replacement
        logger.warning(
            "Override file not found, using original",
            file=file.name,
            override=self.overrides.entries[file.name],
        )
        return file

    def pack(self, source_dir: Path, extension: str, output_file: Path) -> PackResult:
        """Concatenate every ``*.<extension>`` under ``source_dir``.

        Args:
            source_dir: Directory to search recursively.
            extension: Extension to match, without the dot.
            output_file: Blob to (re)write.

        Returns:
            PackResult with processed/skipped counts and bytes written.
        """
        log = logger.bind(extension=extension)

        if not source_dir.is_dir():
            log.warning("Input path not found", path=str(source_dir))
            return PackResult(extension=extension, output_file=output_file)

        log.info("Processing files", source=str(source_dir))
        processed = 0
        skipped = 0
        total_bytes = 0

        try:
            output_file.parent.mkdir(parents=True, exist_ok=True)
            out = output_file.open("wb")
        except OSError as e:
            log.error("Failed to open output file", output=str(output_file), error=str(e))
            return PackResult(extension=extension, output_file=output_file)

        with out:
            for file in iter_matching_files(source_dir, extension):
                try:
                    data = self._select(file).read_bytes()
                    out.write(data)
                except OSError as e:
                    log.warning("Failed to process file", file=file.name, error=str(e))
                    skipped += 1
                    continue

                processed += 1
                total_bytes += len(data)
                if processed % PROGRESS_EVERY == 0:
                    log.debug("Progress", processed=processed)

        result = PackResult(
            extension=extension,
            output_file=output_file,
            processed=processed,
            skipped=skipped,
            total_bytes=total_bytes,
        )
        if processed == 0 and skipped == 0:
            log.warning("No files found", source=str(source_dir))
        else:
            log.info(
                "Packed files",
                processed=processed,
                skipped=skipped,
                size_mb=round(result.total_mb, 2),
                output=output_file.name,
            )
        return result

    def pack_group(self, group: GenerationGroup, output_dir: Path) -> list[PackResult]:
        """Pack every extension of a group into ``output_dir/<ext>.pkl``.

        Args:
            group: The generation group.
            output_dir: Directory receiving the blobs; created if missing.

        Returns:
            One PackResult per extension, in group order.
        """
        if not output_dir.exists():
            output_dir.mkdir(parents=True, exist_ok=True)
            logger.info("Created output directory", path=str(output_dir))

        logger.info("Processing group", group=group.name)
        return [
            self.pack(group.input_dir, ext, output_dir / f"{ext}.pkl")
            for ext in group.extensions
        ]
