"""Project assembly: collision checks and materialisation.

The assembler takes the rendered files of one generation and either returns
them as an in-memory mapping (for archiving) or writes them under an output
directory.  Disk writes are all-or-nothing: anything the assembler created
is removed again if a later write fails.
"""

from __future__ import annotations

import logging
import os
import shutil
from collections import Counter
from collections.abc import Iterable
from enum import Enum
from pathlib import Path, PurePosixPath

from forge.config import LimitsConfig
from forge.errors import DestinationConflict, OutputDirectoryError, ResourceLimitExceeded

from .templates import RenderedFile

logger = logging.getLogger(__name__)

EXECUTABLE_MODE = 0o755
REGULAR_MODE = 0o644


class AssemblyMode(str, Enum):
    """Where a generated project ends up."""
    MEMORY = "memory"
    DISK = "disk"


class ProjectAssembler:
    """Checks and materialises a set of rendered files.

    Args:
        limits: Size bounds every project must stay within. Defaults to
            ``LimitsConfig()``.
    """

    def __init__(self, limits: LimitsConfig | None = None) -> None:
        self.limits = limits or LimitsConfig()

    def assemble(
        self,
        files: Iterable[RenderedFile],
        mode: AssemblyMode,
        output_dir: str | Path | None = None,
    ) -> dict[str, bytes] | Path:
        """Materialise *files* as selected by *mode*.

        ``MEMORY`` returns the ``{path: content}`` mapping; ``DISK`` writes
        under *output_dir*, which is then required, and returns it.
        """
        mode = AssemblyMode(mode)
        if mode is AssemblyMode.MEMORY:
            return self.to_memory(files)
        if output_dir is None:
            raise OutputDirectoryError("disk assembly needs an output directory")
        return self.to_disk(files, output_dir)

    def check(self, files: Iterable[RenderedFile]) -> None:
        """Dry run over *files* without touching the filesystem.

        Raises:
            DestinationConflict: Naming every duplicated path.
            ResourceLimitExceeded: The project breaks one of ``self.limits``.
        """
        files = list(files)
        counts = Counter(f.path for f in files)
        duplicates = [path for path, count in counts.items() if count > 1]
        if duplicates:
            raise DestinationConflict(duplicates)
        self._check_limits(files)

    def _check_limits(self, files: list[RenderedFile]) -> None:
        limits = self.limits
        if len(files) > limits.max_files:
            raise ResourceLimitExceeded("file count", len(files), limits.max_files)
        for rendered in files:
            if rendered.size > limits.max_file_size:
                raise ResourceLimitExceeded(
                    f"size of {rendered.path}", rendered.size, limits.max_file_size
                )
        total = sum(f.size for f in files)
        if total > limits.max_total_size:
            raise ResourceLimitExceeded("total size", total, limits.max_total_size)
        directories = {
            parent for f in files for parent in PurePosixPath(f.path).parents if parent.parts
        }
        if len(directories) > limits.max_directories:
            raise ResourceLimitExceeded(
                "directory count", len(directories), limits.max_directories
            )

    def to_memory(self, files: Iterable[RenderedFile]) -> dict[str, bytes]:
        """Return ``{path: content}`` in render order."""
        files = list(files)
        self.check(files)
        return {f.path: f.content for f in files}

    def to_disk(self, files: Iterable[RenderedFile], output_dir: str | Path) -> Path:
        """Write *files* under *output_dir*.

        The directory may be missing (it is created) or empty; anything else
        is refused.  Executable files get mode ``0o755``.

        Raises:
            DestinationConflict: Two files share a path.
            ResourceLimitExceeded: The project breaks one of ``self.limits``.
            OutputDirectoryError: The target is unusable or a write failed.
                Everything written before the failure has been removed.
        """
        files = list(files)
        self.check(files)
        root = Path(output_dir)
        created_root = self._prepare_root(root)

        created_dirs: list[Path] = []
        written: list[Path] = []
        try:
            for rendered in files:
                target = root.joinpath(*rendered.path.split("/"))
                missing = [p for p in reversed(target.parents) if not p.exists()]
                for directory in missing:
                    directory.mkdir()
                    created_dirs.append(directory)
                target.write_bytes(rendered.content)
                written.append(target)
                os.chmod(target, EXECUTABLE_MODE if rendered.executable else REGULAR_MODE)
        except OSError as exc:
            logger.error("Write failed under %s, rolling back: %s", root, exc)
            self._rollback(written, created_dirs, root if created_root else None)
            raise OutputDirectoryError(f"failed to write project to {root}: {exc}") from exc

        logger.info("Wrote %d file(s) to %s", len(written), root)
        return root

    # -- Internal helpers --------------------------------------------------

    @staticmethod
    def _prepare_root(root: Path) -> bool:
        """Ensure *root* is an empty directory; return True if it was created."""
        if root.exists():
            if not root.is_dir():
                raise OutputDirectoryError(f"{root} exists and is not a directory")
            if any(root.iterdir()):
                raise OutputDirectoryError(f"{root} is not empty")
            return False
        try:
            root.mkdir(parents=True)
        except OSError as exc:
            raise OutputDirectoryError(f"cannot create {root}: {exc}") from exc
        return True

    @staticmethod
    def _rollback(written: list[Path], created_dirs: list[Path], root: Path | None) -> None:
        for path in reversed(written):
            path.unlink(missing_ok=True)
        for directory in reversed(created_dirs):
            try:
                directory.rmdir()
            except OSError:
                logger.warning("Could not remove %s during rollback", directory)
        if root is not None:
            shutil.rmtree(root, ignore_errors=True)
