"""Base scanner interface."""

import os
from abc import ABC, abstractmethod
from collections.abc import Iterator
from pathlib import Path

from imginspect.core.exceptions import ScanError
from imginspect.core.models import (
    FailurePolicy,
    FilesFilter,
    ImageMetadata,
    InspectorMetadata,
    Result,
    ScanReport,
)


class BaseScanner(ABC):
    """Abstract base class for all scanners."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Scanner identifier."""
        ...

    @property
    @abstractmethod
    def version(self) -> str:
        """Scanner version."""
        ...

    @property
    @abstractmethod
    def failure_policy(self) -> FailurePolicy:
        """Whether a failed scan aborts the run."""
        ...

    @abstractmethod
    async def scan(
        self,
        path: str,
        image: ImageMetadata,
        files_filter: FilesFilter | None = None,
    ) -> tuple[list[Result], ScanReport]:
        """Execute scan on an extracted filesystem tree.

        Runs as an asyncio task, so cancelling the task aborts the scan.

        Args:
            path: Root of the extracted filesystem
            image: Metadata of the acquired image
            files_filter: Paths rejected by the filter are skipped

        Returns:
            Findings in discovery order and the scanner report

        Raises:
            ScanError: the scan could not be completed
        """
        ...

    def record_outcome(self, meta: InspectorMetadata, error: ScanError | None) -> None:
        """Record the scan outcome in the inspector metadata."""

    async def close(self) -> None:
        """Release scanner resources."""


def walk_files(root: str | Path, files_filter: FilesFilter | None = None) -> Iterator[tuple[str, Path]]:
    """Yield ``(image_path, host_path)`` for every regular file under root.

    Symlinks are never followed. ``image_path`` is absolute inside the image.
    """
    root = Path(root)
    for dirpath, _dirnames, filenames in os.walk(root):
        for filename in filenames:
            host_path = Path(dirpath) / filename
            if host_path.is_symlink() or not host_path.is_file():
                continue
            image_path = "/" + host_path.relative_to(root).as_posix()
            if files_filter is not None and not files_filter(image_path):
                continue
            yield image_path, host_path
