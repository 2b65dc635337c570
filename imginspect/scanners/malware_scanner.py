"""Malware scanner driving a local ClamAV daemon through clamdscan."""

import asyncio
import logging
import shutil
import tempfile
from datetime import datetime, timezone
from pathlib import Path

from imginspect.config import DEFAULT_CLAM_SOCKET, InspectorOptions
from imginspect.core.exceptions import ScanError, ScannerInitError
from imginspect.core.models import (
    FailurePolicy,
    FilesFilter,
    ImageMetadata,
    Result,
    ScanReport,
    Severity,
    Summary,
)
from imginspect.core.scanner import BaseScanner, walk_files

logger = logging.getLogger(__name__)

# clamdscan exit codes
EXIT_CLEAN = 0
EXIT_INFECTED = 1

FOUND_SUFFIX = " FOUND"


class MalwareScanner(BaseScanner):
    """Scanner submitting the image files to clamd.

    Any failure is fatal: an image whose files could not all be checked
    is never reported as clean.
    """

    def __init__(
        self,
        clam_socket: str = DEFAULT_CLAM_SOCKET,
        clamdscan_path: str = "clamdscan",
    ) -> None:
        executable = shutil.which(clamdscan_path)
        if executable is None:
            raise ScannerInitError(f"clamdscan not found: {clamdscan_path!r} is not on PATH")
        self.clam_socket = clam_socket
        self.clamdscan = executable
        self._version = ""

    @classmethod
    def from_options(cls, opts: InspectorOptions) -> "MalwareScanner":
        return cls(clam_socket=opts.clam_socket, clamdscan_path=opts.clamdscan_path)

    @property
    def name(self) -> str:
        return "clamav"

    @property
    def version(self) -> str:
        return self._version or "unknown"

    @property
    def failure_policy(self) -> FailurePolicy:
        return FailurePolicy.FATAL

    async def scan(
        self,
        path: str,
        image: ImageMetadata,
        files_filter: FilesFilter | None = None,
    ) -> tuple[list[Result], ScanReport]:
        """Scan every regular file under ``path`` accepted by the filter."""
        if not self._version:
            self._version = await self._detect_version()

        files = await asyncio.to_thread(lambda: list(walk_files(path, files_filter)))
        if not files:
            logger.info("No files to scan for malware")
            return [], ScanReport()
        by_host_path = {str(host_path): image_path for image_path, host_path in files}

        with tempfile.TemporaryDirectory(prefix="image-inspector-clamav-") as workdir:
            config = Path(workdir) / "clamd.conf"
            config.write_text(f"LocalSocket {self.clam_socket}\n", encoding="utf-8")
            file_list = Path(workdir) / "files"
            file_list.write_text("".join(f"{p}\n" for p in by_host_path), encoding="utf-8")

            logger.info("Scanning %d files with clamd at %s", len(files), self.clam_socket)
            returncode, stdout, stderr = await self._run(
                f"--config-file={config}",
                "--fdpass",
                "--no-summary",
                "--infected",
                f"--file-list={file_list}",
            )

        if returncode not in (EXIT_CLEAN, EXIT_INFECTED):
            detail = stderr.strip() or stdout.strip() or f"exit status {returncode}"
            raise ScanError(f"clamdscan failed: {detail}")

        results = self._parse_output(stdout, by_host_path)
        return results, ScanReport(raw=stdout.encode("utf-8"))

    def _parse_output(self, output: str, by_host_path: dict[str, str]) -> list[Result]:
        now = datetime.now(timezone.utc)
        results = []
        for line in output.splitlines():
            if not line.endswith(FOUND_SUFFIX) or ": " not in line:
                continue
            host_path, signature = line[: -len(FOUND_SUFFIX)].rsplit(": ", 1)
            image_path = by_host_path.get(host_path, host_path)
            results.append(
                Result(
                    name=self.name,
                    scanner_version=self.version,
                    timestamp=now,
                    reference=f"file://{image_path}",
                    description=signature,
                    summary=[Summary(label=Severity.HIGH)],
                )
            )
        return results

    async def _detect_version(self) -> str:
        try:
            returncode, stdout, _ = await self._run("--version")
        except ScanError:
            return ""
        return stdout.strip() if returncode == 0 else ""

    async def _run(self, *args: str) -> tuple[int, str, str]:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.clamdscan,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ScanError(f"Unable to run clamdscan: {e}") from e

        try:
            stdout, stderr = await proc.communicate()
        except asyncio.CancelledError:
            proc.kill()
            await proc.wait()
            raise
        return proc.returncode, stdout.decode(errors="replace"), stderr.decode(errors="replace")
