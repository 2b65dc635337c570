"""Tests for the ClamAV malware scanner."""

import asyncio
from pathlib import Path

import pytest

from imginspect.core.exceptions import ScanError, ScannerInitError
from imginspect.core.models import FailurePolicy, ImageMetadata, Severity
from imginspect.scanners.malware_scanner import MalwareScanner


class FakeProcess:
    def __init__(self, returncode: int, stdout: str = "", stderr: str = "", hang: bool = False) -> None:
        self.returncode = returncode
        self._stdout = stdout.encode()
        self._stderr = stderr.encode()
        self._hang = hang
        self.killed = False

    async def communicate(self) -> tuple[bytes, bytes]:
        if self._hang:
            await asyncio.sleep(3600)
        return self._stdout, self._stderr

    def kill(self) -> None:
        self.killed = True

    async def wait(self) -> int:
        return self.returncode


class FakeClamdscan:
    """Stands in for the clamdscan executable."""

    def __init__(self, returncode: int | None = None, stderr: str = "", hang: bool = False) -> None:
        self.returncode = returncode
        self.stderr = stderr
        self.hang = hang
        self.calls: list[tuple[str, ...]] = []
        self.config = ""
        self.scanned: list[str] = []
        self.processes: list[FakeProcess] = []

    async def __call__(self, program: str, *args: str, **kwargs) -> FakeProcess:
        self.calls.append(args)
        if args == ("--version",):
            proc = FakeProcess(0, "ClamAV 1.2.1/27120/Mon Dec  4 08:40:30 2023\n")
        else:
            options = dict(a.split("=", 1) for a in args if "=" in a)
            self.config = Path(options["--config-file"]).read_text()
            self.scanned = Path(options["--file-list"]).read_text().splitlines()
            infected = [f"{p}: Win.Test.EICAR_HDB-1 FOUND" for p in self.scanned if p.endswith("eicar.com")]
            returncode = self.returncode
            if returncode is None:
                returncode = 1 if infected else 0
            proc = FakeProcess(returncode, "\n".join(infected) + "\n", self.stderr, self.hang)
        self.processes.append(proc)
        return proc


@pytest.fixture
def root(tmp_path: Path) -> Path:
    root = tmp_path / "root"
    (root / "bin").mkdir(parents=True)
    (root / "bin" / "sh").write_bytes(b"\x7fELF")
    (root / "tmp").mkdir()
    (root / "tmp" / "eicar.com").write_text("X5O!P%@AP[4\\PZX54(P^)7CC)7}$EICAR")
    (root / "bin" / "link").symlink_to(root / "bin" / "sh")
    return root


def make_scanner(monkeypatch: pytest.MonkeyPatch, clamdscan: FakeClamdscan) -> MalwareScanner:
    monkeypatch.setattr("shutil.which", lambda name: "/usr/bin/clamdscan")
    monkeypatch.setattr("asyncio.create_subprocess_exec", clamdscan)
    return MalwareScanner(clam_socket="/run/clamd.sock")


class TestMalwareScanner:
    """Tests for MalwareScanner."""

    def test_missing_clamdscan(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("shutil.which", lambda name: None)
        with pytest.raises(ScannerInitError):
            MalwareScanner()

    def test_failure_policy_is_fatal(self, monkeypatch: pytest.MonkeyPatch) -> None:
        scanner = make_scanner(monkeypatch, FakeClamdscan())
        assert scanner.failure_policy is FailurePolicy.FATAL
        assert scanner.name == "clamav"

    @pytest.mark.asyncio
    async def test_infected_file(self, monkeypatch: pytest.MonkeyPatch, root: Path) -> None:
        clamdscan = FakeClamdscan()
        scanner = make_scanner(monkeypatch, clamdscan)

        results, report = await scanner.scan(str(root), ImageMetadata())

        assert len(results) == 1
        result = results[0]
        assert result.name == "clamav"
        assert result.reference == "file:///tmp/eicar.com"
        assert result.description == "Win.Test.EICAR_HDB-1"
        assert result.summary[0].label == Severity.HIGH
        assert result.scanner_version.startswith("ClamAV 1.2.1")
        assert b"FOUND" in report.raw
        assert clamdscan.config == "LocalSocket /run/clamd.sock\n"
        assert "--fdpass" in clamdscan.calls[-1]
        # symlinks are not handed to clamd
        assert sorted(Path(p).name for p in clamdscan.scanned) == ["eicar.com", "sh"]

    @pytest.mark.asyncio
    async def test_clean_scan(self, monkeypatch: pytest.MonkeyPatch, root: Path) -> None:
        scanner = make_scanner(monkeypatch, FakeClamdscan())
        results, _ = await scanner.scan(
            str(root), ImageMetadata(), files_filter=lambda p: p.startswith("/bin/")
        )
        assert results == []

    @pytest.mark.asyncio
    async def test_nothing_to_scan(self, monkeypatch: pytest.MonkeyPatch, root: Path) -> None:
        clamdscan = FakeClamdscan()
        scanner = make_scanner(monkeypatch, clamdscan)
        results, _ = await scanner.scan(str(root), ImageMetadata(), files_filter=lambda p: False)
        assert results == []
        assert clamdscan.calls == [("--version",)]

    @pytest.mark.asyncio
    async def test_daemon_error(self, monkeypatch: pytest.MonkeyPatch, root: Path) -> None:
        clamdscan = FakeClamdscan(returncode=2, stderr="ERROR: Could not connect to clamd")
        scanner = make_scanner(monkeypatch, clamdscan)
        with pytest.raises(ScanError, match="Could not connect to clamd"):
            await scanner.scan(str(root), ImageMetadata())

    @pytest.mark.asyncio
    async def test_cancel_kills_process(self, monkeypatch: pytest.MonkeyPatch, root: Path) -> None:
        clamdscan = FakeClamdscan(hang=True)
        scanner = make_scanner(monkeypatch, clamdscan)
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(scanner.scan(str(root), ImageMetadata()), timeout=0.2)
        assert clamdscan.processes[-1].killed
