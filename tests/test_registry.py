"""Tests for the scanner registry."""

import pytest

from imginspect.config import InspectorOptions
from imginspect.core.exceptions import ScannerInitError, UnknownScannerTypeError
from imginspect.core.registry import ScannerRegistry
from imginspect.scanners import MalwareScanner, VulnerabilityScanner, build_default_registry


class TestScannerRegistry:
    """Tests for ScannerRegistry."""

    def test_unknown_type(self) -> None:
        registry = ScannerRegistry()
        with pytest.raises(UnknownScannerTypeError, match="Unknown type of scanner"):
            registry.create_scanner("openscap", InspectorOptions(image="alpine"))

    def test_register_and_unregister(self) -> None:
        registry = ScannerRegistry()
        registry.register("vulnerability", VulnerabilityScanner.from_options)
        assert "vulnerability" in registry
        assert len(registry) == 1
        assert registry.types() == ["vulnerability"]
        registry.unregister("vulnerability")
        assert "vulnerability" not in registry
        assert registry.get("vulnerability") is None

    def test_default_registry(self) -> None:
        registry = build_default_registry()
        assert list(registry) == ["vulnerability", "malware"]

    def test_create_vulnerability_scanner(self, tmp_path) -> None:
        opts = InspectorOptions(image="alpine", scan_results_dir=str(tmp_path), html_report=True)
        scanner = build_default_registry().create_scanner("vulnerability", opts)
        assert isinstance(scanner, VulnerabilityScanner)
        assert scanner.results_dir == str(tmp_path)
        assert scanner.html_report

    def test_malware_scanner_requires_clamdscan(self) -> None:
        opts = InspectorOptions(image="alpine", clamdscan_path="/nonexistent/clamdscan")
        with pytest.raises(ScannerInitError):
            build_default_registry().create_scanner("malware", opts)

    def test_malware_scanner_created(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("shutil.which", lambda name: f"/usr/bin/{name}")
        opts = InspectorOptions(image="alpine", clam_socket="/tmp/clamd.sock")
        scanner = build_default_registry().create_scanner("malware", opts)
        assert isinstance(scanner, MalwareScanner)
        assert scanner.clam_socket == "/tmp/clamd.sock"
        assert scanner.clamdscan == "/usr/bin/clamdscan"
