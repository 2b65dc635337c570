"""Tests for report formatters."""

import json
from datetime import datetime, timezone
from io import StringIO

from rich.console import Console

from imginspect.core.models import (
    ImageMetadata,
    Package,
    Result,
    ScanResult,
    Severity,
    Summary,
    VulnerabilityFinding,
    VulnerabilityReport,
)
from imginspect.formatters import JsonFormatter, TableFormatter, render_scan_result


def report() -> VulnerabilityReport:
    pkg = Package(name="openssl", version="3.0.11-1", ecosystem="Debian:12", path="/var/lib/dpkg/status")
    return VulnerabilityReport(
        image=ImageMetadata(id="sha256:img", repo_tags=["debian:12"]),
        packages=[pkg],
        findings=[
            VulnerabilityFinding(
                id="DSA-5532-1",
                package=pkg,
                severity=Severity.HIGH,
                summary="openssl security update",
                cvss_score=7.5,
                aliases=["CVE-2023-5363"],
                fixed_version="3.0.11-1~deb12u2",
            )
        ],
    )


class TestJsonFormatter:
    """Tests for JsonFormatter."""

    def test_format(self) -> None:
        data = json.loads(JsonFormatter().format(report()))
        assert data["image"]["repoTags"] == ["debian:12"]
        assert data["summary"]["vulnerabilities"]["high"] == 1
        vuln = data["vulnerabilities"][0]
        assert vuln["cve_id"] == "CVE-2023-5363"
        assert vuln["severity"] == "HIGH"
        assert vuln["package"]["ecosystem"] == "Debian:12"
        assert data["packages"][0]["path"] == "/var/lib/dpkg/status"

    def test_without_packages(self) -> None:
        data = json.loads(JsonFormatter(include_packages=False).format(report()))
        assert "packages" not in data


class TestTableFormatter:
    """Tests for TableFormatter."""

    def test_format(self) -> None:
        output = TableFormatter().format(report())
        assert "CVE-2023-5363" in output
        assert "openssl" in output

    def test_format_html(self) -> None:
        html = TableFormatter().format_html(report())
        assert "<html" in html.lower()
        assert "CVE-2023-5363" in html

    def test_no_findings(self) -> None:
        empty = VulnerabilityReport(image=ImageMetadata(id="sha256:img"))
        assert "No vulnerabilities detected" in TableFormatter().format(empty)


class TestRenderScanResult:
    """Tests for render_scan_result."""

    def test_render(self) -> None:
        result = ScanResult(image_name="alpine:3.19", image_id="sha256:1")
        result.extend(
            [
                Result(
                    name="clamav",
                    scanner_version="1",
                    timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
                    reference="file:///tmp/eicar.com",
                    description="Eicar-Signature",
                    summary=[Summary(Severity.HIGH)],
                )
            ]
        )
        out = StringIO()
        render_scan_result(result, Console(file=out, width=200))
        text = out.getvalue()
        assert "alpine:3.19" in text
        assert "file:///tmp/eicar.com" in text
        assert "Eicar-Signature" in text

    def test_render_empty(self) -> None:
        out = StringIO()
        render_scan_result(ScanResult(image_name="alpine"), Console(file=out))
        assert "No findings reported" in out.getvalue()
