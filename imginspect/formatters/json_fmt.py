"""JSON output formatter."""

import json
from datetime import datetime
from typing import Any

from imginspect.core.models import Severity, VulnerabilityFinding, VulnerabilityReport
from imginspect.formatters.base import BaseFormatter


class JsonFormatter(BaseFormatter):
    """JSON output formatter, used for the raw vulnerability report."""

    def __init__(self, indent: int = 2, include_packages: bool = True) -> None:
        self._indent = indent
        self._include_packages = include_packages

    @property
    def name(self) -> str:
        return "json"

    @property
    def file_extension(self) -> str:
        return ".json"

    def format(self, report: VulnerabilityReport) -> str:
        """Format report as JSON string."""
        data = self._to_dict(report)
        return json.dumps(data, indent=self._indent, default=self._json_default)

    def _to_dict(self, report: VulnerabilityReport) -> dict[str, Any]:
        output: dict[str, Any] = {
            "image": report.image.to_dict(),
            "generated_at": report.generated_at,
            "summary": {
                "packages": len(report.packages),
                "vulnerabilities": self._vuln_summary(report),
            },
            "vulnerabilities": [self._vuln_to_dict(f) for f in report.findings],
        }
        if self._include_packages:
            output["packages"] = [
                {"name": p.name, "version": p.version, "ecosystem": p.ecosystem, "path": p.path}
                for p in report.packages
            ]
        return output

    def _vuln_summary(self, report: VulnerabilityReport) -> dict[str, int]:
        counts = report.severity_count
        return {sev.value.lower(): counts[sev] for sev in Severity}

    def _vuln_to_dict(self, finding: VulnerabilityFinding) -> dict[str, Any]:
        return {
            "id": finding.id,
            "cve_id": finding.cve_id,
            "severity": finding.severity,
            "cvss_score": finding.cvss_score,
            "summary": finding.summary,
            "package": {
                "name": finding.package.name,
                "version": finding.package.version,
                "ecosystem": finding.package.ecosystem,
            },
            "fixed_version": finding.fixed_version,
            "file_path": finding.package.path,
            "references": finding.references,
        }

    def _json_default(self, obj: Any) -> Any:
        """Handle non-serializable types."""
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Severity):
            return obj.value
        raise TypeError(f"Object of type {type(obj)} is not JSON serializable")
