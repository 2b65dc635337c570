"""Vulnerability scanner using the OSV database."""

import asyncio
import logging
import tempfile
from datetime import datetime, timezone
from pathlib import Path

from imginspect import __version__
from imginspect.config import InspectorOptions
from imginspect.core.exceptions import DatabaseError, ScanError
from imginspect.core.models import (
    FailurePolicy,
    FilesFilter,
    ImageMetadata,
    InspectorMetadata,
    Result,
    ScanReport,
    Summary,
    VulnerabilityFinding,
    VulnerabilityReport,
)
from imginspect.core.scanner import BaseScanner
from imginspect.db.osv import OSVClient
from imginspect.formatters.json_fmt import JsonFormatter
from imginspect.formatters.table import TableFormatter
from imginspect.scanners.package_parsers import discover_packages

logger = logging.getLogger(__name__)

OSV_REFERENCE_URL = "https://osv.dev/vulnerability/"
RESULTS_DIR_PREFIX = "image-inspector-scan-results-"
RAW_REPORT_NAME = "results.json"
HTML_REPORT_NAME = "results.html"


class VulnerabilityScanner(BaseScanner):
    """Scanner for known vulnerabilities in installed packages."""

    def __init__(
        self,
        results_dir: str = "",
        html_report: bool = False,
        osv: OSVClient | None = None,
    ) -> None:
        self.results_dir = results_dir
        self.html_report = html_report
        self._osv = osv or OSVClient()

    @classmethod
    def from_options(cls, opts: InspectorOptions) -> "VulnerabilityScanner":
        return cls(results_dir=opts.scan_results_dir, html_report=opts.html_report)

    @property
    def name(self) -> str:
        return "vulnerability"

    @property
    def version(self) -> str:
        return __version__

    @property
    def failure_policy(self) -> FailurePolicy:
        return FailurePolicy.INFORMATIONAL

    async def scan(
        self,
        path: str,
        image: ImageMetadata,
        files_filter: FilesFilter | None = None,
    ) -> tuple[list[Result], ScanReport]:
        """Evaluate the packages installed under ``path`` against OSV.

        Any failure is raised as ``ScanError``.
        """
        try:
            return await self._evaluate(path, image, files_filter)
        except ScanError:
            raise
        except Exception as e:
            raise ScanError(f"Vulnerability evaluation failed: {e}") from e

    async def _evaluate(
        self,
        path: str,
        image: ImageMetadata,
        files_filter: FilesFilter | None,
    ) -> tuple[list[Result], ScanReport]:
        parsed = await asyncio.to_thread(discover_packages, path, files_filter)
        for error in parsed.errors:
            logger.debug("Package database parse error: %s", error)
        logger.info("Evaluating %d packages against OSV", len(parsed.packages))

        try:
            vuln_map = await self._osv.query_batch(parsed.packages)
        except DatabaseError as e:
            raise ScanError(f"Vulnerability evaluation failed: {e}") from e

        report = VulnerabilityReport(image=image, packages=parsed.packages)
        for package, vulns in vuln_map.items():
            for vuln in vulns:
                report.findings.append(
                    VulnerabilityFinding(
                        id=vuln.id,
                        package=package,
                        severity=vuln.severity,
                        summary=vuln.summary or vuln.id,
                        cvss_score=vuln.cvss_score,
                        aliases=vuln.aliases,
                        fixed_version=vuln.fixed_version,
                        references=vuln.references,
                    )
                )

        results = self._to_results(report)
        scan_report = self._render(report)
        await asyncio.to_thread(self._write_reports, scan_report)
        return results, scan_report

    def _to_results(self, report: VulnerabilityReport) -> list[Result]:
        now = datetime.now(timezone.utc)
        results = []
        for f in report.findings:
            description = f"{f.package.name} {f.package.version} ({f.package.ecosystem}): {f.summary}"
            if f.fixed_version:
                description += f", fixed in {f.fixed_version}"
            results.append(
                Result(
                    name=self.name,
                    scanner_version=self.version,
                    timestamp=now,
                    reference=OSV_REFERENCE_URL + f.id,
                    description=description,
                    summary=[Summary(label=f.severity)],
                )
            )
        return results

    def _render(self, report: VulnerabilityReport) -> ScanReport:
        raw = JsonFormatter().format(report).encode("utf-8")
        html = b""
        if self.html_report:
            html = TableFormatter().format_html(report).encode("utf-8")
        return ScanReport(raw=raw, html=html)

    def _write_reports(self, scan_report: ScanReport) -> None:
        try:
            if self.results_dir:
                results_dir = Path(self.results_dir)
                results_dir.mkdir(parents=True, exist_ok=True)
            else:
                results_dir = Path(tempfile.mkdtemp(prefix=RESULTS_DIR_PREFIX))
                self.results_dir = str(results_dir)
            (results_dir / RAW_REPORT_NAME).write_bytes(scan_report.raw)
            if scan_report.html:
                (results_dir / HTML_REPORT_NAME).write_bytes(scan_report.html)
        except OSError as e:
            raise ScanError(f"Unable to write scan results: {e}") from e
        logger.info("Scan results written to %s", results_dir)

    def record_outcome(self, meta: InspectorMetadata, error: ScanError | None) -> None:
        if error is None:
            meta.vulnerability.set_success()
        else:
            meta.vulnerability.set_error(error)

    async def close(self) -> None:
        await self._osv.close()
