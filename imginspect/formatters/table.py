"""Rich table formatter for CLI output and the HTML report."""

from io import StringIO

from rich.console import Console
from rich.table import Table
from rich.text import Text

from imginspect.core.models import (
    ScanResult,
    Severity,
    VulnerabilityFinding,
    VulnerabilityReport,
)
from imginspect.formatters.base import BaseFormatter

SEVERITY_COLORS = {
    Severity.CRITICAL: "red bold",
    Severity.HIGH: "red",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "blue",
    Severity.UNKNOWN: "dim",
}

SEVERITY_ORDER = [Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM, Severity.LOW, Severity.UNKNOWN]


class TableFormatter(BaseFormatter):
    """Rich table output formatter."""

    @property
    def name(self) -> str:
        return "table"

    @property
    def file_extension(self) -> str:
        return ".txt"

    def format(self, report: VulnerabilityReport) -> str:
        """Format report as table string."""
        string_io = StringIO()
        console = Console(file=string_io, force_terminal=True)
        self._render_to_console(report, console)
        return string_io.getvalue()

    def format_html(self, report: VulnerabilityReport) -> str:
        """Render the report as a standalone HTML page."""
        console = Console(record=True, file=StringIO(), width=160)
        self._render_to_console(report, console)
        return console.export_html(inline_styles=True)

    def _render_to_console(self, report: VulnerabilityReport, console: Console) -> None:
        console.print()
        console.print(f"[bold]Image:[/bold] {report.image.name}")
        console.print(f"[bold]Scan Time:[/bold] {report.generated_at.strftime('%Y-%m-%d %H:%M:%S')}")
        console.print(f"[bold]Packages:[/bold] {len(report.packages)}")
        console.print()

        if not report.findings:
            console.print("[green]No vulnerabilities detected.[/green]")
            return

        counts = report.severity_count
        summary_parts = []
        for sev in SEVERITY_ORDER:
            if counts[sev] > 0:
                color = SEVERITY_COLORS[sev]
                summary_parts.append(f"[{color}]{sev.value}: {counts[sev]}[/{color}]")
        console.print("[bold]Vulnerability Summary:[/bold]")
        console.print("  " + " | ".join(summary_parts))
        console.print()

        self._print_vulnerabilities(report.findings, console)

    def _print_vulnerabilities(self, findings: list[VulnerabilityFinding], console: Console) -> None:
        # Most severe first, then highest score
        findings = sorted(
            findings, key=lambda f: (SEVERITY_ORDER.index(f.severity), -f.cvss_score)
        )

        table = Table(title="Vulnerabilities", show_header=True, header_style="bold")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Severity", justify="center")
        table.add_column("Package", style="green")
        table.add_column("Version", style="dim")
        table.add_column("Fixed", style="green dim")
        table.add_column("CVSS", justify="right")
        table.add_column("Summary", max_width=40)

        for f in findings:
            severity = Text(f.severity.value, style=SEVERITY_COLORS[f.severity])
            cvss = f"{f.cvss_score:.1f}" if f.cvss_score else "-"
            table.add_row(
                f.cve_id or f.id,
                severity,
                f.package.name,
                f.package.version,
                f.fixed_version or "-",
                cvss,
                f.summary[:40],
            )

        console.print(table)
        console.print()


def render_scan_result(result: ScanResult, console: Console) -> None:
    """Print the aggregated scan results of an inspection."""
    console.print()
    console.print(f"[bold]Image:[/bold] {result.image_name}")
    if result.image_id:
        console.print(f"[bold]Image ID:[/bold] {result.image_id}")
    console.print()

    if not result.results:
        console.print("[green]No findings reported.[/green]")
        return

    table = Table(title="Results", show_header=True, header_style="bold")
    table.add_column("Scanner", style="cyan", no_wrap=True)
    table.add_column("Severity", justify="center")
    table.add_column("Reference", style="green")
    table.add_column("Description", max_width=60)

    for r in result.results:
        label = r.summary[0].label if r.summary else Severity.UNKNOWN
        table.add_row(
            r.name,
            Text(label.value, style=SEVERITY_COLORS[label]),
            r.reference,
            r.description,
        )

    console.print(table)
    console.print()
