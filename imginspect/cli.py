"""imginspect CLI using Click."""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler

from imginspect import __version__
from imginspect.config import (
    DEFAULT_CLAM_SOCKET,
    DEFAULT_DOCKER_URI,
    DEFAULT_PLATFORM,
    InspectorOptions,
    Transport,
)
from imginspect.core.acquirer import PullPolicy
from imginspect.core.exceptions import InspectorError
from imginspect.formatters import render_scan_result
from imginspect.inspector import InspectionPipeline, PipelineState
from imginspect.scanners import SCAN_TYPES

console = Console()


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=verbose)],
        force=True,
    )


@click.group()
@click.version_option(__version__, "--version", "-v")
def app() -> None:
    """imginspect - Container image and container inspector."""
    pass


@app.command("inspect")
@click.option("--image", "-i", default="", help="Docker image reference to inspect")
@click.option("--container", "-c", default="", help="Running container to inspect")
@click.option("--docker", "uri", default=DEFAULT_DOCKER_URI, show_default=True, help="Daemon socket to connect to")
@click.option("--path", "dst_path", default="", help="Destination path for the image files")
@click.option(
    "--pull-policy",
    type=click.Choice([p.value for p in PullPolicy]),
    default=PullPolicy.ALWAYS.value,
    show_default=True,
    help="Whether to pull the image before extracting it",
)
@click.option(
    "--transport",
    type=click.Choice([t.value for t in Transport]),
    default=Transport.DOCKER.value,
    show_default=True,
    help="Fetch images through the docker daemon or straight from the registry",
)
@click.option("--dockercfg", "docker_cfg", multiple=True, help="Docker config file with registry credentials")
@click.option("--username", default="", help="Registry username")
@click.option("--password-file", default="", help="File holding the registry password")
@click.option("--registry-cert", "registry_cert_path", default="", help="CA bundle for the registry transport")
@click.option("--platform", default=DEFAULT_PLATFORM, show_default=True, help="Platform selected from manifest lists")
@click.option("--scan-container-changes", is_flag=True, help="Only scan files changed in the container")
@click.option("--chroot", is_flag=True, help="Confine extraction to the destination path")
@click.option("--keep-content", is_flag=True, help="Keep the extracted files after the run")
@click.option(
    "--scan-type",
    type=click.Choice(SCAN_TYPES),
    default="vulnerability",
    show_default=True,
    help="Type of scan to run",
)
@click.option("--scan-results-dir", default="", help="Directory for the scanner reports")
@click.option("--html-report", is_flag=True, help="Render an HTML vulnerability report")
@click.option("--clam-socket", default=DEFAULT_CLAM_SOCKET, show_default=True, help="clamd socket")
@click.option("--clamdscan", "clamdscan_path", default="clamdscan", show_default=True, help="clamdscan executable")
@click.option("--scan-timeout", type=float, default=None, help="Abort the scan after this many seconds")
@click.option("--post-results-url", "post_result_url", default="", help="URL the scan results are posted to")
@click.option("--post-results-token-file", "post_result_token_file", default="", help="File holding the post token")
@click.option("--format", "-f", "output_format", default="table", help="Output format: table, json")
@click.option("--output", "-o", type=click.Path(), help="Write the scan results JSON to this file")
@click.option("--verbose", is_flag=True, help="Debug logging")
def inspect_cmd(
    output_format: str,
    output: Optional[str],
    verbose: bool,
    docker_cfg: tuple[str, ...],
    **kwargs,
) -> None:
    """Acquire an image or container, scan it, and report the results."""
    _setup_logging(verbose)
    opts = InspectorOptions(docker_cfg=list(docker_cfg), **kwargs)

    try:
        pipeline = InspectionPipeline(opts)
        asyncio.run(pipeline.inspect())
    except InspectorError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise SystemExit(1)

    if pipeline.state is PipelineState.ERROR:
        console.print("[yellow]Results could not be posted[/yellow]")

    _output_result(pipeline, output_format, Path(output) if output else None)


def _output_result(pipeline: InspectionPipeline, output_format: str, output: Optional[Path]) -> None:
    """Format and output the aggregated results."""
    result = pipeline.scan_result
    if output:
        output.write_text(result.to_json(), encoding="utf-8")
        console.print(f"[green]Results written to {output}[/green]")

    output_format = output_format.lower()
    if output_format == "table":
        render_scan_result(result, console)
        vuln = pipeline.meta.vulnerability
        if vuln.error_message:
            console.print(f"[yellow]Vulnerability evaluation failed: {vuln.error_message}[/yellow]")
    elif output_format == "json":
        console.print_json(result.to_json())
    else:
        console.print(f"[red]Unknown format: {output_format}[/red]")
        raise SystemExit(1)


def run() -> None:
    """Entry point for CLI."""
    app()


if __name__ == "__main__":
    run()
