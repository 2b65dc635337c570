"""Interface of the result server.

The server publishes the acquired filesystem, the inspector metadata and
the scan reports over HTTP. Implementations live outside this package and
are injected into the pipeline.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from imginspect.config import InspectorOptions
from imginspect.core.models import API_VERSION, InspectorMetadata, ScanResult

VERSION_TAG = "v1"
HEALTHZ_URL_PATH = "/healthz"
API_URL_PREFIX = "/api"
RESULT_API_URL_PATH = "/results"
CONTENT_URL_PREFIX = f"{API_URL_PREFIX}/{VERSION_TAG}/content/"
METADATA_URL_PATH = f"{API_URL_PREFIX}/{VERSION_TAG}/metadata"
SCAN_REPORT_URL_PATH = f"{API_URL_PREFIX}/{VERSION_TAG}/vulnerability"
HTML_SCAN_REPORT_URL_PATH = f"{API_URL_PREFIX}/{VERSION_TAG}/vulnerability-report"


@dataclass
class ImageServerOptions:
    """Address, URL layout and access control of the result server."""

    serve_path: str
    scan_type: str = "vulnerability"
    html_scan_report: bool = False
    auth_token: str = ""
    chroot: bool = False
    healthz_url: str = HEALTHZ_URL_PATH
    api_url: str = API_URL_PREFIX
    result_api_url: str = RESULT_API_URL_PATH
    api_versions: list[str] = field(default_factory=lambda: [VERSION_TAG])
    metadata_url: str = METADATA_URL_PATH
    content_url: str = CONTENT_URL_PREFIX
    scan_report_url: str = SCAN_REPORT_URL_PATH
    html_scan_report_url: str = HTML_SCAN_REPORT_URL_PATH
    results_api_version: str = API_VERSION


class ImageServer(ABC):
    """Publishes the outcome of an inspection."""

    @abstractmethod
    async def serve_image(
        self,
        meta: InspectorMetadata,
        image_path: str,
        scan_result: ScanResult,
        scan_report: bytes,
        html_scan_report: bytes,
    ) -> None:
        """Serve until stopped. Raising ends the run with that error."""
        ...


def server_options(opts: InspectorOptions) -> ImageServerOptions:
    """Server options for an inspection configured to serve its results."""
    return ImageServerOptions(
        serve_path=opts.serve,
        scan_type=opts.scan_type,
        html_scan_report=opts.html_report,
        auth_token=opts.auth_token,
        chroot=opts.chroot,
    )
