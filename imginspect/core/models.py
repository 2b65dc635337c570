"""Data models for acquisition and scan results."""

import json
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from imginspect.core.exceptions import StateError

API_VERSION = "v1alpha"

# RFC 850 layout: Monday, 02-Jan-06 15:04:05 UTC
CONTENT_TIMESTAMP_FORMAT = "%A, %d-%b-%y %H:%M:%S %Z"

# Receives the in-image absolute path ("/etc/passwd"), True keeps the file.
FilesFilter = Callable[[str], bool]


class Severity(str, Enum):
    """Vulnerability severity levels."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def from_cvss(cls, score: float) -> "Severity":
        """Convert CVSS score to severity."""
        if score >= 9.0:
            return cls.CRITICAL
        if score >= 7.0:
            return cls.HIGH
        if score >= 4.0:
            return cls.MEDIUM
        if score > 0:
            return cls.LOW
        return cls.UNKNOWN

    @classmethod
    def from_label(cls, label: str) -> "Severity":
        """Convert a free-form severity label (e.g. "moderate") to severity."""
        label = label.strip().upper()
        if label == "MODERATE":
            return cls.MEDIUM
        try:
            return cls(label)
        except ValueError:
            return cls.UNKNOWN


class ScanStatus(str, Enum):
    """Status of the vulnerability evaluation."""

    NOT_REQUESTED = "NotRequested"
    SUCCESS = "Success"
    ERROR = "Error"


class FailurePolicy(str, Enum):
    """How the pipeline treats a failed scan."""

    INFORMATIONAL = "informational"  # recorded, run continues
    FATAL = "fatal"  # propagated, nothing is posted or served


@dataclass
class Summary:
    """Severity label attached to a result."""

    label: Severity

    def to_dict(self) -> dict[str, Any]:
        return {"label": self.label.value}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Summary":
        return cls(label=Severity.from_label(data.get("label", "")))


@dataclass
class Result:
    """A single finding produced by a scanner."""

    name: str
    scanner_version: str
    timestamp: datetime
    reference: str
    description: str
    summary: list[Summary] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "scannerVersion": self.scanner_version,
            "timestamp": self.timestamp.isoformat(),
            "reference": self.reference,
            "description": self.description,
            "summary": [s.to_dict() for s in self.summary],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Result":
        return cls(
            name=data.get("name", ""),
            scanner_version=data.get("scannerVersion", ""),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            reference=data.get("reference", ""),
            description=data.get("description", ""),
            summary=[Summary.from_dict(s) for s in data.get("summary") or []],
        )


@dataclass
class ScanResult:
    """Aggregated scan results.

    Results are append-only: acquisition-time findings come first, followed
    by whatever the scanner contributes.
    """

    image_name: str = ""
    image_id: str = ""
    api_version: str = API_VERSION
    results: list[Result] = field(default_factory=list)

    def extend(self, results: list[Result]) -> None:
        """Append scanner results, keeping their order."""
        self.results.extend(results)

    def to_dict(self) -> dict[str, Any]:
        return {
            "apiVersion": self.api_version,
            "imageName": self.image_name,
            "imageID": self.image_id,
            "results": [r.to_dict() for r in self.results],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ScanResult":
        return cls(
            api_version=data.get("apiVersion", ""),
            image_name=data.get("imageName", ""),
            image_id=data.get("imageID", ""),
            results=[Result.from_dict(r) for r in data.get("results") or []],
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, content: str | bytes) -> "ScanResult":
        return cls.from_dict(json.loads(content))


@dataclass
class ImageMetadata:
    """Descriptor of the acquired image, as reported by its transport."""

    id: str = ""
    repo_tags: list[str] = field(default_factory=list)
    repo_digests: list[str] = field(default_factory=list)
    created: str = ""
    architecture: str = ""
    os: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def name(self) -> str:
        """Human readable image name."""
        if self.repo_tags:
            return self.repo_tags[0]
        if self.repo_digests:
            return self.repo_digests[0]
        return self.id

    @classmethod
    def from_docker(cls, attrs: dict[str, Any]) -> "ImageMetadata":
        """Build from a docker ``image inspect`` document."""
        config = attrs.get("Config") or {}
        return cls(
            id=attrs.get("Id", ""),
            repo_tags=list(attrs.get("RepoTags") or []),
            repo_digests=list(attrs.get("RepoDigests") or []),
            created=attrs.get("Created", ""),
            architecture=attrs.get("Architecture", ""),
            os=attrs.get("Os", ""),
            labels=dict(config.get("Labels") or {}),
            raw=attrs,
        )

    @classmethod
    def from_oci_config(
        cls, digest: str, config: dict[str, Any], reference: str = ""
    ) -> "ImageMetadata":
        """Build from an OCI/docker image config blob."""
        runtime_config = config.get("config") or {}
        return cls(
            id=digest,
            repo_tags=[reference] if reference else [],
            created=config.get("created", ""),
            architecture=config.get("architecture", ""),
            os=config.get("os", ""),
            labels=dict(runtime_config.get("Labels") or {}),
            raw=config,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "repoTags": self.repo_tags,
            "repoDigests": self.repo_digests,
            "created": self.created,
            "architecture": self.architecture,
            "os": self.os,
            "labels": self.labels,
        }


def _content_timestamp() -> str:
    return datetime.now(timezone.utc).strftime(CONTENT_TIMESTAMP_FORMAT)


@dataclass
class VulnerabilityMetadata:
    """Outcome of the vulnerability evaluation.

    The status leaves NOT_REQUESTED at most once and never reverts.
    """

    status: ScanStatus = ScanStatus.NOT_REQUESTED
    error_message: str = ""
    content_timestamp: str = field(default_factory=_content_timestamp)

    def set_success(self) -> None:
        self._transition(ScanStatus.SUCCESS)

    def set_error(self, error: Exception | str) -> None:
        self._transition(ScanStatus.ERROR)
        self.error_message = str(error)

    def _transition(self, status: ScanStatus) -> None:
        if self.status is not ScanStatus.NOT_REQUESTED:
            raise StateError(
                f"vulnerability status is already {self.status.value}, cannot set {status.value}"
            )
        self.status = status

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "errorMessage": self.error_message,
            "contentTimeStamp": self.content_timestamp,
        }


@dataclass
class InspectorMetadata:
    """Metadata exposed by the result server."""

    image: ImageMetadata = field(default_factory=ImageMetadata)
    vulnerability: VulnerabilityMetadata = field(default_factory=VulnerabilityMetadata)

    def to_dict(self) -> dict[str, Any]:
        return {
            "image": self.image.to_dict(),
            "vulnerability": self.vulnerability.to_dict(),
        }


@dataclass
class ScanReport:
    """Scanner specific report: raw bytes and a rendered page."""

    raw: bytes = b""
    html: bytes = b""


@dataclass
class AcquisitionResult:
    """Where and what an acquirer fetched."""

    local_path: str
    image: ImageMetadata
    scan_result: ScanResult
    files_filter: FilesFilter | None = None


@dataclass
class Package:
    """A package installed in the image."""

    name: str
    version: str
    ecosystem: str  # OSV ecosystem: "PyPI", "npm", "Debian:12", "Alpine:v3.19"
    path: str = ""  # image path of the database the package was read from

    def __hash__(self) -> int:
        return hash((self.name, self.version, self.ecosystem))


@dataclass
class VulnerabilityFinding:
    """An advisory affecting an installed package."""

    id: str
    package: Package
    severity: Severity
    summary: str = ""
    cvss_score: float = 0.0
    aliases: list[str] = field(default_factory=list)
    fixed_version: str = ""
    references: list[str] = field(default_factory=list)

    @property
    def cve_id(self) -> str:
        return next((a for a in self.aliases if a.startswith("CVE-")), "")


@dataclass
class VulnerabilityReport:
    """Everything the vulnerability evaluation found for one image."""

    image: ImageMetadata
    packages: list[Package] = field(default_factory=list)
    findings: list[VulnerabilityFinding] = field(default_factory=list)
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def severity_count(self) -> dict[Severity, int]:
        """Count findings by severity."""
        counts: dict[Severity, int] = {s: 0 for s in Severity}
        for f in self.findings:
            counts[f.severity] += 1
        return counts
