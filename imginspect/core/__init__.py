"""Core module exports."""

from imginspect.core.acquirer import AuthOptions, ImageAcquirer, PullPolicy
from imginspect.core.models import (
    AcquisitionResult,
    FailurePolicy,
    FilesFilter,
    ImageMetadata,
    InspectorMetadata,
    Package,
    Result,
    ScanReport,
    ScanResult,
    ScanStatus,
    Severity,
    Summary,
    VulnerabilityFinding,
    VulnerabilityMetadata,
    VulnerabilityReport,
)
from imginspect.core.registry import ScannerRegistry
from imginspect.core.scanner import BaseScanner

__all__ = [
    "AcquisitionResult",
    "AuthOptions",
    "BaseScanner",
    "FailurePolicy",
    "FilesFilter",
    "ImageAcquirer",
    "ImageMetadata",
    "InspectorMetadata",
    "Package",
    "PullPolicy",
    "Result",
    "ScanReport",
    "ScanResult",
    "ScanStatus",
    "ScannerRegistry",
    "Severity",
    "Summary",
    "VulnerabilityFinding",
    "VulnerabilityMetadata",
    "VulnerabilityReport",
]
