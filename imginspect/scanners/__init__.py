"""Scanners module exports."""

from imginspect.core.registry import ScannerRegistry
from imginspect.scanners.malware_scanner import MalwareScanner
from imginspect.scanners.vuln_scanner import VulnerabilityScanner

SCAN_TYPES = ("vulnerability", "malware")


def build_default_registry() -> ScannerRegistry:
    """Registry with every built-in scan type."""
    registry = ScannerRegistry()
    registry.register("vulnerability", VulnerabilityScanner.from_options)
    registry.register("malware", MalwareScanner.from_options)
    return registry


__all__ = ["MalwareScanner", "VulnerabilityScanner", "SCAN_TYPES", "build_default_registry"]
