"""Scanner registry mapping scan types to scanner factories."""

from collections.abc import Callable, Iterator
from typing import TYPE_CHECKING

from imginspect.core.exceptions import UnknownScannerTypeError
from imginspect.core.scanner import BaseScanner

if TYPE_CHECKING:
    from imginspect.config import InspectorOptions

ScannerFactory = Callable[["InspectorOptions"], BaseScanner]


class ScannerRegistry:
    """Registry for managing scanner plugins."""

    def __init__(self) -> None:
        self._factories: dict[str, ScannerFactory] = {}

    def register(self, scan_type: str, factory: ScannerFactory) -> None:
        """Register a scanner factory for a scan type."""
        self._factories[scan_type] = factory

    def unregister(self, scan_type: str) -> None:
        """Unregister a scan type."""
        self._factories.pop(scan_type, None)

    def get(self, scan_type: str) -> ScannerFactory | None:
        """Get the factory for a scan type."""
        return self._factories.get(scan_type)

    def create_scanner(self, scan_type: str, options: "InspectorOptions") -> BaseScanner:
        """Create the scanner registered for ``scan_type``.

        Raises:
            UnknownScannerTypeError: no scanner is registered for the type
            ScannerInitError: the factory could not build the scanner
        """
        factory = self._factories.get(scan_type)
        if factory is None:
            raise UnknownScannerTypeError(f"Unknown type of scanner: {scan_type!r}")
        return factory(options)

    def types(self) -> list[str]:
        """Registered scan types."""
        return list(self._factories)

    def __contains__(self, scan_type: object) -> bool:
        return scan_type in self._factories

    def __iter__(self) -> Iterator[str]:
        return iter(self._factories)

    def __len__(self) -> int:
        return len(self._factories)
