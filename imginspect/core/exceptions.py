"""Custom exceptions."""


class InspectorError(Exception):
    """Base exception for imginspect."""

    pass


class ConfigError(InspectorError):
    """Configuration error."""

    pass


class AcquisitionError(InspectorError):
    """Image or container could not be acquired."""

    pass


class StreamError(InspectorError):
    """Error reported inside a pull progress stream."""

    pass


class DecodeError(StreamError):
    """Pull progress stream is not valid JSON."""

    def __init__(self, detail: str) -> None:
        super().__init__(f"Error decoding json: {detail}")
        self.detail = detail


class ScannerInitError(InspectorError):
    """Scanner could not be created."""

    pass


class UnknownScannerTypeError(ScannerInitError):
    """No scanner registered for the requested scan type."""

    pass


class ScanError(InspectorError):
    """Error during scanning."""

    pass


class DatabaseError(InspectorError):
    """Vulnerability database error."""

    pass


class PostError(InspectorError):
    """Scan results could not be posted."""

    pass


class ServeError(InspectorError):
    """Result server failed."""

    pass


class StateError(InspectorError):
    """Illegal status transition."""

    pass
