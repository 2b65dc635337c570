"""Base formatter interface."""

from abc import ABC, abstractmethod

from imginspect.core.models import VulnerabilityReport


class BaseFormatter(ABC):
    """Abstract base class for vulnerability report formatters."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Formatter identifier."""
        ...

    @property
    @abstractmethod
    def file_extension(self) -> str:
        """Default file extension for output."""
        ...

    @abstractmethod
    def format(self, report: VulnerabilityReport) -> str:
        """Format a vulnerability report to string.

        Args:
            report: Report to format

        Returns:
            Formatted string
        """
        ...
