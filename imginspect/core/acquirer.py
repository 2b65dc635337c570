"""Base image acquirer interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum

from imginspect.core.models import AcquisitionResult


class PullPolicy(str, Enum):
    """Whether a registry pull is attempted before extraction."""

    ALWAYS = "always"
    IF_NOT_PRESENT = "if-not-present"
    NEVER = "never"


@dataclass
class AuthOptions:
    """Where registry credentials come from."""

    docker_cfg: list[str] = field(default_factory=list)
    username: str = ""
    password_file: str = ""


class ImageAcquirer(ABC):
    """Gets an image (or container) and extracts it to a local directory."""

    @abstractmethod
    async def acquire(self, source: str) -> AcquisitionResult:
        """Acquire ``source`` and extract its filesystem.

        Args:
            source: Image reference or container identifier

        Returns:
            Local path, image metadata, acquisition-time results and the
            files filter the scanner must honor

        Raises:
            AcquisitionError: nothing usable was acquired
        """
        ...
