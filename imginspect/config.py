"""Inspector configuration."""

from dataclasses import dataclass, field
from enum import Enum

from imginspect.core.acquirer import AuthOptions, PullPolicy
from imginspect.core.exceptions import ConfigError

DEFAULT_DOCKER_URI = "unix:///var/run/docker.sock"
DEFAULT_CLAM_SOCKET = "/var/run/clamd.scan/clamd.sock"
DEFAULT_PLATFORM = "linux/amd64"


class Transport(str, Enum):
    """How images are fetched."""

    DOCKER = "docker"  # through the docker daemon
    REGISTRY = "registry"  # registry API, no daemon needed


@dataclass
class InspectorOptions:
    """Options for a single inspection run."""

    # Source: exactly one of image/container
    image: str = ""
    container: str = ""

    # Acquisition
    uri: str = DEFAULT_DOCKER_URI
    dst_path: str = ""
    pull_policy: PullPolicy = PullPolicy.ALWAYS
    transport: Transport = Transport.DOCKER
    docker_cfg: list[str] = field(default_factory=list)
    username: str = ""
    password_file: str = ""
    registry_cert_path: str = ""
    platform: str = DEFAULT_PLATFORM
    scan_container_changes: bool = False
    chroot: bool = False
    keep_content: bool = False

    # Scanning
    scan_type: str = "vulnerability"
    scan_results_dir: str = ""
    html_report: bool = False
    clam_socket: str = DEFAULT_CLAM_SOCKET
    clamdscan_path: str = "clamdscan"
    scan_timeout: float | None = None

    # Results
    post_result_url: str = ""
    post_result_token_file: str = ""
    serve: str = ""
    auth_token: str = ""

    @property
    def auths(self) -> AuthOptions:
        return AuthOptions(
            docker_cfg=list(self.docker_cfg),
            username=self.username,
            password_file=self.password_file,
        )

    @property
    def source(self) -> str:
        """The container identifier wins over the image reference."""
        return self.container or self.image

    def validate(self) -> None:
        """Check option consistency.

        Raises:
            ConfigError: options are inconsistent
        """
        if self.image and self.container:
            raise ConfigError("Options image and container are mutually exclusive")
        if not self.image and not self.container:
            raise ConfigError("One of image or container must be specified")
        if not isinstance(self.pull_policy, PullPolicy):
            try:
                self.pull_policy = PullPolicy(self.pull_policy)
            except ValueError as e:
                allowed = ", ".join(p.value for p in PullPolicy)
                raise ConfigError(
                    f"Invalid pull policy {self.pull_policy!r}, expected one of: {allowed}"
                ) from e
        if not isinstance(self.transport, Transport):
            try:
                self.transport = Transport(self.transport)
            except ValueError as e:
                raise ConfigError(f"Invalid transport {self.transport!r}") from e
        if self.container and self.transport is Transport.REGISTRY:
            raise ConfigError("Containers can only be inspected through the docker daemon")
        if self.scan_container_changes and not self.container:
            raise ConfigError("Scanning container changes requires a container")
        if self.username and not self.password_file:
            raise ConfigError("A username requires a password file")
        if self.post_result_token_file and not self.post_result_url:
            raise ConfigError("A post result token file requires a post result URL")
        if self.auth_token and not self.serve:
            raise ConfigError("An auth token is only used when serving")
        if self.scan_timeout is not None and self.scan_timeout <= 0:
            raise ConfigError("Scan timeout must be positive")
