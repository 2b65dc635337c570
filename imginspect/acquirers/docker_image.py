"""Acquire images by pulling them through the docker daemon."""

import asyncio
import logging
import os
import time
from typing import Any

import docker
from docker import auth as docker_auth
from docker.errors import DockerException, ImageNotFound
from docker.utils import parse_repository_tag

from imginspect.acquirers.auth import resolve_credentials
from imginspect.acquirers.extract import extract_archive, prepare_destination, remove_tree, spool_chunks
from imginspect.acquirers.stream import decode_pull_stream
from imginspect.config import DEFAULT_DOCKER_URI
from imginspect.core.acquirer import AuthOptions, ImageAcquirer, PullPolicy
from imginspect.core.exceptions import AcquisitionError
from imginspect.core.models import AcquisitionResult, ImageMetadata, ScanResult

logger = logging.getLogger(__name__)

PULL_LOG_INTERVAL = 10.0

# never started, only needed so the daemon accepts images without a CMD
PLACEHOLDER_COMMAND = ["image-inspector"]


class _PullProgress:
    """Logs the latest pull status at most once per interval."""

    def __init__(self, source: str, interval: float = PULL_LOG_INTERVAL) -> None:
        self._source = source
        self._interval = interval
        self._last_log = time.monotonic()

    def __call__(self, status: dict[str, Any]) -> None:
        now = time.monotonic()
        if now - self._last_log < self._interval:
            return
        self._last_log = now
        logger.info(
            "Pulling %s: %s %s",
            self._source,
            status.get("status", ""),
            status.get("progress", ""),
        )


class RegistryPullAcquirer(ImageAcquirer):
    """Pulls an image with the docker daemon and extracts its filesystem."""

    def __init__(
        self,
        uri: str = DEFAULT_DOCKER_URI,
        dst_path: str = "",
        pull_policy: PullPolicy = PullPolicy.ALWAYS,
        auths: AuthOptions | None = None,
        chroot: bool = False,
        client: docker.DockerClient | None = None,
    ) -> None:
        self.uri = uri
        self.dst_path = dst_path
        self.pull_policy = pull_policy
        self.auths = auths or AuthOptions()
        self.chroot = chroot
        self._client = client

    def _get_client(self) -> docker.DockerClient:
        if self._client is None:
            try:
                self._client = docker.DockerClient(base_url=self.uri)
            except DockerException as e:
                raise AcquisitionError(f"Unable to connect to docker at {self.uri}: {e}") from e
        return self._client

    async def acquire(self, source: str) -> AcquisitionResult:
        """Pull (per pull policy) and extract ``source``."""
        client = self._get_client()
        image = await self._ensure_image(client, source)
        metadata = ImageMetadata.from_docker(image.attrs)

        dst, created = prepare_destination(self.dst_path)
        logger.info("Extracting image %s to %s", source, dst)
        try:
            await asyncio.to_thread(self._export_image, client, source, dst)
        except BaseException:
            if created:
                remove_tree(dst)
            raise

        scan_result = ScanResult(image_name=source, image_id=metadata.id)
        return AcquisitionResult(local_path=dst, image=metadata, scan_result=scan_result)

    async def _ensure_image(self, client: docker.DockerClient, source: str) -> Any:
        present = await asyncio.to_thread(self._find_image, client, source)

        if self.pull_policy is PullPolicy.NEVER:
            if present is None:
                raise AcquisitionError(
                    f"Image {source} is not available locally and the pull policy is never"
                )
            return present

        if self.pull_policy is PullPolicy.IF_NOT_PRESENT and present is not None:
            logger.info("Image %s is already available, not pulling", source)
            return present

        await self._pull(client, source)
        image = await asyncio.to_thread(self._find_image, client, source)
        if image is None:
            raise AcquisitionError(f"Image {source} is not available after pulling it")
        return image

    def _find_image(self, client: docker.DockerClient, source: str) -> Any:
        try:
            return client.images.get(source)
        except ImageNotFound:
            return None
        except DockerException as e:
            raise AcquisitionError(f"Unable to inspect image {source}: {e}") from e

    async def _pull(self, client: docker.DockerClient, source: str) -> None:
        logger.info("Pulling image %s", source)
        try:
            repository, tag = parse_repository_tag(source)
            registry, _ = docker_auth.resolve_repository_name(repository)
            auth_config = resolve_credentials(self.auths, registry)
            stream = await asyncio.to_thread(
                client.api.pull,
                repository,
                tag=tag,
                stream=True,
                decode=False,
                auth_config=auth_config,
            )
            error = await decode_pull_stream(stream, on_status=_PullProgress(source))
        except DockerException as e:
            raise AcquisitionError(f"Unable to pull docker image {source}: {e}") from e

        if error is not None:
            raise AcquisitionError(f"Unable to pull docker image {source}: {error}") from error
        logger.info("Pulled image %s", source)

    def _export_image(self, client: docker.DockerClient, source: str, dst: str) -> None:
        try:
            container = client.containers.create(source, command=PLACEHOLDER_COMMAND)
        except DockerException as e:
            raise AcquisitionError(f"Unable to create a container from {source}: {e}") from e

        try:
            archive = spool_chunks(container.export())
            try:
                extract_archive(archive, dst, confine=self.chroot)
            finally:
                os.unlink(archive)
        except DockerException as e:
            raise AcquisitionError(f"Unable to export the filesystem of {source}: {e}") from e
        finally:
            try:
                container.remove(force=True)
            except DockerException as e:
                logger.warning("Unable to remove temporary container %s: %s", container.id, e)
