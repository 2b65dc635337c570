"""Acquire the filesystem of a running container."""

import asyncio
import logging
import os
from typing import Any

import docker
from docker.errors import DockerException, NotFound

from imginspect.acquirers.extract import extract_archive, prepare_destination, remove_tree, spool_chunks
from imginspect.config import DEFAULT_DOCKER_URI
from imginspect.core.acquirer import ImageAcquirer
from imginspect.core.exceptions import AcquisitionError
from imginspect.core.models import AcquisitionResult, FilesFilter, ImageMetadata, ScanResult

logger = logging.getLogger(__name__)

# Kind values reported by the daemon's container changes endpoint
CHANGE_MODIFIED = 0
CHANGE_ADDED = 1
CHANGE_DELETED = 2


def changed_files_filter(changes: list[dict[str, Any]] | None) -> FilesFilter:
    """Filter accepting only paths added or modified since the container started."""
    changed = {c["Path"] for c in changes or [] if c.get("Kind") != CHANGE_DELETED}

    def files_filter(path: str) -> bool:
        return path in changed

    return files_filter


class ContainerDiffAcquirer(ImageAcquirer):
    """Exports the filesystem of a running container.

    With ``scan_container_changes`` only files changed since the container
    started are extracted, and the returned filter restricts the scan to them.
    """

    def __init__(
        self,
        uri: str = DEFAULT_DOCKER_URI,
        dst_path: str = "",
        scan_container_changes: bool = False,
        chroot: bool = False,
        client: docker.DockerClient | None = None,
    ) -> None:
        self.uri = uri
        self.dst_path = dst_path
        self.scan_container_changes = scan_container_changes
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
        client = self._get_client()
        container, image_attrs = await asyncio.to_thread(self._inspect, client, source)
        metadata = ImageMetadata.from_docker(image_attrs)

        files_filter: FilesFilter | None = None
        if self.scan_container_changes:
            try:
                changes = await asyncio.to_thread(container.diff)
            except DockerException as e:
                raise AcquisitionError(f"Unable to list changes of container {source}: {e}") from e
            files_filter = changed_files_filter(changes)
            logger.info("Container %s has %d changed paths", source, len(changes or []))

        dst, created = prepare_destination(self.dst_path)
        logger.info("Extracting container %s to %s", source, dst)
        try:
            await asyncio.to_thread(self._export, container, dst, files_filter)
        except BaseException:
            if created:
                remove_tree(dst)
            raise

        image_name = (container.attrs.get("Config") or {}).get("Image") or metadata.name
        scan_result = ScanResult(image_name=image_name, image_id=metadata.id)
        return AcquisitionResult(
            local_path=dst,
            image=metadata,
            scan_result=scan_result,
            files_filter=files_filter,
        )

    def _inspect(self, client: docker.DockerClient, source: str) -> tuple[Any, dict[str, Any]]:
        try:
            container = client.containers.get(source)
        except NotFound as e:
            raise AcquisitionError(f"Container {source} not found") from e
        except DockerException as e:
            raise AcquisitionError(f"Unable to inspect container {source}: {e}") from e

        if container.status != "running":
            raise AcquisitionError(f"Container {source} is not running (status {container.status})")

        try:
            image_attrs = client.images.get(container.attrs["Image"]).attrs
        except DockerException as e:
            raise AcquisitionError(f"Unable to inspect the image of container {source}: {e}") from e
        return container, image_attrs

    def _export(self, container: Any, dst: str, files_filter: FilesFilter | None) -> None:
        try:
            archive = spool_chunks(container.export())
        except DockerException as e:
            raise AcquisitionError(f"Unable to export container {container.id}: {e}") from e
        try:
            extract_archive(archive, dst, confine=self.chroot, files_filter=files_filter)
        finally:
            os.unlink(archive)
