"""Acquirers module exports."""

from imginspect.acquirers.container_lib import ContainerLibAcquirer
from imginspect.acquirers.docker_container import ContainerDiffAcquirer
from imginspect.acquirers.docker_image import RegistryPullAcquirer
from imginspect.acquirers.stream import ChunkChannel, StreamErrorDecoder, decode_pull_stream
from imginspect.config import InspectorOptions, Transport
from imginspect.core.acquirer import ImageAcquirer


def get_acquirer(opts: InspectorOptions) -> ImageAcquirer:
    """Pick the acquirer for the configured source and transport."""
    if opts.container:
        return ContainerDiffAcquirer(
            uri=opts.uri,
            dst_path=opts.dst_path,
            scan_container_changes=opts.scan_container_changes,
            chroot=opts.chroot,
        )
    if opts.transport is Transport.REGISTRY:
        return ContainerLibAcquirer(
            dst_path=opts.dst_path,
            registry_cert_path=opts.registry_cert_path,
            auths=opts.auths,
            platform=opts.platform,
            chroot=opts.chroot,
        )
    return RegistryPullAcquirer(
        uri=opts.uri,
        dst_path=opts.dst_path,
        pull_policy=opts.pull_policy,
        auths=opts.auths,
        chroot=opts.chroot,
    )


__all__ = [
    "ChunkChannel",
    "ContainerDiffAcquirer",
    "ContainerLibAcquirer",
    "RegistryPullAcquirer",
    "StreamErrorDecoder",
    "decode_pull_stream",
    "get_acquirer",
]
