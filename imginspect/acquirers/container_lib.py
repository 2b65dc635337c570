"""Daemon-less image acquisition through the registry HTTP API v2.

Manifests and blobs are fetched directly from the registry, layers are
verified against their digests and unpacked in order, applying whiteouts.
"""

import asyncio
import base64
import hashlib
import json
import logging
import re
import ssl
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx
from docker import auth as docker_auth
from docker.errors import DockerException
from docker.utils import parse_repository_tag

from imginspect.acquirers.auth import resolve_credentials
from imginspect.acquirers.extract import extract_archive, prepare_destination, remove_tree
from imginspect.config import DEFAULT_PLATFORM
from imginspect.core.acquirer import AuthOptions, ImageAcquirer
from imginspect.core.exceptions import AcquisitionError
from imginspect.core.models import AcquisitionResult, ImageMetadata, ScanResult

logger = logging.getLogger(__name__)

DOCKER_HUB_REGISTRY = "registry-1.docker.io"
DEFAULT_TIMEOUT = 60.0

MANIFEST_V2 = "application/vnd.docker.distribution.manifest.v2+json"
MANIFEST_LIST_V2 = "application/vnd.docker.distribution.manifest.list.v2+json"
OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
OCI_INDEX = "application/vnd.oci.image.index.v1+json"
MANIFEST_ACCEPT = ", ".join([MANIFEST_V2, MANIFEST_LIST_V2, OCI_MANIFEST, OCI_INDEX])

_CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')


@dataclass
class ImageReference:
    """Image reference split into the parts the registry API needs."""

    index: str  # registry name used for credentials
    host: str  # registry API host
    repository: str
    reference: str  # tag or digest

    @classmethod
    def parse(cls, source: str) -> "ImageReference":
        try:
            repository, reference = parse_repository_tag(source)
            index, remote = docker_auth.resolve_repository_name(repository)
        except DockerException as e:
            raise AcquisitionError(f"Invalid image reference {source!r}: {e}") from e

        host = index
        if index == docker_auth.INDEX_NAME:
            host = DOCKER_HUB_REGISTRY
            if "/" not in remote:
                remote = f"library/{remote}"
        return cls(index=index, host=host, repository=remote, reference=reference or "latest")

    @property
    def base_url(self) -> str:
        return f"https://{self.host}/v2/{self.repository}"


def _parse_challenge(header: str) -> tuple[str, dict[str, str]]:
    scheme, _, params = header.partition(" ")
    return scheme.lower(), dict(_CHALLENGE_PARAM.findall(params))


class RegistrySession:
    """Registry API calls for one repository, negotiating auth on demand."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        ref: ImageReference,
        credentials: dict[str, str] | None = None,
    ) -> None:
        self._client = client
        self._ref = ref
        self._credentials = credentials
        self._authorization: str | None = None

    async def request(
        self, url: str, headers: dict[str, str] | None = None, stream: bool = False
    ) -> httpx.Response:
        """GET ``url``, authenticating once if the registry asks for it."""
        response = await self._send(url, headers, stream)
        if response.status_code == 401 and self._authorization is None:
            challenge = response.headers.get("WWW-Authenticate", "")
            await response.aclose()
            self._authorization = await self._authenticate(challenge)
            response = await self._send(url, headers, stream)

        if response.is_error:
            await response.aread()
            await response.aclose()
            response.raise_for_status()
        return response

    async def _send(self, url: str, headers: dict[str, str] | None, stream: bool) -> httpx.Response:
        request_headers = dict(headers or {})
        if self._authorization:
            request_headers["Authorization"] = self._authorization
        request = self._client.build_request("GET", url, headers=request_headers)
        return await self._client.send(request, stream=stream, follow_redirects=True)

    async def _authenticate(self, challenge: str) -> str:
        scheme, params = _parse_challenge(challenge)

        if scheme == "basic":
            if not self._credentials:
                raise AcquisitionError(f"Registry {self._ref.host} requires credentials")
            user_pass = f"{self._credentials['username']}:{self._credentials['password']}"
            return "Basic " + base64.b64encode(user_pass.encode()).decode()

        if scheme != "bearer" or "realm" not in params:
            raise AcquisitionError(f"Unsupported registry auth challenge: {challenge!r}")

        query = {
            "service": params.get("service", ""),
            "scope": params.get("scope") or f"repository:{self._ref.repository}:pull",
        }
        auth = None
        if self._credentials:
            auth = (self._credentials["username"], self._credentials["password"])
        response = await self._client.get(
            params["realm"], params={k: v for k, v in query.items() if v}, auth=auth
        )
        response.raise_for_status()
        body = response.json()
        token = body.get("token") or body.get("access_token")
        if not token:
            raise AcquisitionError(f"Registry {self._ref.host} returned no token")
        return f"Bearer {token}"

    async def get_manifest(self, reference: str) -> tuple[dict[str, Any], str]:
        """Fetch a manifest, returning it with its content digest."""
        response = await self.request(
            f"{self._ref.base_url}/manifests/{reference}",
            headers={"Accept": MANIFEST_ACCEPT},
        )
        digest = response.headers.get("Docker-Content-Digest", "")
        if not digest and reference.startswith("sha256:"):
            digest = reference
        return response.json(), digest

    async def get_blob(self, digest: str) -> bytes:
        """Fetch a small blob (e.g. the image config) into memory."""
        response = await self.request(f"{self._ref.base_url}/blobs/{digest}")
        _verify_digest(digest, hashlib.sha256(response.content).hexdigest())
        return response.content

    async def download_blob(self, digest: str, target: Path) -> None:
        """Stream a blob to ``target``, verifying its digest."""
        hasher = hashlib.sha256()
        response = await self.request(f"{self._ref.base_url}/blobs/{digest}", stream=True)
        try:
            with open(target, "wb") as f:
                async for chunk in response.aiter_bytes():
                    hasher.update(chunk)
                    f.write(chunk)
        finally:
            await response.aclose()
        _verify_digest(digest, hasher.hexdigest())


def _verify_digest(digest: str, sha256_hex: str) -> None:
    algorithm, _, expected = digest.partition(":")
    if algorithm != "sha256":
        raise AcquisitionError(f"Unsupported digest algorithm in {digest}")
    if sha256_hex != expected:
        raise AcquisitionError(f"Digest mismatch for blob {digest}: got sha256:{sha256_hex}")


class ContainerLibAcquirer(ImageAcquirer):
    """Fetches and unpacks images straight from the registry, no daemon needed."""

    def __init__(
        self,
        dst_path: str = "",
        registry_cert_path: str = "",
        auths: AuthOptions | None = None,
        platform: str = DEFAULT_PLATFORM,
        chroot: bool = False,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.dst_path = dst_path
        self.registry_cert_path = registry_cert_path
        self.auths = auths or AuthOptions()
        self.platform = platform
        self.chroot = chroot
        self._timeout = timeout
        self._transport = transport

    def _make_client(self) -> httpx.AsyncClient:
        verify: ssl.SSLContext | bool = True
        if self.registry_cert_path:
            verify = ssl.create_default_context(cafile=self.registry_cert_path)
        return httpx.AsyncClient(timeout=self._timeout, verify=verify, transport=self._transport)

    async def acquire(self, source: str) -> AcquisitionResult:
        ref = ImageReference.parse(source)
        credentials = resolve_credentials(self.auths, ref.index)

        dst, created = prepare_destination(self.dst_path)
        logger.info("Fetching image %s from %s into %s", source, ref.host, dst)
        try:
            async with self._make_client() as client:
                session = RegistrySession(client, ref, credentials)
                metadata = await self._fetch(session, ref, source, dst)
        except (httpx.HTTPError, ValueError, OSError) as e:
            if created:
                remove_tree(dst)
            raise AcquisitionError(f"Unable to fetch image {source}: {e}") from e
        except (KeyError, TypeError, AttributeError) as e:
            if created:
                remove_tree(dst)
            raise AcquisitionError(f"Malformed registry response for {source}: {e!r}") from e
        except BaseException:
            if created:
                remove_tree(dst)
            raise

        scan_result = ScanResult(image_name=source, image_id=metadata.id)
        return AcquisitionResult(local_path=dst, image=metadata, scan_result=scan_result)

    async def _fetch(
        self, session: RegistrySession, ref: ImageReference, source: str, dst: str
    ) -> ImageMetadata:
        manifest, digest = await session.get_manifest(ref.reference)
        manifest, digest = await self._select_platform(session, manifest, digest, source)

        if manifest.get("schemaVersion") != 2 or "config" not in manifest:
            raise AcquisitionError(f"Unsupported manifest for {source}")

        config_digest = manifest["config"]["digest"]
        config = json.loads(await session.get_blob(config_digest))
        metadata = ImageMetadata.from_oci_config(config_digest, config, reference=source)
        if digest:
            metadata.repo_digests.append(f"{ref.index}/{ref.repository}@{digest}")

        layers = manifest.get("layers") or []
        with tempfile.TemporaryDirectory(prefix="image-inspector-layers-") as workdir:
            for index, layer in enumerate(layers, 1):
                media_type = layer.get("mediaType", "")
                if "zstd" in media_type:
                    raise AcquisitionError(f"Unsupported layer media type {media_type}")
                layer_digest = layer["digest"]
                logger.info("Fetching layer %d/%d %s", index, len(layers), layer_digest)
                archive = Path(workdir) / f"layer-{index}"
                await session.download_blob(layer_digest, archive)
                await asyncio.to_thread(
                    extract_archive, archive, dst, confine=self.chroot, whiteouts=True
                )
                archive.unlink()
        return metadata

    async def _select_platform(
        self,
        session: RegistrySession,
        manifest: dict[str, Any],
        digest: str,
        source: str,
    ) -> tuple[dict[str, Any], str]:
        if "manifests" not in manifest:
            return manifest, digest

        os_name, _, arch = self.platform.partition("/")
        arch, _, variant = arch.partition("/")
        for entry in manifest["manifests"]:
            platform = entry.get("platform") or {}
            if platform.get("os") != os_name or platform.get("architecture") != arch:
                continue
            if variant and platform.get("variant") != variant:
                continue
            logger.debug("Selected manifest %s for platform %s", entry["digest"], self.platform)
            return await session.get_manifest(entry["digest"])
        raise AcquisitionError(f"Image {source} has no manifest for platform {self.platform}")
