"""Delivery of aggregated scan results to a collector endpoint."""

import logging
from pathlib import Path

import httpx

from imginspect.core.exceptions import PostError
from imginspect.core.models import ScanResult

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


def read_token(token_file: str) -> str:
    """Read the post token, trimmed. An unreadable file means no token."""
    if not token_file:
        return ""
    try:
        return Path(token_file).read_text(encoding="utf-8").strip()
    except OSError as e:
        logger.warning("Unable to read the %r token file: %s (no token will be used)", token_file, e)
        return ""


class ResultPoster:
    """POSTs a ScanResult as JSON, optionally with a ``token`` query parameter."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._client = client
        self._timeout = timeout

    async def post(self, scan_result: ScanResult, url: str, token_file: str = "") -> None:
        """Serialize and deliver ``scan_result``.

        Raises:
            PostError: serialization or delivery failed
        """
        try:
            payload = scan_result.to_json()
        except (TypeError, ValueError) as e:
            raise PostError(f"Unable to serialize scan results: {e}") from e

        params = {}
        token = read_token(token_file)
        if token:
            params["token"] = token

        logger.info("Posting results to %s", url)
        try:
            if self._client is not None:
                response = await self._send(self._client, url, payload, params)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await self._send(client, url, payload, params)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise PostError(f"Unable to post results to {url}: {e}") from e
        logger.debug("Results posted: %s", response.status_code)

    async def _send(
        self, client: httpx.AsyncClient, url: str, payload: str, params: dict[str, str]
    ) -> httpx.Response:
        return await client.post(
            url,
            content=payload,
            params=params,
            headers={"Content-Type": "application/json"},
        )
