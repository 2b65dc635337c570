"""OSV.dev API client for vulnerability data.

OSV covers both language ecosystems (PyPI, npm, ...) and distribution
packages (Debian, Ubuntu, Alpine), which is what an image carries.
"""

import asyncio
from dataclasses import dataclass
from typing import Any

import httpx

from imginspect.core.exceptions import DatabaseError
from imginspect.core.models import Package, Severity

OSV_API_URL = "https://api.osv.dev/v1"
DEFAULT_TIMEOUT = 30.0
DEFAULT_CONCURRENCY = 10


@dataclass
class OSVVulnerability:
    """Parsed OSV vulnerability data."""

    id: str
    summary: str
    details: str
    severity: Severity
    cvss_score: float
    fixed_version: str
    aliases: list[str]
    references: list[str]


class OSVClient:
    """Client for OSV.dev vulnerability database."""

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        base_url: str = OSV_API_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._base_url = base_url
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                headers={"Content-Type": "application/json"},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def query_package(self, package: Package) -> list[OSVVulnerability]:
        """Query vulnerabilities for a specific package version.

        Follows ``next_page_token`` until OSV has returned every advisory.
        """
        client = await self._get_client()
        payload: dict[str, Any] = {
            "version": package.version,
            "package": {"name": package.name, "ecosystem": package.ecosystem},
        }

        vulns: list[OSVVulnerability] = []
        while True:
            try:
                response = await client.post("/query", json=payload)
                response.raise_for_status()
                data = response.json()
            except httpx.HTTPError as e:
                raise DatabaseError(f"OSV API error for {package.name}: {e}") from e
            except ValueError as e:
                raise DatabaseError(f"Invalid OSV response for {package.name}: {e}") from e

            vulns.extend(self._parse_vulnerability(v) for v in data.get("vulns", []))
            page_token = data.get("next_page_token")
            if not page_token:
                return vulns
            payload["page_token"] = page_token

    async def query_batch(
        self, packages: list[Package], concurrency: int = DEFAULT_CONCURRENCY
    ) -> dict[Package, list[OSVVulnerability]]:
        """Query vulnerabilities for multiple packages.

        Args:
            packages: List of packages to query
            concurrency: Max concurrent requests

        Returns:
            Dict mapping packages to their vulnerabilities, in input order
        """
        semaphore = asyncio.Semaphore(concurrency)

        async def query_with_limit(pkg: Package) -> list[OSVVulnerability]:
            async with semaphore:
                return await self.query_package(pkg)

        unique = list(dict.fromkeys(packages))
        try:
            # a failed query cancels the remaining ones
            async with asyncio.TaskGroup() as group:
                tasks = [group.create_task(query_with_limit(pkg)) for pkg in unique]
        except ExceptionGroup as eg:
            raise eg.exceptions[0] from None
        return {pkg: task.result() for pkg, task in zip(unique, tasks)}

    def _parse_vulnerability(self, data: dict[str, Any]) -> OSVVulnerability:
        """Parse OSV API response into structured data."""
        severity = Severity.UNKNOWN
        cvss_score = 0.0

        for sev in data.get("severity", []):
            if sev.get("type") not in ("CVSS_V3", "CVSS_V4"):
                continue
            score = sev.get("score", "")
            try:
                # plain scores only, vectors ("CVSS:3.1/AV:N/...") carry none
                cvss_score = float(score)
            except ValueError:
                continue
            severity = Severity.from_cvss(cvss_score)
            break

        # Fall back to the severity label of the ecosystem database
        if severity == Severity.UNKNOWN:
            db_specific = data.get("database_specific") or {}
            severity = Severity.from_label(str(db_specific.get("severity", "")))

        fixed_version = ""
        for affected in data.get("affected", []):
            for range_info in affected.get("ranges", []):
                for event in range_info.get("events", []):
                    if "fixed" in event:
                        fixed_version = event["fixed"]

        references = [ref["url"] for ref in data.get("references", []) if ref.get("url")]

        return OSVVulnerability(
            id=data.get("id", ""),
            summary=data.get("summary", ""),
            details=data.get("details", ""),
            severity=severity,
            cvss_score=cvss_score,
            fixed_version=fixed_version,
            aliases=list(data.get("aliases", [])),
            references=references,
        )
