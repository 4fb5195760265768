"""
Query the CRAN server: package index and package archives.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import aiofiles
import httpx

from pakete.core.config import IndexerConfig
from pakete.core.errors import FetchError
from pakete.domain.models import PackageRecord
from pakete.domain.parsers import parse_package_index

logger = logging.getLogger(__name__)


class CranClient:
    """
    Downloads the CRAN package list and package archives.

    Non-200 responses, empty bodies and transport errors are raised as
    `FetchError`. Nothing is retried.
    """

    def __init__(self, config: IndexerConfig, http_client: Optional[httpx.AsyncClient] = None):
        self.packages_url = config.packages_url
        self.archive_url_template = config.archive_url_template
        self.package_dir = config.archive_dir
        self.max_items = config.max_items
        self._client = http_client
        self._owns_client = http_client is None
        self._timeout = config.request_timeout_seconds

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=True, timeout=self._timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "CranClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def get_download_link(self, name: str, version: str) -> str:
        return self.archive_url_template.format(name=name, version=version)

    def archive_path(self, record: PackageRecord) -> Path:
        return self.package_dir / record.archive_name

    async def _get_package_index_text(self) -> str:
        where = "[CranClient.get_package_index]"
        try:
            response = await self.client.get(self.packages_url)
        except httpx.HTTPError as e:
            raise self._fail(
                f"{where} Request to CRAN server failed",
                {"errorType": type(e).__name__, "errorMsg": str(e)},
            ) from e

        if response.status_code != 200:
            raise self._fail(f"{where} CRAN server returned HTTP {response.status_code}", {"status": response.status_code})
        if not response.text:
            raise self._fail(f"{where} No response data returned", {"status": response.status_code})

        return response.text

    async def get_package_list(self) -> List[PackageRecord]:
        """Fetch the package index and parse at most `max_items` entries."""
        text = await self._get_package_index_text()
        return list(parse_package_index(text, max_items=self.max_items))

    async def download_package(self, record: PackageRecord) -> Path:
        """
        Stream a package archive to `<package_dir>/<name>_<version>.tar.gz`.

        A partial file is removed when the download fails.
        """
        where = "[CranClient.download_package]"
        self.package_dir.mkdir(parents=True, exist_ok=True)
        target_path = self.archive_path(record)
        url = self.get_download_link(record.name, record.version)
        logger.debug(f"Downloading {record.name} {record.version} from {url}")

        written = 0
        try:
            async with self.client.stream("GET", url) as response:
                if response.status_code != 200:
                    raise self._fail(
                        f"{where} CRAN server returned HTTP {response.status_code} for {record.archive_name}",
                        {"status": response.status_code},
                    )
                async with aiofiles.open(target_path, "wb") as f:
                    async for chunk in response.aiter_bytes():
                        await f.write(chunk)
                        written += len(chunk)
        except httpx.HTTPError as e:
            target_path.unlink(missing_ok=True)
            raise self._fail(
                f"{where} Download of {record.archive_name} failed",
                {"errorType": type(e).__name__, "errorMsg": str(e)},
            ) from e
        except BaseException:
            # Includes FetchError and cancellation of the surrounding wave
            target_path.unlink(missing_ok=True)
            raise

        if written == 0:
            target_path.unlink(missing_ok=True)
            raise self._fail(f"{where} No response data returned for {record.archive_name}", {"status": 200})

        return target_path

    @staticmethod
    def _fail(details: str, response: dict) -> FetchError:
        logger.error(f"[CranError] Details: {details} | Response: {response}")
        return FetchError(details, response)
