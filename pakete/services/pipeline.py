"""
Ingestion pipeline: CRAN index -> archives -> DESCRIPTION -> relational store.

Stages run strictly one after another and each one materializes its whole
output before the next starts. Any failure aborts the run.
"""
from __future__ import annotations

import asyncio
import logging
import shutil
import time
from typing import Dict, List, Optional, Sequence

from pakete.core.config import IndexerConfig
from pakete.core.errors import NotFoundError
from pakete.domain.models import PackageAuthorLink, PackageRecord, ParsedPackage
from pakete.domain.parsers import parse_description
from pakete.domain.reconciler import AuthorReconciler
from pakete.services.archive import read_archive_member
from pakete.services.cran import CranClient
from pakete.storage.db_manager import DatabaseManager

logger = logging.getLogger(__name__)


def _chunked(items: Sequence, size: int) -> List[Sequence]:
    return [items[i:i + size] for i in range(0, len(items), size)]


class IngestionPipeline:
    """Runs the load, fetch, parse, reconcile and persist stages for one batch."""

    def __init__(self, config: IndexerConfig, db: DatabaseManager, client: CranClient):
        self.config = config
        self.db = db
        self.client = client
        self.reconciler = AuthorReconciler(db, chunk_size=config.insert_chunk_size)

    # -- stage 0: package index ---------------------------------------------

    async def load_index(self) -> List[PackageRecord]:
        """Fetch the CRAN package list and save it to the `packages` table."""
        logger.info("[Loader] Retrieving packages list from CRAN server...")
        records = await self.client.get_package_list()
        logger.info(f"[Loader] Retrieved {len(records)} packages")

        if not records:
            raise NotFoundError("No package list retrieved from CRAN")

        logger.info("[Loader] Saving packages to database...")
        await asyncio.gather(
            *(self.db.create_packages(chunk) for chunk in _chunked(records, self.config.insert_chunk_size))
        )
        logger.info("[Loader] Successfully saved packages to database")
        return records

    # -- stage 1: load ------------------------------------------------------

    async def load_packages(self) -> List[PackageRecord]:
        """Read the packages that do not have package info yet."""
        logger.info("Retrieving packages list from database...")
        records = await self.db.get_all_packages(limit=self.config.load_limit, pending_only=True)
        if not records:
            raise NotFoundError("No package list saved in database.")
        logger.info(f"Loaded {len(records)} packages")
        return records

    # -- stage 2: fetch -----------------------------------------------------

    async def download_archives(self, records: Sequence[PackageRecord]) -> None:
        """Download archives in waves of `download_batch_size` concurrent requests."""
        logger.info("[Downloader] Downloading packages from CRAN...")
        count = 0
        for wave in _chunked(records, self.config.download_batch_size):
            # Let the whole wave settle before failing the stage
            results = await asyncio.gather(
                *(self.client.download_package(r) for r in wave),
                return_exceptions=True,
            )
            errors = [r for r in results if isinstance(r, BaseException)]
            if errors:
                logger.error(f"[Downloader] {len(errors)} of {len(wave)} downloads failed in this wave")
                raise errors[0]
            count += len(wave)
            logger.info(f"[Downloader] Downloaded {count} packages")
        logger.info("[Downloader] Successfully downloaded packages")

    # -- stage 3: parse -----------------------------------------------------

    def parse_archives(self, records: Sequence[PackageRecord]) -> Dict[int, ParsedPackage]:
        """Parse the DESCRIPTION of every downloaded archive, keyed by package id."""
        package_dir = self.config.archive_dir
        if not package_dir.exists():
            raise NotFoundError(f"Downloaded packages directory {package_dir} does not exist")

        logger.info("[Parser] Parsing DESCRIPTION files...")
        parsed: Dict[int, ParsedPackage] = {}
        for record in records:
            contents = read_archive_member(
                self.client.archive_path(record),
                f"{record.name}/{self.config.description_member}",
            )
            parsed[record.id] = ParsedPackage(record=record, parsed=parse_description(contents))
        logger.info(f"[Parser] Parsed {len(parsed)} DESCRIPTION files")
        return parsed

    # -- stage 4: reconcile -------------------------------------------------

    async def reconcile_authors(self, parsed: Dict[int, ParsedPackage]) -> Dict[str, int]:
        logger.info("[Parser] Aggregating authors & maintainers to save to database...")
        author_ids = await self.reconciler.reconcile(p.parsed for p in parsed.values())
        logger.info("[Parser] Successfully saved authors to database")
        return author_ids

    # -- stage 5: package info ----------------------------------------------

    async def _persist_one(self, package: ParsedPackage, author_ids: Dict[str, int]) -> List[PackageAuthorLink]:
        package_info_id = await self.db.create_package_info(package.record.id, package.parsed.to_package_info())

        links = [
            PackageAuthorLink(
                author_id=author_ids[author.name.strip()],
                package_info_id=package_info_id,
                role="author",
            )
            for author in package.parsed.authors
        ]

        maintainer = package.parsed.maintainer
        if maintainer is not None and maintainer.name.strip():
            links.append(
                PackageAuthorLink(
                    author_id=author_ids[maintainer.name.strip()],
                    package_info_id=package_info_id,
                    role="maintainer",
                )
            )
        else:
            logger.warning(f"[Parser] No maintainer found for {package.record.name} {package.record.version}")

        return links

    async def persist_package_info(
        self,
        parsed: Dict[int, ParsedPackage],
        author_ids: Dict[str, int],
    ) -> List[PackageAuthorLink]:
        """Insert package info rows, attach them to packages and build the link rows."""
        logger.info("[Parser] Saving package info & updating packages...")
        per_package = await asyncio.gather(*(self._persist_one(p, author_ids) for p in parsed.values()))
        logger.info("[Parser] Successfully saved package info & updated packages")
        return [link for links in per_package for link in links]

    # -- stage 6: links -----------------------------------------------------

    async def persist_links(self, links: Sequence[PackageAuthorLink]) -> None:
        logger.info("[Parser] Saving package and author/maintainer mappings...")
        await asyncio.gather(
            *(self.db.create_package_authors(chunk) for chunk in _chunked(links, self.config.insert_chunk_size))
        )
        logger.info(f"[Parser] Successfully saved {len(links)} mappings")

    def cleanup(self) -> None:
        if self.config.cleanup_archives and self.config.archive_dir.exists():
            shutil.rmtree(self.config.archive_dir)
            logger.info(f"Removed downloaded packages in {self.config.archive_dir}")

    # -- runs ---------------------------------------------------------------

    async def download(self) -> List[PackageRecord]:
        """Load pending packages and download their archives."""
        records = await self.load_packages()
        await self.download_archives(records)
        return records

    async def parse(self, records: Optional[Sequence[PackageRecord]] = None) -> Dict[int, ParsedPackage]:
        """Parse downloaded archives and persist package info, authors and links."""
        if records is None:
            records = await self.load_packages()

        parsed = self.parse_archives(records)
        author_ids = await self.reconcile_authors(parsed)
        links = await self.persist_package_info(parsed, author_ids)
        await self.persist_links(links)
        self.cleanup()
        return parsed

    async def run(self, load_index: bool = False) -> Dict[int, ParsedPackage]:
        """Run every stage once. With `load_index`, refresh the package list first."""
        start = time.perf_counter()
        if load_index:
            await self.load_index()
        records = await self.download()
        parsed = await self.parse(records)
        logger.info(f"Ingested {len(parsed)} packages in {time.perf_counter() - start:.3f}s")
        return parsed
