"""
Author reconciliation.

Authors and maintainers discovered across one ingestion batch are deduplicated
by trimmed name, the unknown ones are inserted in bounded chunks, and the
authors table is read back to resolve every name to its id.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Dict, Iterable, List

from pakete.domain.models import Author, ParsedDescription
from pakete.storage.db_manager import DatabaseManager

logger = logging.getLogger(__name__)

MAX_CHUNK_SIZE = 1000


def _chunked(items: List[Author], size: int) -> List[List[Author]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


class AuthorReconciler:
    """Deduplicates a batch of authors against each other and the datastore."""

    def __init__(self, db: DatabaseManager, chunk_size: int = MAX_CHUNK_SIZE):
        if chunk_size <= 0 or chunk_size > MAX_CHUNK_SIZE:
            raise ValueError(f"chunk_size must be between 1 and {MAX_CHUNK_SIZE}, got {chunk_size}")
        self.db = db
        self.chunk_size = chunk_size

    @staticmethod
    def collect(batch: Iterable[ParsedDescription]) -> Dict[str, Author]:
        """
        Union all authors and maintainers of a batch, keyed by trimmed name.

        The first occurrence of a name wins, but an entry without an email is
        upgraded by a later one that has it. Empty names are skipped.
        """
        distinct: Dict[str, Author] = {}
        for parsed in batch:
            people = list(parsed.authors)
            if parsed.maintainer is not None:
                people.append(parsed.maintainer)

            for person in people:
                name = person.name.strip()
                if not name:
                    continue
                email = person.email.strip()
                known = distinct.get(name)
                if known is None:
                    distinct[name] = Author(name=name, email=email)
                elif not known.email and email:
                    known.email = email
        return distinct

    async def reconcile(self, batch: Iterable[ParsedDescription]) -> Dict[str, int]:
        """
        Persist the batch's unknown authors and return a name -> id map.

        The map covers every author in the datastore, which includes every
        author referenced by the batch. A failing chunk insert propagates;
        chunks that committed before it stay committed.
        """
        distinct = self.collect(batch)

        existing = {a.name for a in await self.db.get_all_authors()}
        new_authors = [a for name, a in distinct.items() if name not in existing]
        logger.info(
            f"Reconciling {len(distinct)} distinct authors: "
            f"{len(new_authors)} new, {len(distinct) - len(new_authors)} already known"
        )

        if new_authors:
            await asyncio.gather(
                *(self.db.create_authors(chunk) for chunk in _chunked(new_authors, self.chunk_size))
            )

        # Bulk inserts do not report per-row ids, so read the table back.
        return {a.name: a.id for a in await self.db.get_all_authors()}
