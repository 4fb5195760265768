from __future__ import annotations

import functools
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional, Sequence, TypeVar

from pakete.core.errors import DatabaseError
from pakete.domain.models import Author, PackageAuthorLink, PackageInfo, PackageRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")


@contextmanager
def database_errors(operation: str) -> Iterator[None]:
    """
    Map any failure raised inside the block to a `DatabaseError`.

    This is the single boundary through which datastore errors leave the
    storage layer. Errors that already are `DatabaseError` pass through.
    """
    try:
        yield
    except DatabaseError:
        raise
    except Exception as e:
        logger.error(f"[DatabaseError.{operation}] {type(e).__name__}: {e}")
        raise DatabaseError.from_exception(e, operation) from e


def wraps_database_errors(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    """Run an async datastore method inside `database_errors`."""

    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        with database_errors(func.__name__):
            return await func(*args, **kwargs)

    return wrapper


class DatabaseManager(ABC):
    """
    Abstract base class for the relational store.

    All operations are awaited and independently failable. Implementations
    raise `DatabaseError` for any underlying failure.
    """

    @abstractmethod
    def initialize(self) -> None:
        """Open the store and create the schema if needed."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release the underlying connection."""
        pass

    # -- packages ---------------------------------------------------------

    @abstractmethod
    async def create_packages(self, packages: Sequence[PackageRecord]) -> None:
        """Bulk insert package list entries."""
        pass

    @abstractmethod
    async def get_all_packages(
        self,
        limit: Optional[int] = None,
        pending_only: bool = False,
    ) -> List[PackageRecord]:
        """
        Retrieve package list entries.

        With `limit`, only the N most recently loaded entries are returned.
        With `pending_only`, entries that already have package info are skipped.
        """
        pass

    @abstractmethod
    async def get_all_packages_joined_info(self) -> List[Dict[str, Any]]:
        """Retrieve all packages that have package info, joined with it."""
        pass

    @abstractmethod
    async def search_packages_by_name(self, keyword: str) -> List[Dict[str, Any]]:
        """Case-insensitive substring search on the package search key."""
        pass

    # -- package info -----------------------------------------------------

    @abstractmethod
    async def create_package_info(self, package_id: int, info: PackageInfo) -> int:
        """
        Insert a package info row and point the owning package at it.

        Returns the new package info id.
        """
        pass

    # -- authors ----------------------------------------------------------

    @abstractmethod
    async def create_author(self, name: str, email: str = "") -> Author:
        """Insert a single author and return it with its id."""
        pass

    @abstractmethod
    async def create_authors(self, authors: Sequence[Author]) -> None:
        """Bulk insert authors."""
        pass

    @abstractmethod
    async def get_all_authors(self) -> List[Author]:
        """Retrieve every author."""
        pass

    # -- package / author links -------------------------------------------

    @abstractmethod
    async def create_package_authors(self, links: Sequence[PackageAuthorLink]) -> None:
        """Bulk insert package/author links."""
        pass

    @abstractmethod
    async def get_package_authors_by_info_ids(self, package_info_ids: Sequence[int]) -> List[Dict[str, Any]]:
        """
        Retrieve the authors linked to the given package info rows.

        Each entry has `name`, `email`, `role` and `package_info_id`.
        """
        pass
