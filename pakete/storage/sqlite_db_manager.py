"""
SQLite implementation of the relational store.
"""
from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from pakete.storage.db_manager import DatabaseManager, database_errors, wraps_database_errors
from pakete.domain.models import Author, PackageAuthorLink, PackageInfo, PackageRecord

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 1000

SCHEMA = """
CREATE TABLE IF NOT EXISTS authors (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name VARCHAR(255) NOT NULL UNIQUE,
    email VARCHAR(255) NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS package_info (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title VARCHAR(255),
    description TEXT,
    publication VARCHAR(64)
);

CREATE TABLE IF NOT EXISTS packages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    package VARCHAR(255) NOT NULL,
    version VARCHAR(64) NOT NULL,
    search_name VARCHAR(255) NOT NULL,
    package_info_id INTEGER REFERENCES package_info(id) ON DELETE SET NULL
);
CREATE INDEX IF NOT EXISTS idx_packages_package_info_id ON packages(package_info_id);
CREATE INDEX IF NOT EXISTS idx_packages_search_name ON packages(search_name);

CREATE TABLE IF NOT EXISTS package_authors (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    type VARCHAR(16) NOT NULL,
    package_info_id INTEGER NOT NULL REFERENCES package_info(id) ON DELETE CASCADE,
    author_id INTEGER NOT NULL REFERENCES authors(id) ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS idx_package_authors_package_info_id ON package_authors(package_info_id);
CREATE INDEX IF NOT EXISTS idx_package_authors_author_id ON package_authors(author_id);
"""

_PACKAGE_INFO_COLUMNS = """
    packages.id,
    packages.package,
    packages.version,
    package_info.title,
    package_info.description,
    package_info.publication,
    packages.package_info_id
"""


def _chunks(items: Sequence[Any], size: int):
    for start in range(0, len(items), size):
        yield items[start:start + size]


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SqliteDatabaseManager(DatabaseManager):
    """
    Relational store backed by a single SQLite database file.

    Every write is its own unit of work: it commits on success and rolls
    back on failure. No transaction spans several calls.

    The methods are async to satisfy `DatabaseManager` but run sqlite3
    synchronously, so gathered calls execute one after another.
    """

    def __init__(self, db_path: Path, batch_size: int = DEFAULT_BATCH_SIZE):
        self.db_path = db_path
        self.batch_size = batch_size
        self.conn: Optional[sqlite3.Connection] = None

    def connect(self) -> sqlite3.Connection:
        """Open connection to the database."""
        if self.conn is None:
            if str(self.db_path) != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            logger.debug(f"Connecting to database: {self.db_path}")
            with database_errors("connect"):
                # The API serves requests from a worker thread.
                self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
                self.conn.row_factory = sqlite3.Row
                self.conn.execute("PRAGMA foreign_keys = ON")
        return self.conn

    def initialize(self) -> None:
        conn = self.connect()
        with database_errors("initialize"):
            conn.executescript(SCHEMA)
            conn.commit()
        logger.info(f"Database schema ready at {self.db_path}")

    def close(self) -> None:
        if self.conn:
            self.conn.close()
            self.conn = None

    # -- packages ---------------------------------------------------------

    @wraps_database_errors
    async def create_packages(self, packages: Sequence[PackageRecord]) -> None:
        conn = self.connect()
        for chunk in _chunks(list(packages), self.batch_size):
            with conn:
                conn.executemany(
                    "INSERT INTO packages (package, version, search_name) VALUES (?, ?, ?)",
                    [(p.name, p.version, p.search_key) for p in chunk],
                )

    @wraps_database_errors
    async def get_all_packages(
        self,
        limit: Optional[int] = None,
        pending_only: bool = False,
    ) -> List[PackageRecord]:
        query = "SELECT id, package, version, search_name, package_info_id FROM packages"
        if pending_only:
            query += " WHERE package_info_id IS NULL"
        params: tuple = ()
        if limit:
            query += " ORDER BY id DESC LIMIT ?"
            params = (limit,)
        else:
            query += " ORDER BY id"

        rows = self.connect().execute(query, params).fetchall()
        records = [
            PackageRecord(
                id=row["id"],
                name=row["package"],
                version=row["version"],
                search_key=row["search_name"],
                package_info_id=row["package_info_id"],
            )
            for row in rows
        ]
        # Most recent N, returned in load order
        if limit:
            records.reverse()
        return records

    @wraps_database_errors
    async def get_all_packages_joined_info(self) -> List[Dict[str, Any]]:
        rows = self.connect().execute(
            f"""
            SELECT {_PACKAGE_INFO_COLUMNS}
            FROM packages
            JOIN package_info ON packages.package_info_id = package_info.id
            ORDER BY packages.id
            """
        ).fetchall()
        return [dict(row) for row in rows]

    @wraps_database_errors
    async def search_packages_by_name(self, keyword: str) -> List[Dict[str, Any]]:
        pattern = f"%{_escape_like(keyword.lower())}%"
        rows = self.connect().execute(
            f"""
            SELECT {_PACKAGE_INFO_COLUMNS}
            FROM packages
            JOIN package_info ON packages.package_info_id = package_info.id
            WHERE packages.search_name LIKE ? ESCAPE '\\'
            ORDER BY packages.id
            """,
            (pattern,),
        ).fetchall()
        return [dict(row) for row in rows]

    # -- package info -----------------------------------------------------

    @wraps_database_errors
    async def create_package_info(self, package_id: int, info: PackageInfo) -> int:
        conn = self.connect()
        with conn:
            cursor = conn.execute(
                "INSERT INTO package_info (title, description, publication) VALUES (?, ?, ?)",
                (info.title, info.description, info.publication),
            )
            package_info_id = cursor.lastrowid
        with conn:
            conn.execute(
                "UPDATE packages SET package_info_id = ? WHERE id = ?",
                (package_info_id, package_id),
            )
        return package_info_id

    # -- authors ----------------------------------------------------------

    @wraps_database_errors
    async def create_author(self, name: str, email: str = "") -> Author:
        conn = self.connect()
        with conn:
            cursor = conn.execute(
                "INSERT INTO authors (name, email) VALUES (?, ?)",
                (name, email),
            )
        return Author(id=cursor.lastrowid, name=name, email=email)

    @wraps_database_errors
    async def create_authors(self, authors: Sequence[Author]) -> None:
        conn = self.connect()
        for chunk in _chunks(list(authors), self.batch_size):
            with conn:
                conn.executemany(
                    "INSERT INTO authors (name, email) VALUES (?, ?)",
                    [(a.name, a.email) for a in chunk],
                )

    @wraps_database_errors
    async def get_all_authors(self) -> List[Author]:
        rows = self.connect().execute("SELECT id, name, email FROM authors ORDER BY id").fetchall()
        return [Author(id=row["id"], name=row["name"], email=row["email"] or "") for row in rows]

    # -- package / author links -------------------------------------------

    @wraps_database_errors
    async def create_package_authors(self, links: Sequence[PackageAuthorLink]) -> None:
        conn = self.connect()
        for chunk in _chunks(list(links), self.batch_size):
            with conn:
                conn.executemany(
                    "INSERT INTO package_authors (author_id, package_info_id, type) VALUES (?, ?, ?)",
                    [(link.author_id, link.package_info_id, link.role) for link in chunk],
                )

    @wraps_database_errors
    async def get_package_authors_by_info_ids(self, package_info_ids: Sequence[int]) -> List[Dict[str, Any]]:
        ids = list(package_info_ids)
        if not ids:
            return []

        conn = self.connect()
        results: List[Dict[str, Any]] = []
        # Stay below SQLite's bound parameter limit
        for chunk in _chunks(ids, 500):
            placeholders = ", ".join("?" for _ in chunk)
            rows = conn.execute(
                f"""
                SELECT authors.name, authors.email, package_authors.type AS role,
                       package_authors.package_info_id
                FROM package_authors
                LEFT JOIN authors ON package_authors.author_id = authors.id
                WHERE package_authors.package_info_id IN ({placeholders})
                ORDER BY package_authors.id
                """,
                tuple(chunk),
            ).fetchall()
            results.extend(dict(row) for row in rows)
        return results
