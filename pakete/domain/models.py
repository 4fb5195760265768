"""
Pydantic models for the package index.

This module defines the records that flow through the ingestion pipeline and
the rows persisted in the relational store:
- Package list entries scraped from the CRAN index
- Package info parsed from DESCRIPTION files
- Authors, maintainers and their links to package info

All models use Pydantic for validation and serialization.
"""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field, model_validator


# Role of an author relative to a package info row
AuthorRole = Literal["author", "maintainer"]


# ---------------------------------------------------------------------------
# Package Models
# ---------------------------------------------------------------------------


class PackageRecord(BaseModel):
    """
    A single package entry from the CRAN package list.

    `search_key` is the lowercase package name used for case-insensitive
    substring search. It is derived from `name` when not provided.

    Persisted in: `packages`
    """

    id: Optional[int] = Field(default=None, description="Primary key once persisted.")
    name: str = Field(description="Package name as listed in the index (e.g. 'ggplot2').")
    version: str = Field(description="Package version as listed in the index.")
    search_key: str = Field(default="", description="Lowercase form of the package name.")
    package_info_id: Optional[int] = Field(
        default=None,
        description="Reference to the package_info row, set once after parsing.",
    )

    @model_validator(mode="after")
    def _derive_search_key(self) -> "PackageRecord":
        if not self.search_key:
            self.search_key = self.name.lower()
        return self

    @property
    def archive_name(self) -> str:
        return f"{self.name}_{self.version}.tar.gz"


class PackageInfo(BaseModel):
    """
    Descriptive metadata extracted from a package DESCRIPTION file.

    Persisted in: `package_info`
    """

    id: Optional[int] = None
    title: Optional[str] = None
    description: Optional[str] = None
    publication: Optional[str] = Field(
        default=None,
        description="Raw `Date/Publication` value from the DESCRIPTION file.",
    )


# ---------------------------------------------------------------------------
# Author Models
# ---------------------------------------------------------------------------


class Author(BaseModel):
    """
    A package author or maintainer.

    Authors are deduplicated by trimmed, case-sensitive name. `email` is an
    empty string when unknown (only maintainers usually carry one).

    Persisted in: `authors`
    """

    id: Optional[int] = None
    name: str
    email: str = ""


class PackageAuthorLink(BaseModel):
    """
    Many-to-many association between an author and a package info row.

    Persisted in: `package_authors`
    """

    author_id: int
    package_info_id: int
    role: AuthorRole


class ParsedDescription(BaseModel):
    """Structured fields read from one DESCRIPTION file. Missing fields stay None."""

    title: Optional[str] = None
    description: Optional[str] = None
    publication: Optional[str] = None
    authors: List[Author] = Field(default_factory=list)
    maintainer: Optional[Author] = None

    def to_package_info(self) -> PackageInfo:
        return PackageInfo(
            title=self.title,
            description=self.description,
            publication=self.publication,
        )


class ParsedPackage(BaseModel):
    """A package record paired with its parsed DESCRIPTION."""

    record: PackageRecord
    parsed: ParsedDescription


# ---------------------------------------------------------------------------
# API Response Models
# ---------------------------------------------------------------------------


class PackageContact(BaseModel):
    """Author or maintainer entry as returned by the API."""

    name: str
    email: str = ""


class PackageSummary(BaseModel):
    """Package entry returned by `/api/packages` and `/api/search`."""

    id: int
    name: str
    version: str
    title: Optional[str] = None
    description: Optional[str] = None
    publication: Optional[str] = None
    authors: List[PackageContact] = Field(default_factory=list)
    maintainers: List[PackageContact] = Field(default_factory=list)
