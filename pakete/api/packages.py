"""
Read-only package API: search, package listing and author listing.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse

from pakete.core.dependencies import get_db_manager
from pakete.core.errors import DatabaseError
from pakete.domain.models import PackageContact, PackageSummary
from pakete.storage.db_manager import DatabaseManager

logger = logging.getLogger(__name__)
router = APIRouter()


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


async def _attach_authors(db: DatabaseManager, rows: List[Dict[str, Any]]) -> List[dict]:
    """
    Fetch the authors and maintainers of the given package rows and build
    the API representation of each package.
    """
    package_info_ids = [r["package_info_id"] for r in rows]
    contacts = await db.get_package_authors_by_info_ids(package_info_ids)

    by_info: Dict[int, Dict[str, List[PackageContact]]] = {
        pid: {"author": [], "maintainer": []} for pid in package_info_ids
    }
    for c in contacts:
        group = by_info.get(c["package_info_id"])
        if group is None or c["role"] not in group:
            continue
        group[c["role"]].append(PackageContact(name=c["name"] or "", email=c["email"] or ""))

    return [
        PackageSummary(
            id=r["id"],
            name=r["package"],
            version=r["version"],
            title=r["title"],
            description=r["description"],
            publication=r["publication"],
            authors=by_info[r["package_info_id"]]["author"],
            maintainers=by_info[r["package_info_id"]]["maintainer"],
        ).model_dump()
        for r in rows
    ]


# ---------------------------------------------------------------------------
# GET /api/search
# ---------------------------------------------------------------------------

@router.get("/search")
async def search_packages(
    q: Optional[str] = Query(default=None),
    db: DatabaseManager = Depends(get_db_manager),
) -> JSONResponse:
    """Case-insensitive substring search on package names."""
    if not q or not q.strip():
        return _error(status.HTTP_400_BAD_REQUEST, "Invalid search parameters")

    try:
        rows = await db.search_packages_by_name(q)
        packages = await _attach_authors(db, rows) if rows else []
    except DatabaseError as e:
        logger.error(f"[api.search_packages] Encountered error: {e}")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error")

    return JSONResponse(status_code=status.HTTP_200_OK, content={"packages": packages})


# ---------------------------------------------------------------------------
# GET /api/packages
# ---------------------------------------------------------------------------

@router.get("/packages")
async def list_packages(db: DatabaseManager = Depends(get_db_manager)) -> JSONResponse:
    """All packages that have been parsed, with their authors and maintainers."""
    try:
        rows = await db.get_all_packages_joined_info()
        packages = await _attach_authors(db, rows) if rows else []
    except DatabaseError as e:
        logger.error(f"[api.list_packages] Encountered error: {e}")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error")

    return JSONResponse(status_code=status.HTTP_200_OK, content={"packages": packages})


# ---------------------------------------------------------------------------
# GET /api/authors
# ---------------------------------------------------------------------------

@router.get("/authors")
async def list_authors(db: DatabaseManager = Depends(get_db_manager)) -> JSONResponse:
    try:
        authors = await db.get_all_authors()
    except DatabaseError as e:
        logger.error(f"[api.list_authors] Encountered error: {e}")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error")

    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content={"authors": [a.model_dump() for a in authors]},
    )
