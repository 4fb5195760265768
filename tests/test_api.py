import asyncio
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from pakete.core import dependencies
from pakete.core.dependencies import get_db_manager
from pakete.core.errors import DatabaseError
from pakete.domain.models import PackageAuthorLink, PackageInfo, PackageRecord
from pakete.main import app


def _seed(db) -> None:
    asyncio.run(db.create_packages([PackageRecord(name="abc", version="1.0.0"), PackageRecord(name="def", version="2.0.0")]))
    harry = asyncio.run(db.create_author("Harry Potter", "harry@gmail.com"))
    ron = asyncio.run(db.create_author("Ron Weasley"))

    links = []
    for pkg in asyncio.run(db.get_all_packages()):
        info_id = asyncio.run(
            db.create_package_info(
                pkg.id,
                PackageInfo(title=pkg.name.upper(), description=f"{pkg.name} package", publication="2020-01-01"),
            )
        )
        links.append(PackageAuthorLink(author_id=ron.id, package_info_id=info_id, role="author"))
        links.append(PackageAuthorLink(author_id=harry.id, package_info_id=info_id, role="maintainer"))
    asyncio.run(db.create_package_authors(links))


@pytest.fixture
def client(config, db):
    _seed(db)
    dependencies.configure(config)
    app.dependency_overrides[get_db_manager] = lambda: db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_search_returns_matching_package_only(client) -> None:
    response = client.get("/api/search", params={"q": "A"})

    assert response.status_code == 200
    packages = response.json()["packages"]
    assert len(packages) == 1
    assert packages[0] == {
        "id": packages[0]["id"],
        "name": "abc",
        "version": "1.0.0",
        "title": "ABC",
        "description": "abc package",
        "publication": "2020-01-01",
        "authors": [{"name": "Ron Weasley", "email": ""}],
        "maintainers": [{"name": "Harry Potter", "email": "harry@gmail.com"}],
    }


def test_search_without_match_returns_empty_list(client) -> None:
    response = client.get("/api/search", params={"q": "zzz"})
    assert response.status_code == 200
    assert response.json() == {"packages": []}


@pytest.mark.parametrize("params", [{}, {"q": ""}, {"q": "   "}])
def test_search_rejects_missing_keyword(client, params) -> None:
    response = client.get("/api/search", params=params)
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid search parameters"}


def test_list_packages(client) -> None:
    response = client.get("/api/packages")

    assert response.status_code == 200
    packages = response.json()["packages"]
    assert [p["name"] for p in packages] == ["abc", "def"]
    assert all(p["maintainers"] == [{"name": "Harry Potter", "email": "harry@gmail.com"}] for p in packages)


def test_list_authors(client) -> None:
    response = client.get("/api/authors")

    assert response.status_code == 200
    authors = response.json()["authors"]
    assert [(a["name"], a["email"]) for a in authors] == [
        ("Harry Potter", "harry@gmail.com"),
        ("Ron Weasley", ""),
    ]
    assert all(isinstance(a["id"], int) for a in authors)


def test_unknown_route_returns_not_found(client) -> None:
    response = client.get("/api/nope")
    assert response.status_code == 404
    assert response.json() == {"error": "Not Found"}


def test_health(client) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_database_failure_returns_500(config) -> None:
    dependencies.configure(config)
    broken = AsyncMock()
    broken.get_all_authors.side_effect = DatabaseError("OperationalError", "disk I/O error")
    app.dependency_overrides[get_db_manager] = lambda: broken
    try:
        with TestClient(app) as test_client:
            response = test_client.get("/api/authors")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 500
    assert response.json() == {"error": "Internal Server Error"}
