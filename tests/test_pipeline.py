import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest

from pakete.core.errors import FetchError, NotFoundError
from pakete.domain.models import Author, PackageRecord, ParsedDescription, ParsedPackage
from pakete.services.cran import CranClient
from pakete.services.pipeline import IngestionPipeline

from conftest import build_archive

INDEX = (
    "Package: alpha\nVersion: 1.0\n\n"
    "Package: Beta\nVersion: 2.0\n\n"
    "Package: gamma\nVersion: 0.3\n"
)

DESCRIPTIONS = {
    "alpha": (
        "Package: alpha\n"
        "Title: Alpha Tools\n"
        "Author: Harry Potter [aut, cre], Ron Weasley [aut]\n"
        "Maintainer: Harry Potter <harry@gmail.com>\n"
        "Description: First package.\n"
        "Date/Publication: 2020-01-01 10:00:00\n"
    ),
    "Beta": (
        "Package: Beta\n"
        "Title: Beta\n"
        "    Utilities\n"
        "Author: Ron Weasley and Hermione Granger\n"
        "Maintainer: Hermione Granger <hermione@hogwarts.edu>\n"
        "Description: Second package.\n"
        "Date/Publication: 2020-02-02 10:00:00\n"
    ),
    "gamma": (
        "Package: gamma\n"
        "Title: Gamma\n"
        "Author: Neville Longbottom\n"
        "Maintainer: Neville Longbottom <neville@hogwarts.edu>\n"
        "Date/Publication: 2020-03-03 10:00:00\n"
    ),
}

VERSIONS = {"alpha": "1.0", "Beta": "2.0", "gamma": "0.3"}


def _handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path.endswith("/PACKAGES"):
        return httpx.Response(200, text=INDEX)
    for name, version in VERSIONS.items():
        if path.endswith(f"/{name}_{version}.tar.gz"):
            return httpx.Response(200, content=build_archive(name, DESCRIPTIONS[name]))
    return httpx.Response(404)


def _pipeline(config, db, handler=_handler) -> IngestionPipeline:
    client = CranClient(config, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    return IngestionPipeline(config, db, client)


def _links_by_package(db) -> dict:
    rows = asyncio.run(db.get_all_packages_joined_info())
    contacts = asyncio.run(db.get_package_authors_by_info_ids([r["package_info_id"] for r in rows]))
    result = {}
    for r in rows:
        mine = [c for c in contacts if c["package_info_id"] == r["package_info_id"]]
        result[r["package"]] = {
            "author": sorted(c["name"] for c in mine if c["role"] == "author"),
            "maintainer": [c["name"] for c in mine if c["role"] == "maintainer"],
        }
    return result


def test_end_to_end_run(config, db) -> None:
    parsed = asyncio.run(_pipeline(config, db).run(load_index=True))

    assert len(parsed) == 3

    authors = asyncio.run(db.get_all_authors())
    assert sorted(a.name for a in authors) == [
        "Harry Potter",
        "Hermione Granger",
        "Neville Longbottom",
        "Ron Weasley",
    ]
    emails = {a.name: a.email for a in authors}
    assert emails["Harry Potter"] == "harry@gmail.com"
    assert emails["Ron Weasley"] == ""

    assert _links_by_package(db) == {
        "alpha": {"author": ["Harry Potter", "Ron Weasley"], "maintainer": ["Harry Potter"]},
        "Beta": {"author": ["Hermione Granger", "Ron Weasley"], "maintainer": ["Hermione Granger"]},
        "gamma": {"author": ["Neville Longbottom"], "maintainer": ["Neville Longbottom"]},
    }

    info = {r["package"]: r for r in asyncio.run(db.get_all_packages_joined_info())}
    assert info["Beta"]["title"] == "Beta Utilities"
    assert info["alpha"]["publication"] == "2020-01-01 10:00:00"
    assert info["gamma"]["description"] is None

    # Archives are removed once parsed
    assert not config.archive_dir.exists()


def test_second_run_reuses_known_authors(config, db) -> None:
    asyncio.run(_pipeline(config, db).run(load_index=True))
    asyncio.run(_pipeline(config, db).run(load_index=True))

    assert len(asyncio.run(db.get_all_authors())) == 4
    assert len(asyncio.run(db.get_all_packages_joined_info())) == 6


def test_nothing_pending_raises_not_found(config, db) -> None:
    asyncio.run(_pipeline(config, db).run(load_index=True))

    with pytest.raises(NotFoundError):
        asyncio.run(_pipeline(config, db).run())


def test_load_index_with_empty_list_raises_not_found(config, db) -> None:
    pipeline = _pipeline(config, db)
    pipeline.client.get_package_list = AsyncMock(return_value=[])

    with pytest.raises(NotFoundError):
        asyncio.run(pipeline.load_index())


def test_failed_download_fails_the_run_before_persisting(config, db) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/gamma_0.3.tar.gz"):
            return httpx.Response(500)
        return _handler(request)

    with pytest.raises(FetchError):
        asyncio.run(_pipeline(config, db, handler).run(load_index=True))

    assert asyncio.run(db.get_all_authors()) == []
    assert asyncio.run(db.get_all_packages_joined_info()) == []


def test_download_runs_in_waves(config, db) -> None:
    config.download_batch_size = 2
    pipeline = _pipeline(config, db)

    in_flight = 0
    peak = 0

    async def fake_download(record: PackageRecord):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0)
        in_flight -= 1

    pipeline.client.download_package = fake_download
    records = [PackageRecord(id=i, name=f"p{i}", version="1") for i in range(5)]
    asyncio.run(pipeline.download_archives(records))

    assert peak == 2


def test_parse_without_download_dir_raises_not_found(config, db) -> None:
    records = [PackageRecord(id=1, name="alpha", version="1.0")]
    with pytest.raises(NotFoundError):
        _pipeline(config, db).parse_archives(records)


def test_missing_maintainer_email_skips_maintainer_link(config, db) -> None:
    asyncio.run(db.create_packages([PackageRecord(name="solo", version="1.0")]))
    config.archive_dir.mkdir(parents=True)
    (config.archive_dir / "solo_1.0.tar.gz").write_bytes(
        build_archive("solo", "Title: Solo\nAuthor: Luna Lovegood\nMaintainer: Luna Lovegood\n")
    )

    asyncio.run(_pipeline(config, db).parse())

    assert _links_by_package(db) == {"solo": {"author": ["Luna Lovegood"], "maintainer": []}}


def test_load_limit_bounds_processed_packages(config, db) -> None:
    config.load_limit = 1
    parsed = asyncio.run(_pipeline(config, db).run(load_index=True))

    assert [p.record.name for p in parsed.values()] == ["gamma"]


def test_failed_download_lets_the_wave_finish(config, db) -> None:
    pipeline = _pipeline(config, db)
    finished = []

    async def fake_download(record: PackageRecord):
        if record.name == "bad":
            raise FetchError("HTTP 500", {"status": 500})
        await asyncio.sleep(0.05)
        finished.append(record.name)

    pipeline.client.download_package = fake_download
    records = [PackageRecord(id=1, name="bad", version="1"), PackageRecord(id=2, name="slow", version="1")]

    with pytest.raises(FetchError):
        asyncio.run(pipeline.download_archives(records))

    assert finished == ["slow"]


def test_load_index_inserts_records_in_bounded_chunks(config) -> None:
    config.insert_chunk_size = 2
    db = AsyncMock()
    pipeline = _pipeline(config, db)
    records = [PackageRecord(name=f"p{i}", version="1") for i in range(5)]
    pipeline.client.get_package_list = AsyncMock(return_value=records)

    asyncio.run(pipeline.load_index())

    chunks = [list(call.args[0]) for call in db.create_packages.await_args_list]
    assert sorted(len(c) for c in chunks) == [1, 2, 2]
    assert sorted(r.name for c in chunks for r in c) == [r.name for r in records]


def test_links_are_flattened_and_inserted_in_bounded_chunks(config) -> None:
    config.insert_chunk_size = 2
    db = AsyncMock()
    db.create_package_info.side_effect = lambda package_id, info: package_id + 100
    pipeline = _pipeline(config, db)

    parsed = {
        1: ParsedPackage(
            record=PackageRecord(id=1, name="alpha", version="1.0"),
            parsed=ParsedDescription(
                authors=[Author(name="Harry Potter"), Author(name="Ron Weasley")],
                maintainer=Author(name="Harry Potter", email="harry@gmail.com"),
            ),
        ),
        2: ParsedPackage(
            record=PackageRecord(id=2, name="beta", version="2.0"),
            parsed=ParsedDescription(
                authors=[Author(name="Hermione Granger")],
                maintainer=Author(name="Hermione Granger", email="hermione@hogwarts.edu"),
            ),
        ),
    }
    author_ids = {"Harry Potter": 1, "Ron Weasley": 2, "Hermione Granger": 3}

    links = asyncio.run(pipeline.persist_package_info(parsed, author_ids))
    asyncio.run(pipeline.persist_links(links))

    chunks = [list(call.args[0]) for call in db.create_package_authors.await_args_list]
    assert sorted(len(c) for c in chunks) == [1, 2, 2]
    assert sorted((l.author_id, l.package_info_id, l.role) for c in chunks for l in c) == [
        (1, 101, "author"),
        (1, 101, "maintainer"),
        (2, 101, "author"),
        (3, 102, "author"),
        (3, 102, "maintainer"),
    ]
