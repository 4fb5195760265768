from __future__ import annotations

import io
import tarfile
from pathlib import Path

import pytest

from pakete.core.config import IndexerConfig
from pakete.storage.sqlite_db_manager import SqliteDatabaseManager


def build_archive(name: str, description: str, extra_members: dict[str, str] | None = None) -> bytes:
    """Return the bytes of a `.tar.gz` laid out like a CRAN source package."""
    members = {f"{name}/DESCRIPTION": description}
    members.update(extra_members or {})

    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for member_name, text in members.items():
            data = text.encode("utf-8")
            info = tarfile.TarInfo(name=member_name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


@pytest.fixture
def config(tmp_path: Path) -> IndexerConfig:
    return IndexerConfig(
        data_dir=tmp_path,
        db_path=tmp_path / "test.db",
        package_dir=tmp_path / "pkg",
        packages_url="https://cran.test/src/contrib/PACKAGES",
        archive_url_template="https://cran.test/src/contrib/{name}_{version}.tar.gz",
    )


@pytest.fixture
def db(config: IndexerConfig):
    manager = SqliteDatabaseManager(config.database_path)
    manager.initialize()
    yield manager
    manager.close()
