"""
Process-wide configuration.

`IndexerConfig.load()` is called once at process entry (CLI command or API
startup) and the resulting object is passed explicitly to whatever needs it.
Values come from, in increasing priority: model defaults, an optional YAML file
named by `PAKETE_CONFIG`, and environment variables.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from pydantic import BaseModel, Field

CONFIG_FILE_ENV_VAR = "PAKETE_CONFIG"
DATA_ROOT_ENV_VAR = "PAKETE_DATA_DIR"

# Resolve repository root (project root, not the Python package root)
_REPO_ROOT = Path(__file__).resolve().parents[2]
_DEFAULT_DATA_DIR = _REPO_ROOT / "data"

# environment variable -> config field
ENV_OVERRIDES: Dict[str, str] = {
    DATA_ROOT_ENV_VAR: "data_dir",
    "PAKETE_DB_PATH": "db_path",
    "PAKETE_PACKAGE_DIR": "package_dir",
    "CRAN_PACKAGES_URL": "packages_url",
    "CRAN_ARCHIVE_URL": "archive_url_template",
    "CRAN_PACKAGE_LIST_MAX": "max_items",
    "PAKETE_LOAD_LIMIT": "load_limit",
    "HOST": "host",
    "PORT": "port",
}


class IndexerConfig(BaseModel):
    """Settings for the ingestion pipeline, the CRAN client and the API server."""

    data_dir: Path = Field(
        default=_DEFAULT_DATA_DIR,
        description="Root directory for the database and downloaded archives.",
    )
    db_path: Optional[Path] = Field(
        default=None,
        description="SQLite database file. Defaults to <data_dir>/pakete.db.",
    )
    package_dir: Optional[Path] = Field(
        default=None,
        description="Where archives are downloaded. Defaults to <data_dir>/pkg.",
    )
    packages_url: str = Field(
        default="https://cran.r-project.org/src/contrib/PACKAGES",
        description="URL of the CRAN package index.",
    )
    archive_url_template: str = Field(
        default="https://cran.r-project.org/src/contrib/{name}_{version}.tar.gz",
        description="Archive download URL, formatted with `name` and `version`.",
    )
    description_member: str = Field(
        default="DESCRIPTION",
        description="Archive member holding the package metadata, relative to the package folder.",
    )
    max_items: int = Field(
        default=50,
        ge=1,
        description="Maximum number of packages taken from the index per load.",
    )
    load_limit: Optional[int] = Field(
        default=None,
        ge=1,
        description="Only process the N most recently loaded packages. None means all.",
    )
    download_batch_size: int = Field(
        default=10,
        ge=1,
        description="Number of archives downloaded concurrently per wave.",
    )
    insert_chunk_size: int = Field(
        default=1000,
        ge=1,
        le=1000,
        description="Maximum rows per bulk insert.",
    )
    request_timeout_seconds: float = Field(default=60.0, gt=0)
    cleanup_archives: bool = Field(
        default=True,
        description="Delete the archive directory after a successful parse.",
    )
    host: str = "localhost"
    port: int = 3001

    @property
    def database_path(self) -> Path:
        return self.db_path or self.data_dir / "pakete.db"

    @property
    def archive_dir(self) -> Path:
        return self.package_dir or self.data_dir / "pkg"

    @classmethod
    def load(
        cls,
        config_file: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
        **overrides: Any,
    ) -> "IndexerConfig":
        """Build the configuration from YAML file, environment and explicit overrides."""
        env = os.environ if environ is None else environ
        values: Dict[str, Any] = {}

        path = config_file or (Path(env[CONFIG_FILE_ENV_VAR]).expanduser() if env.get(CONFIG_FILE_ENV_VAR) else None)
        if path is not None:
            raw = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
            if not isinstance(raw, dict):
                raise ValueError(f"Config file {path} must contain a mapping")
            values.update(raw)

        for var, field_name in ENV_OVERRIDES.items():
            if env.get(var):
                values[field_name] = env[var]

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
