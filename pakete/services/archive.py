"""
Read files out of downloaded package archives.
"""
from __future__ import annotations

import logging
import tarfile
from pathlib import Path

logger = logging.getLogger(__name__)


def read_archive_member(archive_path: Path, member_name: str) -> str:
    """
    Return the text of `member_name` inside a `.tar.gz` archive.

    Returns an empty string when the archive has no such member, so a missing
    DESCRIPTION simply parses to a record with no fields.
    """
    with tarfile.open(archive_path, "r:gz") as tar:
        try:
            member = tar.getmember(member_name)
        except KeyError:
            logger.warning(f"{member_name} not found in {archive_path.name}")
            return ""

        extracted = tar.extractfile(member)
        if extracted is None:
            logger.warning(f"{member_name} in {archive_path.name} is not a regular file")
            return ""

        with extracted:
            return extracted.read().decode("utf-8", errors="replace")
