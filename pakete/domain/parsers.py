"""
Parsers for the CRAN text formats.

Both the package index (`PACKAGES`) and the per-package `DESCRIPTION` file are
plain text made of `Key: value` lines. Values may continue on following lines
that start with whitespace.
"""
from __future__ import annotations

import re
from typing import Callable, Iterator, List, Optional, Tuple

from pakete.domain.models import Author, PackageRecord, ParsedDescription


_BRACKETED = re.compile(r"\[.*?\]")
_ANGLED = re.compile(r"<.*?>")
_PARENTHESIZED = re.compile(r"\(.*?\)")
_TRAILING_EMAIL = re.compile(r"(<[^<>]*>)\s*$")
_EMAIL_STRIP = re.compile(r"[<>'\"]+")


def _field_value(line: str) -> str:
    return line[line.index(":") + 1:].strip()


# ---------------------------------------------------------------------------
# Package index
# ---------------------------------------------------------------------------


def parse_package_index(text: str, max_items: Optional[int] = None) -> Iterator[PackageRecord]:
    """
    Yield `PackageRecord`s from the CRAN package index text.

    A `Package:` line starts a record and the next `Version:` line completes
    and emits it. A `Package:` line that is never followed by a `Version:`
    line is dropped. Stops once `max_items` records have been emitted.
    """
    if max_items is not None and max_items <= 0:
        return

    name: Optional[str] = None
    emitted = 0

    for line in text.split("\n"):
        if line.startswith("Package:"):
            name = _field_value(line)
        elif line.startswith("Version:"):
            if name is None:
                continue
            yield PackageRecord(name=name, version=_field_value(line))
            name = None
            emitted += 1
            if max_items is not None and emitted >= max_items:
                return


# ---------------------------------------------------------------------------
# DESCRIPTION file
# ---------------------------------------------------------------------------


def look_ahead(lines: List[str], index: int, value: str) -> Tuple[int, str]:
    """
    Join continuation lines onto `value`.

    A line starting with whitespace continues the field found at `index`.
    Returns the index of the last consumed line and the joined value.
    """
    j = index + 1
    while j < len(lines) and lines[j][:1] in (" ", "\t"):
        continuation = lines[j].strip()
        if continuation:
            value = f"{value} {continuation}" if value else continuation
        j += 1
    return j - 1, value


def sanitize_authors(author_text: str) -> List[Author]:
    """
    Split a free-form `Author:` value into individual authors.

    Anything inside `[]`, `<>` or `()` is dropped, ` and ` and `&` become
    separators, and every non-empty comma-separated piece is one author.
    """
    cleaned = _BRACKETED.sub("", author_text)
    cleaned = _ANGLED.sub("", cleaned)
    cleaned = _PARENTHESIZED.sub("", cleaned)
    cleaned = cleaned.replace(" and ", ",").replace("&", ",")

    return [Author(name=piece.strip()) for piece in cleaned.split(",") if piece.strip()]


def extract_name_and_email(maintainer_text: str) -> Author:
    """
    Split `Some Name <some@email.com>` into name and email.

    Returns an author with empty name and email when there is no trailing
    `<...>` token.
    """
    match = _TRAILING_EMAIL.search(maintainer_text)
    if not match:
        return Author(name="", email="")

    token = match.group(1)
    return Author(
        name=maintainer_text[: match.start(1)].strip(),
        email=_EMAIL_STRIP.sub("", token).strip(),
    )


def _set_title(desc: ParsedDescription, value: str) -> None:
    desc.title = value


def _set_description(desc: ParsedDescription, value: str) -> None:
    desc.description = value


def _set_publication(desc: ParsedDescription, value: str) -> None:
    desc.publication = value


def _set_authors(desc: ParsedDescription, value: str) -> None:
    desc.authors = sanitize_authors(value)


def _set_maintainer(desc: ParsedDescription, value: str) -> None:
    desc.maintainer = extract_name_and_email(value)


# (prefix, setter, may continue on following lines)
FIELD_HANDLERS: List[Tuple[str, Callable[[ParsedDescription, str], None], bool]] = [
    ("Title:", _set_title, True),
    ("Description:", _set_description, True),
    ("Date/Publication:", _set_publication, False),
    ("Author:", _set_authors, True),
    ("Maintainer:", _set_maintainer, True),
]


def parse_description(content: str) -> ParsedDescription:
    """
    Parse the contents of a DESCRIPTION file.

    Recognized fields are Title, Description, Date/Publication, Author and
    Maintainer. Unrecognized lines are ignored and missing fields stay None.
    """
    lines = content.split("\n")
    desc = ParsedDescription()

    i = 0
    while i < len(lines):
        line = lines[i]
        for prefix, setter, multiline in FIELD_HANDLERS:
            if not line.startswith(prefix):
                continue
            value = _field_value(line)
            if multiline:
                i, value = look_ahead(lines, i, value)
            setter(desc, value)
            break
        i += 1

    return desc
