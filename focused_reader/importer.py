"""Turn plain-text books into Documents (title, author and chapters)."""

import hashlib
import os
import re

from focused_reader.document import build_document
from focused_reader.errors import InvalidDocument
from focused_reader.models import Chapter, Document

# Chapter headings: "Chapter 3", "CHAPTER IV", "Part 2: The Return"
_HEADING_RE = re.compile(
    r"^\s*(?:chapter|part)\s+(?:\d+|[ivxlcdm]+)\b.*$",
    re.IGNORECASE | re.MULTILINE,
)


def extract_metadata(text: str) -> tuple[str, str]:
    """Extract title and author from the text file header.

    Convention: first non-empty line = title, line matching ^by .+ = author.
    Falls back to ("Untitled", "Unknown Author").
    """
    lines = text.strip().split("\n")
    title = "Untitled"
    author = "Unknown Author"

    # Only treat first line as title if we also find a "by Author" line
    has_by_line = False
    for line in lines[:10]:
        match = re.match(r"^by\s+(.+)$", line.strip(), re.IGNORECASE)
        if match:
            author = match.group(1).strip()
            has_by_line = True
            break

    if has_by_line:
        non_empty = [line.strip() for line in lines if line.strip()]
        if non_empty:
            title = non_empty[0]

    return title, author


def _strip_metadata_header(text: str, title: str) -> str:
    """Remove the title and "by Author" lines from the beginning of the text."""
    lines = text.strip().split("\n")
    start = 0
    for i, line in enumerate(lines[:10]):
        stripped = line.strip()
        if not stripped or stripped == title or re.match(r"^by\s+", stripped, re.IGNORECASE):
            start = i + 1
            continue
        break
    return "\n".join(lines[start:])


def split_chapters(body: str) -> list[Chapter]:
    """Split body text on chapter headings or form feeds.

    Text before the first heading becomes an untitled opening chapter.
    Chapters may come back empty; build_document() drops them.
    """
    if "\f" in body:
        parts = body.split("\f")
        return [Chapter(title=f"Part {i + 1}", words=part.split()) for i, part in enumerate(parts)]

    headings = list(_HEADING_RE.finditer(body))
    if not headings:
        return [Chapter(title="Chapter 1", words=body.split())]

    chapters = [Chapter(title="Opening", words=body[:headings[0].start()].split())]
    for i, match in enumerate(headings):
        end = headings[i + 1].start() if i + 1 < len(headings) else len(body)
        chapters.append(Chapter(
            title=match.group(0).strip(),
            words=body[match.end():end].split(),
        ))
    return chapters


def document_id_for(text: str) -> str:
    """Stable id derived from the book text."""
    return hashlib.sha256(text.encode()).hexdigest()[:12]


def parse_text(text: str, document_id: str | None = None) -> Document:
    """Parse a plain-text book into a validated Document."""
    if not text.strip():
        raise InvalidDocument("Text is empty")
    title, author = extract_metadata(text)
    body = _strip_metadata_header(text, title) if title != "Untitled" else text
    chapters = split_chapters(body)
    return build_document(document_id or document_id_for(text), title, author, chapters)


def import_file(path: str) -> Document:
    """Read a UTF-8 text file and parse it.

    Books without a "by Author" header are titled after the file name.
    """
    with open(path, encoding="utf-8") as f:
        text = f.read()
    doc = parse_text(text)
    if doc.title == "Untitled":
        doc.title = os.path.splitext(os.path.basename(path))[0]
    return doc
