"""Chapter/word lookups and the global word offset mapping.

This module is the only place that converts between a
``(chapter_index, word_index)`` pair and a global word offset.
"""

from focused_reader.errors import InvalidDocument
from focused_reader.models import Chapter, Document


def total_words(doc: Document) -> int:
    """Sum of word counts across all chapters."""
    return sum(len(chapter.words) for chapter in doc.chapters)


def to_global_offset(doc: Document, chapter_index: int, word_index: int) -> int:
    """Offset of a word across the whole document, ignoring chapter boundaries."""
    before = sum(len(chapter.words) for chapter in doc.chapters[:chapter_index])
    return before + word_index


def from_global_offset(doc: Document, offset: int) -> tuple[int, int]:
    """Map a global offset back to ``(chapter_index, word_index)``.

    Offsets past the end clamp to the last word of the last chapter,
    negative offsets to the first word.
    """
    if offset < 0:
        return 0, 0
    start = 0
    for i, chapter in enumerate(doc.chapters):
        count = len(chapter.words)
        if start + count > offset:
            return i, offset - start
        start += count
    last = len(doc.chapters) - 1
    return last, len(doc.chapters[last].words) - 1


def clamp_position(doc: Document, chapter_index: int, word_index: int) -> tuple[int, int]:
    """Pull a possibly stale position back inside the document."""
    chapter_index = max(0, min(chapter_index, len(doc.chapters) - 1))
    words = doc.chapters[chapter_index].words
    word_index = max(0, min(word_index, len(words) - 1))
    return chapter_index, word_index


def validate_document(doc: Document) -> Document:
    """Raise InvalidDocument unless every chapter has at least one word."""
    if not doc.chapters:
        raise InvalidDocument(f"Document {doc.id!r} has no chapters")
    for i, chapter in enumerate(doc.chapters):
        if not chapter.words:
            raise InvalidDocument(f"Chapter {i} ({chapter.title!r}) of {doc.id!r} has no words")
    return doc


def build_document(doc_id: str, title: str, author: str, chapters: list[Chapter]) -> Document:
    """Create a Document, dropping empty chapters first."""
    kept = [c for c in chapters if c.words]
    return validate_document(Document(id=doc_id, title=title, author=author, chapters=kept))
