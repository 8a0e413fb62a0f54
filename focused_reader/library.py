"""On-disk library: documents, reading positions and settings as JSON artifacts."""

import json
import logging
import os

from focused_reader.constants import (
    DEFAULT_QUALITY,
    DEFAULT_VOICE,
    DEFAULT_WPM,
    LIBRARY_DIR,
    SETTINGS_FILE,
)
from focused_reader.models import Chapter, Document, ReadingPosition, VoiceMode

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS = {
    "mode": VoiceMode.OFF.value,
    "voice": DEFAULT_VOICE,
    "quality": DEFAULT_QUALITY,
    "wpm": DEFAULT_WPM,
}


def write_artifact(directory: str, filename: str, data: dict) -> str:
    """Write JSON artifact to directory/filename.

    Returns path to the written file.
    """
    path = os.path.join(directory, filename)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
    return path


def load_artifact(directory: str, filename: str) -> dict | None:
    """Read JSON artifact. Returns None if file doesn't exist."""
    path = os.path.join(directory, filename)
    if not os.path.exists(path):
        return None
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def document_to_dict(doc: Document) -> dict:
    return {
        "id": doc.id,
        "title": doc.title,
        "author": doc.author,
        "chapters": [{"title": c.title, "words": c.words} for c in doc.chapters],
    }


def document_from_dict(data: dict) -> Document:
    return Document(
        id=data["id"],
        title=data.get("title", "Untitled"),
        author=data.get("author", "Unknown Author"),
        chapters=[Chapter(title=c["title"], words=list(c["words"])) for c in data.get("chapters", [])],
    )


class Library:
    """Key-value store for documents and reading positions under one directory."""

    def __init__(self, root: str = LIBRARY_DIR):
        self.root = root
        self.documents_dir = os.path.join(root, "documents")
        self.positions_dir = os.path.join(root, "positions")
        for path in (self.documents_dir, self.positions_dir):
            os.makedirs(path, exist_ok=True)

    def save_document(self, doc: Document) -> str:
        return write_artifact(self.documents_dir, f"{doc.id}.json", document_to_dict(doc))

    def load_document(self, doc_id: str) -> Document | None:
        data = load_artifact(self.documents_dir, f"{doc_id}.json")
        return document_from_dict(data) if data else None

    def delete_document(self, doc_id: str) -> bool:
        """Remove a document and its reading position. Returns True if it existed."""
        removed = False
        for directory in (self.documents_dir, self.positions_dir):
            path = os.path.join(directory, f"{doc_id}.json")
            if os.path.exists(path):
                os.remove(path)
                removed = True
        return removed

    def list_documents(self) -> list[Document]:
        """All stored documents, sorted by title."""
        docs = []
        for name in sorted(os.listdir(self.documents_dir)):
            if not name.endswith(".json"):
                continue
            try:
                docs.append(self.load_document(name[:-len(".json")]))
            except (json.JSONDecodeError, KeyError):
                logger.warning("Skipping malformed document file: %s", name)
        return sorted(docs, key=lambda d: d.title.casefold())

    def save_position(self, position: ReadingPosition) -> str:
        return write_artifact(self.positions_dir, f"{position.document_id}.json", {
            "document_id": position.document_id,
            "chapter": position.chapter_index,
            "word": position.word_index,
            "wpm": position.words_per_minute,
        })

    def load_position(self, doc_id: str) -> ReadingPosition | None:
        try:
            data = load_artifact(self.positions_dir, f"{doc_id}.json")
        except json.JSONDecodeError:
            logger.warning("Malformed reading position for %s, starting over", doc_id)
            return None
        if not data:
            return None
        return ReadingPosition(
            document_id=doc_id,
            chapter_index=int(data.get("chapter", 0)),
            word_index=int(data.get("word", 0)),
            words_per_minute=int(data.get("wpm") or DEFAULT_WPM),
        )

    def load_settings(self) -> dict:
        """Settings merged over defaults."""
        settings = dict(DEFAULT_SETTINGS)
        try:
            stored = load_artifact(self.root, SETTINGS_FILE)
        except json.JSONDecodeError:
            logger.warning("Malformed settings file, using defaults")
            stored = None
        if stored:
            settings.update(stored)
        return settings

    def save_settings(self, settings: dict) -> str:
        return write_artifact(self.root, SETTINGS_FILE, settings)
