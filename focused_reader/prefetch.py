"""Lookahead queue of sentence audio being synthesized ahead of playback."""

import asyncio
import logging
from typing import Awaitable, Callable

from focused_reader.constants import PREFETCH_DEPTH
from focused_reader.models import Chapter, PrefetchEntry
from focused_reader.segmenter import segment

logger = logging.getLogger(__name__)


def _release_result(task: asyncio.Future) -> None:
    """Done-callback for abandoned synthesis: free audio that still arrived."""
    if task.cancelled():
        return
    if task.exception() is not None:
        logger.debug("Abandoned synthesis failed: %s", task.exception())
        return
    task.result().release()


class PrefetchPipeline:
    """Keeps up to ``depth`` upcoming chunks synthesizing, keyed by start word."""

    def __init__(self, make_audio: Callable[[str], Awaitable], depth: int = PREFETCH_DEPTH):
        self.make_audio = make_audio
        self.depth = depth
        self.entries: list[PrefetchEntry] = []

    def __len__(self) -> int:
        return len(self.entries)

    def start_words(self) -> list[int]:
        return [entry.start_word for entry in self.entries]

    def take(self, start_word: int) -> PrefetchEntry | None:
        """Remove and return the entry starting at ``start_word``, if queued."""
        for i, entry in enumerate(self.entries):
            if entry.start_word == start_word:
                return self.entries.pop(i)
        return None

    def top_up(self, chapter: Chapter, next_start: int) -> None:
        """Queue synthesis for the chunks following ``next_start``.

        Entries before ``next_start`` are stale and get abandoned.
        """
        stale = [e for e in self.entries if e.start_word < next_start]
        self.entries = [e for e in self.entries if e.start_word >= next_start]
        for entry in stale:
            self.abandon(entry)

        position = next_start
        while len(self.entries) < self.depth and position < len(chapter.words):
            existing = next((e for e in self.entries if e.start_word == position), None)
            if existing is not None:
                position = existing.start_word + existing.word_count
                continue
            chunk = segment(chapter, position)
            logger.debug("Prefetching words %d-%d", chunk.start_word, chunk.start_word + chunk.word_count - 1)
            self.entries.append(PrefetchEntry(
                start_word=chunk.start_word,
                word_count=chunk.word_count,
                audio_ready=asyncio.ensure_future(self.make_audio(chunk.text)),
            ))
            position += chunk.word_count

    def clear(self) -> None:
        """Abandon every queued entry."""
        entries, self.entries = self.entries, []
        for entry in entries:
            self.abandon(entry)

    @staticmethod
    def abandon(entry: PrefetchEntry) -> None:
        """Cancel an entry, releasing its audio if it arrives anyway."""
        task = entry.audio_ready
        task.add_done_callback(_release_result)
        if not task.done():
            task.cancel()
