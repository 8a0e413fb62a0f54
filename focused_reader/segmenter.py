"""Bounded sentence chunks for speech, and sentence-boundary skip targets."""

import re

from focused_reader.constants import (
    MAX_SENTENCE_WORDS,
    SKIP_FALLBACK_WORDS,
    SKIP_WINDOW_WORDS,
)
from focused_reader.models import Chapter, SentenceChunk

# Sentence end: . ! ? ; optionally followed by closing quotes or a parenthesis
_SENTENCE_END_RE = re.compile(r"[.!?;][\"'”’)]*$")


def ends_sentence(word: str) -> bool:
    return bool(_SENTENCE_END_RE.search(word))


def segment(chapter: Chapter, start_word: int) -> SentenceChunk:
    """Collect the words of one utterance starting at ``start_word``.

    Stops at the first sentence-ending word, or after MAX_SENTENCE_WORDS
    words, or at the end of the chapter, whichever comes first.
    """
    words = chapter.words
    limit = min(start_word + MAX_SENTENCE_WORDS, len(words))
    end = start_word
    for i in range(start_word, limit):
        end = i
        if ends_sentence(words[i]):
            break
    run = words[start_word:end + 1]
    return SentenceChunk(start_word=start_word, word_count=len(run), text=" ".join(run))


def next_sentence_start(words: list[str], index: int) -> int:
    """Start of the next sentence within the skip window, else 10 words on."""
    for i in range(index + 1, min(index + SKIP_WINDOW_WORDS, len(words))):
        if ends_sentence(words[i - 1]):
            return i
    return max(0, min(index + SKIP_FALLBACK_WORDS, len(words) - 1))


def previous_sentence_start(words: list[str], index: int) -> int:
    """Start of the previous sentence within the skip window, else 10 words back."""
    for i in range(index - 2, max(0, index - SKIP_WINDOW_WORDS) - 1, -1):
        if ends_sentence(words[i]):
            return i + 1
    return max(0, min(index - SKIP_FALLBACK_WORDS, len(words) - 1))
