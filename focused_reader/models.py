"""Data models for paced reading sessions."""

import asyncio
from dataclasses import dataclass, field
from enum import Enum

from focused_reader.constants import DEFAULT_WPM


class VoiceMode(str, Enum):
    """Timing source driving word advancement."""

    OFF = "off"
    LOCAL = "local"
    NEURAL = "neural"


@dataclass
class Chapter:
    title: str
    words: list[str]


@dataclass
class Document:
    id: str
    title: str
    author: str
    chapters: list[Chapter] = field(default_factory=list)


@dataclass
class GlobalPosition:
    chapter_index: int = 0
    word_index: int = 0


@dataclass
class PlaybackSession:
    document: Document | None = None
    position: GlobalPosition = field(default_factory=GlobalPosition)
    words_per_minute: int = DEFAULT_WPM
    mode: VoiceMode = VoiceMode.OFF
    running: bool = False


@dataclass(frozen=True)
class SentenceChunk:
    start_word: int
    word_count: int
    text: str


@dataclass
class PrefetchEntry:
    start_word: int
    word_count: int
    audio_ready: asyncio.Future   # resolves to a PlayableAudio


@dataclass
class ReadingPosition:
    document_id: str
    chapter_index: int
    word_index: int
    words_per_minute: int = DEFAULT_WPM
