"""Interchangeable speech backends driven by the pacing scheduler."""

from abc import ABC, abstractmethod
from typing import Callable

from focused_reader.constants import (
    DEFAULT_WPM,
    LOCAL_VOICE_MAX_RATE,
    LOCAL_VOICE_MIN_RATE,
    LOCAL_VOICE_NATURAL_WPM,
    NEURAL_VOICE_MAX_RATE,
    NEURAL_VOICE_MIN_RATE,
    NEURAL_VOICE_NATURAL_WPM,
)
from focused_reader.models import Chapter, SentenceChunk


def local_speech_rate(wpm: int) -> float:
    """Local engine rate; 160 WPM is the natural rate 1.0."""
    return max(LOCAL_VOICE_MIN_RATE, min(LOCAL_VOICE_MAX_RATE, wpm / LOCAL_VOICE_NATURAL_WPM))


def neural_playback_rate(wpm: int) -> float:
    """Playback rate applied to decoded neural audio; 150 WPM plays at 1.0."""
    return max(NEURAL_VOICE_MIN_RATE, min(NEURAL_VOICE_MAX_RATE, wpm / NEURAL_VOICE_NATURAL_WPM))


class SpeechBackend(ABC):
    """Speaks one sentence chunk at a time and reports word progress."""

    def __init__(self):
        self.words_per_minute = DEFAULT_WPM

    def ensure_ready(self) -> None:
        """Raise VoiceNotReady if the backend cannot speak yet."""

    async def refresh_ready(self) -> bool:
        """Re-check availability of the selected voice."""
        return True

    @abstractmethod
    async def play_chunk(
        self,
        chapter: Chapter,
        chunk: SentenceChunk,
        on_word: Callable[[int], None],
    ) -> None:
        """Speak ``chunk`` and return once it has finished.

        ``on_word(i)`` is called as the i-th word of the chunk is reached.
        Raises BackendCanceled/BackendInterrupted when cut short and
        BackendError on any other failure.
        """

    @abstractmethod
    def cancel(self) -> None:
        """Abort in-flight speech and release its resources."""

    @abstractmethod
    def set_rate(self, wpm: int) -> bool:
        """Apply a new pacing rate.

        Returns True when the in-flight utterance must be restarted for the
        rate to take effect.
        """

    def reset_lookahead(self) -> None:
        """Forget any work prepared for upcoming chunks (chapter changed)."""
