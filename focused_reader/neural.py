"""Neural voice backend: worker synthesis, prefetching and timed highlighting."""

import asyncio
import logging
from typing import Callable

from focused_reader.audio import PlayableAudio
from focused_reader.backends import SpeechBackend, neural_playback_rate
from focused_reader.errors import BackendCanceled, TransportError, VoiceNotReady
from focused_reader.models import Chapter, PrefetchEntry, SentenceChunk
from focused_reader.prefetch import PrefetchPipeline
from focused_reader.voices import default_voice, resolve_quality, voice_id

logger = logging.getLogger(__name__)


class NeuralVoiceBackend(SpeechBackend):
    """Plays worker-synthesized sentences while the next ones synthesize.

    ``ready`` is only true once the selected voice identity is known to be
    cached by the worker (listed as stored, or just downloaded).
    """

    def __init__(self, transport, output, voice: str | None = None, quality: str | None = None):
        super().__init__()
        self.transport = transport
        self.output = output
        default_name, default_quality = default_voice()
        self.voice = voice or default_name
        self.quality = resolve_quality(self.voice, quality or default_quality)
        self.ready = False
        self.pipeline = PrefetchPipeline(self.make_audio)
        self.current_audio: PlayableAudio | None = None
        self._highlight = None
        self._canceled = False

    @property
    def voice_id(self) -> str:
        return voice_id(self.voice, self.quality)

    async def select_voice(self, name: str, quality: str | None = None) -> str:
        """Switch voice identity; readiness must be re-checked afterwards."""
        quality = resolve_quality(name, quality or self.quality)
        if (name, quality) != (self.voice, self.quality):
            self.cancel()
            self.voice, self.quality = name, quality
            self.ready = False
            logger.info("Selected neural voice %s", self.voice_id)
            try:
                await self.transport.reset_session()
            except TransportError as e:
                logger.warning("Worker session reset failed: %s", e)
        return self.voice_id

    async def refresh_ready(self) -> bool:
        """Ask the worker whether the selected voice is cached."""
        try:
            stored = await self.transport.list_stored()
        except TransportError as e:
            logger.warning("Could not list cached voices: %s", e)
            self.ready = False
        else:
            self.ready = self.voice_id in stored
        return self.ready

    async def download(self, on_progress: Callable[[int, int], None] | None = None) -> None:
        """Have the worker fetch and cache the selected voice."""
        target = self.voice_id
        self.ready = False
        await self.transport.download(target, on_progress)
        self.ready = target == self.voice_id

    def ensure_ready(self) -> None:
        if not self.ready:
            raise VoiceNotReady(self.voice_id)

    async def make_audio(self, text: str) -> PlayableAudio:
        wav = await self.transport.predict(text, self.voice_id)
        return PlayableAudio.from_wav(wav, self.output, neural_playback_rate(self.words_per_minute))

    async def _highlight_words(self, audio: PlayableAudio, chunk: SentenceChunk, on_word) -> None:
        for i in range(chunk.word_count):
            on_word(i)
            # The clip's rate can change between words
            await asyncio.sleep(audio.duration / audio.playback_rate / chunk.word_count)

    async def play_chunk(
        self,
        chapter: Chapter,
        chunk: SentenceChunk,
        on_word: Callable[[int], None],
    ) -> None:
        self.ensure_ready()
        self._canceled = False

        entry = self.pipeline.take(chunk.start_word)
        if entry is None:
            self.pipeline.clear()
            entry = PrefetchEntry(
                start_word=chunk.start_word,
                word_count=chunk.word_count,
                audio_ready=asyncio.ensure_future(self.make_audio(chunk.text)),
            )
        try:
            audio = await entry.audio_ready
        except asyncio.CancelledError:
            self.pipeline.abandon(entry)
            raise

        if self._canceled:
            audio.release()
            raise BackendCanceled(f"chunk at word {chunk.start_word}")

        self.current_audio = audio
        try:
            audio.set_playback_rate(neural_playback_rate(self.words_per_minute))
            audio.play()
            self.pipeline.top_up(chapter, chunk.start_word + chunk.word_count)
            highlight = asyncio.ensure_future(self._highlight_words(audio, chunk, on_word))
            self._highlight = highlight
            try:
                if not await audio.wait_ended():
                    raise BackendCanceled(f"chunk at word {chunk.start_word}")
            finally:
                highlight.cancel()
                self._highlight = None
        finally:
            audio.release()
            self.current_audio = None

    def cancel(self) -> None:
        self._canceled = True
        self.pipeline.clear()
        if self._highlight is not None:
            self._highlight.cancel()
            self._highlight = None
        if self.current_audio is not None:
            self.current_audio.release()
            self.current_audio = None

    def set_rate(self, wpm: int) -> bool:
        self.words_per_minute = wpm
        if self.current_audio is not None:
            self.current_audio.set_playback_rate(neural_playback_rate(wpm))
        return False

    def reset_lookahead(self) -> None:
        self.pipeline.clear()
