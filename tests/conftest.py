"""Shared fixtures and fakes for focused reader tests."""

import asyncio
import io

import pytest
from pydub import AudioSegment

from focused_reader.backends import SpeechBackend
from focused_reader.errors import VoiceNotReady
from focused_reader.models import Chapter, Document
from focused_reader.scheduler import Renderer


def make_wav(duration_ms=100, frame_rate=22050):
    """Silent mono WAV bytes (pydub writes WAV without ffmpeg)."""
    out = io.BytesIO()
    AudioSegment.silent(duration=duration_ms, frame_rate=frame_rate).export(out, format="wav")
    return out.getvalue()


async def settle(steps=20):
    """Let pending tasks run until they block."""
    for _ in range(steps):
        await asyncio.sleep(0)


class RecordingRenderer(Renderer):
    def __init__(self):
        self.words = []
        self.chapters = []
        self.errors = []
        self.statuses = []
        self.ended = 0

    def on_word_changed(self, chapter_title, word_index, word):
        self.words.append((chapter_title, word_index, word))

    def on_playback_ended(self):
        self.ended += 1

    def on_chapter_advanced(self, chapter_index):
        self.chapters.append(chapter_index)

    def on_speech_error(self, message):
        self.errors.append(message)

    def on_status(self, message):
        self.statuses.append(message)


class FakeOutput:
    """Records what would be sent to the sound device."""

    def __init__(self):
        self.unlocks = 0
        self.plays = []
        self.stops = 0

    def unlock(self):
        self.unlocks += 1

    def play(self, samples, sample_rate):
        self.plays.append((len(samples), sample_rate))

    def stop(self):
        self.stops += 1


class FakeBackend(SpeechBackend):
    """Speaks instantly, one word per loop step.

    ``hold`` keeps each chunk open until the driver is canceled.
    """

    def __init__(self, ready=True, hold=False, restart_on_rate=False):
        super().__init__()
        self.ready = ready
        self.hold = hold
        self.restart_on_rate = restart_on_rate
        self.error = None
        self.chunks = []
        self.callbacks = []
        self.cancels = 0
        self.lookahead_resets = 0

    def ensure_ready(self):
        if not self.ready:
            raise VoiceNotReady("fake-medium")

    async def play_chunk(self, chapter, chunk, on_word):
        self.chunks.append(chunk)
        self.callbacks.append(on_word)
        if self.error is not None:
            raise self.error
        for i in range(chunk.word_count):
            on_word(i)
            await asyncio.sleep(0)
        if self.hold:
            await asyncio.get_running_loop().create_future()

    def cancel(self):
        self.cancels += 1

    def set_rate(self, wpm):
        self.words_per_minute = wpm
        return self.restart_on_rate

    def reset_lookahead(self):
        self.lookahead_resets += 1


class FakeTransport:
    """Worker stand-in answering predict/download/stored/reset in-process."""

    def __init__(self, stored=(), wav=None):
        self.stored = set(stored)
        self.wav = wav if wav is not None else make_wav()
        self.predicted = []
        self.downloads = []
        self.resets = 0
        self.download_error = None
        self.closed = False

    async def predict(self, text, voice_id):
        self.predicted.append((text, voice_id))
        return self.wav

    async def download(self, voice_id, on_progress=None):
        self.downloads.append(voice_id)
        if self.download_error is not None:
            raise self.download_error
        if on_progress is not None:
            on_progress(50, 100)
            on_progress(100, 100)
        self.stored.add(voice_id)

    async def list_stored(self):
        return set(self.stored)

    async def reset_session(self):
        self.resets += 1

    async def close(self):
        self.closed = True


@pytest.fixture
def two_chapter_doc():
    return Document(
        id="doc1",
        title="Short Book",
        author="A. Writer",
        chapters=[
            Chapter(title="One", words=["a", "b", "c."]),
            Chapter(title="Two", words=["d", "e."]),
        ],
    )


@pytest.fixture
def prose_chapter():
    words = (
        "It was late. The rain had not stopped for days; nobody minded. "
        "She opened the door and looked out at the street below. "
        "Nothing moved."
    ).split()
    return Chapter(title="Rain", words=words)
