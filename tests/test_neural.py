"""Tests for neural module: readiness, prefetching playback and cancellation."""

import asyncio
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from focused_reader.audio import PlayableAudio
from focused_reader.backends import neural_playback_rate
from focused_reader.errors import BackendCanceled, TransportError, VoiceNotReady
from focused_reader.models import Chapter, Document, PrefetchEntry, VoiceMode
from focused_reader.neural import NeuralVoiceBackend
from focused_reader.scheduler import PacingScheduler
from focused_reader.segmenter import segment

from conftest import FakeOutput, FakeTransport, RecordingRenderer, make_wav, settle

SENTENCES = Chapter(title="C", words=["a.", "b.", "c.", "d.", "e."])
ARIA = "en-US-AriaNeural-medium"


def _backend(stored=(ARIA,), **kwargs):
    transport = FakeTransport(stored=stored, **kwargs)
    backend = NeuralVoiceBackend(transport, FakeOutput(), "en-US-AriaNeural", "medium")
    return backend, transport


def test_neural_playback_rate():
    """150 WPM plays at 1.0; the rate is clamped to [0.5, 3]."""
    assert neural_playback_rate(150) == 1.0
    assert neural_playback_rate(300) == 2.0
    assert neural_playback_rate(50) == 0.5
    assert neural_playback_rate(1000) == 3.0


# --- Readiness ---

def test_refresh_ready():
    """Ready only when the worker lists the selected voice as stored."""
    backend, _ = _backend()
    assert asyncio.run(backend.refresh_ready()) is True
    backend, _ = _backend(stored=())
    assert asyncio.run(backend.refresh_ready()) is False


def test_refresh_ready_transport_error():
    """An unreachable worker means not ready."""
    backend, transport = _backend()
    backend.ready = True

    async def broken():
        raise TransportError("gone")

    transport.list_stored = broken
    assert asyncio.run(backend.refresh_ready()) is False


def test_ensure_ready_raises():
    """Playing an uncached voice raises VoiceNotReady naming it."""
    backend, _ = _backend(stored=())
    with pytest.raises(VoiceNotReady) as exc:
        asyncio.run(backend.play_chunk(SENTENCES, segment(SENTENCES, 0), lambda i: None))
    assert exc.value.voice_id == ARIA


def test_download_marks_ready():
    """A finished download makes the voice ready and reports progress."""
    backend, transport = _backend(stored=())
    progress = []
    asyncio.run(backend.download(lambda loaded, total: progress.append((loaded, total))))
    assert backend.ready
    assert transport.downloads == [ARIA]
    assert progress == [(50, 100), (100, 100)]


def test_select_voice_invalidates_ready():
    """Changing voice identity clears readiness and resets the worker session."""
    backend, transport = _backend()
    backend.ready = True

    async def scenario():
        return await backend.select_voice("en-GB-RyanNeural", "high")

    # Ryan has no "high" quality: falls back to its best
    assert asyncio.run(scenario()) == "en-GB-RyanNeural-medium"
    assert not backend.ready
    assert transport.resets == 1


def test_select_same_voice_keeps_ready():
    """Reselecting the current voice changes nothing."""
    backend, transport = _backend()
    backend.ready = True
    asyncio.run(backend.select_voice("en-US-AriaNeural"))
    assert backend.ready
    assert transport.resets == 0


# --- Playback ---

def test_prefetch_after_first_sentence_starts():
    """Once the first sentence plays, chunks at offsets 1 and 2 are queued."""
    backend, transport = _backend()
    backend.ready = True
    backend.set_rate(300)
    snapshots = []

    def on_word(i):
        snapshots.append(backend.pipeline.start_words())

    asyncio.run(backend.play_chunk(SENTENCES, segment(SENTENCES, 0), on_word))
    assert snapshots[0] == [1, 2]
    assert [text for text, _ in transport.predicted] == ["a.", "b.", "c."]
    assert backend.current_audio is None


def test_highlight_ticks_per_word():
    """Every word of a chunk is highlighted once, in order."""
    chapter = Chapter(title="C", words=["one", "two", "three."])
    backend, _ = _backend(wav=make_wav(300))
    backend.ready = True
    backend.set_rate(450)
    seen = []
    asyncio.run(backend.play_chunk(chapter, segment(chapter, 0), seen.append))
    assert seen == [0, 1, 2]


def test_highlight_follows_rate_change():
    """A pace change mid-sentence shortens the remaining word intervals."""
    chapter = Chapter(title="C", words=["one", "two", "three."])
    backend, _ = _backend()
    audio = SimpleNamespace(duration=3.0, playback_rate=1.0)
    delays = []

    async def fake_sleep(delay):
        delays.append(delay)

    def on_word(i):
        if i == 1:
            audio.playback_rate = 2.0

    with patch("focused_reader.neural.asyncio.sleep", new=fake_sleep):
        asyncio.run(backend._highlight_words(audio, segment(chapter, 0), on_word))
    assert delays == [1.0, 0.5, 0.5]


def test_cancel_while_playing():
    """cancel() releases the playing clip and the chunk ends as canceled."""
    backend, _ = _backend()
    backend.ready = True
    backend.set_rate(150)

    async def scenario():
        task = asyncio.ensure_future(backend.play_chunk(SENTENCES, segment(SENTENCES, 0), lambda i: None))
        await settle()
        audio = backend.current_audio
        assert audio.playing
        backend.cancel()
        with pytest.raises(BackendCanceled):
            await task
        return audio

    audio = asyncio.run(scenario())
    assert audio.released
    assert len(backend.pipeline) == 0


def test_cancel_during_synthesis_discards_audio():
    """Audio arriving after a cancel is released, never played."""
    backend, transport = _backend()
    backend.ready = True
    output = backend.output
    created = []
    real_predict = transport.predict

    async def slow_predict(text, voice_id):
        await asyncio.sleep(0.01)
        return await real_predict(text, voice_id)

    transport.predict = slow_predict
    real_from_wav = PlayableAudio.from_wav

    def tracking(data, out, rate):
        audio = real_from_wav(data, out, rate)
        created.append(audio)
        return audio

    async def scenario():
        task = asyncio.ensure_future(backend.play_chunk(SENTENCES, segment(SENTENCES, 0), lambda i: None))
        await asyncio.sleep(0)
        backend.cancel()
        with pytest.raises(BackendCanceled):
            await task

    with patch("focused_reader.neural.PlayableAudio.from_wav", side_effect=tracking):
        asyncio.run(scenario())
    assert output.plays == []
    assert [a.released for a in created] == [True]


def test_driver_canceled_as_audio_arrives_releases_it():
    """Audio that lands just as the driver task is canceled is released."""
    backend, _ = _backend()
    backend.ready = True

    async def scenario():
        audio = PlayableAudio.from_wav(make_wav(), backend.output, 1.0)
        ready = asyncio.get_running_loop().create_future()
        backend.pipeline.entries.append(PrefetchEntry(start_word=0, word_count=1, audio_ready=ready))
        task = asyncio.ensure_future(backend.play_chunk(SENTENCES, segment(SENTENCES, 0), lambda i: None))
        await settle()
        ready.set_result(audio)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await settle()
        return audio

    audio = asyncio.run(scenario())
    assert audio.released
    assert backend.output.plays == []


def test_set_rate_adjusts_playing_clip():
    """Rate changes apply to the playing clip without a restart."""
    backend, _ = _backend()
    backend.ready = True
    backend.set_rate(150)

    async def scenario():
        task = asyncio.ensure_future(backend.play_chunk(SENTENCES, segment(SENTENCES, 0), lambda i: None))
        await settle()
        restart = backend.set_rate(300)
        rate = backend.current_audio.playback_rate
        await task
        return restart, rate

    assert asyncio.run(scenario()) == (False, 2.0)


# --- Whole chapter through the scheduler ---

def test_neural_chapter_one_clip_at_a_time():
    """At most one clip plays at once and the lookahead never exceeds two."""
    backend, transport = _backend()
    created = []
    violations = []
    real_from_wav = PlayableAudio.from_wav

    def tracking(data, out, rate):
        audio = real_from_wav(data, out, rate)
        created.append(audio)
        return audio

    class CheckingRenderer(RecordingRenderer):
        def on_word_changed(self, chapter_title, word_index, word):
            super().on_word_changed(chapter_title, word_index, word)
            if sum(a.playing for a in created) > 1 or len(backend.pipeline) > 2:
                violations.append(word_index)

    doc = Document(id="n", title="N", author="A", chapters=[SENTENCES])
    renderer = CheckingRenderer()

    async def scenario():
        scheduler = PacingScheduler(renderer, backends={VoiceMode.NEURAL: backend}, output=FakeOutput())
        await scheduler.open_document(doc)
        await scheduler.set_words_per_minute(450)
        await scheduler.set_mode(VoiceMode.NEURAL)
        await scheduler.play()
        await scheduler.join()
        return scheduler

    with patch("focused_reader.neural.PlayableAudio.from_wav", side_effect=tracking):
        scheduler = asyncio.run(scenario())

    assert violations == []
    assert renderer.ended == 1
    assert scheduler.state == "stopped"
    assert [text for text, _ in transport.predicted] == ["a.", "b.", "c.", "d.", "e."]
    assert len(created) == 5
    assert all(a.released for a in created)
