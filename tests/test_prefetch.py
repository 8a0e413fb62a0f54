"""Tests for prefetch module: lookahead depth, keys and abandoned results."""

import asyncio

from focused_reader.models import Chapter
from focused_reader.prefetch import PrefetchPipeline

from conftest import settle

SENTENCES = Chapter(title="C", words=["a.", "b.", "c.", "d.", "e."])


class FakeClip:
    def __init__(self, text):
        self.text = text
        self.released = False

    def release(self):
        self.released = True


class Synth:
    """make_audio stand-in; ``gate`` holds synthesis until released."""

    def __init__(self, gated=False):
        self.calls = []
        self.clips = []
        self.gated = gated
        self.gate = None

    async def __call__(self, text):
        self.calls.append(text)
        if self.gated:
            if self.gate is None:
                self.gate = asyncio.Event()
            await self.gate.wait()
        clip = FakeClip(text)
        self.clips.append(clip)
        return clip


def test_top_up_fills_to_depth():
    """Two entries queue right after the chunk that started."""
    synth = Synth()

    async def scenario():
        pipeline = PrefetchPipeline(synth)
        pipeline.top_up(SENTENCES, 1)
        assert pipeline.start_words() == [1, 2]
        await settle()
        return pipeline

    pipeline = asyncio.run(scenario())
    assert synth.calls == ["b.", "c."]
    assert len(pipeline) == 2


def test_top_up_skips_queued_chunks():
    """Already queued chunks are not synthesized twice."""
    synth = Synth()

    async def scenario():
        pipeline = PrefetchPipeline(synth)
        pipeline.top_up(SENTENCES, 1)
        entry = pipeline.take(1)
        assert entry.word_count == 1
        assert (await entry.audio_ready).text == "b."
        pipeline.top_up(SENTENCES, 2)
        assert pipeline.start_words() == [2, 3]
        await settle()

    asyncio.run(scenario())
    assert synth.calls == ["b.", "c.", "d."]


def test_top_up_stops_at_chapter_end():
    """Nothing is queued past the last word."""
    synth = Synth()

    async def scenario():
        pipeline = PrefetchPipeline(synth)
        pipeline.top_up(SENTENCES, 4)
        assert pipeline.start_words() == [4]
        pipeline.top_up(SENTENCES, 5)
        assert pipeline.start_words() == []
        await settle()

    asyncio.run(scenario())


def test_take_missing():
    """Taking an unqueued start word gives None."""
    assert PrefetchPipeline(Synth()).take(3) is None


def test_stale_entries_abandoned_and_released():
    """Entries behind the new start are dropped and their audio freed."""
    synth = Synth()

    async def scenario():
        pipeline = PrefetchPipeline(synth)
        pipeline.top_up(SENTENCES, 1)
        await settle()
        pipeline.top_up(SENTENCES, 3)
        assert pipeline.start_words() == [3, 4]
        await settle()

    asyncio.run(scenario())
    released = {clip.text: clip.released for clip in synth.clips}
    assert released == {"b.": True, "c.": True, "d.": False, "e.": False}


def test_clear_cancels_in_flight_synthesis():
    """Clearing cancels work that has not finished."""
    synth = Synth(gated=True)

    async def scenario():
        pipeline = PrefetchPipeline(synth)
        pipeline.top_up(SENTENCES, 0)
        await settle()
        entries = list(pipeline.entries)
        pipeline.clear()
        await settle()
        return pipeline, entries

    pipeline, entries = asyncio.run(scenario())
    assert len(pipeline) == 0
    assert all(e.audio_ready.cancelled() for e in entries)
    assert synth.clips == []


def test_depth_is_configurable():
    """A deeper pipeline queues more chunks."""
    async def scenario():
        pipeline = PrefetchPipeline(Synth(), depth=4)
        pipeline.top_up(SENTENCES, 0)
        starts = pipeline.start_words()
        pipeline.clear()
        await settle()
        return starts

    assert asyncio.run(scenario()) == [0, 1, 2, 3]
