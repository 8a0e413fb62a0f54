"""Worker-side speech synthesis via edge-tts, with retry logic and a voice cache."""

import asyncio
import io
import json
import logging
import os
from typing import Callable

import edge_tts
from pydub import AudioSegment

from focused_reader.constants import (
    TTS_RETRY_BASE_DELAY,
    TTS_RETRY_COUNT,
    VOICE_CACHE_DIR,
    VOICE_DEMO_PANGRAM,
)
from focused_reader.voices import QUALITY_SAMPLE_RATES, parse_voice_id

logger = logging.getLogger(__name__)


class VoiceCache:
    """Catalogue entries and demo clips of downloaded voices, one pair per voice id."""

    def __init__(self, root: str = VOICE_CACHE_DIR):
        self.root = root
        os.makedirs(root, exist_ok=True)

    def _path(self, voice_id: str, ext: str) -> str:
        return os.path.join(self.root, f"{voice_id}.{ext}")

    def stored(self) -> list[str]:
        return sorted(
            name[:-len(".json")]
            for name in os.listdir(self.root)
            if name.endswith(".json")
        )

    def has(self, voice_id: str) -> bool:
        return os.path.exists(self._path(voice_id, "json"))

    def store(self, voice_id: str, entry: dict, demo_wav: bytes) -> None:
        with open(self._path(voice_id, "wav"), "wb") as f:
            f.write(demo_wav)
        # Catalogue entry last: its presence marks the voice as downloaded
        with open(self._path(voice_id, "json"), "w") as f:
            json.dump(entry, f, indent=2)


async def stream_mp3(
    text: str,
    voice: str,
    on_chunk: Callable[[int], None] | None = None,
) -> bytes:
    """Stream one edge-tts synthesis, returning the MP3 bytes."""
    communicate = edge_tts.Communicate(text, voice)
    audio = bytearray()
    async for chunk in communicate.stream():
        if chunk["type"] == "audio":
            audio.extend(chunk["data"])
            if on_chunk is not None:
                on_chunk(len(audio))
    return bytes(audio)


async def synthesize_mp3(
    text: str,
    voice: str,
    on_chunk: Callable[[int], None] | None = None,
) -> bytes:
    """Synthesize with retry logic.

    Retries on network errors, service errors, or empty output, with
    exponential backoff.
    """
    last_error = None
    for attempt in range(TTS_RETRY_COUNT):
        try:
            data = await stream_mp3(text, voice, on_chunk)
            if data:
                return data
            # Empty output counts as a failure
            last_error = RuntimeError(f"TTS produced no audio for: {text[:50]}...")
        except Exception as e:
            last_error = e

        if attempt < TTS_RETRY_COUNT - 1:
            delay = TTS_RETRY_BASE_DELAY * (2 ** attempt)
            logger.warning("Synthesis attempt %d failed (%s), retrying in %.1fs", attempt + 1, last_error, delay)
            await asyncio.sleep(delay)

    raise last_error


def mp3_to_wav(data: bytes, sample_rate: int) -> bytes:
    """Decode MP3 and re-encode as mono WAV at ``sample_rate``."""
    audio = AudioSegment.from_file(io.BytesIO(data), format="mp3")
    audio = audio.set_channels(1).set_frame_rate(sample_rate)
    out = io.BytesIO()
    audio.export(out, format="wav")
    return out.getvalue()


class Synthesizer:
    """Handles the worker's predict/download/stored/reset requests."""

    def __init__(self, cache: VoiceCache):
        self.cache = cache
        self._catalogue = None

    async def catalogue(self) -> dict[str, dict]:
        """edge-tts voice list keyed by short name, fetched once per session."""
        if self._catalogue is None:
            voices = await edge_tts.list_voices()
            self._catalogue = {v["ShortName"]: v for v in voices}
        return self._catalogue

    def reset(self) -> None:
        self._catalogue = None

    def stored(self) -> list[str]:
        return self.cache.stored()

    async def predict(self, text: str, voice_id: str) -> bytes:
        name, quality = parse_voice_id(voice_id)
        if not self.cache.has(voice_id):
            raise RuntimeError(f"Voice {voice_id} is not downloaded")
        mp3 = await synthesize_mp3(text, name)
        return mp3_to_wav(mp3, QUALITY_SAMPLE_RATES[quality])

    async def download(self, voice_id: str, on_progress: Callable[[int, int], None]) -> None:
        """Cache a voice: its catalogue entry plus a rendered demo clip.

        Progress counts demo audio bytes; the total is unknown (0) until the
        clip is complete.
        """
        name, quality = parse_voice_id(voice_id)
        entry = (await self.catalogue()).get(name)
        if entry is None:
            raise RuntimeError(f"Unknown voice: {name}")
        mp3 = await synthesize_mp3(VOICE_DEMO_PANGRAM, name, lambda loaded: on_progress(loaded, 0))
        on_progress(len(mp3), len(mp3))
        wav = mp3_to_wav(mp3, QUALITY_SAMPLE_RATES[quality])
        self.cache.store(voice_id, {"voice_id": voice_id, "quality": quality, **entry}, wav)
        logger.info("Cached voice %s", voice_id)
