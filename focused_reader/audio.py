"""Decoded, playable audio clips and the sound output they play through."""

import asyncio
import io
import logging

import numpy as np
from pydub import AudioSegment

from focused_reader.errors import BackendError

logger = logging.getLogger(__name__)


class SoundDeviceOutput:
    """Audio output on the default sound device via sounddevice.

    One clip plays at a time: sounddevice's play() replaces whatever is
    currently playing.
    """

    def __init__(self):
        self._sd = None

    def _device(self):
        """Lazy load sounddevice (needs the PortAudio library at import)."""
        if self._sd is None:
            try:
                import sounddevice
            except (ImportError, OSError) as e:
                raise BackendError(f"No audio output available: {e}") from e
            self._sd = sounddevice
        return self._sd

    def unlock(self) -> None:
        """Open the output device by playing a single silent frame."""
        sd = self._device()
        sd.play(np.zeros((1, 1), dtype=np.float32), samplerate=22050, blocking=False)

    def play(self, samples: np.ndarray, sample_rate: int) -> None:
        self._device().play(samples, samplerate=sample_rate, blocking=False)

    def stop(self) -> None:
        if self._sd is not None:
            self._sd.stop()


def to_float_samples(audio: AudioSegment) -> np.ndarray:
    """Convert an AudioSegment to a (frames, channels) float32 array in [-1, 1]."""
    samples = np.array(audio.get_array_of_samples(), dtype=np.float32)
    samples = samples.reshape((-1, audio.channels))
    return samples / float(1 << (8 * audio.sample_width - 1))


class PlayableAudio:
    """A decoded clip with an adjustable playback rate.

    The rate resamples playback of the already-decoded samples; nothing is
    re-synthesized. ``wait_ended()`` resolves True once the clip has played
    out, or False if it was stopped first.
    """

    def __init__(self, segment: AudioSegment, output, playback_rate: float = 1.0):
        self.segment = segment
        self.output = output
        self.playback_rate = playback_rate
        self.released = False
        self._samples = None
        self._offset = 0.0          # seconds of media played before the current run
        self._started_at = None
        self._end_handle = None
        self._ended = None

    @classmethod
    def from_wav(cls, data: bytes, output, playback_rate: float = 1.0) -> "PlayableAudio":
        try:
            segment = AudioSegment.from_file(io.BytesIO(data), format="wav")
        except Exception as e:
            raise BackendError(f"Audio decode error: {e}") from e
        return cls(segment, output, playback_rate)

    @property
    def duration(self) -> float:
        """Length of the clip in seconds at rate 1.0."""
        return len(self.segment) / 1000.0

    @property
    def playing(self) -> bool:
        return self._started_at is not None

    def _elapsed(self, loop) -> float:
        return self._offset + (loop.time() - self._started_at) * self.playback_rate

    def _start(self, loop) -> None:
        if self._samples is None:
            self._samples = to_float_samples(self.segment)
        first_frame = int(self._offset * self.segment.frame_rate)
        try:
            self.output.play(
                self._samples[first_frame:],
                int(self.segment.frame_rate * self.playback_rate),
            )
        except BackendError:
            raise
        except Exception as e:
            raise BackendError(f"Audio playback error: {e}") from e
        self._started_at = loop.time()
        remaining = max(0.0, self.duration - self._offset) / self.playback_rate
        self._end_handle = loop.call_later(remaining, self._finish)

    def _finish(self) -> None:
        self._started_at = None
        self._end_handle = None
        self._offset = self.duration
        if self._ended is not None and not self._ended.done():
            self._ended.set_result(True)

    def play(self) -> None:
        if self.released:
            raise BackendError("Audio already released")
        loop = asyncio.get_running_loop()
        self._ended = loop.create_future()
        self._start(loop)

    async def wait_ended(self) -> bool:
        return await self._ended

    def set_playback_rate(self, rate: float) -> None:
        """Change the rate, continuing from the current point if playing."""
        if rate == self.playback_rate:
            return
        if not self.playing:
            self.playback_rate = rate
            return
        loop = asyncio.get_running_loop()
        self._offset = min(self._elapsed(loop), self.duration)
        self._end_handle.cancel()
        self.output.stop()
        self.playback_rate = rate
        self._start(loop)

    def stop(self) -> None:
        """Halt playback; wait_ended() resolves False."""
        if self._end_handle is not None:
            self._end_handle.cancel()
            self._end_handle = None
        if self._started_at is not None:
            self._started_at = None
            self.output.stop()
        if self._ended is not None and not self._ended.done():
            self._ended.set_result(False)

    def release(self) -> None:
        if self.released:
            return
        self.stop()
        self.released = True
        self._samples = None
        logger.debug("Released %.2fs clip", self.duration)
