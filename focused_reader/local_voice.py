"""Local on-device voice via pyttsx3 with per-word boundary callbacks."""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

from focused_reader.backends import SpeechBackend, local_speech_rate
from focused_reader.constants import LOCAL_VOICE_ENGINE_WPM
from focused_reader.errors import BackendCanceled, BackendError, BackendInterrupted
from focused_reader.models import Chapter, SentenceChunk

logger = logging.getLogger(__name__)


def _default_engine():
    import pyttsx3
    return pyttsx3.init()


class LocalVoiceBackend(SpeechBackend):
    """Speaks chunks through a synchronous pyttsx3 engine.

    The engine's run loop blocks, so ``say`` + ``runAndWait`` run on a single
    speech thread; notifications are handed back to the event loop. One
    thread means a new utterance always waits for the previous run loop to
    wind down after ``stop()``.
    """

    def __init__(self, engine_factory: Callable | None = None, voice: str | None = None):
        super().__init__()
        self.voice = voice
        self._engine_factory = engine_factory or _default_engine
        self._engine = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="local-voice")
        self._canceling = False
        self._utterances = 0

    def _get_engine(self):
        """Lazy load the speech engine."""
        if self._engine is None:
            logger.info("Loading local speech engine...")
            try:
                engine = self._engine_factory()
            except Exception as e:
                raise BackendError(f"Local speech engine unavailable: {e}") from e
            if self.voice:
                for v in engine.getProperty("voices"):
                    if self.voice.lower() in v.id.lower() or self.voice.lower() in v.name.lower():
                        engine.setProperty("voice", v.id)
                        break
                else:
                    logger.warning("Local voice %r not found, using engine default", self.voice)
            self._engine = engine
        return self._engine

    @staticmethod
    def _speak(engine, text: str, name: str, rate: int, handlers: dict) -> None:
        tokens = [engine.connect(topic, callback) for topic, callback in handlers.items()]
        try:
            engine.setProperty("rate", rate)
            engine.say(text, name)
            engine.runAndWait()
        finally:
            for token in tokens:
                engine.disconnect(token)

    async def play_chunk(
        self,
        chapter: Chapter,
        chunk: SentenceChunk,
        on_word: Callable[[int], None],
    ) -> None:
        loop = asyncio.get_running_loop()
        engine = self._get_engine()
        self._canceling = False
        self._utterances += 1
        name = f"chunk-{self._utterances}"
        done = loop.create_future()
        boundary = 0

        def word_reached():
            nonlocal boundary
            if done.done():
                return
            on_word(min(boundary, chunk.word_count - 1))
            boundary += 1

        def finished(completed):
            if done.done():
                return
            if completed:
                done.set_result(None)
            elif self._canceling:
                done.set_exception(BackendCanceled(name))
            else:
                done.set_exception(BackendInterrupted(name))

        def failed(exc):
            if done.done():
                return
            if self._canceling:
                done.set_exception(BackendCanceled(name))
            else:
                done.set_exception(BackendError(f"Speech error: {exc}"))

        # Called on the speech thread
        handlers = {
            "started-word": lambda name_, location, length: (
                name_ == name and loop.call_soon_threadsafe(word_reached)
            ),
            "finished-utterance": lambda name_, completed: (
                name_ == name and loop.call_soon_threadsafe(finished, completed)
            ),
            "error": lambda name_, exception: (
                name_ == name and loop.call_soon_threadsafe(failed, exception)
            ),
        }

        def run_finished(future):
            if not future.cancelled() and future.exception() is not None:
                failed(future.exception())
            else:
                finished(not self._canceling)

        rate = int(LOCAL_VOICE_ENGINE_WPM * local_speech_rate(self.words_per_minute))
        run = loop.run_in_executor(self._executor, self._speak, engine, chunk.text, name, rate, handlers)
        run.add_done_callback(run_finished)
        try:
            await done
        except asyncio.CancelledError:
            self.cancel()
            raise
        finally:
            # The run loop returns right after its final notification
            await asyncio.wait([run])

    def cancel(self) -> None:
        self._canceling = True
        if self._engine is not None:
            self._engine.stop()

    def set_rate(self, wpm: int) -> bool:
        self.words_per_minute = wpm
        return True
