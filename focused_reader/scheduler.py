"""Pacing scheduler: the single owner of the reading position.

Exactly one driver task advances the position at a time. Drivers are picked
by the session's mode: a plain timer for ``off``, or a speech backend that
speaks sentence chunks. Every position change from a driver goes through a
setter that checks the driver's generation, and switching drivers bumps the
generation and awaits the old task, so a canceled driver can never move the
position again.
"""

import asyncio
import logging

from focused_reader.constants import MAX_WPM, MIN_WPM
from focused_reader.document import clamp_position, from_global_offset, validate_document
from focused_reader.errors import (
    BackendCanceled,
    BackendError,
    BackendInterrupted,
    VoiceNotReady,
)
from focused_reader.models import Document, PlaybackSession, ReadingPosition, VoiceMode
from focused_reader.segmenter import next_sentence_start, previous_sentence_start, segment

logger = logging.getLogger(__name__)


def clamp_wpm(wpm: int) -> int:
    return max(MIN_WPM, min(MAX_WPM, int(wpm)))


class Renderer:
    """Callbacks the scheduler makes into the UI. Override what you need."""

    def on_word_changed(self, chapter_title: str, word_index: int, word: str) -> None:
        pass

    def on_playback_ended(self) -> None:
        pass

    def on_chapter_advanced(self, chapter_index: int) -> None:
        pass

    def on_speech_error(self, message: str) -> None:
        pass

    def on_status(self, message: str) -> None:
        pass


class PacingScheduler:
    def __init__(
        self,
        renderer: Renderer | None = None,
        store=None,
        backends: dict | None = None,
        output=None,
        sleep=asyncio.sleep,
    ):
        self.renderer = renderer or Renderer()
        self.store = store
        self.backends = backends or {}
        self.output = output
        self.session = PlaybackSession()
        self._sleep = sleep
        self._task: asyncio.Task | None = None
        self._generation = 0

    # --- Inspection ---

    @property
    def state(self) -> str:
        """"stopped" or "playing:<mode>"."""
        if not self.session.running:
            return "stopped"
        return f"playing:{self.session.mode.value}"

    @property
    def position(self) -> tuple[int, int]:
        p = self.session.position
        return p.chapter_index, p.word_index

    def _backend(self, mode: VoiceMode | None = None):
        mode = mode or self.session.mode
        if mode is VoiceMode.OFF:
            return None
        if mode not in self.backends:
            raise ValueError(f"No backend configured for {mode.value} mode")
        return self.backends[mode]

    def _chapter(self):
        return self.session.document.chapters[self.session.position.chapter_index]

    # --- Rendering and persistence ---

    def _render(self) -> None:
        chapter = self._chapter()
        index = self.session.position.word_index
        if index < len(chapter.words):
            self.renderer.on_word_changed(chapter.title, index, chapter.words[index])

    def save_position(self) -> None:
        doc = self.session.document
        if self.store is None or doc is None:
            return
        p = self.session.position
        self.store.save_position(ReadingPosition(
            document_id=doc.id,
            chapter_index=p.chapter_index,
            word_index=p.word_index,
            words_per_minute=self.session.words_per_minute,
        ))

    # --- Driver lifecycle ---

    def _start_driver(self) -> None:
        self._generation += 1
        generation = self._generation
        mode = self.session.mode
        backend = self._backend(mode)
        if backend is not None:
            backend.set_rate(self.session.words_per_minute)
        logger.debug("Starting %s driver (generation %d)", mode.value, generation)
        self._task = asyncio.ensure_future(self._drive(mode, generation))

    async def _cancel_driver(self) -> None:
        """Stop the active driver and wait until it can no longer touch the position."""
        self._generation += 1
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
        backend = self._backend() if self.session.mode is not VoiceMode.OFF else None
        if backend is not None:
            backend.cancel()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass

    def _halt(self, generation: int) -> bool:
        """End playback from inside a driver. False if the driver is stale."""
        if generation != self._generation:
            return False
        self.session.running = False
        self._generation += 1
        backend = self._backend() if self.session.mode is not VoiceMode.OFF else None
        if backend is not None:
            backend.cancel()
        self.save_position()
        return True

    async def _drive(self, mode: VoiceMode, generation: int) -> None:
        try:
            if mode is VoiceMode.OFF:
                await self._run_timer(generation)
            else:
                await self._run_voice(self._backend(mode), generation)
        except (BackendCanceled, BackendInterrupted) as e:
            logger.debug("Speech cut short: %s", e)
            self._halt(generation)
        except VoiceNotReady as e:
            logger.warning("%s", e)
            if self._halt(generation):
                self.renderer.on_status(str(e))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Speech error: %s", e)
            if self._halt(generation):
                self.renderer.on_speech_error(str(e))

    def _set_word(self, generation: int, word_index: int) -> bool:
        """Move within the current chapter. False if the driver is stale."""
        if generation != self._generation:
            return False
        self.session.position.word_index = word_index
        self._render()
        return True

    def _roll_over(self, generation: int) -> bool:
        """Handle reaching the end of a chapter.

        Moves to the next chapter's first word, or ends playback after the
        last chapter. Returns True while there is more to read.
        """
        if generation != self._generation:
            return False
        doc = self.session.document
        p = self.session.position
        if p.word_index < len(doc.chapters[p.chapter_index].words):
            return True
        if p.chapter_index < len(doc.chapters) - 1:
            p.chapter_index += 1
            p.word_index = 0
            backend = self._backend() if self.session.mode is not VoiceMode.OFF else None
            if backend is not None:
                backend.reset_lookahead()
            self.renderer.on_chapter_advanced(p.chapter_index)
            return True
        if self._halt(generation):
            logger.info("Reached end of %s", doc.title)
            self.renderer.on_playback_ended()
        return False

    async def _run_timer(self, generation: int) -> None:
        self._render()
        while True:
            await self._sleep(60.0 / self.session.words_per_minute)
            if not self._set_word(generation, self.session.position.word_index + 1):
                return
            if self.session.position.word_index >= len(self._chapter().words):
                if not self._roll_over(generation):
                    return
                self._render()

    async def _run_voice(self, backend, generation: int) -> None:
        backend.ensure_ready()
        while True:
            if not self._roll_over(generation):
                return
            chapter = self._chapter()
            chunk = segment(chapter, self.session.position.word_index)
            await backend.play_chunk(
                chapter, chunk,
                lambda i, start=chunk.start_word: self._set_word(generation, start + i),
            )
            if not self._set_word(generation, chunk.start_word + chunk.word_count):
                return

    async def _restart(self, move) -> None:
        """Cancel any driver, apply ``move`` to the position, render, resume."""
        was_running = self.session.running
        if was_running:
            await self._cancel_driver()
        move()
        self._render()
        if was_running:
            self._start_driver()

    # --- Session mutators ---

    async def open_document(self, doc: Document) -> None:
        """Make ``doc`` the session's document, restoring its saved position."""
        validate_document(doc)
        await self.stop()
        self.session.document = doc
        chapter, word = 0, 0
        saved = self.store.load_position(doc.id) if self.store is not None else None
        if saved is not None:
            chapter, word = clamp_position(doc, saved.chapter_index, saved.word_index)
            self.session.words_per_minute = clamp_wpm(saved.words_per_minute)
        self.session.position.chapter_index = chapter
        self.session.position.word_index = word
        self._render()

    async def play(self) -> None:
        if self.session.running:
            return
        if self.session.document is None:
            logger.warning("play() with no document open")
            return
        # Must happen before the first await so it stays inside the user's call
        if self.output is not None:
            try:
                self.output.unlock()
            except BackendError as e:
                logger.warning("Audio output unavailable: %s", e)
                if self.session.mode is not VoiceMode.OFF:
                    self.renderer.on_speech_error(str(e))
                    return
        self.session.running = True
        self._start_driver()

    async def stop(self) -> None:
        if self.session.running:
            self.session.running = False
            await self._cancel_driver()
        self.save_position()

    async def toggle(self) -> None:
        if self.session.running:
            await self.stop()
        else:
            await self.play()

    async def close(self) -> None:
        await self.stop()
        self.session.document = None

    async def join(self) -> None:
        """Wait for the current driver to finish."""
        while self._task is not None and not self._task.done():
            task = self._task
            try:
                await task
            except asyncio.CancelledError:
                if task is self._task:
                    raise

    async def set_mode(self, mode) -> None:
        mode = VoiceMode(mode)
        if mode is self.session.mode:
            return
        backend = self._backend(mode)
        was_running = self.session.running
        if was_running:
            await self._cancel_driver()
        self.session.mode = mode
        logger.info("Voice mode: %s", mode.value)
        if backend is not None:
            await backend.refresh_ready()
        if was_running:
            self._start_driver()

    async def seek(self, global_offset: int) -> None:
        doc = self.session.document
        if doc is None:
            return

        def move():
            p = self.session.position
            p.chapter_index, p.word_index = from_global_offset(doc, global_offset)

        await self._restart(move)

    async def select_chapter(self, chapter_index: int) -> None:
        doc = self.session.document
        if doc is None:
            return

        def move():
            p = self.session.position
            p.chapter_index = max(0, min(chapter_index, len(doc.chapters) - 1))
            p.word_index = 0

        await self._restart(move)

    async def _skip(self, find_target) -> None:
        if self.session.document is None:
            return

        def move():
            p = self.session.position
            p.word_index = find_target(self._chapter().words, p.word_index)

        if self.session.mode is VoiceMode.OFF:
            # The timer keeps running and picks up the new position
            move()
            self._render()
        else:
            await self._restart(move)

    async def skip_forward(self) -> None:
        await self._skip(next_sentence_start)

    async def skip_backward(self) -> None:
        await self._skip(previous_sentence_start)

    async def set_words_per_minute(self, wpm: int) -> int:
        wpm = clamp_wpm(wpm)
        self.session.words_per_minute = wpm
        backend = self._backend() if self.session.mode is not VoiceMode.OFF else None
        if backend is not None and backend.set_rate(wpm) and self.session.running:
            await self._restart(lambda: None)
        return wpm

    async def select_voice(self, name: str, quality: str | None = None) -> str:
        """Change the neural voice, resuming only if the new voice is cached."""
        backend = self._backend(VoiceMode.NEURAL)
        active = self.session.running and self.session.mode is VoiceMode.NEURAL
        if active:
            await self._cancel_driver()
        selected = await backend.select_voice(name, quality)
        await backend.refresh_ready()
        if active:
            if backend.ready:
                self._start_driver()
            else:
                self.session.running = False
                self.save_position()
                self.renderer.on_status(f'Voice {selected} not downloaded. Run "download" first.')
        return selected

    async def download_voice(self, on_progress=None) -> None:
        """Download the selected neural voice; errors go to on_speech_error."""
        backend = self._backend(VoiceMode.NEURAL)
        try:
            await backend.download(on_progress)
        except Exception as e:
            logger.error("Voice download failed: %s", e)
            self.renderer.on_speech_error(f"Download failed: {e}")
            return
        self.renderer.on_status("Voice ready!")
