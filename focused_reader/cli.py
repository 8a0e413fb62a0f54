"""CLI interface: library management and interactive paced reading sessions."""

import argparse
import asyncio
import logging
import math
import os
import sys

from focused_reader.audio import SoundDeviceOutput
from focused_reader.constants import (
    LIBRARY_DIR,
    MAX_WPM,
    MIN_WPM,
    VERSION,
    WPM_STEP,
)
from focused_reader.document import from_global_offset, to_global_offset, total_words
from focused_reader.errors import FocusedReaderError, InvalidDocument
from focused_reader.importer import import_file
from focused_reader.library import Library
from focused_reader.local_voice import LocalVoiceBackend
from focused_reader.models import VoiceMode
from focused_reader.neural import NeuralVoiceBackend
from focused_reader.scheduler import PacingScheduler, Renderer
from focused_reader.transport import InferenceTransport, SubprocessChannel
from focused_reader.voices import VOICE_QUALITIES, voice_id, voice_qualities

logger = logging.getLogger(__name__)

MODE_CYCLE = [VoiceMode.OFF, VoiceMode.LOCAL, VoiceMode.NEURAL]

HELP_TEXT = (
    "Commands: p play/pause, f/b skip sentence, +/- speed, m cycle voice mode,\n"
    "          c N chapter, g PCT seek to percent, v NAME [QUALITY] neural voice,\n"
    "          d download neural voice, q quit"
)


class TerminalRenderer(Renderer):
    """Shows the current word on a single, rewritten terminal line."""

    def __init__(self, stream=None):
        self.stream = stream or sys.stdout
        self.ended = False

    def _line(self, text: str) -> None:
        self.stream.write("\r\033[K" + text)
        self.stream.flush()

    def on_word_changed(self, chapter_title, word_index, word):
        self._line(f"[{chapter_title}] {word}")

    def on_playback_ended(self):
        self.ended = True
        self._line("— End —\n")

    def on_chapter_advanced(self, chapter_index):
        logger.debug("Chapter %d", chapter_index)

    def on_speech_error(self, message):
        self._line("")
        print(f"Speech error: {message}", file=sys.stderr)

    def on_status(self, message):
        self._line(message + "\n")


def _get_document(library: Library, doc_id: str):
    """Load a document, exiting with an error if it is missing."""
    doc = library.load_document(doc_id)
    if doc is None:
        print(f"Error: Document '{doc_id}' not found.", file=sys.stderr)
        print("Run 'focused-reader list' to see imported documents.", file=sys.stderr)
        raise SystemExit(1)
    return doc


async def _start_transport(cache_dir: str | None) -> InferenceTransport:
    args = ["--cache-dir", cache_dir] if cache_dir else []
    transport = InferenceTransport(await SubprocessChannel.spawn(*args))
    transport.start()
    return transport


def _print_progress(loaded: int, total: int) -> None:
    if total:
        pct = round(loaded / total * 100)
        print(f"\rDownloading: {loaded / 1024:.0f}/{total / 1024:.0f} KB ({pct}%)", end="", flush=True)
    else:
        print(f"\rDownloading: {loaded / 1024:.0f} KB", end="", flush=True)


def cmd_import(args):
    """Import a plain-text book into the library."""
    library = Library(args.library)
    if not os.path.exists(args.file):
        print(f"Error: File not found: {args.file}", file=sys.stderr)
        raise SystemExit(1)
    try:
        doc = import_file(args.file)
    except InvalidDocument as e:
        print(f"Error: Could not import {args.file}: {e}", file=sys.stderr)
        raise SystemExit(1)
    library.save_document(doc)
    print(f"Imported: {doc.title} by {doc.author}")
    print(f"  id {doc.id} · {len(doc.chapters)} chapters · {total_words(doc):,} words")
    print(f"Run 'focused-reader read {doc.id}' to start reading.")


def cmd_list(args):
    """List imported documents."""
    library = Library(args.library)
    docs = library.list_documents()
    if not docs:
        print("No documents yet. Import a text file to get started.")
        return
    print("Documents:")
    for doc in docs:
        position = library.load_position(doc.id)
        pct = 0
        if position is not None:
            offset = to_global_offset(doc, min(position.chapter_index, len(doc.chapters) - 1), position.word_index)
            pct = round(offset / total_words(doc) * 100)
        print(f"  {doc.id}  {doc.title} — {doc.author} ({pct}%)")


def cmd_status(args):
    """Show the reading position in a document."""
    library = Library(args.library)
    doc = _get_document(library, args.id)
    words = total_words(doc)
    position = library.load_position(doc.id)
    print(f"{doc.title} by {doc.author}")
    print(f"  {words:,} words · {len(doc.chapters)} chapters · ~{round(words / 250)} min read")
    if position is None:
        print("  Not started")
        return
    offset = min(to_global_offset(doc, position.chapter_index, position.word_index), words - 1)
    chapter_index, word_index = from_global_offset(doc, offset)
    print(f"  At {doc.chapters[chapter_index].title}, word {word_index + 1} ({round(offset / words * 100)}%)")
    print(f"  Pace: {position.words_per_minute} WPM")


def cmd_delete(args):
    """Remove a document and its reading position."""
    library = Library(args.library)
    if not library.delete_document(args.id):
        print(f"Error: Document '{args.id}' not found.", file=sys.stderr)
        raise SystemExit(1)
    print(f"Deleted: {args.id}")


def cmd_set(args):
    """Update library settings."""
    library = Library(args.library)
    settings = library.load_settings()
    key, value = args.key, args.value

    if key == "mode":
        try:
            settings["mode"] = VoiceMode(value).value
        except ValueError:
            print(f"Error: 'set mode' requires one of: {', '.join(m.value for m in VoiceMode)}", file=sys.stderr)
            raise SystemExit(1)
    elif key == "wpm":
        try:
            wpm = int(value)
        except ValueError:
            print(f"Error: Invalid WPM value: {value}", file=sys.stderr)
            raise SystemExit(1)
        settings["wpm"] = max(MIN_WPM, min(MAX_WPM, wpm))
    elif key == "voice":
        if value not in VOICE_QUALITIES:
            print(f"Error: Unknown voice: {value}. Run 'focused-reader voices'.", file=sys.stderr)
            raise SystemExit(1)
        settings["voice"] = value
    elif key == "quality":
        if value not in voice_qualities(settings["voice"]):
            print(f"Error: {settings['voice']} offers: {', '.join(voice_qualities(settings['voice']))}", file=sys.stderr)
            raise SystemExit(1)
        settings["quality"] = value
    elif key == "local-voice":
        settings["local_voice"] = value
    else:
        print(f"Error: Unknown setting: {key}", file=sys.stderr)
        print("Settings: mode, wpm, voice, quality, local-voice", file=sys.stderr)
        raise SystemExit(1)

    library.save_settings(settings)
    print(f"Updated: {key} → {value}")


async def _list_voices(filter_str: str | None, cache_dir: str | None) -> None:
    stored = set()
    transport = await _start_transport(cache_dir)
    try:
        stored = await transport.list_stored()
    except FocusedReaderError as e:
        logger.warning("Could not read voice cache: %s", e)
    finally:
        await transport.close()

    names = [n for n in VOICE_QUALITIES if not filter_str or filter_str in n.lower()]
    if not names:
        print("No matching voices found.")
        return
    print("Available voices:")
    for name in names:
        labels = [
            f"{q} ✓" if voice_id(name, q) in stored else q
            for q in voice_qualities(name)
        ]
        print(f"  {name}  ({', '.join(labels)})")


def cmd_voices(args):
    """List neural voices and which are downloaded."""
    asyncio.run(_list_voices(args.filter.lower() if args.filter else None, args.cache_dir))


async def _download(name: str, quality: str | None, cache_dir: str | None) -> str:
    transport = await _start_transport(cache_dir)
    try:
        backend = NeuralVoiceBackend(transport, output=None, voice=name, quality=quality)
        await backend.download(_print_progress)
        print()
        return backend.voice_id
    finally:
        await transport.close()


def cmd_download(args):
    """Download and cache a neural voice."""
    library = Library(args.library)
    settings = library.load_settings()
    name = args.voice or settings["voice"]
    if name not in VOICE_QUALITIES:
        print(f"Error: Unknown voice: {name}. Run 'focused-reader voices'.", file=sys.stderr)
        raise SystemExit(1)
    try:
        downloaded = asyncio.run(_download(name, args.quality or settings["quality"], args.cache_dir))
    except FocusedReaderError as e:
        print(f"\nError: Download failed: {e}", file=sys.stderr)
        raise SystemExit(1)
    print(f"Voice ready: {downloaded}")


async def _handle_command(scheduler: PacingScheduler, line: str) -> bool:
    """Apply one interactive command. Returns False to quit."""
    parts = line.split()
    if not parts:
        return True
    command, rest = parts[0].lower(), parts[1:]
    session = scheduler.session

    if command == "q":
        return False
    elif command == "p":
        await scheduler.toggle()
    elif command == "f":
        await scheduler.skip_forward()
    elif command == "b":
        await scheduler.skip_backward()
    elif command in ("+", "-"):
        step = WPM_STEP if command == "+" else -WPM_STEP
        wpm = await scheduler.set_words_per_minute(session.words_per_minute + step)
        print(f"\n{wpm} WPM")
    elif command == "m":
        next_mode = MODE_CYCLE[(MODE_CYCLE.index(session.mode) + 1) % len(MODE_CYCLE)]
        await scheduler.set_mode(next_mode)
        print(f"\nVoice mode: {next_mode.value}")
    elif command == "c" and rest and rest[0].isdigit():
        await scheduler.select_chapter(int(rest[0]) - 1)
    elif command == "g" and rest:
        try:
            pct = float(rest[0]) / 100
        except ValueError:
            pct = None
        if pct is None or not math.isfinite(pct):
            print("\nUsage: g PCT")
            return True
        await scheduler.seek(int(pct * total_words(session.document)))
    elif command == "v" and rest:
        if rest[0] not in VOICE_QUALITIES:
            print(f"\nUnknown voice: {rest[0]}")
            return True
        selected = await scheduler.select_voice(rest[0], rest[1] if len(rest) > 1 else None)
        print(f"\nNeural voice: {selected}")
    elif command == "d":
        await scheduler.download_voice(_print_progress)
    else:
        print("\n" + HELP_TEXT)
    return True


async def _read_session(library: Library, doc, settings: dict, wpm: int | None, cache_dir: str | None) -> None:
    renderer = TerminalRenderer()
    output = SoundDeviceOutput()
    transport = await _start_transport(cache_dir)
    backends = {
        VoiceMode.LOCAL: LocalVoiceBackend(voice=settings.get("local_voice")),
        VoiceMode.NEURAL: NeuralVoiceBackend(transport, output, settings["voice"], settings["quality"]),
    }
    scheduler = PacingScheduler(renderer, library, backends, output)

    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)

    try:
        # Settings pace applies until the document's saved position says otherwise
        await scheduler.set_words_per_minute(settings["wpm"])
        await scheduler.open_document(doc)
        if wpm:
            await scheduler.set_words_per_minute(wpm)
        await scheduler.set_mode(settings["mode"])
        print(f"\n{doc.title} by {doc.author}\n{HELP_TEXT}")
        await scheduler.play()
        while True:
            line = await reader.readline()
            if not line:
                # Input closed: read to the end, then leave
                await scheduler.join()
                break
            if not await _handle_command(scheduler, line.decode().strip()):
                break
    finally:
        await scheduler.close()
        await transport.close()
        print()


def cmd_read(args):
    """Read a document interactively."""
    library = Library(args.library)
    doc = _get_document(library, args.id)
    settings = library.load_settings()
    if args.mode:
        settings["mode"] = args.mode
    if args.voice:
        settings["voice"] = args.voice
    if args.quality:
        settings["quality"] = args.quality
    try:
        asyncio.run(_read_session(library, doc, settings, args.wpm, args.cache_dir))
    except FocusedReaderError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(1)
    except KeyboardInterrupt:
        print()


def main(argv=None):
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="focused-reader",
        description="Focused Reader — paced word-by-word reading with optional speech",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument("--library", default=LIBRARY_DIR, help="Library directory")
    parser.add_argument("--cache-dir", help="Neural voice cache directory")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # import
    import_parser = subparsers.add_parser("import", help="Import a plain-text book")
    import_parser.add_argument("file", help="Path to the text file")
    import_parser.set_defaults(func=cmd_import)

    # list
    list_parser = subparsers.add_parser("list", help="List imported documents")
    list_parser.set_defaults(func=cmd_list)

    # status
    status_parser = subparsers.add_parser("status", help="Show reading position")
    status_parser.add_argument("id", help="Document id")
    status_parser.set_defaults(func=cmd_status)

    # read
    read_parser = subparsers.add_parser("read", help="Read a document")
    read_parser.add_argument("id", help="Document id")
    read_parser.add_argument("--mode", choices=[m.value for m in VoiceMode], help="Voice mode")
    read_parser.add_argument("--wpm", type=int, help="Words per minute")
    read_parser.add_argument("--voice", help="Neural voice name")
    read_parser.add_argument("--quality", help="Neural voice quality")
    read_parser.set_defaults(func=cmd_read)

    # delete
    delete_parser = subparsers.add_parser("delete", help="Delete a document")
    delete_parser.add_argument("id", help="Document id")
    delete_parser.set_defaults(func=cmd_delete)

    # voices
    voices_parser = subparsers.add_parser("voices", help="List neural voices")
    voices_parser.add_argument("--filter", help="Filter voices by substring")
    voices_parser.set_defaults(func=cmd_voices)

    # download
    download_parser = subparsers.add_parser("download", help="Download a neural voice")
    download_parser.add_argument("voice", nargs="?", help="Voice name (default: configured voice)")
    download_parser.add_argument("--quality", help="Voice quality")
    download_parser.set_defaults(func=cmd_download)

    # set
    set_parser = subparsers.add_parser("set", help="Update settings")
    set_parser.add_argument("key", help="Setting key")
    set_parser.add_argument("value", help="Setting value")
    set_parser.set_defaults(func=cmd_set)

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        return

    args.func(args)


if __name__ == "__main__":
    main()
