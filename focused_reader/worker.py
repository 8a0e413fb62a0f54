"""Synthesis worker process: answers transport requests over stdin/stdout.

Run as ``python -m focused_reader.worker [--cache-dir DIR]``. Each request
line is handled in its own task, so a long download does not hold up
predictions. Stdout carries only protocol frames; logs go to stderr.
"""

import argparse
import asyncio
import base64
import json
import logging
import sys

from focused_reader.constants import VOICE_CACHE_DIR
from focused_reader.synthesis import Synthesizer, VoiceCache

logger = logging.getLogger(__name__)


class Worker:
    def __init__(self, synthesizer: Synthesizer, send):
        self.synthesizer = synthesizer
        self.send = send
        self.tasks: set[asyncio.Task] = set()

    def submit(self, frame: dict) -> asyncio.Task:
        task = asyncio.ensure_future(self.handle(frame))
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)
        return task

    async def handle(self, frame: dict) -> None:
        request_id = frame.get("id")
        kind = frame.get("kind")
        try:
            if kind == "predict":
                wav = await self.synthesizer.predict(frame["text"], frame["voice_id"])
                self.send({"id": request_id, "kind": "data", "audio": base64.b64encode(wav).decode()})
            elif kind == "download":
                def progress(loaded, total):
                    self.send({"id": request_id, "kind": "progress", "loaded": loaded, "total": total})
                await self.synthesizer.download(frame["voice_id"], progress)
                self.send({"id": request_id, "kind": "done"})
            elif kind == "stored":
                self.send({"id": request_id, "kind": "data", "voices": self.synthesizer.stored()})
            elif kind == "reset":
                self.synthesizer.reset()
                self.send({"id": request_id, "kind": "done"})
            else:
                raise ValueError(f"Unknown request kind: {kind!r}")
        except Exception as e:
            logger.error("Request %s (%s) failed: %s", request_id, kind, e)
            self.send({"id": request_id, "kind": "error", "message": str(e)})


def _write_frame(frame: dict) -> None:
    sys.stdout.write(json.dumps(frame) + "\n")
    sys.stdout.flush()


async def serve(cache_dir: str) -> None:
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader(limit=2 ** 20)
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
    worker = Worker(Synthesizer(VoiceCache(cache_dir)), _write_frame)

    while True:
        line = await reader.readline()
        if not line:
            break
        try:
            frame = json.loads(line)
        except json.JSONDecodeError:
            logger.error("Ignoring undecodable request: %r", line[:200])
            continue
        if not isinstance(frame, dict):
            logger.error("Ignoring non-object request: %r", frame)
            continue
        worker.submit(frame)

    if worker.tasks:
        await asyncio.gather(*worker.tasks, return_exceptions=True)


def main():
    parser = argparse.ArgumentParser(prog="focused_reader.worker", description="Speech synthesis worker")
    parser.add_argument("--cache-dir", default=VOICE_CACHE_DIR, help="Directory for downloaded voices")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging on stderr")
    args = parser.parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="worker %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    asyncio.run(serve(args.cache_dir))


if __name__ == "__main__":
    main()
