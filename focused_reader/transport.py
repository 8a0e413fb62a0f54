"""Id-correlated request/response channel to the synthesis worker process.

Every request gets the next id from a counter and an entry in the pending
table. Single-shot requests (``predict``, ``stored``, ``reset``) complete on
their first ``data``/``done`` frame; ``download`` is streaming and keeps its
entry through any number of ``progress`` frames until ``done`` or
``error``. Frames for ids not in the table are ignored.
"""

import asyncio
import base64
import binascii
import itertools
import json
import logging
import sys
from dataclasses import dataclass
from typing import Callable

from focused_reader.constants import WORKER_MODULE
from focused_reader.errors import TransportError

logger = logging.getLogger(__name__)

# request kind -> streaming
REQUEST_KINDS = {
    "predict": False,
    "download": True,
    "stored": False,
    "reset": False,
}

# Requests answered by a data frame; the rest finish with done
DATA_REPLIES = ("predict", "stored")

FRAME_KINDS = ("data", "progress", "done", "error")


@dataclass
class PendingRequest:
    kind: str
    future: asyncio.Future
    streaming: bool = False
    on_progress: Callable[[int, int], None] | None = None


class SubprocessChannel:
    """Newline-delimited JSON over the stdin/stdout of a worker process."""

    def __init__(self, process):
        self.process = process

    @classmethod
    async def spawn(cls, *args: str) -> "SubprocessChannel":
        process = await asyncio.create_subprocess_exec(
            sys.executable, "-m", WORKER_MODULE, *args,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            limit=2 ** 26,  # a frame carries a whole sentence of base64 audio
        )
        logger.debug("Started synthesis worker pid %d", process.pid)
        return cls(process)

    async def send(self, frame: dict) -> None:
        self.process.stdin.write(json.dumps(frame).encode() + b"\n")
        await self.process.stdin.drain()

    async def receive(self) -> dict | None:
        """Next frame, or None once the worker has exited."""
        while True:
            line = await self.process.stdout.readline()
            if not line:
                return None
            line = line.strip()
            if not line:
                continue
            try:
                return json.loads(line)
            except json.JSONDecodeError:
                logger.error("Undecodable worker frame: %r", line[:200])
                return {}

    async def close(self) -> None:
        if self.process.returncode is None:
            self.process.stdin.close()
            try:
                await asyncio.wait_for(self.process.wait(), timeout=5)
            except asyncio.TimeoutError:
                self.process.kill()
                await self.process.wait()


class InferenceTransport:
    """Client side of the worker protocol."""

    def __init__(self, channel):
        self.channel = channel
        self.pending: dict[int, PendingRequest] = {}
        self._ids = itertools.count(1)
        self._listener = None

    def start(self) -> None:
        if self._listener is None:
            self._listener = asyncio.ensure_future(self._listen())

    async def close(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        await self.channel.close()
        self._reject_all("Worker channel closed")

    def _reject_all(self, message: str) -> None:
        pending, self.pending = self.pending, {}
        for request in pending.values():
            if not request.future.done():
                request.future.set_exception(TransportError(message))

    async def _listen(self) -> None:
        while True:
            frame = await self.channel.receive()
            if frame is None:
                logger.warning("Synthesis worker exited")
                self._reject_all("Synthesis worker exited")
                return
            self.dispatch(frame)

    def _settle(self, request_id: int, result=None, error: Exception | None = None) -> None:
        request = self.pending.pop(request_id)
        if request.future.done():
            return
        if error is not None:
            request.future.set_exception(error)
        else:
            request.future.set_result(result)

    def dispatch(self, frame: dict) -> None:
        """Route one worker frame to its pending request."""
        request_id = frame.get("id") if isinstance(frame, dict) else None
        request = self.pending.get(request_id) if isinstance(request_id, int) else None
        if request is None:
            logger.debug("Ignoring frame for unknown id %r", request_id)
            return

        kind = frame.get("kind")
        if kind == "error":
            self._settle(request_id, error=TransportError(str(frame.get("message", "Worker error"))))
        elif kind == "progress":
            if not request.streaming:
                self._settle(request_id, error=TransportError(f"Unexpected progress frame for {request.kind}"))
                return
            try:
                loaded, total = int(frame["loaded"]), int(frame.get("total") or 0)
            except (KeyError, TypeError, ValueError):
                self._settle(request_id, error=TransportError("Malformed progress frame"))
                return
            if request.on_progress is not None:
                request.on_progress(loaded, total)
        elif kind == "done":
            if request.kind in DATA_REPLIES:
                self._settle(request_id, error=TransportError(f"Missing data for {request.kind}"))
                return
            self._settle(request_id)
        elif kind == "data":
            if request.kind not in DATA_REPLIES:
                self._settle(request_id, error=TransportError(f"Unexpected data frame for {request.kind}"))
                return
            self._settle(request_id, result=frame)
        else:
            self._settle(request_id, error=TransportError(f"Unknown frame kind {kind!r}"))

    def cancel(self, request_id: int) -> None:
        """Stop waiting for a request; its response will be ignored."""
        request = self.pending.pop(request_id, None)
        if request is not None and not request.future.done():
            request.future.cancel()

    async def request(self, kind: str, on_progress=None, **payload):
        streaming = REQUEST_KINDS[kind]
        request_id = next(self._ids)
        future = asyncio.get_running_loop().create_future()
        self.pending[request_id] = PendingRequest(kind, future, streaming, on_progress)
        self.start()
        try:
            try:
                await self.channel.send({"kind": kind, "id": request_id, **payload})
            except (OSError, RuntimeError) as e:
                raise TransportError(f"Cannot reach synthesis worker: {e}") from e
            return await future
        finally:
            self.cancel(request_id)

    async def predict(self, text: str, voice_id: str) -> bytes:
        frame = await self.request("predict", text=text, voice_id=voice_id)
        try:
            return base64.b64decode(frame["audio"], validate=True)
        except (KeyError, TypeError, binascii.Error) as e:
            raise TransportError(f"Malformed audio payload: {e}") from e

    async def download(self, voice_id: str, on_progress: Callable[[int, int], None] | None = None) -> None:
        await self.request("download", on_progress=on_progress, voice_id=voice_id)

    async def list_stored(self) -> set[str]:
        frame = await self.request("stored")
        voices = frame.get("voices") if isinstance(frame, dict) else None
        if not isinstance(voices, list):
            raise TransportError("Malformed stored-voices payload")
        return set(voices)

    async def reset_session(self) -> None:
        await self.request("reset")
