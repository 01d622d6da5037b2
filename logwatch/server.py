from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any, Dict, Optional, Set

from .events import config_error, info_event
from .focus import focus_window

if TYPE_CHECKING:
    from .runtime import MonitorState


logger = logging.getLogger("logwatch.server")

_CONN_ERRORS = (ConnectionResetError, ConnectionAbortedError, BrokenPipeError)


class QueueSubscriber:
    """One connected client: a bounded queue of serialized events.

    On overflow the oldest payload is dropped so a slow reader never blocks
    the broadcaster.
    """

    def __init__(self, max_queue: int = 200):
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue)
        self.is_open = True

    def send(self, payload: str) -> None:
        if self.queue.full():
            try:
                self.queue.get_nowait()
            except asyncio.QueueEmpty:
                pass
        self.queue.put_nowait(payload)

    def send_event(self, event: Dict[str, Any]) -> None:
        self.send(json.dumps(event, ensure_ascii=False))

    def close(self) -> None:
        self.is_open = False


async def _close_writer(writer: asyncio.StreamWriter) -> None:
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass


class SubscriberServer:
    """Bidirectional subscriber channel: one JSON document per line each way."""

    def __init__(self, host: str, port: int, state: "MonitorState"):
        self.host = host
        self.port = port
        self.state = state
        self.server = None
        self._writers: Set[asyncio.StreamWriter] = set()

    async def handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self._writers.add(writer)
        sub = QueueSubscriber()
        self.state.bcast.register(sub)
        sub.send_event(info_event(f"Connected. Watching: {self.state.root or '(nothing)'}"))
        pump = asyncio.create_task(self._pump(sub, writer))
        try:
            while sub.is_open:
                try:
                    data = await reader.readline()
                except (ValueError, asyncio.LimitOverrunError) as e:
                    logger.warning("ignoring oversized subscriber message: %s", e)
                    continue
                if not data:
                    break
                reply = await self._on_line(data)
                if reply is not None:
                    sub.send_event(reply)
        except _CONN_ERRORS:
            pass
        finally:
            sub.close()
            self.state.bcast.unregister(sub)
            pump.cancel()
            try:
                await pump
            except asyncio.CancelledError:
                pass
            self._writers.discard(writer)
            await _close_writer(writer)

    async def _pump(self, sub: QueueSubscriber, writer: asyncio.StreamWriter):
        try:
            while not writer.is_closing():
                payload = await sub.queue.get()
                writer.write((payload + "\n").encode("utf-8"))
                await writer.drain()
        except _CONN_ERRORS:
            sub.close()

    async def _on_line(self, data: bytes) -> Optional[Dict[str, Any]]:
        try:
            cmd = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning("ignoring malformed subscriber message: %s", e)
            return None
        if not isinstance(cmd, dict):
            logger.warning("ignoring non-object subscriber message: %r", cmd)
            return None
        return await self._dispatch(cmd)

    async def _dispatch(self, cmd: dict) -> Optional[Dict[str, Any]]:
        typ = cmd.get("type")
        if typ == "focus":
            character = cmd.get("character")
            if character:
                focus_window(str(character))
            return None
        if typ == "set-path":
            path = cmd.get("path")
            if not path or not isinstance(path, str):
                return config_error("missing path")
            logger.info("[config] path change: %s", path)
            return await self.state.set_root(path)
        if typ == "status":
            return self.state.status()
        logger.warning("ignoring unknown command type: %r", typ)
        return None

    async def start(self):
        self.server = await asyncio.start_server(self.handle, self.host, self.port)

    async def close(self):
        if self.server:
            self.server.close()
            for w in list(self._writers):
                w.close()
            await self.server.wait_closed()


class HttpStatusServer:
    """Minimal HTTP server: GET /status and a read-only SSE feed on /stream."""

    def __init__(self, host: str, port: int, state: "MonitorState", keepalive: float = 15.0):
        self.host = host
        self.port = port
        self.state = state
        self.keepalive = keepalive
        self.server = None
        self._streams: Set[asyncio.StreamWriter] = set()

    def _respond(self, writer: asyncio.StreamWriter, status: str, body: bytes, ctype: str) -> None:
        headers = (
            f"HTTP/1.1 {status}\r\n"
            f"Content-Type: {ctype}\r\n"
            "Access-Control-Allow-Origin: *\r\n"
            f"Content-Length: {len(body)}\r\n"
            "Connection: close\r\n\r\n"
        ).encode()
        writer.write(headers + body)

    async def handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        try:
            data = await reader.readuntil(b"\r\n\r\n")
        except asyncio.IncompleteReadError as e:
            data = e.partial
        except asyncio.LimitOverrunError:
            data = b""
        first = (data or b"").split(b"\r\n", 1)[0].decode(errors="ignore")
        method, raw_path, *_ = (first.split(" ") + ["", ""])[:3]
        path = raw_path.partition("?")[0]

        if method == "GET" and path == "/stream":
            await self._stream(writer)
            return
        if method == "GET" and path == "/status":
            body = json.dumps(self.state.status(), ensure_ascii=False).encode("utf-8")
            self._respond(writer, "200 OK", body, "application/json")
        else:
            self._respond(writer, "404 Not Found", b"not found", "text/plain; charset=utf-8")
        try:
            await writer.drain()
        except _CONN_ERRORS:
            pass
        await _close_writer(writer)

    async def _stream(self, writer: asyncio.StreamWriter):
        headers = (
            b"HTTP/1.1 200 OK\r\n"
            b"Content-Type: text/event-stream\r\n"
            b"Cache-Control: no-cache\r\n"
            b"Connection: keep-alive\r\n"
            b"Access-Control-Allow-Origin: *\r\n\r\n"
        )
        sub = QueueSubscriber()
        self._streams.add(writer)
        try:
            writer.write(headers)
            await writer.drain()
            self.state.bcast.register(sub)
            sub.send_event(info_event(f"Connected. Watching: {self.state.root or '(nothing)'}"))
            while sub.is_open and not writer.is_closing():
                try:
                    payload = await asyncio.wait_for(sub.queue.get(), timeout=self.keepalive)
                    writer.write(("data: " + payload + "\n\n").encode("utf-8"))
                except asyncio.TimeoutError:
                    writer.write(b": keep-alive\n\n")
                await writer.drain()
        except _CONN_ERRORS:
            pass
        finally:
            sub.close()
            self.state.bcast.unregister(sub)
            self._streams.discard(writer)
            await _close_writer(writer)

    async def start(self):
        self.server = await asyncio.start_server(self.handle, self.host, self.port)

    async def close(self):
        if self.server:
            self.server.close()
            for w in list(self._streams):
                w.close()
            await self.server.wait_closed()
