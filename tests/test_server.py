import asyncio
import json
from pathlib import Path

from logwatch.config import Settings
from logwatch.events import info_event
from logwatch.runtime import MonitorState
from logwatch.server import HttpStatusServer, SubscriberServer


async def read_until(reader: asyncio.StreamReader, typ: str, timeout: float = 3.0) -> dict:
    while True:
        line = await asyncio.wait_for(reader.readline(), timeout=timeout)
        assert line, "connection closed"
        msg = json.loads(line)
        if msg.get("type") == typ:
            return msg


def test_subscriber_channel_commands_and_broadcasts(tmp_path: Path):
    async def run_case():
        state = MonitorState(Settings(poll_interval=0.05))
        state.start_watch(str(tmp_path))
        srv = SubscriberServer("127.0.0.1", 0, state)
        await srv.start()
        port = srv.server.sockets[0].getsockname()[1]
        reader, writer = await asyncio.open_connection("127.0.0.1", port)
        try:
            hello = await read_until(reader, "info")
            assert hello["message"] == f"Connected. Watching: {tmp_path}"

            # malformed and unknown input is ignored without closing the channel
            writer.write(b"not json\n")
            writer.write(b'{"type": "dance"}\n')
            writer.write(json.dumps({"type": "set-path", "path": str(tmp_path / "nope")}).encode() + b"\n")
            await writer.drain()
            err = await read_until(reader, "config-error")
            assert "nope" in err["message"]

            writer.write(b'{"type": "status"}\n')
            await writer.drain()
            st = await read_until(reader, "status")
            assert st["root"] == str(tmp_path)
            assert st["subscribers"] == 1

            state.bcast.broadcast(info_event("broadcast reaches us"))
            msg = await read_until(reader, "info")
            assert msg["message"] == "broadcast reaches us"
        finally:
            writer.close()
            await state.stop()
            await srv.close()

    asyncio.run(run_case())


def test_http_status_and_stream(tmp_path: Path):
    async def run_case():
        state = MonitorState(Settings(poll_interval=0.05))
        state.start_watch(str(tmp_path))
        srv = HttpStatusServer("127.0.0.1", 0, state)
        await srv.start()
        port = srv.server.sockets[0].getsockname()[1]

        reader, writer = await asyncio.open_connection("127.0.0.1", port)
        writer.write(b"GET /status HTTP/1.1\r\nHost: x\r\nConnection: close\r\n\r\n")
        await writer.drain()
        status = await reader.read(-1)
        writer.close()

        reader, writer = await asyncio.open_connection("127.0.0.1", port)
        writer.write(b"GET /stream HTTP/1.1\r\nHost: x\r\n\r\n")
        await writer.drain()
        head = await asyncio.wait_for(reader.readuntil(b"\r\n\r\n"), timeout=3.0)
        first = await asyncio.wait_for(reader.readuntil(b"\n\n"), timeout=3.0)
        writer.close()
        await state.stop()
        await srv.close()
        return status, head, first

    status, head, first = asyncio.run(run_case())
    assert b"200 OK" in status
    body = json.loads(status.split(b"\r\n\r\n", 1)[1])
    assert body["root"] == str(tmp_path)
    assert b"text/event-stream" in head
    assert first.startswith(b"data: ")
    assert json.loads(first[len(b"data: "):])["type"] == "info"


def test_oversized_command_line_is_ignored(tmp_path: Path):
    async def run_case():
        state = MonitorState(Settings(poll_interval=0.05))
        state.start_watch(str(tmp_path))
        srv = SubscriberServer("127.0.0.1", 0, state)
        await srv.start()
        port = srv.server.sockets[0].getsockname()[1]
        reader, writer = await asyncio.open_connection("127.0.0.1", port)
        try:
            await read_until(reader, "info")
            # longer than the stream reader's 64 KiB line limit
            writer.write(b"x" * 70000 + b"\n")
            writer.write(b'{"type": "status"}\n')
            await writer.drain()
            st = await read_until(reader, "status")
            assert st["root"] == str(tmp_path)
        finally:
            writer.close()
            await state.stop()
            await srv.close()

    asyncio.run(run_case())
