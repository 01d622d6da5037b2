import asyncio
import json
import logging
import os
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from .config import Settings
from .encoding import detect_header
from .events import config_error, config_success, info_event, ping_event, reset_event, update_event
from .store import Category, Encoding, FileStateStore, TrackedFile
from .tail import TailReader, tail_lines


logger = logging.getLogger("logwatch.runtime")


class LogWatchError(Exception):
    pass


class WatchRootLost(LogWatchError):
    pass


class WatchKind(Enum):
    ADDED = "add"
    CHANGED = "change"
    REMOVED = "remove"


@dataclass
class FileEvent:
    kind: WatchKind
    path: str
    size: Optional[int] = None
    mtime: Optional[float] = None


class DirWatcher:
    """Polling watch stream over a directory tree.

    The first scan reports every existing file as ADDED. Dot-prefixed entries
    are skipped and recursion stops `depth` directory levels below the root.
    """

    def __init__(self, path: str, poll_interval: float = 0.5, depth: int = 2):
        self.root = Path(path)
        self.poll = poll_interval
        self.depth = depth
        self._snapshot: Dict[str, Tuple[int, float]] = {}
        self._running = False

    def _scan(self) -> Dict[str, Tuple[int, float]]:
        if not self.root.is_dir():
            raise WatchRootLost(f"watch root no longer exists: {self.root}")
        files: Dict[str, Tuple[int, float]] = {}
        base = len(self.root.parts)
        for dirpath, dirnames, filenames in os.walk(self.root):
            level = len(Path(dirpath).parts) - base
            if level >= self.depth:
                dirnames[:] = []
            else:
                dirnames[:] = [d for d in dirnames if not d.startswith(".")]
            for name in filenames:
                if name.startswith("."):
                    continue
                p = os.path.join(dirpath, name)
                try:
                    st = os.stat(p)
                except FileNotFoundError:
                    continue
                files[p] = (st.st_size, st.st_mtime)
        return files

    async def run(self):
        self._running = True
        self._snapshot = self._scan()
        for p in sorted(self._snapshot):
            size, mtime = self._snapshot[p]
            yield FileEvent(WatchKind.ADDED, p, size, mtime)
        while self._running:
            await asyncio.sleep(self.poll)
            if not self._running:
                break
            new = self._scan()
            old = self._snapshot
            created = set(new) - set(old)
            deleted = set(old) - set(new)
            modified = {p for p in set(new) & set(old) if new[p] != old[p]}
            self._snapshot = new
            for p in sorted(created):
                yield FileEvent(WatchKind.ADDED, p, *new[p])
            for p in sorted(modified):
                yield FileEvent(WatchKind.CHANGED, p, *new[p])
            for p in sorted(deleted):
                yield FileEvent(WatchKind.REMOVED, p)

    def stop(self):
        self._running = False


class Broadcaster:
    def __init__(self):
        self.subs: List[Any] = []

    def register(self, sub) -> None:
        if sub not in self.subs:
            self.subs.append(sub)

    def unregister(self, sub) -> None:
        try:
            self.subs.remove(sub)
        except ValueError:
            pass

    def broadcast(self, event: Dict[str, Any]) -> int:
        """Serialize once and hand the payload to every open subscriber.

        Closed subscribers are skipped, never queued. Returns the delivery count.
        """
        payload = json.dumps(event, ensure_ascii=False)
        delivered = 0
        for sub in list(self.subs):
            if not sub.is_open:
                continue
            try:
                sub.send(payload)
                delivered += 1
            except Exception as e:
                logger.warning("dropping subscriber after send failure: %s", e)
                self.unregister(sub)
        return delivered


class LogController:
    """Discovery/retirement state machine: unseen -> tracked -> retired."""

    def __init__(self, store: FileStateStore, bcast: Broadcaster, settings: Optional[Settings] = None,
                 clock: Callable[[], float] = time.time):
        self.store = store
        self.bcast = bcast
        self.settings = settings or Settings()
        self.reader = TailReader(store)
        self.clock = clock

    def classify(self, path: str) -> Category:
        parts = Path(path).parts
        for marker, cat in self.settings.categories.items():
            if marker in parts:
                return Category(cat)
        return Category.UNKNOWN

    async def handle(self, ev: FileEvent) -> None:
        if ev.kind is WatchKind.ADDED:
            await self.on_added(ev.path, ev.size, ev.mtime)
        elif ev.kind is WatchKind.CHANGED:
            await self.on_changed(ev.path)
        elif ev.kind is WatchKind.REMOVED:
            self.on_removed(ev.path)

    async def on_added(self, path: str, size: Optional[int], mtime: Optional[float]) -> bool:
        if path in self.store:
            return False
        if size is None or mtime is None:
            return False
        if not path.lower().endswith(self.settings.extension.lower()):
            return False
        category = self.classify(path)
        if category is Category.UNKNOWN:
            return False
        if self.clock() - mtime > self.settings.max_age:
            return False

        header = await asyncio.to_thread(detect_header, path, self.settings.header_bytes)
        if path in self.store:
            return False
        seed = max(0, size - self.settings.initial_read_bytes)
        if header.encoding is Encoding.UTF16LE and seed % 2:
            seed += 1
        rec = TrackedFile(
            path=path,
            category=category,
            owner=header.owner,
            encoding=header.encoding,
            offset=size,
            channel=header.channel if category is Category.CHAT else None,
        )
        self.store.put(path, rec)
        label = f"[CHAT: {rec.channel}]" if category is Category.CHAT else "[GAME]"
        logger.info("[watching] %s %s (%s) [%s]", label, rec.owner, os.path.basename(path), rec.encoding.value)

        if size > seed:
            text = await self.reader.read(path, seed, size)
            if self.store.get(path) is not rec:
                # retired or redirected while the catch-up read was in flight
                return False
            snapshot = tail_lines(text, self.settings.initial_lines) if text else ""
            if snapshot.strip():
                self.bcast.broadcast(update_event(rec, snapshot))
        suffix = f" ({rec.channel})" if rec.channel else ""
        self.bcast.broadcast(info_event(f"Found {category.value} log: {rec.owner}{suffix}"))
        return True

    async def on_changed(self, path: str) -> None:
        rec = self.store.get(path)
        if rec is None:
            return
        try:
            size = os.stat(path).st_size
        except OSError as e:
            logger.debug("stat of %s failed: %s", path, e)
            return
        if size > rec.offset:
            start = rec.offset
            end = size
            if rec.encoding is Encoding.UTF16LE:
                # leave a half-written code unit for the next read
                end = start + ((size - start) // 2) * 2
                if end == start:
                    return
            text = await self.reader.read(path, start, end)
            if text is None:
                return
            if self.store.get(path) is not rec or rec.offset != start:
                return
            rec.offset = end
            if text:
                self.bcast.broadcast(update_event(rec, text))
        elif size < rec.offset:
            logger.info("[truncated] %s (%d -> %d bytes)", os.path.basename(path), rec.offset, size)
            rec.offset = 0

    def on_removed(self, path: str) -> None:
        if self.store.remove(path) is not None:
            logger.info("[retired] %s", os.path.basename(path))


class MonitorState:
    def __init__(self, settings: Optional[Settings] = None, store: Optional[FileStateStore] = None,
                 bcast: Optional[Broadcaster] = None):
        self.settings = settings or Settings()
        self.store = store if store is not None else FileStateStore()
        self.bcast = bcast if bcast is not None else Broadcaster()
        self.controller = LogController(self.store, self.bcast, self.settings)
        self.root: Optional[str] = None
        self.event_count = 0
        self._watcher: Optional[DirWatcher] = None
        self._watch_task: Optional[asyncio.Task] = None
        self._ping_task: Optional[asyncio.Task] = None
        self._redirect_lock = asyncio.Lock()

    @property
    def watching(self) -> bool:
        return self._watch_task is not None and not self._watch_task.done()

    def start_watch(self, root: str) -> bool:
        if not os.path.isdir(root):
            logger.error("[error] directory not found: %s", root)
            return False
        self.root = root
        watcher = DirWatcher(root, poll_interval=self.settings.poll_interval, depth=self.settings.depth)

        async def _task():
            try:
                async for ev in watcher.run():
                    self.event_count += 1
                    try:
                        await self.controller.handle(ev)
                    except Exception:
                        logger.exception("failed to handle %s for %s", ev.kind.value, ev.path)
            except WatchRootLost as e:
                logger.error("[error] %s; send set-path or restart to resume", e)
                self.bcast.broadcast(info_event(f"Watch stopped: {e}"))

        self._watcher = watcher
        self._watch_task = asyncio.create_task(_task())
        logger.info("[system] starting watcher on %s", root)
        return True

    async def stop_watch(self) -> None:
        if self._watcher is not None:
            logger.info("[system] stopping previous watcher")
            self._watcher.stop()
        task, self._watch_task, self._watcher = self._watch_task, None, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def set_root(self, new_root: str) -> Dict[str, Any]:
        """Point the monitor at a new root directory.

        An invalid target changes nothing. Otherwise the old watch is fully
        stopped before `reset` goes out, so no update for either root can
        arrive out of order with it.
        """
        target = os.path.abspath(os.path.expanduser(new_root))
        if not os.path.isdir(target):
            logger.error("[config] directory not found: %s", new_root)
            return config_error(f"Directory not found: {new_root}")
        async with self._redirect_lock:
            await self.stop_watch()
            self.store.clear()
            self.bcast.broadcast(reset_event())
            if not self.start_watch(target):
                return config_error(f"Directory not found: {new_root}")
            self.bcast.broadcast(info_event(f"Log path updated to: {target}"))
        return config_success(target)

    async def _ping_loop(self):
        while True:
            await asyncio.sleep(self.settings.ping_interval)
            self.bcast.broadcast(ping_event())

    def start_ping(self) -> None:
        if self._ping_task is None:
            self._ping_task = asyncio.create_task(self._ping_loop())

    def status(self) -> Dict[str, Any]:
        return {
            "type": "status",
            "root": self.root,
            "watching": self.watching,
            "files": self.store.paths(),
            "subscribers": len(self.bcast.subs),
            "events": self.event_count,
        }

    async def stop(self):
        await self.stop_watch()
        if self._ping_task is not None:
            self._ping_task.cancel()
            try:
                await self._ping_task
            except asyncio.CancelledError:
                pass
            self._ping_task = None


async def run_monitor(settings: Settings):
    from .server import HttpStatusServer, SubscriberServer

    state = MonitorState(settings=settings)
    srv = SubscriberServer(settings.host, settings.port, state)
    await srv.start()
    http_srv = HttpStatusServer(settings.host, settings.http_port, state)
    await http_srv.start()

    root = settings.resolved_root()
    if not state.start_watch(root):
        logger.error("[system] no usable log directory; waiting for set-path")
    state.start_ping()

    print(
        f"Monitor running. Subscribers on {settings.host}:{settings.port},"
        f" HTTP stream on http://{settings.host}:{settings.http_port}/stream."
        " Press Ctrl-C to stop."
    )
    try:
        while True:
            await asyncio.sleep(3600)
    except (asyncio.CancelledError, KeyboardInterrupt):
        await state.stop()
        await srv.close()
        await http_srv.close()
        print("Monitor stopped.")
