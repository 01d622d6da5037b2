import asyncio
import shutil
from pathlib import Path

import pytest

from logwatch.runtime import DirWatcher, WatchKind, WatchRootLost


def test_scan_respects_depth_and_skips_dotfiles(tmp_path: Path):
    (tmp_path / "Gamelogs" / "sub").mkdir(parents=True)
    (tmp_path / "Gamelogs" / "sub" / "deep").mkdir()
    (tmp_path / ".hidden").mkdir()
    (tmp_path / "Gamelogs" / "a.txt").write_text("a")
    (tmp_path / "Gamelogs" / ".b.txt").write_text("b")
    (tmp_path / "Gamelogs" / "sub" / "c.txt").write_text("c")
    (tmp_path / "Gamelogs" / "sub" / "deep" / "d.txt").write_text("d")
    (tmp_path / ".hidden" / "e.txt").write_text("e")

    found = DirWatcher(str(tmp_path), depth=2)._scan()
    names = sorted(Path(p).name for p in found)
    assert names == ["a.txt", "c.txt"]
    size, mtime = found[str(tmp_path / "Gamelogs" / "a.txt")]
    assert size == 1 and mtime > 0


def test_scan_raises_when_root_disappears(tmp_path: Path):
    root = tmp_path / "logs"
    root.mkdir()
    w = DirWatcher(str(root))
    w._scan()
    shutil.rmtree(root)
    with pytest.raises(WatchRootLost):
        w._scan()


def test_dir_watcher_add_change_remove(tmp_path: Path):
    existing = tmp_path / "old.txt"
    existing.write_text("x\n", encoding="utf-8")

    async def run_case():
        events = []
        got = {WatchKind.ADDED: 0, WatchKind.CHANGED: 0, WatchKind.REMOVED: 0}
        watcher = DirWatcher(str(tmp_path), poll_interval=0.05)

        async def collect():
            async for ev in watcher.run():
                events.append(ev)
                got[ev.kind] += 1
                if got[WatchKind.ADDED] >= 2 and got[WatchKind.CHANGED] and got[WatchKind.REMOVED]:
                    watcher.stop()
                    break

        task = asyncio.create_task(collect())
        await asyncio.sleep(0.1)

        f = tmp_path / "new.txt"
        f.write_text("hello\n", encoding="utf-8")
        await asyncio.sleep(0.15)

        f.write_text("hello\nworld\n", encoding="utf-8")
        await asyncio.sleep(0.15)

        f.unlink()
        await asyncio.sleep(0.2)
        if not task.done():
            task.cancel()
        return events

    events = asyncio.run(run_case())
    first = events[0]
    assert first.kind is WatchKind.ADDED and first.path == str(existing)
    assert first.size == 2
    kinds = [(e.kind, Path(e.path).name) for e in events]
    assert (WatchKind.ADDED, "new.txt") in kinds
    assert (WatchKind.CHANGED, "new.txt") in kinds
    assert (WatchKind.REMOVED, "new.txt") in kinds
