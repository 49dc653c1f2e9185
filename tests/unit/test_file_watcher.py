"""
Unit tests for the watchdog event translation in FileWatcher.
"""

from pathlib import Path

import pytest
from watchdog.events import (
    DirCreatedEvent,
    DirDeletedEvent,
    DirModifiedEvent,
    DirMovedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from todoscan.core.file_events import FileEvent, FileEventType
from todoscan.core.scope import get_glob_set
from todoscan.infrastructure.file_watcher import FileWatcher, _WatchdogEventHandler

ROOT = Path("/workspace")


@pytest.fixture
def emitted() -> list[FileEvent]:
    return []


def _handler(emitted: list[FileEvent], ignore_globs=()) -> _WatchdogEventHandler:
    return _WatchdogEventHandler(emitted.append, get_glob_set(tuple(ignore_globs)), ROOT)


def _summary(events: list[FileEvent]) -> list[tuple[FileEventType, Path, bool]]:
    return [(e.event_type, e.file_path, e.is_directory) for e in events]


def test_file_events_translated(emitted):
    handler = _handler(emitted)

    handler.on_created(FileCreatedEvent(str(ROOT / "a.ts")))
    handler.on_modified(FileModifiedEvent(str(ROOT / "a.ts")))
    handler.on_deleted(FileDeletedEvent(str(ROOT / "a.ts")))

    assert _summary(emitted) == [
        (FileEventType.CREATED, ROOT / "a.ts", False),
        (FileEventType.MODIFIED, ROOT / "a.ts", False),
        (FileEventType.DELETED, ROOT / "a.ts", False),
    ]


def test_directory_create_and_modify_skipped(emitted):
    handler = _handler(emitted)

    handler.on_created(DirCreatedEvent(str(ROOT / "d")))
    handler.on_modified(DirModifiedEvent(str(ROOT / "d")))

    assert emitted == []


def test_directory_delete_forwarded(emitted):
    handler = _handler(emitted)

    handler.on_deleted(DirDeletedEvent(str(ROOT / "d")))

    assert _summary(emitted) == [(FileEventType.DELETED, ROOT / "d", True)]


def test_file_move_is_delete_plus_create(emitted):
    handler = _handler(emitted)

    handler.on_moved(FileMovedEvent(str(ROOT / "old.ts"), str(ROOT / "new.ts")))

    assert _summary(emitted) == [
        (FileEventType.DELETED, ROOT / "old.ts", False),
        (FileEventType.CREATED, ROOT / "new.ts", False),
    ]


def test_directory_move_only_deletes_source(emitted):
    handler = _handler(emitted)

    handler.on_moved(DirMovedEvent(str(ROOT / "a"), str(ROOT / "b")))

    assert _summary(emitted) == [(FileEventType.DELETED, ROOT / "a", True)]


def test_ignore_globs(emitted):
    handler = _handler(emitted, ["**/node_modules/**", "**/.git/**"])

    handler.on_created(FileCreatedEvent(str(ROOT / "node_modules/x/index.js")))
    handler.on_modified(FileModifiedEvent(str(ROOT / ".git/index")))
    handler.on_deleted(DirDeletedEvent(str(ROOT / "node_modules")))
    handler.on_created(FileCreatedEvent(str(ROOT / "src/a.ts")))

    assert _summary(emitted) == [(FileEventType.CREATED, ROOT / "src/a.ts", False)]


def test_events_outside_root_ignored_when_filtering(emitted):
    handler = _handler(emitted, ["**/build/**"])

    handler.on_created(FileCreatedEvent("/elsewhere/a.ts"))

    assert emitted == []


class TestFileWatcherLifecycle:
    def test_start_rejects_missing_path(self, tmp_path: Path):
        watcher = FileWatcher()
        with pytest.raises(ValueError, match="does not exist"):
            watcher.start(tmp_path / "missing", lambda event: None)
        assert not watcher.is_running()

    def test_start_rejects_file(self, tmp_path: Path):
        file_path = tmp_path / "a.txt"
        file_path.write_text("x", encoding="utf-8")
        watcher = FileWatcher()
        with pytest.raises(ValueError, match="not a directory"):
            watcher.start(file_path, lambda event: None)

    def test_start_and_stop(self, tmp_path: Path):
        watcher = FileWatcher()
        watcher.start(tmp_path, lambda event: None)
        try:
            assert watcher.is_running()
            with pytest.raises(RuntimeError):
                watcher.start(tmp_path, lambda event: None)
        finally:
            watcher.stop()
        assert not watcher.is_running()

    def test_ignore_globs_replaced_while_running(self, tmp_path: Path):
        received: list[FileEvent] = []
        watcher = FileWatcher(ignore_globs=["gen/**"])
        watcher.start(tmp_path, received.append)
        root = watcher.root
        try:
            watcher.set_ignore_globs(["out/**"])
            handler = watcher._handler
            handler.on_created(FileCreatedEvent(str(root / "gen/a.ts")))
            handler.on_created(FileCreatedEvent(str(root / "out/b.ts")))
        finally:
            watcher.stop()

        assert watcher.ignore_globs == ("out/**",)
        assert _summary(received) == [(FileEventType.CREATED, root / "gen/a.ts", False)]

    def test_ignore_globs_set_before_start_apply_on_start(self, tmp_path: Path):
        received: list[FileEvent] = []
        watcher = FileWatcher(ignore_globs=["gen/**"])
        watcher.set_ignore_globs([])
        watcher.start(tmp_path, received.append)
        root = watcher.root
        try:
            watcher._handler.on_created(FileCreatedEvent(str(root / "gen/a.ts")))
        finally:
            watcher.stop()

        assert _summary(received) == [(FileEventType.CREATED, root / "gen/a.ts", False)]
