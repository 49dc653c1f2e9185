"""
Tests for the incremental UpdateController.

Uses the in-memory workspace, short debounce delays and a fake clock for
the save suppression window.
"""

import asyncio
import logging
from pathlib import Path

import pytest

from todoscan.core.file_events import FileEvent, FileEventType
from todoscan.core.models import KeywordRule, ScanConfig, Severity, TextBuffer
from todoscan.core.state import DiagnosticStore
from todoscan.infrastructure.fakes import FakeFileWatcher, InMemoryWorkspace, RecordingSink
from todoscan.services.update_controller import ControllerError, UpdateController

RULES = (
    KeywordRule("FIXME", Severity.ERROR),
    KeywordRule("TODO", Severity.WARNING),
)

DEBOUNCE_MS = 20
SETTLE = 0.1


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class ExplodingBuffer(TextBuffer):
    """Buffer whose content cannot be read."""

    def line_at(self, index: int) -> str:
        raise RuntimeError("buffer is gone")


class DeletingWorkspace(InMemoryWorkspace):
    """Deletes one file while another read of the same scan batch is in flight."""

    def __init__(self, *args, victim: str, trigger: str, **kwargs):
        super().__init__(*args, **kwargs)
        self.victim = self.path(victim)
        self.trigger = self.path(trigger)
        self.victim_read = asyncio.Event()
        self.controller: UpdateController | None = None

    async def read_file_bytes(self, path: Path) -> bytes:
        data = await super().read_file_bytes(path)
        if path == self.victim:
            self.victim_read.set()
        elif path == self.trigger and self.controller is not None:
            await self.victim_read.wait()
            self.delete(self.victim.relative_to(self.root).as_posix())
            self.controller.on_file_deleted(self.victim)
        return data


def _config(**overrides) -> ScanConfig:
    overrides.setdefault("rules", RULES)
    overrides.setdefault("exclude_globs", ("**/node_modules/**",))
    return ScanConfig(**overrides)


def _controller(workspace: InMemoryWorkspace, config=None, **kwargs) -> UpdateController:
    kwargs.setdefault("change_debounce_ms", DEBOUNCE_MS)
    kwargs.setdefault("config_debounce_ms", DEBOUNCE_MS)
    return UpdateController(
        workspace,
        config if config is not None else _config(),
        DiagnosticStore(sink=RecordingSink()),
        **kwargs,
    )


async def _started(workspace: InMemoryWorkspace, config=None, **kwargs) -> UpdateController:
    controller = _controller(workspace, config, **kwargs)
    await controller.start()
    await controller.wait_for_scan()
    return controller


def _messages(controller: UpdateController, path: Path) -> list[str]:
    return [d.message for d in controller.store.get(path)]


# ============================================================================
# Lifecycle
# ============================================================================


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_runs_initial_scan(self):
        workspace = InMemoryWorkspace(files={"a.ts": "// TODO a", "b.ts": "plain"})
        controller = await _started(workspace)

        assert _messages(controller, workspace.path("a.ts")) == ["TODO: a"]
        assert workspace.path("b.ts") in controller.scope_set
        assert controller.get_stats().full_scans == 1
        assert controller.last_summary.files_scanned == 2
        await controller.stop()

    @pytest.mark.asyncio
    async def test_start_twice_raises(self):
        controller = await _started(InMemoryWorkspace())

        with pytest.raises(ControllerError):
            await controller.start()
        await controller.stop()

    @pytest.mark.asyncio
    async def test_stop_when_not_running_is_noop(self):
        controller = _controller(InMemoryWorkspace())
        await controller.stop()
        assert not controller.is_running()

    @pytest.mark.asyncio
    async def test_stop_cancels_pending_timers(self):
        workspace = InMemoryWorkspace(files={"a.ts": "clean"})
        controller = await _started(workspace)
        buffer = workspace.open_buffer("a.ts", "clean")

        buffer.set_text("// TODO pending")
        controller.on_change(buffer, 1)
        controller.on_config_changed(_config(case_sensitive=False))
        enumerations = workspace.enumerate_calls

        await controller.stop()
        await asyncio.sleep(SETTLE)

        assert not controller.store.has(buffer.path)
        assert workspace.enumerate_calls == enumerations
        assert not controller.has_pending_rescan(buffer.path)

    @pytest.mark.asyncio
    async def test_stop_cancels_in_flight_scan(self):
        workspace = InMemoryWorkspace(files={"a.ts": "// TODO a"})
        release = asyncio.Event()
        original = workspace.enumerate_files

        async def slow_enumerate(*args, **kwargs):
            await release.wait()
            return await original(*args, **kwargs)

        workspace.enumerate_files = slow_enumerate
        controller = _controller(workspace)
        await controller.start()
        await asyncio.sleep(0.01)

        await controller.stop()

        assert len(controller.store) == 0
        assert not controller.is_running()

    @pytest.mark.asyncio
    async def test_default_store_logs_diagnostics(self, caplog):
        workspace = InMemoryWorkspace(files={"src/a.ts": "// FIXME broken"})
        controller = UpdateController(workspace, _config())

        with caplog.at_level(logging.INFO, logger="todoscan.infrastructure.sinks"):
            await controller.start()
            await controller.wait_for_scan()

        records = [r for r in caplog.records if r.name == "todoscan.infrastructure.sinks"]
        assert len(records) == 1
        assert records[0].file_path == str(workspace.path("src/a.ts"))
        assert records[0].severity == "error"
        assert "FIXME: broken" in records[0].getMessage()
        await controller.stop()

    @pytest.mark.asyncio
    async def test_watcher_started_and_stopped(self, tmp_path: Path):
        workspace = InMemoryWorkspace(root=tmp_path)
        watcher = FakeFileWatcher()
        controller = _controller(workspace, file_watcher=watcher)

        await controller.start()
        assert watcher.is_running()

        await controller.stop()
        assert not watcher.is_running()


# ============================================================================
# Editor events
# ============================================================================


class TestEditorEvents:
    @pytest.mark.asyncio
    async def test_open_scans_immediately(self):
        workspace = InMemoryWorkspace()
        controller = await _started(workspace)

        buffer = workspace.open_buffer("notes.md", "<!-- FIXME: broken link -->")
        controller.on_open(buffer)

        assert _messages(controller, buffer.path) == ["FIXME: broken link -->"]
        await controller.stop()

    @pytest.mark.asyncio
    async def test_open_out_of_scope_file_is_still_reported(self):
        workspace = InMemoryWorkspace()
        controller = await _started(workspace)

        buffer = workspace.open_buffer("node_modules/lib.js", "// TODO vendored")
        controller.on_open(buffer)

        assert _messages(controller, buffer.path) == ["TODO: vendored"]
        await controller.stop()

    @pytest.mark.asyncio
    async def test_non_file_scheme_ignored(self):
        workspace = InMemoryWorkspace()
        controller = await _started(workspace)

        buffer = workspace.open_buffer("Untitled-1", "// TODO scratch", scheme="untitled")
        controller.on_open(buffer)
        controller.on_save(buffer)

        assert not controller.store.has(buffer.path)
        await controller.stop()

    @pytest.mark.asyncio
    async def test_change_is_debounced(self):
        workspace = InMemoryWorkspace(files={"a.ts": "clean"})
        controller = await _started(workspace)
        buffer = workspace.open_buffer("a.ts")

        for text in ("// TODO one", "// TODO two", "// TODO three"):
            buffer.set_text(text)
            controller.on_change(buffer, 1)
            await asyncio.sleep(0.005)

        assert controller.has_pending_rescan(buffer.path)
        assert not controller.store.has(buffer.path)

        await asyncio.sleep(SETTLE)

        assert _messages(controller, buffer.path) == ["TODO: three"]
        await controller.stop()

    @pytest.mark.asyncio
    async def test_change_without_deltas_ignored(self):
        workspace = InMemoryWorkspace(files={"a.ts": "clean"})
        controller = await _started(workspace)
        buffer = workspace.open_buffer("a.ts", "// TODO unsaved")

        controller.on_change(buffer, 0)

        assert not controller.has_pending_rescan(buffer.path)
        await asyncio.sleep(SETTLE)
        assert not controller.store.has(buffer.path)
        await controller.stop()

    @pytest.mark.asyncio
    async def test_save_cancels_pending_and_scans_now(self):
        workspace = InMemoryWorkspace(files={"a.ts": "clean"})
        controller = await _started(workspace)
        buffer = workspace.open_buffer("a.ts")

        buffer.set_text("// FIXME saved")
        controller.on_change(buffer, 1)
        controller.on_save(buffer)

        assert not controller.has_pending_rescan(buffer.path)
        assert _messages(controller, buffer.path) == ["FIXME: saved"]
        await controller.stop()

    @pytest.mark.asyncio
    async def test_close_untracked_clears(self):
        workspace = InMemoryWorkspace()
        controller = await _started(workspace)
        buffer = workspace.open_buffer("node_modules/lib.js", "// TODO vendored")
        controller.on_open(buffer)

        workspace.close_buffer(buffer.path)
        controller.on_close(buffer)

        assert not controller.store.has(buffer.path)
        await controller.stop()

    @pytest.mark.asyncio
    async def test_close_tracked_keeps_diagnostics(self):
        workspace = InMemoryWorkspace(files={"a.ts": "// TODO keep"})
        controller = await _started(workspace)
        buffer = workspace.open_buffer("a.ts")

        workspace.close_buffer(buffer.path)
        controller.on_close(buffer)

        assert _messages(controller, buffer.path) == ["TODO: keep"]
        await controller.stop()

    @pytest.mark.asyncio
    async def test_disabled_resource_is_cleared_on_open(self):
        workspace = InMemoryWorkspace()
        controller = await _started(workspace, _config(disabled_globs=("docs/**",)))

        buffer = workspace.open_buffer("docs/a.md", "<!-- TODO -->")
        controller.on_open(buffer)

        assert not controller.store.has(buffer.path)
        await controller.stop()

    @pytest.mark.asyncio
    async def test_handler_failure_is_isolated(self, caplog):
        workspace = InMemoryWorkspace(files={"a.ts": "// TODO before"})
        controller = await _started(workspace)
        path = workspace.path("a.ts")
        broken = ExplodingBuffer(path=path, lines=["// TODO after"])

        with caplog.at_level(logging.ERROR):
            controller.on_open(broken)

        assert _messages(controller, path) == ["TODO: before"]
        assert controller.get_stats().errors == 1
        assert "Error handling open" in caplog.text
        await controller.stop()


# ============================================================================
# Filesystem events
# ============================================================================


class TestFileEvents:
    @pytest.mark.asyncio
    async def test_created_in_scope_is_tracked_and_scanned(self):
        workspace = InMemoryWorkspace()
        controller = await _started(workspace)

        path = workspace.write("src/new.ts", "// TODO fresh")
        await controller.on_file_created(path)

        assert path in controller.scope_set
        assert _messages(controller, path) == ["TODO: fresh"]
        await controller.stop()

    @pytest.mark.asyncio
    async def test_created_out_of_scope_ignored(self):
        workspace = InMemoryWorkspace()
        controller = await _started(workspace)

        path = workspace.write("node_modules/x.js", "// TODO vendored")
        await controller.on_file_created(path)

        assert path not in controller.scope_set
        assert path not in workspace.read_calls
        assert path not in workspace.prefix_reads
        await controller.stop()

    @pytest.mark.asyncio
    async def test_created_binary_not_tracked(self):
        workspace = InMemoryWorkspace()
        controller = await _started(workspace)

        png = workspace.write("logo.png", b"\x89PNG")
        blob = workspace.write("blob.dat", b"// TODO\x00")
        await controller.on_file_created(png)
        await controller.on_file_created(blob)

        assert png not in controller.scope_set
        assert blob not in controller.scope_set
        assert not controller.store.has(blob)
        await controller.stop()

    @pytest.mark.asyncio
    async def test_created_unreadable_ignored(self):
        workspace = InMemoryWorkspace()
        controller = await _started(workspace)

        path = workspace.write("secret.ts", "// TODO hidden")
        workspace.fail_reads("secret.ts")
        await controller.on_file_created(path)

        assert path not in controller.scope_set
        assert controller.get_stats().errors == 0
        await controller.stop()

    @pytest.mark.asyncio
    async def test_changed_tracked_file_rescanned(self):
        workspace = InMemoryWorkspace(files={"a.ts": "// TODO old"})
        controller = await _started(workspace)

        path = workspace.write("a.ts", "// FIXME new")
        await controller.on_file_changed(path)

        assert _messages(controller, path) == ["FIXME: new"]
        await controller.stop()

    @pytest.mark.asyncio
    async def test_changed_untracked_ignored(self):
        workspace = InMemoryWorkspace()
        controller = await _started(workspace)

        path = workspace.write("late.ts", "// TODO late")
        await controller.on_file_changed(path)

        assert not controller.store.has(path)
        assert path not in workspace.read_calls
        assert path not in workspace.prefix_reads
        await controller.stop()

    @pytest.mark.asyncio
    async def test_changed_prefers_open_buffer(self):
        workspace = InMemoryWorkspace(files={"a.ts": "// TODO disk"})
        controller = await _started(workspace)
        buffer = workspace.open_buffer("a.ts", "// FIXME unsaved")

        workspace.write("a.ts", "// TODO disk changed")
        await controller.on_file_changed(buffer.path)

        assert _messages(controller, buffer.path) == ["FIXME: unsaved"]
        await controller.stop()

    @pytest.mark.asyncio
    async def test_changed_to_binary_clears(self):
        workspace = InMemoryWorkspace(files={"a.txt": "# TODO text"})
        controller = await _started(workspace)

        path = workspace.write("a.txt", b"\x00\x01\x02")
        await controller.on_file_changed(path)

        assert not controller.store.has(path)
        await controller.stop()

    @pytest.mark.asyncio
    async def test_changed_unreadable_keeps_previous(self):
        workspace = InMemoryWorkspace(files={"a.ts": "// TODO old"})
        controller = await _started(workspace)

        path = workspace.fail_reads("a.ts")
        await controller.on_file_changed(path)

        assert _messages(controller, path) == ["TODO: old"]
        await controller.stop()

    @pytest.mark.asyncio
    async def test_change_right_after_save_is_suppressed(self):
        clock = FakeClock()
        workspace = InMemoryWorkspace(files={"a.ts": "clean"})
        controller = await _started(workspace, clock=clock)
        buffer = workspace.open_buffer("a.ts", "// TODO saved")
        controller.on_save(buffer)
        workspace.close_buffer(buffer.path)
        workspace.write("a.ts", "// FIXME external")
        reads = len(workspace.read_calls)

        clock.now += 0.5
        await controller.on_file_changed(buffer.path)

        assert _messages(controller, buffer.path) == ["TODO: saved"]
        assert len(workspace.read_calls) == reads
        assert controller.get_stats().suppressed_events == 1

        clock.now += 0.6
        await controller.on_file_changed(buffer.path)

        assert _messages(controller, buffer.path) == ["FIXME: external"]
        await controller.stop()

    @pytest.mark.asyncio
    async def test_deleted_file_dropped(self):
        workspace = InMemoryWorkspace(files={"a.ts": "// TODO a"})
        controller = await _started(workspace)

        path = workspace.delete("a.ts")
        controller.on_file_deleted(path)

        assert path not in controller.scope_set
        assert not controller.store.has(path)
        await controller.stop()

    @pytest.mark.asyncio
    async def test_deleted_directory_drops_descendants(self):
        workspace = InMemoryWorkspace(
            files={"d/a.ts": "// TODO a", "d/b.ts": "// TODO b", "other.ts": "// TODO other"}
        )
        controller = await _started(workspace)

        directory = workspace.delete("d")
        controller.on_file_deleted(directory)

        assert not controller.store.has(workspace.path("d/a.ts"))
        assert not controller.store.has(workspace.path("d/b.ts"))
        assert _messages(controller, workspace.path("other.ts")) == ["TODO: other"]
        assert set(controller.scope_set) == {workspace.path("other.ts")}
        await controller.stop()

    @pytest.mark.asyncio
    async def test_deleted_directory_spares_shared_prefix(self):
        workspace = InMemoryWorkspace(files={"foo/a.ts": "// TODO a", "foo2/a.ts": "// TODO b"})
        controller = await _started(workspace)

        controller.on_file_deleted(workspace.delete("foo"))

        assert not controller.store.has(workspace.path("foo/a.ts"))
        assert _messages(controller, workspace.path("foo2/a.ts")) == ["TODO: b"]
        await controller.stop()

    @pytest.mark.asyncio
    async def test_deleted_during_scan_batch_leaves_no_diagnostics(self):
        workspace = DeletingWorkspace(
            files={"a.ts": "// TODO a", "b.ts": "// TODO b"}, victim="a.ts", trigger="b.ts"
        )
        controller = _controller(workspace)
        workspace.controller = controller

        await controller.start()
        await controller.wait_for_scan()

        a, b = workspace.path("a.ts"), workspace.path("b.ts")
        assert a not in controller.scope_set
        assert controller.store.get(a) == ()
        assert _messages(controller, b) == ["TODO: b"]
        await controller.stop()

    @pytest.mark.asyncio
    async def test_watcher_events_are_dispatched(self):
        workspace = InMemoryWorkspace()
        watcher = FakeFileWatcher()
        controller = _controller(workspace, file_watcher=watcher)
        await controller.start()
        await controller.wait_for_scan()

        path = workspace.write("src/new.ts", "// TODO watched")
        watcher.trigger_event(FileEvent(FileEventType.CREATED, path))
        await asyncio.sleep(SETTLE)
        assert _messages(controller, path) == ["TODO: watched"]

        workspace.delete("src")
        watcher.trigger_event(FileEvent(FileEventType.DELETED, workspace.path("src"), is_directory=True))
        await asyncio.sleep(SETTLE)
        assert not controller.store.has(path)
        assert [e.event_type for e in watcher.get_triggered_events()] == [
            FileEventType.CREATED,
            FileEventType.DELETED,
        ]

        await controller.stop()

    @pytest.mark.asyncio
    async def test_events_ignored_when_stopped(self):
        workspace = InMemoryWorkspace()
        controller = _controller(workspace)
        path = workspace.write("a.ts", "// TODO a")

        await controller.handle_file_event(FileEvent(FileEventType.CREATED, path))
        controller.on_file_event_threadsafe(FileEvent(FileEventType.CREATED, path))

        assert not controller.store.has(path)


# ============================================================================
# Configuration changes
# ============================================================================


class TestConfigChanges:
    @pytest.mark.asyncio
    async def test_config_changes_are_debounced_into_one_rescan(self):
        workspace = InMemoryWorkspace(files={"a.ts": "// todo lower"})
        controller = await _started(workspace)
        assert not controller.store.has(workspace.path("a.ts"))
        enumerations = workspace.enumerate_calls

        for _ in range(3):
            controller.on_config_changed(_config(case_sensitive=False))
            await asyncio.sleep(0.005)
        await asyncio.sleep(SETTLE)
        await controller.wait_for_scan()

        assert workspace.enumerate_calls == enumerations + 1
        assert _messages(controller, workspace.path("a.ts")) == ["TODO: lower"]
        await controller.stop()

    @pytest.mark.asyncio
    async def test_config_provider_is_reread(self):
        workspace = InMemoryWorkspace(files={"a.ts": "// NOTE remember"})
        current = {"config": _config()}
        controller = await _started(workspace, lambda: current["config"])
        assert not controller.store.has(workspace.path("a.ts"))

        current["config"] = _config(rules=(KeywordRule("NOTE", Severity.INFO),))
        controller.on_config_changed()
        await asyncio.sleep(SETTLE)
        await controller.wait_for_scan()

        [diagnostic] = controller.store.get(workspace.path("a.ts"))
        assert diagnostic.severity is Severity.INFO
        assert controller.config is current["config"]
        await controller.stop()

    @pytest.mark.asyncio
    async def test_new_config_applies_to_incremental_scans_immediately(self):
        workspace = InMemoryWorkspace()
        controller = await _started(workspace)

        controller.on_config_changed(_config(source_label="markers"))
        buffer = workspace.open_buffer("a.ts", "// TODO label")
        controller.on_open(buffer)

        [diagnostic] = controller.store.get(buffer.path)
        assert diagnostic.source == "markers"
        await controller.stop()

    @pytest.mark.asyncio
    async def test_rescan_during_scan_keeps_latest_result(self):
        workspace = InMemoryWorkspace(files={f"f{i}.ts": f"// todo {i}" for i in range(10)})
        controller = _controller(workspace, max_concurrency=2)
        await controller.start()

        controller.on_config_changed(_config(case_sensitive=False))
        await asyncio.sleep(SETTLE)
        await controller.wait_for_scan()

        assert controller.store.total_count() == 10
        assert len(controller.scope_set) == 10
        await controller.stop()

    @pytest.mark.asyncio
    async def test_disabling_clears_all(self):
        workspace = InMemoryWorkspace(files={"a.ts": "// TODO a"})
        controller = await _started(workspace)

        controller.on_config_changed(_config(enabled=False))
        await asyncio.sleep(SETTLE)
        await controller.wait_for_scan()

        assert len(controller.store) == 0
        await controller.stop()
