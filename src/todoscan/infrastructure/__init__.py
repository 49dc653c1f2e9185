"""
Infrastructure Layer - Workspace access, diagnostic sinks and file watching.
"""

from todoscan.infrastructure.fakes import (
    FakeFileWatcher,
    InMemoryWorkspace,
    RecordingSink,
)
from todoscan.infrastructure.file_watcher import (
    FileWatcher,
    FileWatcherInterface,
)
from todoscan.infrastructure.sinks import DiagnosticSink, LoggingSink
from todoscan.infrastructure.workspace import LocalWorkspace, WorkspaceInterface

__all__ = [
    # Workspace
    "WorkspaceInterface",
    "LocalWorkspace",
    # Sinks
    "DiagnosticSink",
    "LoggingSink",
    # File Watcher
    "FileWatcherInterface",
    "FileWatcher",
    # Fakes for testing
    "InMemoryWorkspace",
    "RecordingSink",
    "FakeFileWatcher",
]
