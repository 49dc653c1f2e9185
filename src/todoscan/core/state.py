"""
Shared scan state: diagnostic store, tracked scope set, recently saved set.

All three are owned by a single controller instance; mutation happens on
the event loop only, so no locking is needed.
"""

import logging
import time
from collections.abc import Callable, Iterable, Iterator
from pathlib import Path
from typing import TYPE_CHECKING

from todoscan.core.models import Diagnostic
from todoscan.core.scope import is_under_directory

if TYPE_CHECKING:
    from todoscan.infrastructure.sinks import DiagnosticSink

logger = logging.getLogger(__name__)


class DiagnosticStore:
    """
    Mapping from file identity to its diagnostics.

    Entries are replaced wholesale on every scan of a file and never patched.
    When a sink is attached, every change is rendered into it.
    """

    def __init__(self, sink: "DiagnosticSink | None" = None):
        self._entries: dict[Path, tuple[Diagnostic, ...]] = {}
        self._sink = sink

    def set(self, path: Path, diagnostics: Iterable[Diagnostic]) -> None:
        """Replace the diagnostics for a file."""
        entry = tuple(diagnostics)
        self._entries[path] = entry
        if self._sink is not None:
            self._sink.publish(path, entry)

    def delete(self, path: Path) -> None:
        """Remove all diagnostics for a file."""
        existed = self._entries.pop(path, None) is not None
        if existed and self._sink is not None:
            self._sink.clear(path)

    def clear(self) -> None:
        """Remove every entry."""
        self._entries.clear()
        if self._sink is not None:
            self._sink.clear_all()

    def get(self, path: Path) -> tuple[Diagnostic, ...]:
        """Get diagnostics for a file (empty when there is no entry)."""
        return self._entries.get(path, ())

    def has(self, path: Path) -> bool:
        return path in self._entries

    def items(self) -> Iterator[tuple[Path, tuple[Diagnostic, ...]]]:
        return iter(list(self._entries.items()))

    def all_diagnostics(self) -> list[Diagnostic]:
        """Flatten all diagnostics, ordered by path then line."""
        result: list[Diagnostic] = []
        for path in sorted(self._entries):
            result.extend(self._entries[path])
        return result

    def total_count(self) -> int:
        return sum(len(entry) for entry in self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)


class TrackedScopeSet:
    """Set of file identities currently considered in scope."""

    def __init__(self, paths: Iterable[Path] = ()):
        self._paths: set[Path] = set(paths)

    def add(self, path: Path) -> None:
        self._paths.add(path)

    def discard(self, path: Path) -> None:
        self._paths.discard(path)

    def clear(self) -> None:
        self._paths.clear()

    def remove_under(self, directory: Path) -> list[Path]:
        """
        Remove every tracked file inside ``directory``.

        Uses path-segment comparison, so deleting 'foo' leaves 'foo2/a.ts'.

        Returns:
            The removed paths
        """
        removed = [path for path in self._paths if is_under_directory(path, directory)]
        for path in removed:
            self._paths.discard(path)
        if removed:
            logger.debug(f"Untracked {len(removed)} files under deleted directory {directory}")
        return removed

    def __contains__(self, path: object) -> bool:
        return path in self._paths

    def __iter__(self) -> Iterator[Path]:
        return iter(list(self._paths))

    def __len__(self) -> int:
        return len(self._paths)


class RecentlySavedSet:
    """
    Short-lived set of recently saved files.

    Entries expire ``window_ms`` after they are added, evaluated lazily
    against a monotonic clock; no timers are involved.
    """

    def __init__(self, window_ms: int = 1000, clock: Callable[[], float] = time.monotonic):
        self._window = window_ms / 1000.0
        self._clock = clock
        self._expiry: dict[Path, float] = {}

    def add(self, path: Path) -> None:
        self._expiry[path] = self._clock() + self._window

    def _prune(self) -> None:
        now = self._clock()
        for path in [p for p, deadline in self._expiry.items() if deadline <= now]:
            del self._expiry[path]

    def __contains__(self, path: object) -> bool:
        self._prune()
        return path in self._expiry

    def __len__(self) -> int:
        self._prune()
        return len(self._expiry)

    def clear(self) -> None:
        self._expiry.clear()
