"""
Diagnostic sinks: where the diagnostic store renders its changes.
"""

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

from todoscan.core.models import Diagnostic

logger = logging.getLogger(__name__)


class DiagnosticSink(Protocol):
    """Protocol for presentation layers that display diagnostics."""

    def publish(self, path: Path, diagnostics: Sequence[Diagnostic]) -> None:
        """Replace the displayed diagnostics for a file."""
        ...

    def clear(self, path: Path) -> None:
        """Remove the displayed diagnostics for a file."""
        ...

    def clear_all(self) -> None:
        """Remove every displayed diagnostic."""
        ...


class LoggingSink:
    """Sink that reports publications through the logging system."""

    def __init__(self, level: int = logging.INFO):
        self._level = level

    def publish(self, path: Path, diagnostics: Sequence[Diagnostic]) -> None:
        if not diagnostics:
            logger.debug(f"No markers in {path}")
            return
        for diagnostic in diagnostics:
            logger.log(
                self._level,
                "%s:%d:%d: %s [%s]",
                path,
                diagnostic.line + 1,
                diagnostic.start_column + 1,
                diagnostic.message,
                diagnostic.severity.value,
                extra={
                    "file_path": str(path),
                    "line": diagnostic.line,
                    "severity": diagnostic.severity.value,
                },
            )

    def clear(self, path: Path) -> None:
        logger.debug(f"Cleared diagnostics for {path}")

    def clear_all(self) -> None:
        logger.debug("Cleared all diagnostics")
