"""
Workspace access: file enumeration, file reads and open buffers.

The scanning services only talk to WorkspaceInterface; LocalWorkspace
implements it over the local filesystem with blocking I/O offloaded to
worker threads.
"""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from collections.abc import Sequence
from pathlib import Path

from todoscan.core.binary import read_prefix
from todoscan.core.cancellation import CancellationToken
from todoscan.core.models import TextBuffer
from todoscan.core.scope import get_glob_set, is_path_in_scope

logger = logging.getLogger(__name__)


class WorkspaceInterface(ABC):
    """
    Abstract interface for the workspace the scanner runs against.

    Implementations provide bulk enumeration, raw reads, and the set of
    documents currently open with (possibly unsaved) live content.
    """

    @property
    @abstractmethod
    def root(self) -> Path:
        """Absolute workspace root; globs are matched relative to it."""
        pass

    @abstractmethod
    async def enumerate_files(
        self,
        include_globs: Sequence[str],
        exclude_globs: Sequence[str],
        token: CancellationToken | None = None,
    ) -> list[Path]:
        """
        Enumerate files matching the include globs and none of the excludes.

        Args:
            include_globs: Include patterns (empty means everything)
            exclude_globs: Exclude patterns
            token: Optional cancellation token, checked while enumerating

        Returns:
            Absolute file paths
        """
        pass

    @abstractmethod
    async def read_file_bytes(self, path: Path) -> bytes:
        """
        Read a file's raw bytes.

        Raises:
            OSError: If the file is missing or unreadable
        """
        pass

    @abstractmethod
    async def read_file_prefix(self, path: Path, size: int) -> bytes:
        """
        Read at most ``size`` leading bytes of a file, for content sniffing.

        Raises:
            OSError: If the file is missing or unreadable
        """
        pass

    @abstractmethod
    def get_open_buffers(self) -> list[TextBuffer]:
        """Get every open document, reflecting unsaved edits."""
        pass

    def get_open_buffer(self, path: Path) -> TextBuffer | None:
        """Get the open document for a path, if any."""
        for buffer in self.get_open_buffers():
            if buffer.path == path:
                return buffer
        return None


class LocalWorkspace(WorkspaceInterface):
    """
    Workspace backed by a directory on the local filesystem.

    Open buffers are registered by the embedding application (an editor
    integration, or tests) through open_buffer/close_buffer.
    """

    def __init__(self, root: Path | str, follow_symlinks: bool = False):
        """
        Initialize the workspace.

        Args:
            root: Workspace root directory
            follow_symlinks: Whether to descend into symlinked directories

        Raises:
            ValueError: If root does not exist or is not a directory
        """
        root_path = Path(root).resolve()
        if not root_path.exists():
            raise ValueError(f"Path does not exist: {root_path}")
        if not root_path.is_dir():
            raise ValueError(f"Path is not a directory: {root_path}")

        self._root = root_path
        self._follow_symlinks = follow_symlinks
        self._buffers: dict[Path, TextBuffer] = {}

    @property
    def root(self) -> Path:
        return self._root

    async def enumerate_files(
        self,
        include_globs: Sequence[str],
        exclude_globs: Sequence[str],
        token: CancellationToken | None = None,
    ) -> list[Path]:
        return await asyncio.to_thread(
            self._walk, tuple(include_globs), tuple(exclude_globs), token
        )

    def _walk(
        self,
        include_globs: tuple[str, ...],
        exclude_globs: tuple[str, ...],
        token: CancellationToken | None,
    ) -> list[Path]:
        excludes = get_glob_set(exclude_globs)
        results: list[Path] = []

        for dirpath, dirnames, filenames in os.walk(self._root, followlinks=self._follow_symlinks):
            if token is not None and token.is_cancelled:
                logger.debug("File enumeration cancelled")
                return results

            current = Path(dirpath)
            rel_dir = current.relative_to(self._root).as_posix()
            prefix = "" if rel_dir == "." else rel_dir + "/"

            # Prune excluded directories so large trees like node_modules are never walked
            if excludes:
                dirnames[:] = [d for d in dirnames if not excludes.matches(f"{prefix}{d}/")]
            dirnames.sort()

            for name in sorted(filenames):
                if is_path_in_scope(prefix + name, include_globs, exclude_globs):
                    results.append(current / name)

        return results

    async def read_file_bytes(self, path: Path) -> bytes:
        return await asyncio.to_thread(Path(path).read_bytes)

    async def read_file_prefix(self, path: Path, size: int) -> bytes:
        return await asyncio.to_thread(read_prefix, path, size)

    def open_buffer(self, buffer: TextBuffer) -> TextBuffer:
        """Register an open document."""
        self._buffers[buffer.path] = buffer
        return buffer

    def close_buffer(self, path: Path) -> TextBuffer | None:
        """Unregister an open document."""
        return self._buffers.pop(path, None)

    def get_open_buffers(self) -> list[TextBuffer]:
        return list(self._buffers.values())

    def get_open_buffer(self, path: Path) -> TextBuffer | None:
        return self._buffers.get(path)
