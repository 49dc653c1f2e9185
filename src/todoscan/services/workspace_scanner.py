"""
Workspace scan orchestration.

Enumerates in-scope files, scans them in bounded concurrent batches
(open buffers preferred over disk content), and repopulates the diagnostic
store and tracked scope set. A full scan is authoritative: state is cleared
first, and a cancelled scan leaves it cleared rather than half-filled.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path

from todoscan.core.binary import SNIFF_BYTES, has_binary_extension, looks_binary
from todoscan.core.cancellation import CancellationToken
from todoscan.core.line_scanner import scan_buffer, scan_text
from todoscan.core.models import Diagnostic, ScanConfig, TextBuffer
from todoscan.core.pattern_compiler import CompiledMatcher, compile_matcher
from todoscan.core.scope import FILE_SCHEME, is_resource_enabled
from todoscan.core.state import DiagnosticStore, TrackedScopeSet
from todoscan.infrastructure.workspace import WorkspaceInterface

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 50


@dataclass
class ScanSummary:
    """
    Outcome of one workspace scan.

    Attributes:
        files_found: Candidates returned by enumeration
        files_scanned: Candidates whose content was scanned
        files_skipped: Unreadable, undecodable or disabled candidates
        binary_files: Candidates excluded as binary
        buffers_scanned: Open buffers outside the enumeration that were scanned
        diagnostics: Total diagnostics stored
        duration_ms: Wall time of the scan
        cancelled: True when the scan was superseded or stopped
    """

    files_found: int = 0
    files_scanned: int = 0
    files_skipped: int = 0
    binary_files: int = 0
    buffers_scanned: int = 0
    diagnostics: int = 0
    duration_ms: float = 0.0
    cancelled: bool = False

    def to_dict(self) -> dict:
        return {
            "files_found": self.files_found,
            "files_scanned": self.files_scanned,
            "files_skipped": self.files_skipped,
            "binary_files": self.binary_files,
            "buffers_scanned": self.buffers_scanned,
            "diagnostics": self.diagnostics,
            "duration_ms": self.duration_ms,
            "cancelled": self.cancelled,
        }


class _Binary:
    """Marker result for binary-excluded files."""


_BINARY = _Binary()


def _is_cancelled(token: CancellationToken | None) -> bool:
    return token is not None and token.is_cancelled


async def read_and_scan(
    workspace: WorkspaceInterface,
    matcher: CompiledMatcher,
    path: Path,
) -> list[Diagnostic] | _Binary | None:
    """
    Scan a file's on-disk content.

    Returns:
        Diagnostics, the binary marker, or None when the file cannot be
        read or decoded
    """
    if has_binary_extension(path):
        return _BINARY

    try:
        if looks_binary(await workspace.read_file_prefix(path, SNIFF_BYTES)):
            return _BINARY
        data = await workspace.read_file_bytes(path)
    except OSError as e:
        logger.debug(f"Skipping unreadable file {path}: {e}")
        return None

    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as e:
        logger.debug(f"Skipping undecodable file {path}: {e}")
        return None

    return scan_text(matcher, text, path)


def is_binary_result(result: object) -> bool:
    return result is _BINARY


async def scan_workspace(
    store: DiagnosticStore,
    config: ScanConfig,
    scope_set: TrackedScopeSet,
    workspace: WorkspaceInterface,
    token: CancellationToken | None = None,
    *,
    matcher: CompiledMatcher | None = None,
    concurrency: int = DEFAULT_CONCURRENCY,
) -> ScanSummary:
    """
    Run a full workspace scan.

    Args:
        store: Diagnostic store to repopulate
        config: Scanning configuration
        scope_set: Tracked scope set to rebuild
        workspace: Workspace to enumerate and read from
        token: Optional cancellation token
        matcher: Precompiled matcher for ``config`` (compiled here when omitted)
        concurrency: Maximum number of files processed per batch

    Returns:
        ScanSummary describing the scan
    """
    start_time = time.time()
    summary = ScanSummary()

    store.clear()
    scope_set.clear()

    def abort() -> ScanSummary:
        # A cancelled scan is observably the same as no scan at all
        store.clear()
        scope_set.clear()
        summary.cancelled = True
        summary.duration_ms = (time.time() - start_time) * 1000
        logger.info("Workspace scan cancelled", extra={"root": str(workspace.root)})
        return summary

    if not config.enabled:
        logger.info("Marker scanning is disabled, diagnostics cleared")
        return summary

    if matcher is None:
        matcher = compile_matcher(config)

    if _is_cancelled(token):
        return abort()

    logger.info(
        "Starting workspace scan",
        extra={
            "root": str(workspace.root),
            "include": list(config.include_globs),
            "exclude": list(config.exclude_globs),
        },
    )

    try:
        candidates = await workspace.enumerate_files(
            config.include_globs, config.exclude_globs, token
        )

        if _is_cancelled(token):
            return abort()

        summary.files_found = len(candidates)
        for path in candidates:
            scope_set.add(path)

        open_buffers: dict[Path, TextBuffer] = {
            buffer.path: buffer
            for buffer in workspace.get_open_buffers()
            if buffer.scheme == FILE_SCHEME
        }

        async def process(path: Path) -> list[Diagnostic] | _Binary | None:
            if not is_resource_enabled(path, config, workspace.root):
                return None
            # Live buffer content wins over what is on disk
            buffer = open_buffers.get(path)
            if buffer is not None:
                return scan_buffer(matcher, buffer)
            return await read_and_scan(workspace, matcher, path)

        batch_size = max(1, concurrency)
        for offset in range(0, len(candidates), batch_size):
            if _is_cancelled(token):
                return abort()

            batch = candidates[offset:offset + batch_size]
            results = await asyncio.gather(
                *(process(path) for path in batch), return_exceptions=True
            )

            if _is_cancelled(token):
                return abort()

            for path, result in zip(batch, results):
                if path not in scope_set:
                    # Deleted while the batch was in flight
                    logger.debug(f"Dropping result for untracked file {path}")
                    continue
                if isinstance(result, Exception):
                    logger.debug(f"Skipping {path} after error: {result}")
                    summary.files_skipped += 1
                elif result is _BINARY:
                    summary.binary_files += 1
                elif result is None:
                    summary.files_skipped += 1
                else:
                    summary.files_scanned += 1
                    if result:
                        store.set(path, result)
                        summary.diagnostics += len(result)

        # Open documents outside the enumerated set, e.g. explicitly opened files
        covered = set(candidates)
        for buffer in workspace.get_open_buffers():
            if buffer.scheme != FILE_SCHEME or buffer.path in covered:
                continue
            if not is_resource_enabled(buffer.path, config, workspace.root):
                continue
            diagnostics = scan_buffer(matcher, buffer)
            summary.buffers_scanned += 1
            if diagnostics:
                store.set(buffer.path, diagnostics)
                summary.diagnostics += len(diagnostics)

    except asyncio.CancelledError:
        abort()
        raise

    summary.duration_ms = (time.time() - start_time) * 1000
    logger.info(
        "Workspace scan completed in %.2fms",
        summary.duration_ms,
        extra=summary.to_dict(),
    )
    return summary
