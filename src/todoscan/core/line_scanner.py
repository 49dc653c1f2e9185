"""
Line scanner: applies a CompiledMatcher to lines of text.

Pure functions with no I/O and no shared state; safe to call from
concurrent tasks on different inputs.
"""

from collections.abc import Callable
from pathlib import Path

from todoscan.core.models import Diagnostic, TextBuffer, split_lines
from todoscan.core.pattern_compiler import CompiledMatcher


def scan_lines(
    matcher: CompiledMatcher,
    line_at: Callable[[int], str],
    line_count: int,
    path: Path,
) -> list[Diagnostic]:
    """
    Scan lines for marker keywords.

    At most one diagnostic is produced per line: the first match wins, and
    its message runs from the keyword to the end of the line.

    Args:
        matcher: Compiled matcher for the current configuration
        line_at: Returns the text of a 0-based line
        line_count: Number of lines to scan
        path: File identity attached to the diagnostics

    Returns:
        Diagnostics in line order
    """
    if not matcher.can_match:
        return []

    diagnostics: list[Diagnostic] = []
    for index in range(line_count):
        text = line_at(index)
        match = matcher.regex.search(text)
        if match is None:
            continue

        keyword = matcher.normalize(match.group(1) or "")
        trailing = (match.group(2) or "").strip()
        message = f"{keyword}: {trailing}" if trailing else keyword

        start = match.start()
        end = start + len(match.group(0).rstrip())

        diagnostics.append(
            Diagnostic(
                path=path,
                line=index,
                start_column=start,
                end_column=end,
                message=message,
                severity=matcher.severity_for(keyword),
                source=matcher.source_label,
            )
        )

    return diagnostics


def scan_buffer(matcher: CompiledMatcher, buffer: TextBuffer) -> list[Diagnostic]:
    """Scan an open in-memory buffer."""
    return scan_lines(matcher, buffer.line_at, buffer.line_count, buffer.path)


def scan_text(matcher: CompiledMatcher, text: str, path: Path | str = Path("")) -> list[Diagnostic]:
    """Scan raw decoded text, split on \\r?\\n."""
    lines = split_lines(text)
    return scan_lines(matcher, lines.__getitem__, len(lines), Path(path))
