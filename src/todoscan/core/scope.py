"""
Scope resolution for include/exclude glob sets.

Glob matching is delegated to pathspec's gitwildmatch patterns, anchored at
the workspace root:
- ``**`` matches across path segments, including zero segments
- ``*`` and ``?`` match within a single segment
- dotfiles are matched like any other name
"""

import logging
from collections.abc import Iterable
from functools import lru_cache
from pathlib import Path, PurePosixPath

import pathspec

from todoscan.core.models import ScanConfig

logger = logging.getLogger(__name__)

FILE_SCHEME = "file"

# Group pathspec uses for the implicit "and everything below it" suffix
_DESCENDANT_GROUP = "ps_d"


def expand_braces(pattern: str) -> list[str]:
    """
    Expand the first-level ``{a,b}`` groups of a glob into separate globs.

    Args:
        pattern: Glob possibly containing brace groups

    Returns:
        List of brace-free globs (the pattern itself when it has none)
    """
    start = pattern.find("{")
    if start == -1:
        return [pattern]

    depth = 0
    for end in range(start, len(pattern)):
        char = pattern[end]
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                break
    else:
        # Unbalanced brace, treat literally
        return [pattern]

    prefix, body, suffix = pattern[:start], pattern[start + 1:end], pattern[end + 1:]

    options: list[str] = []
    depth = 0
    current = ""
    for char in body:
        if char == "," and depth == 0:
            options.append(current)
            current = ""
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
        current += char
    options.append(current)

    expanded: list[str] = []
    for option in options:
        expanded.extend(expand_braces(prefix + option + suffix))
    return expanded


def to_glob(patterns: Iterable[str]) -> str:
    """
    Combine glob patterns into one brace-expanded glob.

    Returns '' for no patterns, the pattern itself for one, and
    '{a,b,...}' for several.
    """
    filtered = [p.strip() for p in patterns if p and p.strip()]
    if not filtered:
        return ""
    if len(filtered) == 1:
        return filtered[0]
    return "{" + ",".join(filtered) + "}"


class GlobSet:
    """
    A compiled union of glob patterns.

    pathspec lets a pattern that names a directory match everything beneath
    it, which would make ``src/*`` cover ``src/a/b.ts``. Matches that only
    succeed through that descendant suffix are rejected, so ``*`` and ``?``
    never cross a ``/``. Use ``dir/**`` to cover a whole subtree.
    """

    def __init__(self, patterns: Iterable[str]):
        self._patterns = tuple(p.strip() for p in patterns if p and p.strip())
        lines: list[str] = []
        for pattern in self._patterns:
            for expanded in expand_braces(pattern):
                # Anchor at the root so 'src/*.ts' does not match 'a/src/b.ts'
                lines.append(expanded if expanded.startswith("/") else "/" + expanded)
        self._spec = pathspec.PathSpec.from_lines(pathspec.patterns.GitWildMatchPattern, lines)

    @property
    def patterns(self) -> tuple[str, ...]:
        return self._patterns

    def __bool__(self) -> bool:
        return bool(self._patterns)

    def matches(self, relative_path: str) -> bool:
        matched = False
        for pattern in self._spec.patterns:
            if pattern.include is None:
                continue
            match = pattern.regex.match(relative_path)
            if match is None or match.groupdict().get(_DESCENDANT_GROUP) is not None:
                continue
            matched = pattern.include
        return matched


@lru_cache(maxsize=64)
def get_glob_set(patterns: tuple[str, ...]) -> GlobSet:
    """Get a cached GlobSet for a pattern tuple."""
    return GlobSet(patterns)


def _normalize_relative(path: str | PurePosixPath) -> str:
    text = str(path).replace("\\", "/")
    while text.startswith("./"):
        text = text[2:]
    return text.lstrip("/")


def is_path_in_scope(
    path: str | PurePosixPath,
    include_globs: Iterable[str],
    exclude_globs: Iterable[str],
) -> bool:
    """
    Check whether a workspace-relative path is in scope.

    An empty include set includes everything. A path is in scope when it
    matches at least one include glob and no exclude glob; exclude wins.

    Args:
        path: Path relative to the workspace root (POSIX or native separators)
        include_globs: Include patterns
        exclude_globs: Exclude patterns

    Returns:
        True if the path is in scope
    """
    relative = _normalize_relative(path)
    includes = get_glob_set(tuple(include_globs))
    excludes = get_glob_set(tuple(exclude_globs))

    if includes and not includes.matches(relative):
        return False
    if excludes and excludes.matches(relative):
        return False
    return True


def relative_to_root(path: Path, root: Path) -> str | None:
    """Return the POSIX path of ``path`` relative to ``root``, or None when outside."""
    try:
        return Path(path).relative_to(root).as_posix()
    except ValueError:
        return None


def matches_scope(
    path: Path,
    config: ScanConfig,
    root: Path,
    scheme: str = FILE_SCHEME,
) -> bool:
    """
    Scope check for live resources such as watcher events and open documents.

    Non-file resources (untitled or virtual documents) and paths outside the
    workspace root are never in scope.
    """
    if scheme != FILE_SCHEME:
        return False
    relative = relative_to_root(path, root)
    if relative is None or relative in ("", "."):
        return False
    return is_path_in_scope(relative, config.include_globs, config.exclude_globs)


def is_resource_enabled(path: Path, config: ScanConfig, root: Path) -> bool:
    """
    Check the global and per-resource enable flags for a path.

    Resources matching any of ``config.disabled_globs`` are disabled.
    """
    if not config.enabled:
        return False
    if not config.disabled_globs:
        return True
    relative = relative_to_root(path, root)
    if relative is None:
        return True
    return not get_glob_set(config.disabled_globs).matches(relative)


def is_under_directory(path: Path, directory: Path) -> bool:
    """
    Check whether ``path`` lies strictly inside ``directory``.

    Compares path segments rather than string prefixes, so 'foo2/a.ts' is not
    considered to be under 'foo'.
    """
    path_parts = Path(path).parts
    dir_parts = Path(directory).parts
    return len(path_parts) > len(dir_parts) and path_parts[: len(dir_parts)] == dir_parts
