"""
Data models for the marker scanning engine.

Provides the immutable configuration value, keyword rules, diagnostics,
and the line-addressable in-memory buffer used for open documents.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_LINE_BREAK = re.compile(r"\r?\n")

# Keyword at line start or right after a comment marker, followed by end of
# line, whitespace or ':'. Group 1 is the keyword, group 2 the trailing text.
DEFAULT_PATTERN_TEMPLATE = (
    r"(?:^\s*|(?://+|#+|--+|;+|/\*+|\*+|<!--|%+)\s*)"
    r"({keywords})(?=$|[\s:]):?\s*(.*)"
)


class Severity(Enum):
    """Diagnostic severity levels, ordered from most to least severe."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    HINT = "hint"

    @classmethod
    def parse(cls, value: Any) -> "Severity":
        """
        Parse a severity value from configuration.

        Unknown or malformed values fall back to WARNING instead of raising,
        so a bad settings entry degrades a single rule rather than the scan.

        Args:
            value: Severity name or Severity instance

        Returns:
            The matching Severity, or Severity.WARNING
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        logger.warning(f"Unknown severity {value!r}, falling back to warning")
        return cls.WARNING

    @property
    def rank(self) -> int:
        """Numeric rank where 0 is the most severe."""
        return list(Severity).index(self)


@dataclass(frozen=True)
class KeywordRule:
    """
    A marker keyword paired with the severity it reports at.

    Attributes:
        keyword: Marker word, e.g. 'TODO' (must be non-empty)
        severity: Severity for diagnostics produced by this keyword
    """

    keyword: str
    severity: Severity = Severity.WARNING

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "KeywordRule":
        """Build a rule from a settings mapping like {'keyword': 'TODO', 'severity': 'warning'}."""
        return cls(
            keyword=str(data["keyword"]),
            severity=Severity.parse(data.get("severity", "warning")),
        )


@dataclass(frozen=True)
class ScanConfig:
    """
    Immutable scanning configuration.

    A configuration change produces a new ScanConfig that replaces the old
    one by reference; instances are never mutated.

    Attributes:
        rules: Ordered keyword rules
        include_globs: Globs a path must match (empty means everything)
        exclude_globs: Globs that remove a path from scope
        pattern_template: Regex template with a {keywords} placeholder and
            two capture groups (keyword, trailing text)
        case_sensitive: Whether keywords match case-sensitively
        source_label: Label attached to every diagnostic
        enabled: Global enable flag
        disabled_globs: Resources matching these globs are disabled
    """

    rules: tuple[KeywordRule, ...] = ()
    include_globs: tuple[str, ...] = ("**/*",)
    exclude_globs: tuple[str, ...] = ()
    pattern_template: str = DEFAULT_PATTERN_TEMPLATE
    case_sensitive: bool = True
    source_label: str = "todoscan"
    enabled: bool = True
    disabled_globs: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        # Accept lists from callers while keeping the value hashable
        object.__setattr__(self, "rules", tuple(self.rules))
        object.__setattr__(self, "include_globs", tuple(self.include_globs))
        object.__setattr__(self, "exclude_globs", tuple(self.exclude_globs))
        object.__setattr__(self, "disabled_globs", tuple(self.disabled_globs))


@dataclass(frozen=True)
class Diagnostic:
    """
    A single reported marker occurrence.

    Attributes:
        path: Identity of the file the marker was found in
        line: 0-based line number
        start_column: Column where the match starts
        end_column: Column where the trimmed match ends
        message: 'KEYWORD: trailing text' or just 'KEYWORD'
        severity: Severity resolved from the keyword rule
        source: Source label from the configuration
    """

    path: Path
    line: int
    start_column: int
    end_column: int
    message: str
    severity: Severity
    source: str

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON output."""
        return {
            "path": str(self.path),
            "line": self.line,
            "start_column": self.start_column,
            "end_column": self.end_column,
            "message": self.message,
            "severity": self.severity.value,
            "source": self.source,
        }


@dataclass
class TextBuffer:
    """
    An open in-memory document, possibly holding unsaved edits.

    Attributes:
        path: File identity of the document
        lines: Current line contents without line terminators
        scheme: Resource scheme; only 'file' buffers are tracked on disk
        version: Edit counter, bumped on every content replacement
    """

    path: Path
    lines: list[str] = field(default_factory=list)
    scheme: str = "file"
    version: int = 0

    @classmethod
    def from_text(cls, path: Path | str, text: str, scheme: str = "file") -> "TextBuffer":
        """Create a buffer from raw text, splitting on \\r?\\n."""
        return cls(path=Path(path), lines=split_lines(text), scheme=scheme)

    @property
    def line_count(self) -> int:
        return len(self.lines)

    def line_at(self, index: int) -> str:
        return self.lines[index]

    def set_text(self, text: str) -> None:
        """Replace the buffer content and bump the version."""
        self.lines = split_lines(text)
        self.version += 1


def split_lines(text: str) -> list[str]:
    """Split decoded text on \\r?\\n, keeping a trailing empty line like editors do."""
    return _LINE_BREAK.split(text)
