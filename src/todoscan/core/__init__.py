"""
Core Layer - Models, pattern compilation, line scanning, scope matching and scan state.
"""

from todoscan.core.binary import (
    has_binary_extension,
    is_likely_binary_file,
    looks_binary,
    read_prefix,
)
from todoscan.core.cancellation import CancellationToken, TaskSlot
from todoscan.core.config import (
    ConfigError,
    LoggingConfig,
    ScanSettings,
    TodoScanConfig,
    TodoScanError,
    WatchSettings,
    load_config,
)
from todoscan.core.debouncer import Debouncer
from todoscan.core.file_events import FileEvent, FileEventType
from todoscan.core.line_scanner import scan_buffer, scan_lines, scan_text
from todoscan.core.models import (
    DEFAULT_PATTERN_TEMPLATE,
    Diagnostic,
    KeywordRule,
    ScanConfig,
    Severity,
    TextBuffer,
    split_lines,
)
from todoscan.core.pattern_compiler import (
    KEYWORDS_PLACEHOLDER,
    CompiledMatcher,
    MatcherCache,
    PatternConfigError,
    compile_matcher,
)
from todoscan.core.scope import (
    FILE_SCHEME,
    expand_braces,
    is_path_in_scope,
    is_resource_enabled,
    is_under_directory,
    matches_scope,
    to_glob,
)
from todoscan.core.state import DiagnosticStore, RecentlySavedSet, TrackedScopeSet

__all__ = [
    # Config
    "TodoScanConfig",
    "ScanSettings",
    "WatchSettings",
    "LoggingConfig",
    "TodoScanError",
    "ConfigError",
    "load_config",
    # Models
    "Severity",
    "KeywordRule",
    "ScanConfig",
    "Diagnostic",
    "TextBuffer",
    "split_lines",
    # Pattern compilation and scanning
    "KEYWORDS_PLACEHOLDER",
    "DEFAULT_PATTERN_TEMPLATE",
    "PatternConfigError",
    "CompiledMatcher",
    "MatcherCache",
    "compile_matcher",
    "scan_lines",
    "scan_buffer",
    "scan_text",
    # Scope
    "FILE_SCHEME",
    "expand_braces",
    "to_glob",
    "is_path_in_scope",
    "matches_scope",
    "is_resource_enabled",
    "is_under_directory",
    # Binary detection
    "has_binary_extension",
    "looks_binary",
    "is_likely_binary_file",
    "read_prefix",
    # State
    "DiagnosticStore",
    "TrackedScopeSet",
    "RecentlySavedSet",
    # Concurrency
    "CancellationToken",
    "TaskSlot",
    "Debouncer",
    # File events
    "FileEvent",
    "FileEventType",
]
