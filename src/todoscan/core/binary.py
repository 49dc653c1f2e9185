"""
Binary file detection.

A positive exclusion layered on top of glob scope: a file can be glob
in-scope yet binary, in which case it is tracked but never scanned.
"""

from pathlib import Path

# Bytes read from the start of a file for content sniffing
SNIFF_BYTES = 8192

# Ratio of non-text control bytes above which content is considered binary
CONTROL_BYTE_THRESHOLD = 0.3

BINARY_EXTENSIONS: frozenset[str] = frozenset([
    # Images
    ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".ico", ".webp", ".tif", ".tiff",
    ".psd", ".heic",
    # Archives
    ".zip", ".tar", ".gz", ".tgz", ".bz2", ".xz", ".7z", ".rar", ".zst",
    ".jar", ".war", ".whl", ".egg",
    # Executables and compiled objects
    ".exe", ".dll", ".so", ".dylib", ".bin", ".o", ".a", ".lib", ".obj",
    ".class", ".pyc", ".pyo", ".wasm",
    # Documents
    ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
    # Media
    ".mp3", ".mp4", ".wav", ".ogg", ".flac", ".avi", ".mov", ".mkv", ".webm",
    # Fonts
    ".ttf", ".otf", ".woff", ".woff2", ".eot",
    # Databases
    ".db", ".sqlite", ".sqlite3",
])

# Control bytes that legitimately appear in text: \t \n \f \r and ESC
_TEXT_CONTROL_BYTES = frozenset([0x09, 0x0A, 0x0C, 0x0D, 0x1B])


def has_binary_extension(path: Path | str) -> bool:
    """Check the extension denylist."""
    return Path(path).suffix.lower() in BINARY_EXTENSIONS


def looks_binary(data: bytes) -> bool:
    """
    Sniff a content prefix for binary data.

    Any NUL byte marks the data as binary, as does a high ratio of control
    bytes that do not occur in text.

    Args:
        data: Leading bytes of a file

    Returns:
        True if the data looks binary
    """
    sample = data[:SNIFF_BYTES]
    if not sample:
        return False
    if b"\x00" in sample:
        return True

    control = sum(1 for byte in sample if byte < 0x20 and byte not in _TEXT_CONTROL_BYTES)
    return control / len(sample) > CONTROL_BYTE_THRESHOLD


def read_prefix(path: Path | str, size: int = SNIFF_BYTES) -> bytes:
    """
    Read at most ``size`` leading bytes of a file.

    Raises:
        OSError: If the file cannot be opened or read
    """
    with open(path, "rb") as f:
        return f.read(size)


def is_likely_binary_file(path: Path | str) -> bool:
    """
    Check a file by extension first, then by sniffing its leading bytes.

    Never raises: a file that cannot be read is reported as not binary and
    fails later, when its content is read for scanning.
    """
    if has_binary_extension(path):
        return True
    try:
        return looks_binary(read_prefix(path))
    except OSError:
        return False
