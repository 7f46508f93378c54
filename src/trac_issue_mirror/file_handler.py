"""File handler module: path validation and encoding-aware read/write.

Working documents and JSON baselines go through these helpers so that
reads tolerate whatever encoding an editor saved with and writes never
leave a half-written file behind.
"""

import os
import tempfile
from pathlib import Path

from charset_normalizer import from_bytes

# =============================================================================
# Path Validation
# =============================================================================


def validate_file_path(path_str: str) -> Path:
    """Validate and resolve an existing input file path.

    Args:
        path_str: Absolute path string to an existing file.

    Returns:
        Resolved Path object pointing to the real file.

    Raises:
        ValueError: If path is relative, doesn't exist, or is not a file.
    """
    path = Path(path_str)
    if not path.is_absolute():
        raise ValueError(f"Path must be absolute: {path_str}")
    resolved = path.resolve()
    if not resolved.exists():
        raise ValueError(f"File not found: {path_str}")
    if not resolved.is_file():
        raise ValueError(f"Path is not a file: {path_str}")
    return resolved


# =============================================================================
# File Read/Write
# =============================================================================


def read_file_with_encoding(path: Path) -> tuple[str, str]:
    """Read a file with automatic encoding detection.

    Uses charset-normalizer on the raw bytes. Empty files and failed
    detection fall back to UTF-8.

    Args:
        path: Path to the file to read.

    Returns:
        Tuple of (content_string, detected_encoding).
    """
    raw = path.read_bytes()
    if not raw:
        return ("", "utf-8")

    result = from_bytes(raw).best()
    if result is None:
        return (raw.decode("utf-8", errors="replace"), "utf-8")

    encoding = result.encoding
    # ascii is a strict subset of utf-8
    if encoding == "ascii":
        encoding = "utf-8"
    return (str(result), encoding)


def write_file(path: Path, content: str, encoding: str = "utf-8") -> int:
    """Atomically write content, creating parent directories as needed.

    The content goes to a temp file in the target directory which then
    replaces the target, so readers see either the old or the new file.

    Args:
        path: Path to the output file.
        content: String content to write.
        encoding: Encoding to use (default: utf-8).

    Returns:
        Number of bytes written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    encoded = content.encode(encoding)

    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(encoded)
        os.replace(tmp_path, str(path))
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
    return len(encoded)
