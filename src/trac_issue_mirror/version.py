"""Version checking utilities for detecting a stale installed server."""

import tomllib
from pathlib import Path


def check_version_consistency() -> tuple[bool, str]:
    """Check if runtime version matches source version in pyproject.toml.

    Returns:
        Tuple of (is_consistent, message) where:
        - is_consistent: True if versions match, False otherwise
        - message: Descriptive message about version status

    An editable install keeps running the old ``__version__`` until it is
    reinstalled; this catches that.
    """
    from . import __version__ as runtime_version

    pyproject_path = Path(__file__).parent.parent.parent / "pyproject.toml"

    if not pyproject_path.exists():
        return (
            False,
            "Cannot find pyproject.toml for version comparison",
        )

    try:
        with open(pyproject_path, "rb") as f:
            data = tomllib.load(f)
            source_version = data.get("project", {}).get(
                "version", "unknown"
            )
    except (OSError, tomllib.TOMLDecodeError) as e:
        return False, f"Failed to read version from pyproject.toml: {e}"

    if runtime_version != source_version:
        return False, (
            f"Version mismatch detected! "
            f"Runtime: {runtime_version}, Source: {source_version}. "
            f"Reinstall with: pip install -e ."
        )

    return True, f"Version verified: {runtime_version}"
