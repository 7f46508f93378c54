"""
YAML config discovery and loading for trac_issue_mirror.

Config files are found by convention, may pull in other files with
``!include``, may reference environment variables as ``${VAR}`` or
``${VAR:-default}``, and are merged so that project-level files win over
global ones.

Usage:
    from trac_issue_mirror.config_loader import load_hierarchical_config

    raw = load_hierarchical_config()
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "TRAC_ISSUE_MIRROR_CONFIG"
PROJECT_DIR_NAME = ".trac_issue_mirror"

# ---------------------------------------------------------------------------
# Env var interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Replace ``${VAR}`` and ``${VAR:-default}`` with environment values.

    An unset or empty VAR yields *default* when given, else "". A ``${``
    with no closing brace is left as is.
    """

    def _replace(match: re.Match) -> str:
        env_val = os.environ.get(match.group(1))
        if env_val:
            return env_val
        return match.group(2) or ""

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _interpolate_recursive(obj: Any) -> Any:
    match obj:
        case str():
            return interpolate_env_vars(obj)
        case dict():
            return {k: _interpolate_recursive(v) for k, v in obj.items()}
        case list():
            return [_interpolate_recursive(item) for item in obj]
        case _:
            return obj


# ---------------------------------------------------------------------------
# YAML !include support
# ---------------------------------------------------------------------------


class ConfigLoader(yaml.SafeLoader):
    """SafeLoader subclass carrying the ``!include`` constructor.

    A dedicated subclass keeps the global ``yaml.SafeLoader`` untouched.
    """


def _include_constructor(loader: ConfigLoader, node: yaml.ScalarNode) -> Any:
    """Handle ``!include path/to/file.yml`` relative to the including file."""
    raw_path = Path(loader.construct_scalar(node))
    if not raw_path.is_absolute():
        raw_path = Path(loader.name).resolve().parent / raw_path
    include_path = raw_path.resolve()

    include_stack: list[Path] = getattr(loader, "_include_stack", [])
    if include_path in include_stack:
        chain = " -> ".join(str(p) for p in [*include_stack, include_path])
        raise ValueError(f"Circular include detected: {chain}")

    if not include_path.exists():
        raise FileNotFoundError(
            f"Include file not found: {include_path} "
            f"(referenced from {Path(loader.name).resolve()})"
        )

    return _load_yaml_with_includes(
        include_path, _include_stack=[*include_stack, include_path]
    )


ConfigLoader.add_constructor("!include", _include_constructor)


def _load_yaml_with_includes(
    path: Path,
    *,
    _include_stack: list[Path] | None = None,
) -> Any:
    path = path.resolve()
    with open(path, "r", encoding="utf-8") as fh:
        loader = ConfigLoader(fh)
        loader._include_stack = _include_stack or [path]  # type: ignore[attr-defined]
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


def discover_config_files() -> list[Path]:
    """Return existing config file paths, highest precedence first.

    Search order:
        1. ``TRAC_ISSUE_MIRROR_CONFIG`` env var (explicit single path)
        2. ``.trac_issue_mirror/config.yml`` in CWD (project-level)
        3. ``~/.config/trac_issue_mirror/config.yml`` (XDG global)
    """
    candidates: list[Path] = []

    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        candidates.append(Path(env_path).expanduser().resolve())

    candidates.append(Path.cwd() / PROJECT_DIR_NAME / "config.yml")
    candidates.append(
        Path.home() / ".config" / "trac_issue_mirror" / "config.yml"
    )

    return [p for p in candidates if p.exists()]


_STARTER_CONFIG = """\
# trac-issue-mirror configuration
#
# Connection settings can also come from environment variables:
#   TRAC_URL, TRAC_USERNAME, TRAC_PASSWORD, TRAC_INSECURE
#
# trac:
#   url: https://trac.example.com
#   username: admin
#   password: ${TRAC_PASSWORD}
#   max_parallel_requests: 5
#
# mirror:
#   data_dir: tickets
#   state_dir: .trac_issue_mirror/baselines
#   baseline_backend: json   # or: git
#   parent_field: parent
#
# logging:
#   level: INFO
#   file: null
#   format: text
"""


def ensure_config(target: Path | None = None) -> Path:
    """Return the active config file, writing a commented starter if none exists.

    Args:
        target: Where to create the starter file. Defaults to the
            project-level path under CWD.

    Returns:
        Path to the config file (existing or newly created).
    """
    existing = discover_config_files()
    if existing:
        logger.debug("Config file already exists: %s", existing[0])
        return existing[0]

    config_path = target or Path.cwd() / PROJECT_DIR_NAME / "config.yml"
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Created starter config: %s", config_path)
    return config_path


# ---------------------------------------------------------------------------
# Hierarchical merge
# ---------------------------------------------------------------------------


def load_hierarchical_config() -> dict[str, Any]:
    """Load and merge all discovered config files.

    Files are applied from lowest precedence to highest; each file's
    top-level keys replace those from earlier files (no deep merge). Env
    var interpolation runs after merging. Returns ``{}`` when no config
    file exists.
    """
    paths = discover_config_files()
    if not paths:
        logger.debug("No config files found, using defaults")
        return {}

    merged: dict[str, Any] = {}
    for path in reversed(paths):
        logger.debug("Loading config: %s", path)
        try:
            data = _load_yaml_with_includes(path)
        except Exception:
            logger.exception("Failed to load config file %s", path)
            raise

        if isinstance(data, dict):
            merged.update(data)
        elif data is not None:
            logger.warning(
                "Config file %s has non-dict root (%s), skipping",
                path,
                type(data).__name__,
            )

    return _interpolate_recursive(merged)
