"""Unified configuration schema for trac_issue_mirror.

Pydantic models for the YAML config structure with dedicated sections for
the Trac connection, logging, and the mirror itself (where working
documents and baselines live).

Usage:
    from trac_issue_mirror.config_schema import build_config, to_legacy_config

    unified = build_config(load_hierarchical_config())
    config = to_legacy_config(unified, cli_overrides={"url": "https://..."})
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class TracConfig(BaseModel):
    """Trac server connection settings.

    All fields are optional: env vars and CLI args can supply them at
    runtime instead.
    """

    url: str | None = Field(default=None, description="Trac server URL")
    username: str | None = Field(default=None, description="Trac username")
    password: str | None = Field(default=None, description="Trac password")
    insecure: bool = Field(
        default=False,
        description="Disable SSL verification (development only)",
    )
    debug: bool = Field(default=False, description="Enable debug mode")
    max_parallel_requests: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Maximum concurrent requests to Trac instance (1-100)",
    )

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
        format: "text" or "json".
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")
    format: Literal["text", "json"] = Field(
        default="text", description="Log record format"
    )

    model_config = {"frozen": True}


class MirrorConfig(BaseModel):
    """Where ticket trees are mirrored and how baselines are stored."""

    data_dir: str = Field(
        default="tickets",
        description="Directory holding one working document per root ticket",
    )
    state_dir: str = Field(
        default=".trac_issue_mirror/baselines",
        description="Directory holding last-synced baselines",
    )
    baseline_backend: Literal["json", "git"] = Field(
        default="json",
        description="Baseline persistence: JSON snapshots or a git repository",
    )
    parent_field: str = Field(
        default="parent",
        description="Ticket field linking a sub-ticket to its parent",
    )
    commit_message: str = Field(
        default="sync: #{id}",
        description="Baseline commit message template ({id} = root ticket)",
    )

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Every section has defaults, so ``UnifiedConfig()`` is always valid.
    """

    trac: TracConfig = Field(default_factory=TracConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    mirror: MirrorConfig = Field(default_factory=MirrorConfig)

    model_config = {"frozen": True}


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the merged YAML dict.

    Missing sections get defaults.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)


def to_legacy_config(
    unified: UnifiedConfig,
    cli_overrides: dict | None = None,
) -> Config:
    """Flatten a ``UnifiedConfig`` into the ``Config`` dataclass.

    Precedence: CLI override > unified config value > empty. The result is
    NOT validated; run ``validate_config()`` separately.

    Args:
        unified: The unified config produced by ``build_config()``.
        cli_overrides: Optional dict with keys url, username, password,
            insecure, debug.

    Returns:
        ``Config`` dataclass instance.
    """
    from .config import Config

    overrides = cli_overrides or {}

    return Config(
        trac_url=overrides.get("url") or unified.trac.url or "",
        username=overrides.get("username") or unified.trac.username or "",
        password=overrides.get("password") or unified.trac.password or "",
        insecure=overrides.get("insecure", False) or unified.trac.insecure,
        debug=overrides.get("debug", False) or unified.trac.debug,
        max_parallel_requests=unified.trac.max_parallel_requests,
        data_dir=unified.mirror.data_dir,
        state_dir=unified.mirror.state_dir,
        baseline_backend=unified.mirror.baseline_backend,
    )
