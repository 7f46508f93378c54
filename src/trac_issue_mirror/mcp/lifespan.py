"""Lifespan management for MCP server startup and shutdown."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from ..config import Config, load_config
from ..config_loader import (
    discover_config_files,
    load_hierarchical_config,
)
from ..config_schema import MirrorConfig, build_config
from ..core.async_utils import init_semaphore, run_sync
from ..core.client import TracClient
from ..sync.document import JsonDocumentStore, PathMapper
from ..sync.engine import SyncOrchestrator
from ..sync.remote import TracRemote
from ..sync.state import create_baseline_store

logger = logging.getLogger(__name__)


@dataclass
class MirrorContext:
    """Everything a tool handler needs, built once at startup."""

    client: TracClient
    orchestrator: SyncOrchestrator
    mapper: PathMapper
    config: Config


def _stderr_print(msg: str) -> None:
    """Print message to stderr for user feedback (safe in MCP mode)."""
    print(msg, file=sys.stderr, flush=True)


def build_context(
    client: TracClient, config: Config, mirror: MirrorConfig | None = None
) -> MirrorContext:
    """Wire the sync engine to a connected client and the configured stores."""
    mirror = mirror or MirrorConfig()
    mapper = PathMapper(Path(config.data_dir))
    orchestrator = SyncOrchestrator(
        remote=TracRemote(client, parent_field=mirror.parent_field),
        documents=JsonDocumentStore(),
        baselines=create_baseline_store(
            config.baseline_backend, Path(config.state_dir)
        ),
        mapper=mapper,
        commit_message=mirror.commit_message,
    )
    return MirrorContext(
        client=client, orchestrator=orchestrator, mapper=mapper, config=config
    )


@asynccontextmanager
async def server_lifespan(
    config_overrides: dict[str, Any] | None = None,
) -> AsyncIterator[dict[str, Any]]:
    """
    Manage server startup and shutdown lifecycle.

    On startup:
    - Load .env file (so values are available for env var lookups and YAML interpolation)
    - Load YAML config file if present (as fallback values)
    - Merge all sources via load_config(): CLI > env vars > .env > YAML > defaults
    - Create TracClient and validate connection
    - Build the sync orchestrator over the configured stores
    - Fail fast if Trac is unreachable

    On shutdown:
    - Log shutdown message

    Args:
        config_overrides: Optional dict with config values from CLI (url, username, password, insecure)

    Yields:
        Dict with 'context' key containing the initialized MirrorContext

    Raises:
        RuntimeError: If configuration is invalid or Trac connection fails.
    """
    logger.info("MCP server starting...")
    _stderr_print("Trac Issue Mirror starting...")

    # CLI args > env vars (.env loaded first) > YAML config > defaults
    try:
        # .env first so ${VAR} interpolation in YAML can use its values
        load_dotenv()

        yaml_fallbacks: dict[str, Any] | None = None
        mirror_fallbacks: dict[str, Any] | None = None
        mirror = MirrorConfig()
        config_files = discover_config_files()
        sources = []

        if config_files:
            config_path = config_files[0]
            raw = load_hierarchical_config()
            unified = build_config(raw)
            yaml_fallbacks = {
                k: v
                for k, v in unified.trac.model_dump().items()
                if v is not None
            }
            mirror = unified.mirror
            mirror_fallbacks = mirror.model_dump()
            sources.append(f"config file: {config_path}")

        overrides = config_overrides or {}
        config = load_config(
            url=overrides.get("url"),
            username=overrides.get("username"),
            password=overrides.get("password"),
            insecure=overrides.get("insecure", False),
            debug=overrides.get("debug", False),
            yaml_fallbacks=yaml_fallbacks,
            mirror_fallbacks=mirror_fallbacks,
        )

        if overrides:
            sources.append("CLI arguments")
        sources.append("environment variables")
        source_desc = ", ".join(sources)
        logger.info("Configuration loaded from: %s", source_desc)
        _stderr_print(f"  Configuration loaded from: {source_desc}")
        logger.info("Trac URL: %s", config.trac_url)
        _stderr_print(f"  Trac URL: {config.trac_url}")
        _stderr_print(
            f"  Working documents: {config.data_dir} "
            f"(baselines: {config.state_dir}, {config.baseline_backend})"
        )
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        _stderr_print(f"ERROR: Configuration error: {e}")
        _stderr_print(
            "  Ensure TRAC_URL, TRAC_USERNAME, TRAC_PASSWORD are set."
        )
        raise RuntimeError(
            f"Configuration error: {e}. Ensure TRAC_URL, TRAC_USERNAME, TRAC_PASSWORD are set."
        ) from e

    logger.info("Validating Trac connection...")
    _stderr_print("  Validating Trac connection...")
    try:
        client = TracClient(config)
        version = await run_sync(client.validate_connection)
        logger.info(
            "Successfully connected to Trac API version %s", version
        )
        _stderr_print(f"  Connected to Trac API version {version}")
        init_semaphore(config.max_parallel_requests)
        _stderr_print(
            f"  Parallel requests: {config.max_parallel_requests}"
        )
    except Exception as e:
        logger.error("Failed to connect to Trac: %s", e)
        _stderr_print("ERROR: Trac connection failed.")
        _stderr_print(f"  {e}")
        _stderr_print("  Check TRAC_URL, TRAC_USERNAME, TRAC_PASSWORD.")
        raise RuntimeError(
            f"Trac connection failed: {e}. Check TRAC_URL, TRAC_USERNAME, TRAC_PASSWORD."
        ) from e

    context = build_context(client, config, mirror)
    _stderr_print("Server ready. Waiting for MCP client connection...")

    yield {"context": context}

    logger.info("MCP server shutting down")
    _stderr_print("Trac Issue Mirror shutting down.")
