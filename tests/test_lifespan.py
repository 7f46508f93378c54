"""Tests for trac_issue_mirror.mcp.lifespan: server startup/shutdown lifecycle.

server_lifespan() must:
- merge CLI overrides, env vars and YAML fallbacks through load_config()
- validate the Trac connection and size the request semaphore
- wire the sync orchestrator to the configured stores
- fail fast with RuntimeError on config errors or connection failures
"""

from contextlib import ExitStack
from unittest.mock import patch

import pytest

from trac_issue_mirror.config import Config
from trac_issue_mirror.config_schema import MirrorConfig
from trac_issue_mirror.mcp.lifespan import MirrorContext, build_context, server_lifespan
from trac_issue_mirror.sync.state import GitBaselineStore, JsonBaselineStore

_MODULE = "trac_issue_mirror.mcp.lifespan"


def _make_config(tmp_path, **overrides):
    defaults = {
        "trac_url": "https://trac.example.com/trac",
        "username": "testuser",
        "password": "testpass",
        "max_parallel_requests": 3,
        "data_dir": str(tmp_path / "tickets"),
        "state_dir": str(tmp_path / "state"),
    }
    defaults.update(overrides)
    return Config(**defaults)


@pytest.fixture
def startup(tmp_path):
    """Patch every external touchpoint of server_lifespan()."""
    config = _make_config(tmp_path)
    with ExitStack() as stack:
        mocks = {
            name: stack.enter_context(patch(f"{_MODULE}.{name}", **kwargs))
            for name, kwargs in {
                "load_dotenv": {},
                "discover_config_files": {"return_value": []},
                "load_config": {"return_value": config},
                "TracClient": {},
                "run_sync": {"return_value": "1.2.0"},
                "init_semaphore": {},
                "_stderr_print": {},
            }.items()
        }
        mocks["TracClient"].return_value.config = config
        mocks["config"] = config
        yield mocks


def _printed(mocks) -> str:
    return "\n".join(c.args[0] for c in mocks["_stderr_print"].call_args_list)


# -------------------------------------------------------------------------
# Successful startup
# -------------------------------------------------------------------------


class TestServerLifespanSuccess:
    async def test_yields_context(self, startup):
        async with server_lifespan() as ctx:
            context = ctx["context"]
            assert isinstance(context, MirrorContext)
            assert context.client is startup["TracClient"].return_value
            assert context.config is startup["config"]

        startup["init_semaphore"].assert_called_once_with(3)
        assert "Connected to Trac API version 1.2.0" in _printed(startup)
        assert "shutting down" in _printed(startup)

    async def test_cli_overrides_forwarded(self, startup):
        overrides = {"url": "https://cli.example.com", "insecure": True}
        async with server_lifespan(config_overrides=overrides):
            pass
        kwargs = startup["load_config"].call_args.kwargs
        assert kwargs["url"] == "https://cli.example.com"
        assert kwargs["insecure"] is True
        assert kwargs["yaml_fallbacks"] is None

    async def test_yaml_sections_become_fallbacks(self, startup, tmp_path):
        startup["discover_config_files"].return_value = [tmp_path / "config.yml"]
        raw = {
            "trac": {"url": "https://yaml.example.com", "max_parallel_requests": 7},
            "mirror": {"baseline_backend": "git", "parent_field": "parents"},
        }
        with patch(f"{_MODULE}.load_hierarchical_config", return_value=raw):
            async with server_lifespan():
                pass

        kwargs = startup["load_config"].call_args.kwargs
        assert kwargs["yaml_fallbacks"]["url"] == "https://yaml.example.com"
        assert "username" not in kwargs["yaml_fallbacks"]
        assert kwargs["mirror_fallbacks"]["baseline_backend"] == "git"


# -------------------------------------------------------------------------
# Failures
# -------------------------------------------------------------------------


class TestServerLifespanFailure:
    async def test_config_error(self, startup):
        startup["load_config"].side_effect = ValueError("Trac url not found")
        with pytest.raises(RuntimeError, match="Configuration error: Trac url not found"):
            async with server_lifespan():
                pass
        startup["TracClient"].assert_not_called()

    async def test_connection_failure(self, startup):
        startup["run_sync"].side_effect = ConnectionError("refused")
        with pytest.raises(RuntimeError, match="Trac connection failed: refused"):
            async with server_lifespan():
                pass
        startup["init_semaphore"].assert_not_called()
        assert "ERROR: Trac connection failed." in _printed(startup)


# -------------------------------------------------------------------------
# build_context()
# -------------------------------------------------------------------------


class TestBuildContext:
    def test_json_store_by_default(self, tmp_path, mock_trac_client):
        config = _make_config(tmp_path)
        context = build_context(mock_trac_client, config)
        assert isinstance(context.orchestrator.baselines, JsonBaselineStore)
        assert context.mapper.document_for(5) == tmp_path / "tickets" / "5.json"
        assert context.orchestrator.commit_message == "sync: #{id}"

    def test_mirror_settings_applied(self, tmp_path, mock_trac_client):
        config = _make_config(tmp_path, baseline_backend="git")
        mirror = MirrorConfig(parent_field="parents", commit_message="mirror #{id}")
        context = build_context(mock_trac_client, config, mirror)
        assert isinstance(context.orchestrator.baselines, GitBaselineStore)
        assert context.orchestrator.remote._parent_field == "parents"
        assert context.orchestrator.commit_message == "mirror #{id}"
