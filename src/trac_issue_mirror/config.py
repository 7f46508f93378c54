"""Connection and mirror settings for the ticket tree mirror.

Reads settings from CLI args, environment variables, .env files, and
YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    TRAC_URL: Trac instance URL (required)
    TRAC_USERNAME: Trac username (required)
    TRAC_PASSWORD: Trac password (required)
    TRAC_INSECURE: Skip SSL verification (optional, default: false)
    TRAC_DEBUG: Enable debug logging (optional, default: false)
    TRAC_MAX_PARALLEL_REQUESTS: Max parallel XML-RPC requests (optional, default: 5)
    TRAC_MIRROR_DATA_DIR: Directory holding working documents (optional)
    TRAC_MIRROR_STATE_DIR: Directory holding baselines (optional)
"""

import logging
import os
from dataclasses import dataclass
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

BASELINE_BACKENDS = ("json", "git")


@dataclass
class Config:
    trac_url: str
    username: str
    password: str
    insecure: bool = False
    debug: bool = False
    max_parallel_requests: int = 5
    data_dir: str = "tickets"
    state_dir: str = ".trac_issue_mirror/baselines"
    baseline_backend: str = "json"


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate. The URL is normalized in place.

    Raises:
        ValueError: If URL format is invalid, credentials are empty, or the
            baseline backend is unknown.
    """
    config.trac_url = config.trac_url.strip()

    if not config.trac_url.startswith(("http://", "https://")):
        raise ValueError(
            f"Invalid Trac URL '{config.trac_url}': must start with http:// or https://"
        )

    if not urlparse(config.trac_url).hostname:
        raise ValueError(
            f"Invalid Trac URL '{config.trac_url}': URL must include a hostname"
        )

    config.trac_url = config.trac_url.removesuffix("/")

    if not config.username.strip():
        raise ValueError(
            "Trac username cannot be empty. Set TRAC_USERNAME environment variable."
        )

    if not config.password.strip():
        raise ValueError(
            "Trac password cannot be empty. Set TRAC_PASSWORD environment variable."
        )

    if config.baseline_backend not in BASELINE_BACKENDS:
        raise ValueError(
            f"Unknown baseline backend '{config.baseline_backend}': "
            f"expected one of {', '.join(BASELINE_BACKENDS)}"
        )

    if config.insecure:
        logger.warning(
            "SSL verification disabled (insecure=True). Use only for development."
        )


def _env_bool(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def _required(
    cli_value: str | None, env_key: str, fallback: str | None, label: str
) -> str:
    value = cli_value or os.getenv(env_key) or fallback
    if not value:
        raise ValueError(
            f"Trac {label} not found. Set {env_key} environment variable, "
            f"pass --{label} CLI argument, or add '{label}' to config.yml."
        )
    return value.strip()


def _flag(cli_value: bool, env_key: str, fallback: bool) -> bool:
    if cli_value:
        return True
    env_value = _env_bool(env_key)
    if env_value is not None:
        return env_value
    return bool(fallback)


def load_config(
    url: str | None = None,
    username: str | None = None,
    password: str | None = None,
    insecure: bool = False,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
    mirror_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > YAML section > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        url: Override Trac URL.
        username: Override username.
        password: Override password.
        insecure: Skip SSL verification (CLI flag).
        debug: Enable debug logging (CLI flag).
        yaml_fallbacks: Values from the YAML ``trac`` section.
        mirror_fallbacks: Values from the YAML ``mirror`` section.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If required config is missing after checking all
            sources, or a numeric setting is out of range.
    """
    fb = yaml_fallbacks or {}
    mfb = mirror_fallbacks or {}

    max_parallel_raw = os.getenv("TRAC_MAX_PARALLEL_REQUESTS")
    if max_parallel_raw is not None:
        try:
            max_parallel = int(max_parallel_raw)
        except ValueError:
            max_parallel = 0
        if not (1 <= max_parallel <= 100):
            raise ValueError(
                f"Invalid TRAC_MAX_PARALLEL_REQUESTS '{max_parallel_raw}': "
                "must be a number between 1 and 100"
            )
    else:
        max_parallel = int(fb.get("max_parallel_requests", 5))

    config = Config(
        trac_url=_required(url, "TRAC_URL", fb.get("url"), "url"),
        username=_required(
            username, "TRAC_USERNAME", fb.get("username"), "username"
        ),
        password=_required(
            password, "TRAC_PASSWORD", fb.get("password"), "password"
        ),
        insecure=_flag(insecure, "TRAC_INSECURE", fb.get("insecure", False)),
        debug=_flag(debug, "TRAC_DEBUG", fb.get("debug", False)),
        max_parallel_requests=max_parallel,
        data_dir=os.getenv("TRAC_MIRROR_DATA_DIR")
        or mfb.get("data_dir")
        or Config.data_dir,
        state_dir=os.getenv("TRAC_MIRROR_STATE_DIR")
        or mfb.get("state_dir")
        or Config.state_dir,
        baseline_backend=mfb.get("baseline_backend") or Config.baseline_backend,
    )

    validate_config(config)

    return config
