import json
import logging
import os
import sys

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_LOG_FILE = "/tmp/trac-issue-mirror.log"


class JsonFormatter(logging.Formatter):
    """Single-line JSON formatter for structured output.

    Produces one JSON object per record with fields ts, level, logger, msg,
    plus "exc" when exception info is attached.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _formatter(debug_format: str, with_name: bool) -> logging.Formatter:
    if debug_format == "json":
        return JsonFormatter(datefmt=DATE_FORMAT)
    pattern = "[%(asctime)s] [%(levelname)s] "
    pattern += "%(name)s %(message)s" if with_name else "%(message)s"
    return logging.Formatter(pattern, datefmt=DATE_FORMAT)


def setup_logging(
    mode: str = "cli",
    debug: bool = False,
    log_file: str | None = None,
    debug_format: str = "text",
    level: str | None = None,
) -> None:
    """
    Configure logging based on execution mode.

    Args:
        mode: "mcp" for file logging (never stdout), "cli" for stderr logging.
        debug: If True, overrides LOG_LEVEL to DEBUG.
        log_file: Custom log file path (overrides LOG_FILE env var).
        debug_format: "text" (default) or "json" for structured output.
        level: Level from the config file, used when LOG_LEVEL is unset.

    Environment variables:
        LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR).
                   Default: WARNING for MCP mode, INFO for CLI mode.
        LOG_FILE: Log file path for MCP mode.
                  Default: /tmp/trac-issue-mirror.log
    """
    default_level = level or ("WARNING" if mode == "mcp" else "INFO")
    env_level = os.getenv("LOG_LEVEL", default_level).upper()

    if debug:
        log_level = logging.DEBUG
    else:
        log_level = getattr(logging, env_level, logging.INFO)

    handlers: list[logging.Handler] = []
    if mode == "mcp":
        # stdio transport owns stdout
        file_handler = logging.FileHandler(
            log_file or os.getenv("LOG_FILE", DEFAULT_LOG_FILE), mode="a"
        )
        file_handler.setFormatter(_formatter(debug_format, with_name=False))
        handlers.append(file_handler)
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(_formatter(debug_format, with_name=False))
        handlers.append(stderr_handler)

        if log_file:
            file_handler = logging.FileHandler(log_file, mode="a")
            file_handler.setFormatter(_formatter(debug_format, with_name=True))
            handlers.append(file_handler)

    logging.basicConfig(level=log_level, handlers=handlers)

    if log_level != logging.DEBUG:
        for noisy in ("urllib3", "httpx", "httpcore"):
            logging.getLogger(noisy).setLevel(logging.WARNING)
