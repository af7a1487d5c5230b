"""Logging configuration for stickygraph.

Uses loguru with rotation. Logs are stored in ~/.stickygraph/logs/ unless
STICKYGRAPH_LOG_DIR points elsewhere.

Environment variables for log level control:
- STICKYGRAPH_LOG_LEVEL: Global log level (default: INFO)
- STICKYGRAPH_LOG_STORE: Structured store log level
- STICKYGRAPH_LOG_INDEX: Semantic index / embeddings log level
- STICKYGRAPH_LOG_NOTIFY: Notification channel log level
"""

import os
import sys
from contextlib import contextmanager
from pathlib import Path
from time import perf_counter

from loguru import logger

_global_log_level = os.getenv("STICKYGRAPH_LOG_LEVEL", "INFO").upper()

# Component-specific log level overrides, matched against the bound name
_component_log_levels: dict[str, str] = {
    "store": os.getenv("STICKYGRAPH_LOG_STORE", "").upper(),
    "index": os.getenv("STICKYGRAPH_LOG_INDEX", "").upper(),
    "embeddings": os.getenv("STICKYGRAPH_LOG_INDEX", "").upper(),
    "notify": os.getenv("STICKYGRAPH_LOG_NOTIFY", "").upper(),
}

_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[name]}:{function}:{line} | {message}"


def _log_filter(record) -> bool:
    """Filter records by global level, honoring per-component overrides."""
    name = record["extra"].get("name", "")

    for component, level in _component_log_levels.items():
        if level and component in name:
            try:
                return record["level"].no >= logger.level(level).no
            except ValueError:
                pass  # Invalid level, fall through to global

    try:
        return record["level"].no >= logger.level(_global_log_level).no
    except ValueError:
        return True


logger.remove()
logger.configure(extra={"name": "stickygraph"})

# Console goes to stderr: stdout carries the MCP stdio transport
logger.add(
    sys.stderr,
    level=0,
    filter=_log_filter,
    format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{extra[name]}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
    colorize=True,
)

_log_dir = Path(os.getenv("STICKYGRAPH_LOG_DIR", str(Path.home() / ".stickygraph" / "logs")))
try:
    _log_dir.mkdir(parents=True, exist_ok=True)
except OSError as e:
    logger.warning(f"File logging disabled, cannot create {_log_dir}: {e}")
else:
    logger.add(
        _log_dir / "stickygraph_{time:YYYY-MM-DD}.log",
        level="DEBUG",
        format=_FILE_FORMAT,
        rotation="10 MB",
        retention="7 days",
        compression="zip",
        enqueue=True,
    )
    logger.add(
        _log_dir / "latest.log",
        level="TRACE",
        format=_FILE_FORMAT,
        rotation="5 MB",
        retention=1,
    )


def get_logger(name: str):
    """Get a logger with the given component name bound to context.

    Args:
        name: Module or component name

    Returns:
        Logger instance with name bound
    """
    return logger.bind(name=name)


@contextmanager
def log_timing(operation: str, log_instance=None, level: str = "debug"):
    """Time a block and log the elapsed milliseconds on exit.

    Yields:
        dict with 'elapsed_ms' key (populated after the block exits)
    """
    log_fn = log_instance or logger
    timing = {"elapsed_ms": 0.0}
    start = perf_counter()
    try:
        yield timing
    finally:
        timing["elapsed_ms"] = (perf_counter() - start) * 1000
        getattr(log_fn, level)(f"{operation}: {timing['elapsed_ms']:.1f}ms")


__all__ = ["logger", "get_logger", "log_timing"]
