"""
Logging setup for tasktrack.

Library modules only ever `from loguru import logger`. Sinks are configured
once per invocation by the composition root.
"""

from __future__ import annotations

import sys
from pathlib import Path

from loguru import logger

from tasktrack.config_loader import TrackConfig


def configure_logging(config: TrackConfig, repo_path: Path, verbose: bool = False) -> Path | None:
    """Install the stderr sink and, if enabled, the rotating file sink.

    Returns the log directory when a file sink was added.
    """
    logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG" if verbose else "WARNING",
        format="{time:HH:mm:ss} | {level:<7} | {message}",
    )

    if not config.logging.enabled:
        return None

    log_dir = Path(config.logging.directory).expanduser()
    if not log_dir.is_absolute():
        log_dir = repo_path / log_dir
    log_dir.mkdir(parents=True, exist_ok=True)
    # Log files must never show up as uncommitted changes
    ignore = log_dir / ".gitignore"
    if not ignore.exists():
        ignore.write_text("*\n")

    logger.add(
        log_dir / "tasktrack_{time:YYYY-MM-DD}.log",
        level=config.logging.level,
        rotation="00:00",
        retention=f"{config.logging.retention_days} days",
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<7} | {name}:{line} | {message}",
        enqueue=False,
    )
    return log_dir
