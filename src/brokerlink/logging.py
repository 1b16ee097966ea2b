from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
LOG_FILE = "brokerlink.log"


def _resolve_level(level: str | None) -> int:
    name = (level or os.environ.get("BROKERLINK_LOG_LEVEL", "INFO")).upper()
    return getattr(logging, name, logging.INFO)


def configure_logging(log_dir: Path | None = None, level: str | None = None) -> None:
    """Install console and optional rotating file handlers on the root logger.

    Level comes from ``level`` or ``BROKERLINK_LOG_LEVEL`` (default INFO).
    aiohttp's access/client loggers are capped at WARNING so stream
    keepalives do not flood DEBUG output.
    """
    resolved = _resolve_level(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    root_logger = logging.getLogger()
    root_logger.setLevel(resolved)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(resolved)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_dir:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)

        # 10MB per file, 5 backups
        file_handler = logging.handlers.RotatingFileHandler(
            log_dir / LOG_FILE,
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
        )
        file_handler.setLevel(resolved)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    for noisy in ("aiohttp.client", "aiohttp.internal", "aiohttp.websocket"):
        logging.getLogger(noisy).setLevel(max(resolved, logging.WARNING))
