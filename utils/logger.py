# utils/logger.py – Root logger setup, config level and memory checkpoints

import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

try:
    import psutil  # type: ignore

    _HAS_PSUTIL = True
except ImportError:
    psutil = None  # type: ignore
    _HAS_PSUTIL = False

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


def setup_logging(
    log_file: Optional[Path] = None, level: int = logging.INFO
) -> None:
    """Configure root logger with console output and an optional log file."""
    handlers: list = [logging.StreamHandler()]
    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)


def level_from_config(cfg: Mapping[str, Any]) -> int:
    name = str(cfg.get("logging", {}).get("level", "INFO")).upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def apply_logging_config(cfg: Dict[str, Any]) -> None:
    """Set root log level from the ``logging.level`` config entry."""
    logging.getLogger().setLevel(level_from_config(cfg))


def log_memory_usage(prefix: str = "") -> None:
    """Log resident memory of this process when psutil is installed."""
    if not _HAS_PSUTIL:
        logging.debug("psutil not installed; skipping memory checkpoint")
        return
    try:
        rss = psutil.Process().memory_info().rss
    except psutil.Error as exc:
        logging.debug("Memory checkpoint failed: %s", exc)
        return
    logging.debug("%sMemory usage: %.1f MB", prefix, rss / 1024**2)
