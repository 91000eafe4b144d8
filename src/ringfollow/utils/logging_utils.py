"""Logging helpers shared by the simulation entry points."""
import logging
from typing import Optional


_DEF_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def get_logger(name: str, level: int = logging.INFO, fmt: Optional[str] = None) -> logging.Logger:
    """Create and configure a logger with stream handler."""
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(fmt or _DEF_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(level)
    return logger


def rank_logger(rank: int, level: int = logging.INFO) -> logging.Logger:
    """Logger for one ring participant, tagged with its rank."""
    return get_logger(f"ringfollow.rank{rank}", level, fmt=f"%(asctime)s - rank {rank} - %(levelname)s - %(message)s")


__all__ = ["get_logger", "rank_logger"]
