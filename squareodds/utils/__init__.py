"""Utility modules."""

from squareodds.utils.cache import AsyncMemoCache, ModelCache
from squareodds.utils.logging import OddsHistoryLogger, setup_logging

__all__ = [
    "AsyncMemoCache",
    "ModelCache",
    "OddsHistoryLogger",
    "setup_logging",
]
