"""Replay action-state sequence search engine.

Finds ordered action-state patterns in per-player frame logs of recorded
matches and serves buffered replay clips around them.
"""

from replayscan.config import ServiceConfig
from replayscan.exceptions import ReplayScanError

__version__ = "0.1.0"

__all__ = ["ReplayScanError", "ServiceConfig", "__version__"]
