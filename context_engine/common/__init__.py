"""
Context Engine Common Module

Shared infrastructure for the scribe and advisor components.
"""

from .config import EngineConfig, load_config
from .errors import ContextEngineError, InvalidRange, NotFound, PatternError, StoreUnavailable
from .pattern_library import PatternEntry, PatternLibrary, TargetCategory
from .store import ContextStore, LocalContextStore

__all__ = [
    "EngineConfig",
    "load_config",
    "ContextEngineError",
    "InvalidRange",
    "NotFound",
    "PatternError",
    "StoreUnavailable",
    "PatternEntry",
    "PatternLibrary",
    "TargetCategory",
    "ContextStore",
    "LocalContextStore",
]
