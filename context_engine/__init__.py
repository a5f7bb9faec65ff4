"""
Context Engine

Structured context memory for a user/agent pairing: decisions, goals,
preferences, known issues and derived todos.

Philosophy:
- Extraction proposes, confirmation persists
- Validation, conflict detection and ranking only read the store
- Literal trigger patterns, no language model in the loop

Usage:
    from context_engine.common import load_config, LocalContextStore, PatternLibrary
    from context_engine.scribe import ContextExtractor, CandidateQueue
    from context_engine.advisor import ActionValidator, ConflictDetector, EffectivenessRanker
    from context_engine.service import ContextService
"""

__version__ = "0.1.0"
