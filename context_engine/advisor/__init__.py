"""
Advisor - Context Application

Reads stored context to check proposed actions, surface contradictions
and rank what has worked.
"""

from .validator import ActionValidator, ActionValidation, ProposedAction, ValidationContext
from .conflict_detector import Conflict, ConflictDetector, ConflictSeverity, ConflictType
from .ranker import EffectivenessRanker, RankedDecision, Recommendation

__all__ = [
    "ActionValidator",
    "ActionValidation",
    "ProposedAction",
    "ValidationContext",
    "Conflict",
    "ConflictDetector",
    "ConflictSeverity",
    "ConflictType",
    "EffectivenessRanker",
    "RankedDecision",
    "Recommendation",
]
