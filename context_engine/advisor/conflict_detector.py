"""
Conflict Detector

Scans an owner's stored preferences and decisions for pairwise
contradictions. Conflicts are returned in discovery order; callers that
want severity ordering sort explicitly.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Sequence

from ..common.contradiction import are_contradictory, decisions_conflict
from ..common.schemas import Decision, Preference


class ConflictType(str, Enum):
    PREFERENCE_CONTRADICTION = "preference_contradiction"
    DECISION_CHANGE = "decision_change"


class ConflictSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class Conflict:
    """A contradiction between two stored items"""
    conflict_type: ConflictType
    severity: ConflictSeverity
    description: str
    item_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "conflict_type": self.conflict_type.value,
            "severity": self.severity.value,
            "description": self.description,
            "item_ids": list(self.item_ids),
        }


class ConflictDetector:
    """
    Pairwise contradiction scan.

    Quadratic in the number of items per owner; per-owner counts are
    expected to stay in the low hundreds.
    """

    def detect_preference_conflicts(self, preferences: Sequence[Preference]) -> List[Conflict]:
        """
        Report each contradicting unordered pair of same-owner preferences once.

        Subject overlap comes from the name/value text or shared tags.
        """
        conflicts = []
        items = list(preferences)
        for i, first in enumerate(items):
            for second in items[i + 1:]:
                if first.owner_id != second.owner_id:
                    continue
                shared_tags = {t.lower() for t in first.tags} & {t.lower() for t in second.tags}
                if are_contradictory(
                    f"{first.name} {first.value}",
                    f"{second.name} {second.value}",
                    extra_subject_terms=shared_tags,
                ):
                    conflicts.append(Conflict(
                        conflict_type=ConflictType.PREFERENCE_CONTRADICTION,
                        severity=ConflictSeverity.WARNING,
                        description=(
                            f"Preference '{first.name}' ({first.value}) contradicts "
                            f"'{second.name}' ({second.value})"
                        ),
                        item_ids=[first.id, second.id],
                    ))
        return conflicts

    def detect_decision_conflicts(self, decisions: Sequence[Decision]) -> List[Conflict]:
        """
        Report every (older, newer) same-owner pair where the newer decision
        contradicts or replaces the older one. Decisions created at the same
        instant are never paired.
        """
        ordered = sorted(decisions, key=lambda d: d.created_at)
        conflicts = []
        for i, older in enumerate(ordered):
            for newer in ordered[i + 1:]:
                if newer.owner_id != older.owner_id:
                    continue
                if not newer.created_at > older.created_at:
                    continue
                if decisions_conflict(older.text, newer.text):
                    conflicts.append(Conflict(
                        conflict_type=ConflictType.DECISION_CHANGE,
                        severity=ConflictSeverity.INFO,
                        description=f"Decision changed: '{older.text}' -> '{newer.text}'",
                        item_ids=[older.id, newer.id],
                    ))
        return conflicts
