"""
Effectiveness Ranker

Orders decisions by demonstrated usefulness and picks the next step
for each in-progress goal.

    score = applied_count * confidence_score
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from ..common.errors import InvalidRange
from ..common.schemas import Decision, Goal, GoalStatus


@dataclass
class RankedDecision:
    decision_id: str
    text: str
    score: float
    applied_count: int
    confidence_score: float
    last_applied: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "decision_id": self.decision_id,
            "text": self.text,
            "score": self.score,
            "applied_count": self.applied_count,
            "confidence_score": self.confidence_score,
            "last_applied": self.last_applied.isoformat() if self.last_applied else None,
        }


@dataclass
class Recommendation:
    goal_id: str
    goal_text: str
    priority: int
    step_number: int
    step_description: str
    completion_percentage: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "goal_id": self.goal_id,
            "goal_text": self.goal_text,
            "priority": self.priority,
            "step_number": self.step_number,
            "step_description": self.step_description,
            "completion_percentage": self.completion_percentage,
        }


def _last_applied_key(decision: Decision) -> float:
    if decision.last_applied is None:
        return float("-inf")
    return decision.last_applied.timestamp()


class EffectivenessRanker:
    """Ranks decisions and recommends goal steps."""

    def rank_decisions(self, decisions: Sequence[Decision], limit: int) -> List[RankedDecision]:
        """
        Rank applied decisions by score.

        Ties go to the more recently applied decision, then to the smaller id.
        Decisions never applied are left out.

        Raises:
            InvalidRange: If limit is negative
        """
        if limit < 0:
            raise InvalidRange("limit", limit, (0, None))

        applied = [d for d in decisions if d.applied_count > 0]

        # Stable sorts, least significant key first
        applied.sort(key=lambda d: d.id)
        applied.sort(key=_last_applied_key, reverse=True)
        applied.sort(key=lambda d: d.effectiveness_score, reverse=True)

        return [
            RankedDecision(
                decision_id=d.id,
                text=d.text,
                score=d.effectiveness_score,
                applied_count=d.applied_count,
                confidence_score=d.confidence_score,
                last_applied=d.last_applied,
            )
            for d in applied[:limit]
        ]

    def recommend_next_steps(self, goals: Sequence[Goal]) -> List[Recommendation]:
        """
        One recommendation per in-progress goal: its first step (by step
        number) that is not completed. Highest priority (1) first.
        """
        recommendations = []
        for goal in goals:
            if goal.status != GoalStatus.IN_PROGRESS:
                continue
            step = goal.next_incomplete_step()
            if step is None:
                continue
            recommendations.append(Recommendation(
                goal_id=goal.id,
                goal_text=goal.text,
                priority=goal.priority,
                step_number=step.step_number,
                step_description=step.description,
                completion_percentage=goal.completion_percentage,
            ))
        recommendations.sort(key=lambda r: r.priority)
        return recommendations
