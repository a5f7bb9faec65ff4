"""
Action Validator

Checks a proposed action against the owner's stored context and returns
a structured verdict. Pure read computation: the caller fetches the
context, and recording that a decision was applied is a separate store
operation done only after confirmation.

Processing order:
1. Decisions: overlap with the action's target/parameters -> applied;
   contradiction -> violation
2. Preferences (automation only): contradiction -> violation,
   overlap -> informational note quoting the value
3. Issues: target matches an affected component and a workaround is
   recorded -> applicable workaround + warning
4. In-progress goals: target overlaps the goal or an incomplete step
   -> recommendation
5. is_valid = no violations
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Sequence

from ..common.contradiction import are_contradictory, profile
from ..common.schemas import Decision, Goal, GoalStatus, Issue, Preference


@dataclass(frozen=True)
class ProposedAction:
    """What an agent is about to do"""
    action_type: str
    target: str
    parameters: Dict[str, Any] = field(default_factory=dict)

    def describe(self) -> str:
        """Flattened text used for keyword matching."""
        return " ".join(p for p in [self.action_type.replace("_", " "), self.subject_text()] if p)

    def subject_text(self) -> str:
        """Target and parameters only; the action verb is left out."""
        parts = [self.target]
        for key, value in self.parameters.items():
            parts.append(str(key).replace("_", " "))
            if isinstance(value, (list, tuple)):
                parts.extend(str(v) for v in value)
            elif value is not None:
                parts.append(str(value))
        return " ".join(p for p in parts if p)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProposedAction":
        return cls(
            action_type=data.get("action_type", ""),
            target=data.get("target", ""),
            parameters=dict(data.get("parameters") or {}),
        )


@dataclass
class ValidationContext:
    """Snapshot of the owner's context the validator reads"""
    decisions: List[Decision] = field(default_factory=list)
    preferences: List[Preference] = field(default_factory=list)
    issues: List[Issue] = field(default_factory=list)
    goals: List[Goal] = field(default_factory=list)


@dataclass
class ActionValidation:
    """Validation verdict"""
    is_valid: bool
    warnings: List[str] = field(default_factory=list)
    violations: List[str] = field(default_factory=list)
    applied_decisions: List[str] = field(default_factory=list)
    applicable_workarounds: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    applied_decision_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ActionValidator:
    """
    Validates proposed actions against stored decisions, preferences,
    issues and goals.
    """

    def __init__(self, min_keyword_overlap: int = 1, active_decisions_only: bool = True):
        """
        Args:
            min_keyword_overlap: Shared subject terms needed to count as a match
            active_decisions_only: Skip archived/superseded decisions
        """
        self._min_overlap = max(1, min_keyword_overlap)
        self._active_only = active_decisions_only

    def validate_action(
        self,
        action: ProposedAction,
        owner_id: str,
        context: ValidationContext,
    ) -> ActionValidation:
        """
        Validate an action for one owner.

        Items in the context that belong to another owner are ignored.
        """
        action_text = action.describe()
        action_terms = profile(action_text).subject_terms
        subject_terms = profile(action.subject_text()).subject_terms
        target_terms = profile(action.target).subject_terms

        warnings: List[str] = []
        violations: List[str] = []
        applied: List[str] = []
        applied_ids: List[str] = []
        workarounds: List[str] = []
        recommendations: List[str] = []

        # 1. Decisions
        for decision in _owned(context.decisions, owner_id):
            if self._active_only and not decision.is_active:
                continue
            if not self._overlaps(subject_terms, decision.text):
                continue
            applied.append(decision.text)
            applied_ids.append(decision.id)
            if are_contradictory(decision.text, action_text):
                violations.append(
                    f"Action contradicts decision '{decision.text}'"
                    + (f" (reason: {decision.reason})" if decision.reason else "")
                )

        # 2. Preferences
        for preference in _owned(context.preferences, owner_id):
            if not preference.applies_to_automation:
                continue
            statement = f"{preference.name} {preference.value}"
            if not self._overlaps(action_terms, statement, extra=preference.tags):
                continue
            if are_contradictory(statement, action_text):
                violations.append(
                    f"Action violates preference '{preference.name}': {preference.value}"
                )
            else:
                recommendations.append(
                    f"Preference '{preference.name}' applies: {preference.value}"
                )

        # 3. Issues
        target_lower = action.target.lower()
        for issue in _owned(context.issues, owner_id):
            if not issue.workaround:
                continue
            if not _matches_component(target_lower, issue.affected_components):
                continue
            workarounds.append(issue.workaround)
            warnings.append(
                f"Known issue affects {action.target}: {issue.description} "
                f"(severity: {issue.severity.value}); workaround: {issue.workaround}"
            )

        # 4. Goals
        for goal in _owned(context.goals, owner_id):
            if goal.status != GoalStatus.IN_PROGRESS:
                continue
            texts = [goal.text] + [s.description for s in goal.ordered_steps() if not s.is_completed]
            if any(self._overlaps(target_terms, text) for text in texts):
                recommendations.append(f"Action advances goal '{goal.text}'")

        return ActionValidation(
            is_valid=not violations,
            warnings=warnings,
            violations=violations,
            applied_decisions=applied,
            applicable_workarounds=workarounds,
            recommendations=recommendations,
            applied_decision_ids=applied_ids,
        )

    def _overlaps(self, terms, text: str, extra: Sequence[str] = ()) -> bool:
        other = set(profile(text).subject_terms) | {t.lower() for t in extra}
        return len(set(terms) & other) >= self._min_overlap


def _owned(items: Sequence, owner_id: str) -> List:
    return [item for item in items if item.owner_id == owner_id]


def _matches_component(target_lower: str, components: Sequence[str]) -> bool:
    for component in components:
        component_lower = component.lower().strip()
        if not component_lower:
            continue
        if target_lower and (component_lower in target_lower or target_lower in component_lower):
            return True
    return False
