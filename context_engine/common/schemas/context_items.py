"""
Context Item Schemas

Five kinds of context items share a common base: Decision, Goal,
Preference, Issue and Todo. Every item is owned by exactly one owner
and carries a scope (global, a project, or a named workflow).

Range rules:
- confidence_score must lie in [0.0, 1.0]
- priority must lie in [1, 5] (1 = highest)
Explicit out-of-range values raise InvalidRange. Values the engine computes
itself go through clamp_confidence / clamp_priority instead.
"""

import math
import re
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..errors import InvalidRange, NotFound


CONFIDENCE_BOUNDS = (0.0, 1.0)
PRIORITY_BOUNDS = (1, 5)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_item_id() -> str:
    """Opaque, immutable item identifier."""
    return str(uuid.uuid4())


def clamp_confidence(value: float) -> float:
    """Clamp an engine-computed confidence into [0.0, 1.0]."""
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return CONFIDENCE_BOUNDS[0]
    return max(CONFIDENCE_BOUNDS[0], min(CONFIDENCE_BOUNDS[1], float(value)))


def clamp_priority(value: int) -> int:
    """Clamp an engine-computed priority into [1, 5]."""
    return max(PRIORITY_BOUNDS[0], min(PRIORITY_BOUNDS[1], int(value)))


def check_confidence(value: float, field: str = "confidence_score") -> float:
    if math.isnan(value) or not CONFIDENCE_BOUNDS[0] <= value <= CONFIDENCE_BOUNDS[1]:
        raise InvalidRange(field, value, CONFIDENCE_BOUNDS)
    return value


def check_priority(value: int, field: str = "priority") -> int:
    if not PRIORITY_BOUNDS[0] <= value <= PRIORITY_BOUNDS[1]:
        raise InvalidRange(field, value, PRIORITY_BOUNDS)
    return value


# ============================================================================
# Enums
# ============================================================================

def _enum_key(value: str) -> str:
    """'ToolChoice', 'tool-choice', 'Tool Choice' -> 'tool_choice'"""
    value = value.strip()
    if not value.isupper():
        value = re.sub(r"(?<=[a-z0-9])(?=[A-Z])", "_", value)
    return re.sub(r"[\s\-]+", "_", value).lower()


class _LenientEnum(str, Enum):
    """Accepts any casing/separator style of a member value."""

    @classmethod
    def _missing_(cls, value: Any):
        if isinstance(value, str):
            key = _enum_key(value)
            for member in cls:
                if member.value == key:
                    return member
        return None


class _OtherFallbackEnum(_LenientEnum):
    """Unknown values map to the OTHER member instead of failing."""

    @classmethod
    def _missing_(cls, value: Any):
        member = super()._missing_(value)
        if member is None and isinstance(value, str):
            return cls.OTHER
        return member


class EntityType(_LenientEnum):
    """Context item kinds"""
    DECISION = "decision"
    GOAL = "goal"
    PREFERENCE = "preference"
    ISSUE = "issue"
    TODO = "todo"


class DecisionCategory(_OtherFallbackEnum):
    """What a decision is about"""
    ARCHITECTURE = "architecture"
    TOOL_CHOICE = "tool_choice"
    CONSTRAINT = "constraint"
    WORKFLOW = "workflow"
    PERFORMANCE = "performance"
    SECURITY = "security"
    OTHER = "other"


class DecisionStatus(_LenientEnum):
    ACTIVE = "active"
    ARCHIVED = "archived"
    SUPERSEDED = "superseded"


class GoalStatus(_LenientEnum):
    PLANNED = "planned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    BLOCKED = "blocked"


class PreferenceType(_OtherFallbackEnum):
    TOOL = "tool"
    FRAMEWORK = "framework"
    CONSTRAINT = "constraint"
    PATTERN = "pattern"
    OTHER = "other"


class IssueSeverity(_LenientEnum):
    """Issue severity; total order with CRITICAL highest"""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def __lt__(self, other):
        if isinstance(other, IssueSeverity):
            return self.rank < other.rank
        return NotImplemented

    def __le__(self, other):
        if isinstance(other, IssueSeverity):
            return self.rank <= other.rank
        return NotImplemented

    def __gt__(self, other):
        if isinstance(other, IssueSeverity):
            return self.rank > other.rank
        return NotImplemented

    def __ge__(self, other):
        if isinstance(other, IssueSeverity):
            return self.rank >= other.rank
        return NotImplemented


_SEVERITY_RANK = {
    IssueSeverity.LOW: 0,
    IssueSeverity.MEDIUM: 1,
    IssueSeverity.HIGH: 2,
    IssueSeverity.CRITICAL: 3,
}


class IssueCategory(_OtherFallbackEnum):
    INTEGRATION = "integration"
    PERFORMANCE = "performance"
    DEPLOYMENT = "deployment"
    DATA = "data"
    WORKFLOW = "workflow"
    OTHER = "other"


class ResolutionStatus(_LenientEnum):
    UNRESOLVED = "unresolved"
    WORKAROUND_AVAILABLE = "workaround_available"
    FIXED = "fixed"
    NO_ACTION_NEEDED = "no_action_needed"


class TodoContextType(_OtherFallbackEnum):
    DECISION_IMPLEMENTATION = "decision_implementation"
    GOAL_STEP = "goal_step"
    ISSUE_RESOLUTION = "issue_resolution"
    PREFERENCE_ADOPTION = "preference_adoption"
    OTHER = "other"


class TodoStatus(_LenientEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    BLOCKED = "blocked"


class ScopeKind(str, Enum):
    GLOBAL = "global"
    PROJECT = "project"
    WORKFLOW = "workflow"


# ============================================================================
# Scope
# ============================================================================

class ContextScope(BaseModel):
    """
    Applicability domain of a context item.

    String form (used by the store and the MCP tools):
        "global" | "project_id:<id>" | "workflow:<name>"
    """
    model_config = ConfigDict(frozen=True)

    kind: ScopeKind = ScopeKind.GLOBAL
    value: Optional[str] = None

    @classmethod
    def global_scope(cls) -> "ContextScope":
        return cls(kind=ScopeKind.GLOBAL)

    @classmethod
    def project(cls, project_id: str) -> "ContextScope":
        return cls(kind=ScopeKind.PROJECT, value=project_id)

    @classmethod
    def workflow(cls, name: str) -> "ContextScope":
        return cls(kind=ScopeKind.WORKFLOW, value=name)

    @classmethod
    def from_string(cls, raw: Optional[str]) -> "ContextScope":
        if not raw or raw.strip().lower() == "global":
            return cls.global_scope()
        raw = raw.strip()
        if raw.startswith("project_id:"):
            return cls.project(raw[len("project_id:"):])
        if raw.startswith("project:"):
            return cls.project(raw[len("project:"):])
        if raw.startswith("workflow:"):
            return cls.workflow(raw[len("workflow:"):])
        raise ValueError(f"Unrecognized scope: {raw!r}")

    def to_string(self) -> str:
        if self.kind == ScopeKind.PROJECT:
            return f"project_id:{self.value}"
        if self.kind == ScopeKind.WORKFLOW:
            return f"workflow:{self.value}"
        return "global"

    def applies_to_project(self, project_id: Optional[str]) -> bool:
        """Global and workflow scopes apply everywhere; project scopes only to their project."""
        if project_id is None or self.kind != ScopeKind.PROJECT:
            return True
        return self.value == project_id

    def __str__(self) -> str:
        return self.to_string()


# ============================================================================
# Base item
# ============================================================================

class ContextItem(BaseModel):
    """Identity, ownership, scope and timestamps shared by every item kind"""
    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=generate_item_id, frozen=True)
    owner_id: str
    scope: ContextScope = Field(default_factory=ContextScope.global_scope)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None

    entity_type: Any = None  # overridden per kind

    def touch(self) -> None:
        """Mark the item as mutated."""
        self.updated_at = utcnow()


class Decision(ContextItem):
    """A choice the user made that future actions should honour"""
    entity_type: EntityType = Field(default=EntityType.DECISION, frozen=True)

    text: str
    reason: Optional[str] = None
    category: DecisionCategory = DecisionCategory.OTHER
    confidence_score: float = 0.5
    applied_count: int = Field(default=0, ge=0)
    last_applied: Optional[datetime] = None
    status: DecisionStatus = DecisionStatus.ACTIVE
    related_project_id: Optional[str] = None
    referenced_items: List[str] = Field(default_factory=list)

    @field_validator("confidence_score")
    @classmethod
    def _check_confidence(cls, v: float) -> float:
        return check_confidence(v)

    @property
    def effectiveness_score(self) -> float:
        return self.applied_count * self.confidence_score

    @property
    def is_active(self) -> bool:
        return self.status == DecisionStatus.ACTIVE

    def with_confidence(self, confidence: float) -> "Decision":
        self.confidence_score = clamp_confidence(confidence)
        return self

    def record_application(self) -> None:
        self.applied_count += 1
        self.last_applied = utcnow()
        self.updated_at = self.last_applied

    def archive(self) -> None:
        self.status = DecisionStatus.ARCHIVED
        self.touch()

    def supersede(self) -> None:
        self.status = DecisionStatus.SUPERSEDED
        self.touch()


class GoalStep(BaseModel):
    """One ordered step of a goal"""
    model_config = ConfigDict(validate_assignment=True)

    step_number: int = Field(ge=1)
    description: str
    status: GoalStatus = GoalStatus.PLANNED
    due_date: Optional[datetime] = None

    @property
    def is_completed(self) -> bool:
        return self.status == GoalStatus.COMPLETED


class Goal(ContextItem):
    """Something the user is working towards, broken into steps"""
    entity_type: EntityType = Field(default=EntityType.GOAL, frozen=True)

    text: str
    description: Optional[str] = None
    status: GoalStatus = GoalStatus.PLANNED
    priority: int = 3
    steps: List[GoalStep] = Field(default_factory=list)
    target_date: Optional[datetime] = None
    completion_date: Optional[datetime] = None
    blockers: List[str] = Field(default_factory=list)
    related_todos: List[str] = Field(default_factory=list)
    project_id: Optional[str] = None

    @field_validator("priority")
    @classmethod
    def _check_priority(cls, v: int) -> int:
        return check_priority(v)

    @property
    def completion_percentage(self) -> float:
        if not self.steps:
            return 0.0
        completed = sum(1 for step in self.steps if step.is_completed)
        return completed / len(self.steps) * 100.0

    def ordered_steps(self) -> List[GoalStep]:
        return sorted(self.steps, key=lambda s: s.step_number)

    def next_incomplete_step(self) -> Optional[GoalStep]:
        """First step in sequence order that is not completed."""
        for step in self.ordered_steps():
            if not step.is_completed:
                return step
        return None

    def add_step(self, description: str, due_date: Optional[datetime] = None) -> GoalStep:
        next_number = max((s.step_number for s in self.steps), default=0) + 1
        step = GoalStep(step_number=next_number, description=description, due_date=due_date)
        self.steps = self.steps + [step]
        self.touch()
        return step

    def complete_step(self, step_number: int) -> None:
        for step in self.steps:
            if step.step_number == step_number:
                step.status = GoalStatus.COMPLETED
                self.touch()
                return
        raise NotFound("goal_step", f"{self.id}#{step_number}")

    def mark_started(self) -> None:
        self.status = GoalStatus.IN_PROGRESS
        self.touch()

    def mark_completed(self) -> None:
        self.status = GoalStatus.COMPLETED
        self.completion_date = utcnow()
        self.touch()

    def mark_blocked(self, blocker: Optional[str] = None) -> None:
        self.status = GoalStatus.BLOCKED
        if blocker:
            self.blockers = self.blockers + [blocker]
        self.touch()


class Preference(ContextItem):
    """A standing preference, e.g. a tool or pattern to favour or avoid"""
    entity_type: EntityType = Field(default=EntityType.PREFERENCE, frozen=True)

    name: str
    value: str
    preference_type: PreferenceType = PreferenceType.OTHER
    applies_to_automation: bool = True
    priority: int = 3
    frequency_observed: int = Field(default=1, ge=0)
    last_referenced: Optional[datetime] = None
    rationale: Optional[str] = None
    tags: List[str] = Field(default_factory=list)

    @field_validator("priority")
    @classmethod
    def _check_priority(cls, v: int) -> int:
        return check_priority(v)

    def observe_again(self) -> None:
        self.frequency_observed += 1
        self.last_referenced = utcnow()
        self.updated_at = self.last_referenced


class Issue(ContextItem):
    """A known problem, with whatever is known about working around it"""
    entity_type: EntityType = Field(default=EntityType.ISSUE, frozen=True)

    description: str
    symptoms: List[str] = Field(default_factory=list)
    root_cause: Optional[str] = None
    workaround: Optional[str] = None
    permanent_solution: Optional[str] = None
    affected_components: List[str] = Field(default_factory=list)
    severity: IssueSeverity = IssueSeverity.MEDIUM
    category: IssueCategory = IssueCategory.OTHER
    resolution_status: ResolutionStatus = ResolutionStatus.UNRESOLVED
    learned_date: datetime = Field(default_factory=utcnow)
    resolution_date: Optional[datetime] = None
    prevention_notes: Optional[str] = None
    project_contexts: List[str] = Field(default_factory=list)

    def mark_resolved(self, status: ResolutionStatus = ResolutionStatus.FIXED) -> None:
        self.resolution_status = ResolutionStatus(status)
        if self.resolution_status in (ResolutionStatus.FIXED, ResolutionStatus.NO_ACTION_NEEDED):
            self.resolution_date = utcnow()
        self.touch()


class Todo(ContextItem):
    """A task derived from another context item"""
    entity_type: EntityType = Field(default=EntityType.TODO, frozen=True)

    description: str
    context_type: TodoContextType = TodoContextType.OTHER
    related_entity_id: Optional[str] = None
    related_entity_type: Optional[EntityType] = None
    project_id: Optional[str] = None
    assigned_to: Optional[str] = None
    due_date: Optional[datetime] = None
    status: TodoStatus = TodoStatus.PENDING
    priority: int = 3
    completion_date: Optional[datetime] = None

    @field_validator("priority")
    @classmethod
    def _check_priority(cls, v: int) -> int:
        return check_priority(v)

    def mark_started(self) -> None:
        self.status = TodoStatus.IN_PROGRESS
        self.touch()

    def mark_completed(self) -> None:
        self.status = TodoStatus.COMPLETED
        self.completion_date = utcnow()
        self.touch()


class AuditEntry(BaseModel):
    """One change to a context item, recorded by the store"""
    id: str = Field(default_factory=generate_item_id)
    owner_id: str
    entity_type: EntityType
    entity_id: str
    action: str  # create, update, delete, increment_applied, increment_frequency, resolve, archive
    old_value: Optional[dict] = None
    new_value: Optional[dict] = None
    changed_by: str = "system"
    changed_at: datetime = Field(default_factory=utcnow)
    reason: Optional[str] = None


MODEL_BY_TYPE = {
    EntityType.DECISION: Decision,
    EntityType.GOAL: Goal,
    EntityType.PREFERENCE: Preference,
    EntityType.ISSUE: Issue,
    EntityType.TODO: Todo,
}
