"""
Context Item Schemas

Pydantic models for the five context-item kinds plus scope and audit entries.
"""

from .context_items import (
    ContextItem,
    Decision,
    Goal,
    GoalStep,
    Preference,
    Issue,
    Todo,
    AuditEntry,
    ContextScope,
    ScopeKind,
    EntityType,
    DecisionCategory,
    DecisionStatus,
    GoalStatus,
    PreferenceType,
    IssueSeverity,
    IssueCategory,
    ResolutionStatus,
    TodoContextType,
    TodoStatus,
    MODEL_BY_TYPE,
    clamp_confidence,
    clamp_priority,
    generate_item_id,
    utcnow,
)
from .templates import render_context_markdown

__all__ = [
    "ContextItem",
    "Decision",
    "Goal",
    "GoalStep",
    "Preference",
    "Issue",
    "Todo",
    "AuditEntry",
    "ContextScope",
    "ScopeKind",
    "EntityType",
    "DecisionCategory",
    "DecisionStatus",
    "GoalStatus",
    "PreferenceType",
    "IssueSeverity",
    "IssueCategory",
    "ResolutionStatus",
    "TodoContextType",
    "TodoStatus",
    "MODEL_BY_TYPE",
    "clamp_confidence",
    "clamp_priority",
    "generate_item_id",
    "utcnow",
    "render_context_markdown",
]
