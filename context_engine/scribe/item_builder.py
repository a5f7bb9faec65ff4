"""
Item Builder

Builds context items from confirmed extraction candidates.

Key Rules:
- Only confirmed candidates become items; extraction itself never persists
- Candidate confidence carries over to the decision (clamped)
- PII/credentials are redacted from stored text
- A recorded workaround moves an issue to WORKAROUND_AVAILABLE
"""

import re
from typing import Optional, Tuple

from ..common.schemas import (
    ContextScope,
    Decision,
    Goal,
    Issue,
    Preference,
    ResolutionStatus,
    ScopeKind,
)
from ..common.text_utils import slugify
from .extractor import DecisionCandidate, GoalCandidate, IssueCandidate, PreferenceCandidate


class ItemBuilder:
    """
    Builds Decision/Goal/Preference/Issue items from candidates.

    Pipeline:
    1. Redact sensitive data from candidate text
    2. Map inferred fields onto the item model
    3. Attach owner and scope
    """

    # Patterns for sensitive data to redact
    SENSITIVE_PATTERNS = [
        (r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b', '[EMAIL]'),
        (r'\b\d{3}[-.]?\d{3}[-.]?\d{4}\b', '[PHONE]'),
        (r'\b(?:sk|pk|api|key|token|secret|password)[_-][a-zA-Z0-9_-]{15,}\b', '[API_KEY]'),
        (r'\b[A-Za-z0-9]{32,}\b', '[API_KEY]'),
    ]

    def __init__(self, default_scope: Optional[ContextScope] = None):
        """
        Initialize item builder.

        Args:
            default_scope: Scope used when build() is not given one
        """
        self._default_scope = default_scope or ContextScope.global_scope()

    def build(self, kind: str, candidate, owner_id: str, scope: Optional[ContextScope] = None):
        """
        Build an item for any candidate kind.

        Args:
            kind: One of decisions, goals, preferences, issues
            candidate: Candidate of the matching type
            owner_id: Owner of the new item
            scope: Optional scope (default: builder's default scope)
        """
        builders = {
            "decisions": self.build_decision,
            "goals": self.build_goal,
            "preferences": self.build_preference,
            "issues": self.build_issue,
        }
        if kind not in builders:
            raise ValueError(f"Unknown candidate kind: {kind}")
        return builders[kind](candidate, owner_id, scope)

    def build_decision(
        self,
        candidate: DecisionCandidate,
        owner_id: str,
        scope: Optional[ContextScope] = None,
    ) -> Decision:
        scope = scope or self._default_scope
        decision = Decision(
            owner_id=owner_id,
            scope=scope,
            text=self._redact(candidate.text or candidate.matched_pattern),
            reason=self._redact(candidate.reason) if candidate.reason else None,
            category=candidate.category,
            related_project_id=scope.value if scope.kind == ScopeKind.PROJECT else None,
        )
        return decision.with_confidence(candidate.confidence)

    def build_goal(
        self,
        candidate: GoalCandidate,
        owner_id: str,
        scope: Optional[ContextScope] = None,
    ) -> Goal:
        scope = scope or self._default_scope
        notes = []
        if candidate.has_deadline:
            notes.append("Mentions a deadline")
        if candidate.has_steps:
            notes.append("Mentions ordered steps")
        return Goal(
            owner_id=owner_id,
            scope=scope,
            text=self._redact(candidate.text or candidate.matched_pattern),
            description="; ".join(notes) or None,
            priority=candidate.priority,
            project_id=scope.value if scope.kind == ScopeKind.PROJECT else None,
        )

    def build_preference(
        self,
        candidate: PreferenceCandidate,
        owner_id: str,
        scope: Optional[ContextScope] = None,
    ) -> Preference:
        value = self._redact(candidate.statement or candidate.text or "")
        return Preference(
            owner_id=owner_id,
            scope=scope or self._default_scope,
            name=candidate.name or slugify(value),
            value=value,
            preference_type=candidate.preference_type,
            applies_to_automation=candidate.applies_to_automation,
            priority=candidate.priority,
            tags=list(candidate.tags),
        )

    def build_issue(
        self,
        candidate: IssueCandidate,
        owner_id: str,
        scope: Optional[ContextScope] = None,
    ) -> Issue:
        scope = scope or self._default_scope
        workaround = self._redact(candidate.workaround) if candidate.workaround else None
        return Issue(
            owner_id=owner_id,
            scope=scope,
            description=self._redact(candidate.text or candidate.matched_pattern),
            symptoms=[self._redact(s) for s in candidate.symptoms],
            workaround=workaround,
            affected_components=list(candidate.affected_components),
            severity=candidate.severity,
            category=candidate.category,
            resolution_status=(
                ResolutionStatus.WORKAROUND_AVAILABLE if workaround else ResolutionStatus.UNRESOLVED
            ),
            project_contexts=[scope.value] if scope.kind == ScopeKind.PROJECT else [],
        )

    def _redact(self, text: str) -> str:
        redacted, _ = self._redact_sensitive(text)
        return redacted

    def _redact_sensitive(self, text: str) -> Tuple[str, Optional[str]]:
        """Redact sensitive data from text"""
        redacted = text
        redactions = []

        for pattern, replacement in self.SENSITIVE_PATTERNS:
            matches = re.findall(pattern, redacted, re.IGNORECASE)
            if matches:
                redacted = re.sub(pattern, replacement, redacted, flags=re.IGNORECASE)
                redactions.append(f"Redacted {len(matches)} {replacement}")

        notes = "; ".join(redactions) if redactions else None
        return redacted, notes
