"""
Context Service

Entry points of the context engine over a context store:
extraction, validation, conflict detection, ranking, item management,
query and export.

Extraction never writes. Validation, conflict detection and ranking only
read; store failures propagate unchanged, so a call either sees the
owner's whole context or fails.
"""

import csv
import io
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from .advisor.conflict_detector import Conflict, ConflictDetector
from .advisor.ranker import EffectivenessRanker, RankedDecision, Recommendation
from .advisor.validator import ActionValidation, ActionValidator, ProposedAction, ValidationContext
from .common.config import EngineConfig
from .common.errors import InvalidRange, NotFound
from .common.pattern_library import PatternLibrary
from .common.schemas import (
    MODEL_BY_TYPE,
    ContextItem,
    ContextScope,
    Decision,
    EntityType,
    Goal,
    GoalStatus,
    Issue,
    Preference,
    ResolutionStatus,
    Todo,
    TodoStatus,
    render_context_markdown,
    utcnow,
)
from .common.store import ContextStore
from .scribe.extractor import ContextExtractor, ExtractionResult

logger = logging.getLogger("context_engine.service")

# Query/export section name -> entity type
SECTIONS = {
    "decisions": EntityType.DECISION,
    "goals": EntityType.GOAL,
    "preferences": EntityType.PREFERENCE,
    "issues": EntityType.ISSUE,
    "todos": EntityType.TODO,
}

EXPORT_FORMATS = ("json", "markdown", "csv")

# Fields a caller may set directly. Ids, owners, timestamps, counters and
# statuses only change through their dedicated operations.
EDITABLE_FIELDS = {
    EntityType.DECISION: frozenset([
        "text", "reason", "category", "confidence_score", "related_project_id", "referenced_items",
    ]),
    EntityType.GOAL: frozenset([
        "text", "description", "priority", "target_date", "blockers", "project_id",
    ]),
    EntityType.PREFERENCE: frozenset([
        "name", "value", "preference_type", "applies_to_automation", "priority", "rationale", "tags",
    ]),
    EntityType.ISSUE: frozenset([
        "description", "symptoms", "root_cause", "workaround", "permanent_solution",
        "affected_components", "severity", "category", "prevention_notes", "project_contexts",
    ]),
    EntityType.TODO: frozenset([
        "description", "context_type", "related_entity_id", "related_entity_type", "project_id",
        "assigned_to", "due_date", "priority",
    ]),
}


@dataclass
class ConflictReport:
    owner_id: str
    preference_conflicts: List[Conflict] = field(default_factory=list)
    decision_conflicts: List[Conflict] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.preference_conflicts) + len(self.decision_conflicts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner_id": self.owner_id,
            "preference_conflicts": [c.to_dict() for c in self.preference_conflicts],
            "decision_conflicts": [c.to_dict() for c in self.decision_conflicts],
            "total": self.total,
        }


def primary_text(item: ContextItem) -> str:
    """The text that identifies an item in listings and filters."""
    if isinstance(item, (Decision, Goal)):
        return item.text
    if isinstance(item, Preference):
        return f"{item.name}: {item.value}"
    if isinstance(item, (Issue, Todo)):
        return item.description
    return ""


def _check_fields(entity_type: EntityType, fields: Dict[str, Any]) -> None:
    unknown = sorted(set(fields) - EDITABLE_FIELDS[entity_type])
    if unknown:
        raise ValueError(f"Cannot set {entity_type.value} field(s): {', '.join(unknown)}")


def _status_text(item: ContextItem) -> str:
    for attr in ("status", "resolution_status"):
        value = getattr(item, attr, None)
        if value is not None:
            return value.value
    return ""


class ContextService:
    """
    Facade wiring the engine components to a context store.

    Engine components are stateless, so one service may be shared by
    concurrent callers as long as the store is thread-safe.
    """

    def __init__(
        self,
        store: ContextStore,
        library: Optional[PatternLibrary] = None,
        config: Optional[EngineConfig] = None,
    ):
        """
        Initialize the service.

        Args:
            store: Context store collaborator
            library: Trigger patterns (default: loaded from config's patterns path)
            config: Engine configuration (default: built-in defaults)
        """
        self._config = config or EngineConfig()
        self._store = store
        if library is None:
            library = PatternLibrary.default(self._config.extractor.patterns_path)
        self._extractor = ContextExtractor(
            library,
            frequency_boost=self._config.extractor.frequency_boost,
            max_frequency_boost=self._config.extractor.max_frequency_boost,
        )
        self._validator = ActionValidator(
            min_keyword_overlap=self._config.validator.min_keyword_overlap,
            active_decisions_only=self._config.validator.active_decisions_only,
        )
        self._conflicts = ConflictDetector()
        self._ranker = EffectivenessRanker()

    @property
    def store(self) -> ContextStore:
        return self._store

    @property
    def extractor(self) -> ContextExtractor:
        return self._extractor

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    def extract_context(self, text: str, owner_id: str) -> ExtractionResult:
        """Extract candidates from text. Nothing is written to the store."""
        result = self._extractor.extract(text)
        logger.info("Extracted %d candidates for %s", result.total, owner_id)
        return result

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_action(
        self,
        action: ProposedAction,
        owner_id: str,
        project_id: Optional[str] = None,
    ) -> ActionValidation:
        """
        Validate a proposed action against the owner's stored context.

        Args:
            action: Proposed action
            owner_id: Owner whose context applies
            project_id: When given, project-scoped items of other projects are ignored
        """
        context = ValidationContext(
            decisions=self._fetch(EntityType.DECISION, owner_id, project_id),
            preferences=self._fetch(EntityType.PREFERENCE, owner_id, project_id),
            issues=self._fetch(EntityType.ISSUE, owner_id, project_id),
            goals=[
                g for g in self._fetch(EntityType.GOAL, owner_id, project_id)
                if g.status == GoalStatus.IN_PROGRESS
            ],
        )
        validation = self._validator.validate_action(action, owner_id, context)
        logger.info(
            "Validated %s on %s for %s: valid=%s violations=%d warnings=%d",
            action.action_type, action.target, owner_id,
            validation.is_valid, len(validation.violations), len(validation.warnings),
        )
        return validation

    def record_applied_decisions(self, decision_ids: Iterable[str]) -> List[Decision]:
        """Increment applied_count for confirmed decisions."""
        return [self._store.increment_applied_count(decision_id) for decision_id in decision_ids]

    def observe_preference(self, preference_id: str) -> Preference:
        """Record that a preference was observed again."""
        return self._store.increment_frequency(preference_id)

    def _fetch(self, entity_type: EntityType, owner_id: str, project_id: Optional[str]) -> List:
        items = self._store.find_by_owner(entity_type, owner_id)
        return [item for item in items if item.scope.applies_to_project(project_id)]

    # ------------------------------------------------------------------
    # Conflicts and ranking
    # ------------------------------------------------------------------

    def detect_conflicts(self, owner_id: str) -> ConflictReport:
        preferences = self._store.find_by_owner(EntityType.PREFERENCE, owner_id)
        decisions = self._store.find_by_owner(EntityType.DECISION, owner_id)
        report = ConflictReport(
            owner_id=owner_id,
            preference_conflicts=self._conflicts.detect_preference_conflicts(preferences),
            decision_conflicts=self._conflicts.detect_decision_conflicts(decisions),
        )
        if report.total:
            logger.info("Found %d conflicts for %s", report.total, owner_id)
        return report

    def rank_decisions(self, owner_id: str, limit: Optional[int] = None) -> List[RankedDecision]:
        if limit is None:
            limit = self._config.ranker.default_limit
        decisions = self._store.find_by_owner(EntityType.DECISION, owner_id)
        return self._ranker.rank_decisions(decisions, limit)

    def recommend_next_steps(self, owner_id: str) -> List[Recommendation]:
        goals = self._store.find_by_owner(EntityType.GOAL, owner_id)
        return self._ranker.recommend_next_steps(goals)

    # ------------------------------------------------------------------
    # Item management
    # ------------------------------------------------------------------

    def create_item(
        self,
        entity_type: EntityType,
        owner_id: str,
        fields: Dict[str, Any],
        scope: Optional[ContextScope] = None,
    ) -> ContextItem:
        """
        Create an item of one kind directly, bypassing extraction.

        Raises:
            ValueError: If fields names something callers may not set, or a
                required field is missing
            InvalidRange: If a bounded field is out of range
        """
        entity_type = EntityType(entity_type)
        _check_fields(entity_type, fields)
        model = MODEL_BY_TYPE[entity_type]
        item = model(owner_id=owner_id, scope=scope or ContextScope.global_scope(), **fields)
        stored = self._store.create(item)
        logger.info("Created %s %s for %s", entity_type.value, stored.id, owner_id)
        return stored

    def get_item(self, entity_type: EntityType, item_id: str) -> ContextItem:
        item = self._store.find_by_id(entity_type, item_id)
        if item is None:
            raise NotFound(EntityType(entity_type).value, item_id)
        return item

    def update_item(
        self,
        entity_type: EntityType,
        item_id: str,
        fields: Dict[str, Any],
        scope: Optional[ContextScope] = None,
    ) -> ContextItem:
        """Change editable fields of a stored item. Counters are never touched."""
        entity_type = EntityType(entity_type)
        _check_fields(entity_type, fields)
        item = self.get_item(entity_type, item_id)
        for name, value in fields.items():
            setattr(item, name, value)
        if scope is not None:
            item.scope = scope
        return self._store.update(item)

    def delete_item(self, entity_type: EntityType, item_id: str) -> bool:
        return self._store.delete(entity_type, item_id)

    def archive_decision(self, decision_id: str) -> Decision:
        return self._store.mark_archived(decision_id)

    def add_goal_step(self, goal_id: str, description: str) -> Goal:
        goal = self.get_item(EntityType.GOAL, goal_id)
        goal.add_step(description)
        return self._store.update(goal, reason="add_step")

    def complete_goal_step(self, goal_id: str, step_number: int) -> Goal:
        goal = self.get_item(EntityType.GOAL, goal_id)
        goal.complete_step(step_number)
        return self._store.update(goal, reason="complete_step")

    def set_goal_status(self, goal_id: str, status: GoalStatus) -> Goal:
        return self._store.update_goal_status(goal_id, GoalStatus(status))

    def resolve_issue(self, issue_id: str, status: ResolutionStatus = ResolutionStatus.FIXED) -> Issue:
        return self._store.mark_resolved(issue_id, ResolutionStatus(status))

    def set_todo_status(self, todo_id: str, status: TodoStatus) -> Todo:
        return self._store.update_todo_status(todo_id, TodoStatus(status))

    # ------------------------------------------------------------------
    # Query and export
    # ------------------------------------------------------------------

    def query_context(
        self,
        owner_id: str,
        context_type: str = "all",
        text_filter: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> Dict[str, List[ContextItem]]:
        """
        Fetch an owner's items, newest first.

        Args:
            owner_id: Owner to query
            context_type: decisions, goals, preferences, issues, todos or all
            text_filter: Case-insensitive substring the item's text must contain
            limit: Maximum items per section
        """
        if limit is not None and limit < 0:
            raise InvalidRange("limit", limit, (0, None))
        sections = self._resolve_sections([context_type] if context_type != "all" else None)

        needle = text_filter.lower() if text_filter else None
        result = {}
        for name in sections:
            items = self._store.find_by_owner(SECTIONS[name], owner_id)
            if needle:
                items = [item for item in items if needle in primary_text(item).lower()]
            result[name] = items[:limit] if limit is not None else items
        return result

    def export_context(
        self,
        owner_id: str,
        export_format: str = "json",
        include: Optional[List[str]] = None,
    ) -> str:
        """
        Export an owner's context as json, markdown or csv.

        Args:
            owner_id: Owner to export
            export_format: json, markdown or csv
            include: Sections to include (default: all)
        """
        if export_format not in EXPORT_FORMATS:
            raise ValueError(f"Unsupported export format: {export_format} (expected one of {EXPORT_FORMATS})")

        sections = {
            name: self._store.find_by_owner(SECTIONS[name], owner_id)
            for name in self._resolve_sections(include)
        }
        exported_at = utcnow().isoformat()

        if export_format == "markdown":
            return render_context_markdown(owner_id, exported_at, sections)

        if export_format == "csv":
            buffer = io.StringIO()
            writer = csv.writer(buffer)
            writer.writerow(["kind", "id", "text", "status", "scope", "created_at"])
            for name, items in sections.items():
                for item in items:
                    writer.writerow([
                        name, item.id, primary_text(item), _status_text(item),
                        item.scope.to_string(), item.created_at.isoformat(),
                    ])
            return buffer.getvalue()

        data = {"owner_id": owner_id, "exported_at": exported_at}
        for name, items in sections.items():
            data[name] = [item.model_dump(mode="json") for item in items]
        return json.dumps(data, indent=2, default=str)

    @staticmethod
    def _resolve_sections(requested: Optional[List[str]]) -> List[str]:
        if not requested:
            return list(SECTIONS)
        unknown = [name for name in requested if name not in SECTIONS]
        if unknown:
            raise ValueError(f"Unknown context type(s): {', '.join(unknown)}")
        return [name for name in SECTIONS if name in requested]
