"""
Context Store

Keyed storage for the five context-item kinds. ContextStore is the
interface the engine consumes; LocalContextStore is an in-memory
implementation with optional JSON persistence.

Guarantees:
- read-after-write visibility
- counter increments (applied_count, frequency_observed) are atomic
- callers get copies; stored state only changes through store calls
- update() never lowers a counter; counters move only through their
  dedicated increment operations
"""

import json
import logging
import os
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional, Protocol, Union

from pydantic import ValidationError

from .errors import ContextEngineError, InvalidRange, NotFound, StoreUnavailable
from .schemas import (
    AuditEntry,
    ContextItem,
    ContextScope,
    Decision,
    DecisionCategory,
    DecisionStatus,
    EntityType,
    GoalStatus,
    Issue,
    IssueSeverity,
    MODEL_BY_TYPE,
    Preference,
    PreferenceType,
    ResolutionStatus,
    Todo,
    TodoStatus,
)

logger = logging.getLogger("context_engine.store")

EntityKind = Union[EntityType, str]


class ContextStore(Protocol):
    """Operations the engine needs from a context store."""

    def create(self, item: ContextItem) -> ContextItem: ...

    def find_by_id(self, entity_type: EntityKind, item_id: str) -> Optional[ContextItem]: ...

    def find_by_owner(self, entity_type: EntityKind, owner_id: str) -> List[ContextItem]: ...

    def update(self, item: ContextItem, reason: Optional[str] = None) -> ContextItem: ...

    def delete(self, entity_type: EntityKind, item_id: str) -> bool: ...

    def increment_applied_count(self, decision_id: str) -> Decision: ...

    def increment_frequency(self, preference_id: str) -> Preference: ...

    def mark_resolved(self, issue_id: str, status: ResolutionStatus) -> Issue: ...

    def mark_archived(self, decision_id: str) -> Decision: ...

    def update_goal_status(self, goal_id: str, status: GoalStatus) -> ContextItem: ...

    def update_todo_status(self, todo_id: str, status: TodoStatus) -> Todo: ...

    def find_goals_by_status(self, owner_id: str, status: GoalStatus) -> List[ContextItem]: ...

    def find_automation_preferences(self, owner_id: str) -> List[Preference]: ...

    def find_issues_by_severity(self, owner_id: str, severity: IssueSeverity) -> List[Issue]: ...

    def find_todos_by_status(self, owner_id: str, status: TodoStatus) -> List[Todo]: ...


class LocalContextStore:
    """
    Thread-safe in-memory context store.

    When a path is given the store loads it on startup and rewrites it
    after every mutation. Unreadable files and failed writes raise
    StoreUnavailable.
    """

    def __init__(self, path: Optional[Path] = None, changed_by: str = "system"):
        """
        Initialize store.

        Args:
            path: Optional JSON file for persistence (None = memory only)
            changed_by: Actor recorded in audit entries
        """
        self._path = Path(path) if path else None
        self._changed_by = changed_by
        self._lock = threading.RLock()
        self._items: Dict[EntityType, Dict[str, ContextItem]] = {t: {} for t in EntityType}
        self._audit: List[AuditEntry] = []
        if self._path is not None:
            self._load()

    @property
    def path(self) -> Optional[Path]:
        return self._path

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> None:
        """Load store contents from disk"""
        if not self._path.exists():
            return

        try:
            with open(self._path) as f:
                data = json.load(f)

            for type_name, records in data.get("items", {}).items():
                entity_type = EntityType(type_name)
                model = MODEL_BY_TYPE[entity_type]
                for record in records:
                    item = model.model_validate(record)
                    self._items[entity_type][item.id] = item
            self._audit = [AuditEntry.model_validate(e) for e in data.get("audit", [])]
        except (json.JSONDecodeError, OSError, ValidationError, ValueError, KeyError, InvalidRange) as e:
            raise StoreUnavailable(f"Failed to load context store {self._path}: {e}") from e

        logger.info("Loaded context store from %s (%d items)", self._path, self._count())

    def _save(self) -> None:
        """Save store contents to disk"""
        if self._path is None:
            return

        data = {
            "items": {
                entity_type.value: [item.model_dump(mode="json") for item in items.values()]
                for entity_type, items in self._items.items()
            },
            "audit": [entry.model_dump(mode="json") for entry in self._audit],
        }

        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w") as f:
                json.dump(data, f, indent=2, default=str)
            os.replace(tmp_path, self._path)
        except OSError as e:
            raise StoreUnavailable(f"Failed to save context store {self._path}: {e}") from e

    def _count(self) -> int:
        return sum(len(items) for items in self._items.values())

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def _entry(
        self,
        action: str,
        item: ContextItem,
        old: Optional[ContextItem] = None,
        new: Optional[ContextItem] = None,
        reason: Optional[str] = None,
    ) -> AuditEntry:
        return AuditEntry(
            owner_id=item.owner_id,
            entity_type=item.entity_type,
            entity_id=item.id,
            action=action,
            old_value=old.model_dump(mode="json") if old is not None else None,
            new_value=new.model_dump(mode="json") if new is not None else None,
            changed_by=self._changed_by,
            reason=reason,
        )

    def _commit(self, entity_type: EntityType, item_id: str, item: Optional[ContextItem], entry: AuditEntry) -> None:
        """
        Apply one change and persist it. If the save fails the change is
        rolled back before StoreUnavailable propagates.
        """
        bucket = self._items[entity_type]
        previous = bucket.get(item_id)
        if item is None:
            bucket.pop(item_id, None)
        else:
            bucket[item_id] = item
        self._audit.append(entry)
        try:
            self._save()
        except StoreUnavailable:
            if previous is None:
                bucket.pop(item_id, None)
            else:
                bucket[item_id] = previous
            self._audit.pop()
            raise

    def audit_log(self, owner_id: str, entity_id: Optional[str] = None) -> List[AuditEntry]:
        """Audit entries for an owner (optionally one item), oldest first."""
        with self._lock:
            return [
                entry.model_copy(deep=True)
                for entry in self._audit
                if entry.owner_id == owner_id and (entity_id is None or entry.entity_id == entity_id)
            ]

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def create(self, item: ContextItem) -> ContextItem:
        """Store a new item; returns a copy of what was stored."""
        entity_type = EntityType(item.entity_type)
        with self._lock:
            bucket = self._items[entity_type]
            if item.id in bucket:
                raise ContextEngineError(f"{entity_type.value} already exists: {item.id}")
            stored = item.model_copy(deep=True)
            self._commit(entity_type, stored.id, stored, self._entry("create", stored, new=stored))
            logger.debug("Created %s %s for %s", entity_type.value, stored.id, stored.owner_id)
            return stored.model_copy(deep=True)

    def find_by_id(self, entity_type: EntityKind, item_id: str) -> Optional[ContextItem]:
        with self._lock:
            item = self._items[EntityType(entity_type)].get(item_id)
            return item.model_copy(deep=True) if item is not None else None

    def get(self, entity_type: EntityKind, item_id: str) -> ContextItem:
        """Like find_by_id, but raises NotFound."""
        item = self.find_by_id(entity_type, item_id)
        if item is None:
            raise NotFound(EntityType(entity_type).value, item_id)
        return item

    def find_by_owner(self, entity_type: EntityKind, owner_id: str) -> List[ContextItem]:
        """All of an owner's items of one kind, newest first."""
        return self._select(entity_type, owner_id, lambda item: True)

    def find_by_scope(self, entity_type: EntityKind, owner_id: str, scope: ContextScope) -> List[ContextItem]:
        return self._select(entity_type, owner_id, lambda item: item.scope == scope)

    def _select(
        self,
        entity_type: EntityKind,
        owner_id: str,
        predicate: Callable[[ContextItem], bool],
    ) -> List[ContextItem]:
        with self._lock:
            matches = [
                item.model_copy(deep=True)
                for item in self._items[EntityType(entity_type)].values()
                if item.owner_id == owner_id and predicate(item)
            ]
        matches.sort(key=lambda item: item.created_at, reverse=True)
        return matches

    def update(self, item: ContextItem, reason: Optional[str] = None) -> ContextItem:
        """
        Replace a stored item's fields with those of item.

        Counters and their timestamps keep the stored values. Sets updated_at.

        Raises:
            NotFound: If the item does not exist
        """
        entity_type = EntityType(item.entity_type)
        with self._lock:
            bucket = self._items[entity_type]
            current = bucket.get(item.id)
            if current is None:
                raise NotFound(entity_type.value, item.id)

            updated = item.model_copy(deep=True)
            if isinstance(current, Decision):
                updated.applied_count = current.applied_count
                updated.last_applied = current.last_applied
            elif isinstance(current, Preference):
                updated.frequency_observed = current.frequency_observed
                updated.last_referenced = current.last_referenced
            updated.created_at = current.created_at
            updated.touch()

            self._commit(entity_type, item.id, updated,
                         self._entry("update", updated, old=current, new=updated, reason=reason))
            return updated.model_copy(deep=True)

    def delete(self, entity_type: EntityKind, item_id: str) -> bool:
        with self._lock:
            entity_type = EntityType(entity_type)
            item = self._items[entity_type].get(item_id)
            if item is None:
                return False
            self._commit(entity_type, item_id, None, self._entry("delete", item, old=item))
            return True

    # ------------------------------------------------------------------
    # Counter / lifecycle operations
    # ------------------------------------------------------------------

    def _mutate(self, entity_type: EntityType, item_id: str, action: str, mutation, reason=None):
        with self._lock:
            bucket = self._items[entity_type]
            current = bucket.get(item_id)
            if current is None:
                raise NotFound(entity_type.value, item_id)
            updated = current.model_copy(deep=True)
            mutation(updated)
            self._commit(entity_type, item_id, updated,
                         self._entry(action, updated, old=current, new=updated, reason=reason))
            return updated.model_copy(deep=True)

    def increment_applied_count(self, decision_id: str) -> Decision:
        return self._mutate(EntityType.DECISION, decision_id, "increment_applied",
                            lambda d: d.record_application())

    def increment_frequency(self, preference_id: str) -> Preference:
        return self._mutate(EntityType.PREFERENCE, preference_id, "increment_frequency",
                            lambda p: p.observe_again())

    def mark_resolved(self, issue_id: str, status: ResolutionStatus = ResolutionStatus.FIXED) -> Issue:
        return self._mutate(EntityType.ISSUE, issue_id, "resolve",
                            lambda i: i.mark_resolved(status))

    def mark_archived(self, decision_id: str) -> Decision:
        return self._mutate(EntityType.DECISION, decision_id, "archive",
                            lambda d: d.archive())

    def update_goal_status(self, goal_id: str, status: GoalStatus) -> ContextItem:
        def _apply(goal):
            status_value = GoalStatus(status)
            if status_value == GoalStatus.COMPLETED:
                goal.mark_completed()
            elif status_value == GoalStatus.IN_PROGRESS:
                goal.mark_started()
            elif status_value == GoalStatus.BLOCKED:
                goal.mark_blocked()
            else:
                goal.status = status_value
                goal.touch()
        return self._mutate(EntityType.GOAL, goal_id, "update_status", _apply)

    def update_todo_status(self, todo_id: str, status: TodoStatus) -> Todo:
        def _apply(todo):
            status_value = TodoStatus(status)
            if status_value == TodoStatus.COMPLETED:
                todo.mark_completed()
            elif status_value == TodoStatus.IN_PROGRESS:
                todo.mark_started()
            else:
                todo.status = status_value
                todo.touch()
        return self._mutate(EntityType.TODO, todo_id, "update_status", _apply)

    # ------------------------------------------------------------------
    # Secondary-key finders
    # ------------------------------------------------------------------

    def find_decisions_by_category(self, owner_id: str, category: DecisionCategory) -> List[Decision]:
        category = DecisionCategory(category)
        return self._select(EntityType.DECISION, owner_id, lambda d: d.category == category)

    def find_decisions_by_status(self, owner_id: str, status: DecisionStatus) -> List[Decision]:
        status = DecisionStatus(status)
        return self._select(EntityType.DECISION, owner_id, lambda d: d.status == status)

    def find_goals_by_status(self, owner_id: str, status: GoalStatus) -> List[ContextItem]:
        status = GoalStatus(status)
        return self._select(EntityType.GOAL, owner_id, lambda g: g.status == status)

    def find_preferences_by_type(self, owner_id: str, preference_type: PreferenceType) -> List[Preference]:
        preference_type = PreferenceType(preference_type)
        return self._select(EntityType.PREFERENCE, owner_id,
                            lambda p: p.preference_type == preference_type)

    def find_automation_preferences(self, owner_id: str) -> List[Preference]:
        return self._select(EntityType.PREFERENCE, owner_id, lambda p: p.applies_to_automation)

    def find_issues_by_severity(self, owner_id: str, severity: IssueSeverity) -> List[Issue]:
        severity = IssueSeverity(severity)
        return self._select(EntityType.ISSUE, owner_id, lambda i: i.severity == severity)

    def find_issues_by_component(self, owner_id: str, component: str) -> List[Issue]:
        component = component.lower()
        return self._select(
            EntityType.ISSUE, owner_id,
            lambda i: any(component in c.lower() for c in i.affected_components),
        )

    def find_todos_by_status(self, owner_id: str, status: TodoStatus) -> List[Todo]:
        status = TodoStatus(status)
        return self._select(EntityType.TODO, owner_id, lambda t: t.status == status)

    def find_todos_by_entity(self, owner_id: str, entity_id: str) -> List[Todo]:
        return self._select(EntityType.TODO, owner_id, lambda t: t.related_entity_id == entity_id)
