"""
Tests for LocalContextStore
"""

import json
import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

T0 = datetime(2026, 4, 1, tzinfo=timezone.utc)


@pytest.fixture
def store():
    from context_engine.common.store import LocalContextStore

    return LocalContextStore()


class TestCrud:

    def test_create_and_find(self, store):
        from context_engine.common.schemas import Decision, EntityType

        decision = Decision(owner_id="alice", text="use redis")
        stored = store.create(decision)

        assert stored.id == decision.id
        found = store.find_by_id(EntityType.DECISION, decision.id)
        assert found.text == "use redis"
        assert store.find_by_id("decision", "missing") is None

    def test_callers_get_copies(self, store):
        from context_engine.common.schemas import Decision

        decision = store.create(Decision(owner_id="alice", text="use redis"))
        decision.text = "use memcached"

        assert store.get("decision", decision.id).text == "use redis"

    def test_duplicate_create(self, store):
        from context_engine.common.errors import ContextEngineError
        from context_engine.common.schemas import Decision

        decision = Decision(owner_id="alice", text="use redis")
        store.create(decision)

        with pytest.raises(ContextEngineError):
            store.create(decision)

    def test_find_by_owner_newest_first(self, store):
        from context_engine.common.schemas import Goal

        old = store.create(Goal(owner_id="alice", text="old", created_at=T0))
        new = store.create(Goal(owner_id="alice", text="new", created_at=T0 + timedelta(days=1)))
        store.create(Goal(owner_id="bob", text="other"))

        assert [g.id for g in store.find_by_owner("goal", "alice")] == [new.id, old.id]

    def test_get_missing(self, store):
        from context_engine.common.errors import NotFound

        with pytest.raises(NotFound) as exc_info:
            store.get("issue", "nope")
        assert exc_info.value.entity_type == "issue"

    def test_update_preserves_counters(self, store):
        from context_engine.common.schemas import Decision

        decision = store.create(Decision(owner_id="alice", text="use redis"))
        store.increment_applied_count(decision.id)

        decision.text = "use redis for sessions"
        updated = store.update(decision)

        assert updated.text == "use redis for sessions"
        assert updated.applied_count == 1
        assert updated.last_applied is not None
        assert updated.updated_at is not None

    def test_update_missing(self, store):
        from context_engine.common.errors import NotFound
        from context_engine.common.schemas import Preference

        with pytest.raises(NotFound):
            store.update(Preference(owner_id="alice", name="fmt", value="black"))

    def test_delete(self, store):
        from context_engine.common.schemas import Todo

        todo = store.create(Todo(owner_id="alice", description="write docs"))

        assert store.delete("todo", todo.id) is True
        assert store.delete("todo", todo.id) is False
        assert store.find_by_id("todo", todo.id) is None


class TestCounters:

    def test_increment_missing(self, store):
        from context_engine.common.errors import NotFound

        with pytest.raises(NotFound):
            store.increment_applied_count("nope")
        with pytest.raises(NotFound):
            store.increment_frequency("nope")

    def test_concurrent_increments(self, store):
        from context_engine.common.schemas import Decision, Preference

        decision = store.create(Decision(owner_id="alice", text="use redis"))
        pref = store.create(Preference(owner_id="alice", name="fmt", value="black"))

        def worker():
            for _ in range(25):
                store.increment_applied_count(decision.id)
                store.increment_frequency(pref.id)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert store.get("decision", decision.id).applied_count == 100
        # new preferences start at one observation
        assert store.get("preference", pref.id).frequency_observed == 101

    def test_lifecycle_operations(self, store):
        from context_engine.common.schemas import (
            Decision, DecisionStatus, Goal, GoalStatus, Issue, ResolutionStatus, Todo, TodoStatus,
        )

        decision = store.create(Decision(owner_id="alice", text="use redis"))
        issue = store.create(Issue(owner_id="alice", description="flaky ci"))
        goal = store.create(Goal(owner_id="alice", text="ship"))
        todo = store.create(Todo(owner_id="alice", description="docs"))

        assert store.mark_archived(decision.id).status == DecisionStatus.ARCHIVED
        assert store.mark_resolved(issue.id).resolution_status == ResolutionStatus.FIXED
        assert store.update_goal_status(goal.id, "in_progress").status == GoalStatus.IN_PROGRESS
        assert store.update_todo_status(todo.id, TodoStatus.COMPLETED).completion_date is not None


class TestFinders:

    def test_secondary_keys(self, store):
        from context_engine.common.schemas import (
            ContextScope, Decision, DecisionCategory, Issue, IssueSeverity, Preference, Todo,
        )

        store.create(Decision(owner_id="alice", text="encrypt", category=DecisionCategory.SECURITY))
        store.create(Decision(owner_id="alice", text="cache", category=DecisionCategory.PERFORMANCE,
                              scope=ContextScope.project("billing")))
        store.create(Preference(owner_id="alice", name="fmt", value="black", applies_to_automation=False))
        store.create(Issue(owner_id="alice", description="timeouts", severity=IssueSeverity.HIGH,
                           affected_components=["Payments-API"]))
        store.create(Todo(owner_id="alice", description="fix", related_entity_id="issue-1"))

        assert [d.text for d in store.find_decisions_by_category("alice", "security")] == ["encrypt"]
        assert [d.text for d in store.find_by_scope("decision", "alice", ContextScope.project("billing"))] == ["cache"]
        assert store.find_automation_preferences("alice") == []
        assert len(store.find_issues_by_severity("alice", "high")) == 1
        assert len(store.find_issues_by_component("alice", "payments-api")) == 1
        assert len(store.find_todos_by_entity("alice", "issue-1")) == 1
        assert store.find_decisions_by_status("bob", "active") == []

    def test_preferences_by_type(self, store):
        from context_engine.common.schemas import Preference, PreferenceType

        store.create(Preference(owner_id="alice", name="pkg", value="poetry", preference_type=PreferenceType.TOOL))
        store.create(Preference(owner_id="alice", name="web", value="fastapi",
                                preference_type=PreferenceType.FRAMEWORK))
        store.create(Preference(owner_id="bob", name="pkg", value="pip", preference_type=PreferenceType.TOOL))

        assert [p.value for p in store.find_preferences_by_type("alice", "tool")] == ["poetry"]
        assert [p.value for p in store.find_preferences_by_type("alice", PreferenceType.FRAMEWORK)] == ["fastapi"]
        assert store.find_preferences_by_type("alice", PreferenceType.PATTERN) == []


class TestPersistence:

    def test_round_trip(self, tmp_path):
        from context_engine.common.schemas import ContextScope, Goal, GoalStatus, Preference
        from context_engine.common.store import LocalContextStore

        path = tmp_path / "store.json"
        store = LocalContextStore(path)
        goal = Goal(owner_id="alice", text="ship", status=GoalStatus.IN_PROGRESS,
                    scope=ContextScope.workflow("release"))
        goal.add_step("tag")
        store.create(goal)
        pref = store.create(Preference(owner_id="alice", name="fmt", value="black", tags=["formatting"]))
        store.increment_frequency(pref.id)

        reloaded = LocalContextStore(path)

        restored = reloaded.get("goal", goal.id)
        assert restored.scope.to_string() == "workflow:release"
        assert restored.steps[0].description == "tag"
        assert reloaded.get("preference", pref.id).frequency_observed == 2
        assert len(reloaded.audit_log("alice")) == 3

    def test_failed_save_leaves_no_trace(self, tmp_path):
        from context_engine.common.errors import StoreUnavailable
        from context_engine.common.schemas import Decision
        from context_engine.common.store import LocalContextStore

        store = LocalContextStore(tmp_path / "store.json")
        decision = store.create(Decision(owner_id="alice", text="use redis"))
        audit_before = len(store.audit_log("alice"))

        with patch("context_engine.common.store.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(StoreUnavailable):
                store.create(Decision(owner_id="alice", text="use memcached"))
            with pytest.raises(StoreUnavailable):
                store.increment_applied_count(decision.id)
            with pytest.raises(StoreUnavailable):
                store.update(decision.model_copy(update={"text": "use valkey"}))
            with pytest.raises(StoreUnavailable):
                store.delete("decision", decision.id)

        assert [d.text for d in store.find_by_owner("decision", "alice")] == ["use redis"]
        assert store.get("decision", decision.id).applied_count == 0
        assert len(store.audit_log("alice")) == audit_before

        # a retry after the failure counts once
        assert store.increment_applied_count(decision.id).applied_count == 1
        assert LocalContextStore(tmp_path / "store.json").get("decision", decision.id).applied_count == 1

    def test_missing_file_is_empty(self, tmp_path):
        from context_engine.common.store import LocalContextStore

        store = LocalContextStore(tmp_path / "nothing.json")

        assert store.find_by_owner("decision", "alice") == []

    def test_corrupt_file(self, tmp_path):
        from context_engine.common.errors import StoreUnavailable
        from context_engine.common.store import LocalContextStore

        path = tmp_path / "store.json"
        path.write_text("{not json")

        with pytest.raises(StoreUnavailable):
            LocalContextStore(path)

    def test_invalid_record(self, tmp_path):
        from context_engine.common.errors import StoreUnavailable
        from context_engine.common.store import LocalContextStore

        path = tmp_path / "store.json"
        path.write_text(json.dumps({"items": {"decision": [
            {"owner_id": "alice", "text": "x", "confidence_score": 3.0}
        ]}}))

        with pytest.raises(StoreUnavailable):
            LocalContextStore(path)


class TestAudit:

    def test_audit_entries(self, store):
        from context_engine.common.schemas import Decision

        decision = store.create(Decision(owner_id="alice", text="use redis"))
        store.increment_applied_count(decision.id)
        store.delete("decision", decision.id)

        entries = store.audit_log("alice", decision.id)

        assert [e.action for e in entries] == ["create", "increment_applied", "delete"]
        assert entries[1].old_value["applied_count"] == 0
        assert entries[1].new_value["applied_count"] == 1
        assert store.audit_log("bob") == []
