"""
Tests for ContextService

End-to-end flows over an in-memory store.
"""

import csv
import io
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

OWNER = "alice"
T0 = datetime(2026, 5, 1, tzinfo=timezone.utc)


@pytest.fixture
def store():
    from context_engine.common.store import LocalContextStore

    return LocalContextStore()


@pytest.fixture
def service(store):
    from context_engine.common.pattern_library import PatternLibrary
    from context_engine.scribe.pattern_parser import get_builtin_patterns
    from context_engine.service import ContextService

    return ContextService(store, library=PatternLibrary(get_builtin_patterns()))


@pytest.fixture
def seeded(store):
    """A small context for alice plus one item for bob"""
    from context_engine.common.schemas import (
        ContextScope, Decision, Goal, GoalStatus, Issue, Preference, PreferenceType,
    )

    items = {
        "async": store.create(Decision(
            owner_id=OWNER, text="Use async processing for the ingest pipeline",
            confidence_score=0.8, created_at=T0,
        )),
        "billing_only": store.create(Decision(
            owner_id=OWNER, text="Use sync processing for the ingest pipeline",
            scope=ContextScope.project("billing"), created_at=T0 + timedelta(days=1),
        )),
        "no_sync_io": store.create(Preference(
            owner_id=OWNER, name="no-sync-io", value="Avoid synchronous I/O in request handlers",
            preference_type=PreferenceType.CONSTRAINT,
        )),
        "issue": store.create(Issue(
            owner_id=OWNER, description="payments-api times out under load",
            affected_components=["payments-api"], workaround="retry with a smaller batch size",
        )),
        "goal": store.create(Goal(
            owner_id=OWNER, text="Migrate billing to postgres", status=GoalStatus.IN_PROGRESS,
        )),
        "bob": store.create(Decision(owner_id="bob", text="Use sync processing for the ingest pipeline")),
    }
    return items


class TestExtract:

    def test_extraction_writes_nothing(self, service, store):
        result = service.extract_context(
            "We decided to use async processing because it improves throughput", OWNER
        )

        assert result.total == 1
        assert store.find_by_owner("decision", OWNER) == []
        assert store.audit_log(OWNER) == []


class TestValidate:

    def test_project_filter(self, service, seeded):
        from context_engine.advisor.validator import ProposedAction

        action = ProposedAction("extend", "ingest pipeline", {"mode": "async"})

        # the billing-only sync decision contradicts the action, but only inside billing
        assert service.validate_action(action, OWNER, project_id="search").is_valid is True
        assert service.validate_action(action, OWNER, project_id="billing").is_valid is False
        assert service.validate_action(action, OWNER).is_valid is False

    def test_full_verdict(self, service, seeded):
        from context_engine.advisor.validator import ProposedAction

        action = ProposedAction("configure", "payments-api", {"io": "sync", "handler": "request"})

        result = service.validate_action(action, OWNER, project_id="search")

        assert result.is_valid is False
        assert any("no-sync-io" in v for v in result.violations)
        assert result.applicable_workarounds == ["retry with a smaller batch size"]

    def test_validation_is_read_only(self, service, store, seeded):
        from context_engine.advisor.validator import ProposedAction

        before = len(store.audit_log(OWNER))
        result = service.validate_action(ProposedAction("extend", "ingest pipeline"), OWNER, "search")

        assert result.applied_decision_ids == [seeded["async"].id]
        assert store.get("decision", seeded["async"].id).applied_count == 0
        assert len(store.audit_log(OWNER)) == before

    def test_record_applied_after_confirmation(self, service, store, seeded):
        decision_id = seeded["async"].id

        updated = service.record_applied_decisions([decision_id, decision_id])

        assert [d.applied_count for d in updated] == [1, 2]
        assert store.get("decision", decision_id).applied_count == 2

    def test_record_unknown_decision(self, service):
        from context_engine.common.errors import NotFound

        with pytest.raises(NotFound):
            service.record_applied_decisions(["missing"])

    def test_observe_preference(self, service, seeded):
        assert service.observe_preference(seeded["no_sync_io"].id).frequency_observed == 2

    def test_store_failure_propagates(self):
        from context_engine.advisor.validator import ProposedAction
        from context_engine.common.errors import StoreUnavailable
        from context_engine.common.pattern_library import PatternLibrary
        from context_engine.scribe.pattern_parser import get_builtin_patterns
        from context_engine.service import ContextService

        broken = MagicMock()
        broken.find_by_owner.side_effect = StoreUnavailable("disk gone")
        service = ContextService(broken, library=PatternLibrary(get_builtin_patterns()))

        with pytest.raises(StoreUnavailable):
            service.validate_action(ProposedAction("run", "tests"), OWNER)
        with pytest.raises(StoreUnavailable):
            service.detect_conflicts(OWNER)


class TestConflictsAndRanking:

    def test_conflict_report(self, service, store, seeded):
        from context_engine.common.schemas import Preference

        store.create(Preference(owner_id=OWNER, name="indentation", value="always use tabs"))
        store.create(Preference(owner_id=OWNER, name="indentation", value="never use tabs"))

        report = service.detect_conflicts(OWNER)

        assert len(report.preference_conflicts) == 1
        # async (older) vs billing-only sync (newer)
        assert [c.item_ids for c in report.decision_conflicts] == [
            [seeded["async"].id, seeded["billing_only"].id]
        ]
        assert report.to_dict()["total"] == 2

    def test_rank_uses_default_limit(self, store):
        from context_engine.common.config import EngineConfig
        from context_engine.common.pattern_library import PatternLibrary
        from context_engine.common.schemas import Decision
        from context_engine.scribe.pattern_parser import get_builtin_patterns
        from context_engine.service import ContextService

        config = EngineConfig()
        config.ranker.default_limit = 2
        service = ContextService(store, library=PatternLibrary(get_builtin_patterns()), config=config)
        for i in range(4):
            decision = store.create(Decision(owner_id=OWNER, text=f"decision {i}", confidence_score=0.5))
            for _ in range(i + 1):
                store.increment_applied_count(decision.id)

        ranked = service.rank_decisions(OWNER)

        assert [r.applied_count for r in ranked] == [4, 3]
        assert len(service.rank_decisions(OWNER, limit=10)) == 4

    def test_recommend_next_steps(self, service, store, seeded):
        goal = store.get("goal", seeded["goal"].id)
        goal.add_step("dump the billing tables")
        store.update(goal)

        recs = service.recommend_next_steps(OWNER)

        assert [r.step_description for r in recs] == ["dump the billing tables"]


class TestQueryAndExport:

    def test_query_all(self, service, seeded):
        result = service.query_context(OWNER)

        assert set(result) == {"decisions", "goals", "preferences", "issues", "todos"}
        # newest first
        assert [d.id for d in result["decisions"]] == [seeded["billing_only"].id, seeded["async"].id]
        assert result["todos"] == []

    def test_query_filter_and_limit(self, service, seeded):
        result = service.query_context(OWNER, "decisions", text_filter="ASYNC")
        assert [d.id for d in result["decisions"]] == [seeded["async"].id]

        result = service.query_context(OWNER, "preferences", text_filter="no-sync")
        assert len(result["preferences"]) == 1

        assert len(service.query_context(OWNER, "decisions", limit=1)["decisions"]) == 1
        assert service.query_context(OWNER, "decisions", limit=0)["decisions"] == []

    def test_query_errors(self, service):
        from context_engine.common.errors import InvalidRange

        with pytest.raises(InvalidRange):
            service.query_context(OWNER, limit=-1)
        with pytest.raises(ValueError):
            service.query_context(OWNER, "rumours")

    def test_export_json(self, service, seeded):
        data = json.loads(service.export_context(OWNER, "json", include=["decisions", "issues"]))

        assert data["owner_id"] == OWNER
        assert set(data) == {"owner_id", "exported_at", "decisions", "issues"}
        assert len(data["decisions"]) == 2
        assert data["issues"][0]["affected_components"] == ["payments-api"]

    def test_export_markdown(self, service, seeded):
        md = service.export_context(OWNER, "markdown")

        assert md.startswith(f"# User Context: {OWNER}")
        assert "### Migrate billing to postgres" in md
        assert "- Workaround: retry with a smaller batch size" in md

    def test_export_csv(self, service, seeded):
        rows = list(csv.reader(io.StringIO(service.export_context(OWNER, "csv"))))

        assert rows[0] == ["kind", "id", "text", "status", "scope", "created_at"]
        assert len(rows) == 6
        pref_row = next(r for r in rows if r[0] == "preferences")
        assert pref_row[2] == "no-sync-io: Avoid synchronous I/O in request handlers"
        billing_row = next(r for r in rows if r[1] == seeded["billing_only"].id)
        assert billing_row[3] == "active"
        assert billing_row[4] == "project_id:billing"

    def test_export_bad_format(self, service):
        with pytest.raises(ValueError):
            service.export_context(OWNER, "yaml")


class TestItemManagement:

    def test_create_and_update(self, service, store):
        from context_engine.common.schemas import ContextScope, DecisionCategory

        decision = service.create_item(
            "decision", OWNER,
            {"text": "Use redis for session caching", "category": "performance", "confidence_score": 0.7},
            ContextScope.project("web"),
        )

        assert decision.category == DecisionCategory.PERFORMANCE
        assert store.get("decision", decision.id).scope.to_string() == "project_id:web"

        store.increment_applied_count(decision.id)
        updated = service.update_item("decision", decision.id, {"reason": "shared across pods"})

        assert updated.reason == "shared across pods"
        assert updated.applied_count == 1

    def test_fields_outside_the_editable_set(self, service, seeded):
        with pytest.raises(ValueError):
            service.create_item("decision", OWNER, {"text": "x", "applied_count": 9})
        with pytest.raises(ValueError):
            service.update_item("decision", seeded["async"].id, {"status": "archived"})
        with pytest.raises(ValueError):
            service.create_item("goal", OWNER, {})

    def test_out_of_range_field(self, service):
        from context_engine.common.errors import InvalidRange

        with pytest.raises(InvalidRange):
            service.create_item("preference", OWNER, {"name": "fmt", "value": "black", "priority": 9})

    def test_goal_lifecycle_feeds_next_steps(self, service):
        goal = service.create_item("goal", OWNER, {"text": "Ship beta", "priority": 1})
        assert service.recommend_next_steps(OWNER) == []

        service.add_goal_step(goal.id, "fix login")
        service.add_goal_step(goal.id, "write docs")
        service.set_goal_status(goal.id, "in_progress")
        assert [r.step_description for r in service.recommend_next_steps(OWNER)] == ["fix login"]

        service.complete_goal_step(goal.id, 1)
        assert [r.step_description for r in service.recommend_next_steps(OWNER)] == ["write docs"]

    def test_lifecycle_operations(self, service, seeded):
        from context_engine.common.errors import NotFound
        from context_engine.common.schemas import DecisionStatus, ResolutionStatus, TodoStatus

        assert service.archive_decision(seeded["async"].id).status == DecisionStatus.ARCHIVED
        issue = service.resolve_issue(seeded["issue"].id, "fixed")
        assert issue.resolution_status == ResolutionStatus.FIXED
        assert issue.resolution_date is not None

        todo = service.create_item("todo", OWNER, {
            "description": "apply the workaround", "related_entity_id": seeded["issue"].id,
        })
        assert service.set_todo_status(todo.id, "completed").status == TodoStatus.COMPLETED
        assert len(service.query_context(OWNER, "todos")["todos"]) == 1

        assert service.delete_item("todo", todo.id) is True
        assert service.delete_item("todo", todo.id) is False
        with pytest.raises(NotFound):
            service.get_item("todo", todo.id)
