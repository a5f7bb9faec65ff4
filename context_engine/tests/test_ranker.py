"""
Tests for Effectiveness Ranker
"""

from datetime import datetime, timedelta, timezone

import pytest

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def ranker():
    from context_engine.advisor.ranker import EffectivenessRanker

    return EffectivenessRanker()


def _decision(text, applied, confidence, last_applied=None, **kwargs):
    from context_engine.common.schemas import Decision

    return Decision(
        owner_id="alice",
        text=text,
        applied_count=applied,
        confidence_score=confidence,
        last_applied=last_applied,
        **kwargs,
    )


class TestRankDecisions:

    def test_frequently_applied_beats_confident(self, ranker):
        steady = _decision("use pytest", applied=3, confidence=0.8, last_applied=T0)
        confident = _decision("use ruff", applied=1, confidence=0.9, last_applied=T0)

        ranked = ranker.rank_decisions([confident, steady], limit=10)

        assert [r.decision_id for r in ranked] == [steady.id, confident.id]
        assert ranked[0].score == pytest.approx(2.4)
        assert ranked[1].score == pytest.approx(0.9)

    def test_never_applied_excluded(self, ranker):
        applied = _decision("use pytest", applied=1, confidence=0.5, last_applied=T0)
        unused = _decision("use tox", applied=0, confidence=1.0)

        ranked = ranker.rank_decisions([applied, unused], limit=10)

        assert [r.decision_id for r in ranked] == [applied.id]

    def test_limit(self, ranker):
        decisions = [
            _decision(f"decision {i}", applied=i + 1, confidence=0.5, last_applied=T0)
            for i in range(5)
        ]

        ranked = ranker.rank_decisions(decisions, limit=2)

        assert [r.applied_count for r in ranked] == [5, 4]
        assert ranker.rank_decisions(decisions, limit=0) == []

    def test_ties_broken_by_recency_then_id(self, ranker):
        older = _decision("a", applied=2, confidence=0.5, last_applied=T0, id="ccc")
        newer = _decision("b", applied=2, confidence=0.5, last_applied=T0 + timedelta(hours=1), id="bbb")
        same_time_low_id = _decision("c", applied=1, confidence=1.0, last_applied=T0, id="aaa")

        ranked = ranker.rank_decisions([older, same_time_low_id, newer], limit=10)

        # all score 1.0
        assert [r.decision_id for r in ranked] == ["bbb", "aaa", "ccc"]

    def test_negative_limit(self, ranker):
        from context_engine.common.errors import InvalidRange

        with pytest.raises(InvalidRange):
            ranker.rank_decisions([], limit=-1)

    def test_to_dict(self, ranker):
        decision = _decision("use pytest", applied=2, confidence=0.5, last_applied=T0)

        data = ranker.rank_decisions([decision], limit=1)[0].to_dict()

        assert data["score"] == pytest.approx(1.0)
        assert data["last_applied"] == T0.isoformat()


class TestRecommendNextSteps:

    def _goal(self, text, status, priority=3, steps=(), completed=()):
        from context_engine.common.schemas import Goal

        goal = Goal(owner_id="alice", text=text, status=status, priority=priority)
        for description in steps:
            goal.add_step(description)
        for number in completed:
            goal.complete_step(number)
        return goal

    def test_first_incomplete_step_by_priority(self, ranker):
        from context_engine.common.schemas import GoalStatus

        low = self._goal("Write docs", GoalStatus.IN_PROGRESS, priority=4, steps=["outline", "draft"])
        high = self._goal(
            "Ship beta", GoalStatus.IN_PROGRESS, priority=1,
            steps=["fix login", "write release notes", "tag release"], completed=[1],
        )

        recs = ranker.recommend_next_steps([low, high])

        assert [r.goal_id for r in recs] == [high.id, low.id]
        assert recs[0].step_number == 2
        assert recs[0].step_description == "write release notes"
        assert recs[0].completion_percentage == pytest.approx(100 / 3)
        assert recs[1].step_description == "outline"

    def test_skips_planned_and_finished_goals(self, ranker):
        from context_engine.common.schemas import GoalStatus

        planned = self._goal("Plan Q3", GoalStatus.PLANNED, steps=["draft"])
        done = self._goal("Migrate CI", GoalStatus.IN_PROGRESS, steps=["move jobs"], completed=[1])
        no_steps = self._goal("Think", GoalStatus.IN_PROGRESS)

        assert ranker.recommend_next_steps([planned, done, no_steps]) == []
