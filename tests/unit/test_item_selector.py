"""
Unit tests for SmartItemSelector.
"""

import random

from studyengine.study import CandidateItem, SessionPriority, SessionScope, SmartItemSelector
from studyengine.study.models import SelectionReason


def items(prefix, count, course="c1", unit="u1"):
    return [CandidateItem(f"{prefix}{i}", course, unit) for i in range(count)]


class TestScoring:
    def test_tier_priorities(self):
        selector = SmartItemSelector(random.Random(1))
        item = CandidateItem("a", "c1", "u1")
        assert selector.score(item, {"a": 8}, {"a": 3}, {"a"}).priority == 820
        assert selector.score(item, {}, {"a": 3}, {"a"}).priority == 65
        assert selector.score(item, {}, {"a": 30}, set()).priority == 99
        assert selector.score(item, {}, {}, set()).reason == SelectionReason.NONE

    def test_new_item_priority_in_range(self):
        selector = SmartItemSelector(random.Random(7))
        for _ in range(100):
            scored = selector.score(CandidateItem("a", "c1", "u1"), {}, {}, {"a"})
            assert 1 <= scored.priority <= 50


class TestSelection:
    def test_scenario_gaps_then_review_then_new(self, rng):
        pool = [
            CandidateItem("new-1", "c1", "u1"),
            CandidateItem("gap-low", "c1", "u1"),
            CandidateItem("due", "c1", "u1"),
            CandidateItem("gap-high", "c1", "u1"),
            CandidateItem("new-2", "c1", "u1"),
        ]
        result = SmartItemSelector(rng).select(
            pool,
            SessionScope("c1"),
            max_items=5,
            gap_severities={"gap-high": 8, "gap-low": 3},
            days_overdue={"due": 10},
            new_item_ids={"new-1", "new-2"},
        )
        ids = result.item_ids
        assert len(ids) == 5
        assert ids[:3] == ["gap-high", "gap-low", "due"]
        assert set(ids[3:]) == {"new-1", "new-2"}
        assert result.metadata.gap_items == 2
        assert result.metadata.review_items == 1
        assert result.metadata.new_items == 2
        assert result.metadata.priority == SessionPriority.MIXED

    def test_balance_caps_gaps_and_reviews(self, rng):
        gaps = items("g", 15)
        due = items("d", 15)
        new = items("n", 15)
        result = SmartItemSelector(rng).select(
            gaps + due + new,
            SessionScope("c1"),
            max_items=20,
            gap_severities={i.item_id: 5 for i in gaps},
            days_overdue={i.item_id: 2 for i in due},
            new_item_ids={i.item_id for i in new},
        )
        assert result.metadata.gap_items == 8
        assert result.metadata.review_items == 8
        assert result.metadata.new_items == 4
        assert len(result) == 20

    def test_no_backfill_when_tiers_run_short(self, rng):
        gaps = items("g", 12)
        result = SmartItemSelector(rng).select(
            gaps,
            SessionScope("c1"),
            max_items=20,
            gap_severities={i.item_id: 5 for i in gaps},
        )
        assert len(result) == 8
        assert result.metadata.priority == SessionPriority.GAPS
        assert result.metadata.total_available == 12

    def test_scope_isolation(self, rng):
        pool = items("in", 3, unit="u1") + items("other-unit", 3, unit="u2") + items(
            "other-course", 3, course="c2"
        )
        every_id = {i.item_id for i in pool}
        result = SmartItemSelector(rng).select(
            pool,
            SessionScope("c1", frozenset({"u1"})),
            max_items=20,
            gap_severities={i: 9 for i in every_id},
        )
        assert set(result.item_ids) == {"in0", "in1", "in2"}
        assert result.metadata.total_available == 3

    def test_course_scope_without_units_spans_units(self, rng):
        pool = items("a", 2, unit="u1") + items("b", 2, unit="u2")
        result = SmartItemSelector(rng).select(
            pool, SessionScope("c1"), 10, new_item_ids={i.item_id for i in pool}
        )
        assert len(result) == 4
        assert result.metadata.priority == SessionPriority.NEW

    def test_empty_pool(self, rng):
        result = SmartItemSelector(rng).select([], SessionScope("c1"), max_items=10)
        assert result.items == []
        assert result.metadata.total_available == 0
        assert result.metadata.priority == SessionPriority.NEW

    def test_untiered_items_are_never_selected(self, rng):
        result = SmartItemSelector(rng).select(items("x", 5), SessionScope("c1"), max_items=5)
        assert len(result) == 0
        assert result.metadata.total_available == 5

    def test_seeded_selection_is_reproducible(self):
        new = items("n", 30)
        ids = {i.item_id for i in new}

        def run(seed):
            return SmartItemSelector(random.Random(seed)).select(
                new, SessionScope("c1"), max_items=10, new_item_ids=ids
            ).item_ids

        assert run(3) == run(3)
