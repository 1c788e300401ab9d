"""
Smart Item Selector.

Picks the items for a study session by tiered priority instead of at random:

    Tier      Priority                     Share of session
    gap       100 + severity * 90          at most 40%
    review    50 + min(days * 5, 49)       at most 40%
    new       uniform(1, 50)               remaining slots

Items outside the session scope are dropped before scoring. Tiers are never
backfilled from each other, so a session can come out shorter than requested.
"""

from __future__ import annotations

import math
import random
from collections.abc import Iterable, Mapping
from typing import Optional

from loguru import logger

from studyengine.study.models import (
    CandidateItem,
    ScoredItem,
    SelectionMetadata,
    SelectionReason,
    SelectionResult,
    SessionPriority,
    SessionScope,
)

GAP_BASE_PRIORITY = 100
GAP_SEVERITY_WEIGHT = 90
REVIEW_BASE_PRIORITY = 50
REVIEW_OVERDUE_WEIGHT = 5
REVIEW_OVERDUE_CAP = 49
NEW_PRIORITY_RANGE = (1.0, 50.0)
TIER_SHARE = 0.4


class SmartItemSelector:
    """
    Select a balanced set of items for a session.

    The random source for new-item priorities is injected so selections can
    be reproduced in tests.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def score(
        self,
        item: CandidateItem,
        gap_severities: Mapping[str, int],
        days_overdue: Mapping[str, int],
        new_item_ids: frozenset[str] | set[str],
    ) -> ScoredItem:
        """Assign the item its tier and priority. Gaps outrank reviews, which outrank new items."""
        if item.item_id in gap_severities:
            priority = GAP_BASE_PRIORITY + gap_severities[item.item_id] * GAP_SEVERITY_WEIGHT
            return ScoredItem(item, float(priority), SelectionReason.GAP)
        if item.item_id in days_overdue:
            overdue = max(0, days_overdue[item.item_id])
            priority = REVIEW_BASE_PRIORITY + min(overdue * REVIEW_OVERDUE_WEIGHT, REVIEW_OVERDUE_CAP)
            return ScoredItem(item, float(priority), SelectionReason.REVIEW)
        if item.item_id in new_item_ids:
            return ScoredItem(item, self.rng.uniform(*NEW_PRIORITY_RANGE), SelectionReason.NEW)
        return ScoredItem(item, 0.0, SelectionReason.NONE)

    def select(
        self,
        pool: Iterable[CandidateItem],
        scope: SessionScope,
        max_items: int,
        gap_severities: Optional[Mapping[str, int]] = None,
        days_overdue: Optional[Mapping[str, int]] = None,
        new_item_ids: Iterable[str] = (),
    ) -> SelectionResult:
        """
        Select up to max_items items from the pool.

        Args:
            pool: Candidate items (anything outside scope is ignored)
            scope: Course and optional units the session covers
            max_items: Session size
            gap_severities: item_id -> active gap severity (1-10)
            days_overdue: item_id -> whole days past the review date
            new_item_ids: Items the learner has never seen

        Returns:
            SelectionResult with items ordered gaps, reviews, then new
        """
        in_scope = [item for item in pool if scope.contains(item)]
        if not in_scope or max_items <= 0:
            return SelectionResult(metadata=SelectionMetadata(total_available=len(in_scope)))

        gap_severities = gap_severities or {}
        days_overdue = days_overdue or {}
        new_ids = frozenset(new_item_ids)

        scored = [self.score(item, gap_severities, days_overdue, new_ids) for item in in_scope]
        scored.sort(key=lambda s: s.priority, reverse=True)

        tier_cap = math.ceil(max_items * TIER_SHARE)
        gaps = [s for s in scored if s.reason == SelectionReason.GAP][:tier_cap]
        selected = list(gaps)

        review_slots = min(tier_cap, max_items - len(selected))
        selected.extend([s for s in scored if s.reason == SelectionReason.REVIEW][:review_slots])

        new_slots = max_items - len(selected)
        if new_slots > 0:
            selected.extend([s for s in scored if s.reason == SelectionReason.NEW][:new_slots])

        metadata = self.summarize(selected, len(in_scope))
        logger.debug(
            f"Selected {len(selected)}/{len(in_scope)} items for {scope.course_id} "
            f"({metadata.gap_items} gaps, {metadata.review_items} reviews, "
            f"{metadata.new_items} new)"
        )
        return SelectionResult(items=selected, metadata=metadata)

    @staticmethod
    def summarize(selected: list[ScoredItem], total_available: int) -> SelectionMetadata:
        gaps = sum(1 for s in selected if s.reason == SelectionReason.GAP)
        reviews = sum(1 for s in selected if s.reason == SelectionReason.REVIEW)
        new = sum(1 for s in selected if s.reason == SelectionReason.NEW)

        if gaps > reviews and gaps > new:
            priority = SessionPriority.GAPS
        elif reviews > gaps and reviews > new:
            priority = SessionPriority.REVIEWS
        elif new > 0 and gaps == 0 and reviews == 0:
            priority = SessionPriority.NEW
        else:
            priority = SessionPriority.MIXED

        return SelectionMetadata(
            gap_items=gaps,
            review_items=reviews,
            new_items=new,
            total_available=total_available,
            priority=priority,
        )
