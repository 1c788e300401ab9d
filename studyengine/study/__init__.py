"""
Study Sessions.

Provides services for:
- Smart item selection (gaps, due reviews, new items)
- SM-2 spaced repetition updates
- Learning gaps, progress and session persistence
"""

from studyengine.study.models import (
    CandidateItem,
    Feedback,
    ResponseEvent,
    SchedulingState,
    SelectionResult,
    SessionPlan,
    SessionPriority,
    SessionScope,
    SessionSummary,
)
from studyengine.study.item_selector import SmartItemSelector
from studyengine.study.spaced_repetition import (
    SM2Scheduler,
    SpacedRepetitionUpdater,
    adjust_difficulty,
    quality_for_feedback,
)
from studyengine.study.repository import LearningRepository
from studyengine.study.study_service import StudyService

__all__ = [
    "StudyService",
    "SmartItemSelector",
    "SM2Scheduler",
    "SpacedRepetitionUpdater",
    "LearningRepository",
    "adjust_difficulty",
    "quality_for_feedback",
    "CandidateItem",
    "Feedback",
    "ResponseEvent",
    "SchedulingState",
    "SelectionResult",
    "SessionPlan",
    "SessionPriority",
    "SessionScope",
    "SessionSummary",
]
