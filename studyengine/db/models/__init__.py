# SQLAlchemy models
from .base import Base
from .generation import GenerationConfigRecord
from .learning import (
    ItemScheduling,
    LearningGap,
    PracticeItem,
    StudySession,
    UserProgress,
)

__all__ = [
    "Base",
    "GenerationConfigRecord",
    "ItemScheduling",
    "LearningGap",
    "PracticeItem",
    "StudySession",
    "UserProgress",
]
