"""
Generation configuration domain models.

- ConfigurationSource and the fixed source priority table
- ConfigScope: which institution / course / unit / user a record applies to
- GenerationSettings: a (possibly partial) settings payload from one source
- GenerationConfig: a fully populated effective configuration
- ConfigurationRecord: a validated snapshot read back from the store
"""
from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ConfigurationSource(str, Enum):
    """Where a settings payload came from."""
    ADAPTIVE_ALGORITHM = "adaptive_algorithm"
    UNIT_OVERRIDE = "unit_override"
    USER_PREFERENCE = "user_preference"
    COURSE_DEFAULT = "course_default"
    INSTITUTION_DEFAULT = "institution_default"
    SYSTEM_DEFAULT = "system_default"


class Difficulty(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class Focus(str, Enum):
    CONCEPTUAL = "conceptual"
    PRACTICAL = "practical"
    MIXED = "mixed"


class CuecardMode(str, Enum):
    DEFINITION = "definition"
    APPLICATION = "application"
    COMPREHENSIVE = "comprehensive"


# Higher number wins when two sources set the same field
DEFAULT_SOURCE_PRIORITIES: Mapping[ConfigurationSource, int] = MappingProxyType({
    ConfigurationSource.ADAPTIVE_ALGORITHM: 100,
    ConfigurationSource.UNIT_OVERRIDE: 80,
    ConfigurationSource.USER_PREFERENCE: 60,
    ConfigurationSource.COURSE_DEFAULT: 40,
    ConfigurationSource.INSTITUTION_DEFAULT: 30,
    ConfigurationSource.SYSTEM_DEFAULT: 20,
})

# Scope identifiers each source is keyed by
SOURCE_SCOPE_FIELDS: Mapping[ConfigurationSource, tuple[str, ...]] = MappingProxyType({
    ConfigurationSource.ADAPTIVE_ALGORITHM: ("course_id", "unit_id", "user_id"),
    ConfigurationSource.UNIT_OVERRIDE: ("course_id", "unit_id"),
    ConfigurationSource.USER_PREFERENCE: ("user_id",),
    ConfigurationSource.COURSE_DEFAULT: ("course_id",),
    ConfigurationSource.INSTITUTION_DEFAULT: ("institution_id",),
    ConfigurationSource.SYSTEM_DEFAULT: (),
})


@dataclass(frozen=True)
class ConfigScope:
    """Identifiers a configuration applies to. Any subset may be present."""
    institution_id: Optional[str] = None
    course_id: Optional[str] = None
    unit_id: Optional[str] = None
    user_id: Optional[str] = None

    def covers(self, source: ConfigurationSource) -> bool:
        """True when every identifier the source is keyed by is present."""
        return all(getattr(self, name) for name in SOURCE_SCOPE_FIELDS[source])

    def for_source(self, source: ConfigurationSource) -> ConfigScope:
        """Narrow this scope to exactly the identifiers the source is keyed by."""
        if not self.covers(source):
            missing = [n for n in SOURCE_SCOPE_FIELDS[source] if not getattr(self, n)]
            raise ValueError(f"{source.value} configuration requires {', '.join(missing)}")
        return ConfigScope(**{name: getattr(self, name) for name in SOURCE_SCOPE_FIELDS[source]})

    @property
    def key(self) -> str:
        """Canonical string form, e.g. 'course=c1|unit=u3'."""
        parts = [
            f"{f.name.removesuffix('_id')}={getattr(self, f.name)}"
            for f in fields(self)
            if getattr(self, f.name)
        ]
        return "|".join(parts) or "system"


class GenerationSettings(BaseModel):
    """
    Settings payload stored by one source.

    Every field is optional: an absent field falls through to lower-priority
    sources during the merge.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    cuecards_count: Optional[int] = Field(default=None, ge=1, le=100)
    mcqs_count: Optional[int] = Field(default=None, ge=1, le=50)
    exam_exercises_count: Optional[int] = Field(default=None, ge=1, le=20)
    golden_notes_count: Optional[int] = Field(default=None, ge=1, le=20)
    summary_length: Optional[int] = Field(default=None, ge=100, le=2000)
    cuecard_mode: Optional[CuecardMode] = None
    difficulty: Optional[Difficulty] = None
    focus: Optional[Focus] = None

    def present_fields(self) -> dict:
        """Fields this source actually sets."""
        return self.model_dump(exclude_none=True)


class GenerationConfig(BaseModel):
    """Effective generation configuration with every field populated."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    cuecards_count: int = Field(default=10, ge=1, le=100)
    mcqs_count: int = Field(default=10, ge=1, le=50)
    exam_exercises_count: int = Field(default=3, ge=1, le=20)
    golden_notes_count: int = Field(default=5, ge=1, le=20)
    summary_length: int = Field(default=300, ge=100, le=2000)
    cuecard_mode: CuecardMode = CuecardMode.COMPREHENSIVE
    difficulty: Difficulty = Difficulty.INTERMEDIATE
    focus: Focus = Focus.MIXED

    def feature_counts(self) -> dict[str, int]:
        """Item counts per content type, as requested from the generation job."""
        return {
            "cuecards": self.cuecards_count,
            "mcqs": self.mcqs_count,
            "exam_exercises": self.exam_exercises_count,
            "golden_notes": self.golden_notes_count,
        }


def system_default_config() -> GenerationConfig:
    """Hardcoded baseline every merge starts from."""
    return GenerationConfig()


# Content types as they appear in response history, mapped to count fields
CONTENT_TYPE_COUNT_FIELDS: Mapping[str, str] = MappingProxyType({
    "cuecard": "cuecards_count",
    "cuecards": "cuecards_count",
    "flashcard": "cuecards_count",
    "flashcards": "cuecards_count",
    "mcq": "mcqs_count",
    "mcqs": "mcqs_count",
    "open_question": "exam_exercises_count",
    "open_questions": "exam_exercises_count",
    "exam_exercise": "exam_exercises_count",
    "exam_exercises": "exam_exercises_count",
    "golden_note": "golden_notes_count",
    "golden_notes": "golden_notes_count",
})


def count_field_for(content_type: str) -> Optional[str]:
    """Config field holding the item count for a content type, if any."""
    return CONTENT_TYPE_COUNT_FIELDS.get(content_type.strip().lower())


class ConfigurationRecord(BaseModel):
    """A stored configuration snapshot, validated at the store boundary."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    source: ConfigurationSource
    scope: ConfigScope
    payload: GenerationSettings
    is_active: bool = True
    applied_at: datetime
    created_by: Optional[str] = None
    adaptation_reason: Optional[str] = None
