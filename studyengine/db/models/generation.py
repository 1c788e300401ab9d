"""
Generation configuration records.

One row per settings snapshot. Each (config_source, scope_key) pair has at
most one active row, except adaptive-algorithm rows, which form an
insert-only log.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import JSON, Boolean, DateTime, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from studyengine.clock import utcnow

from .base import Base

ADAPTIVE_SOURCE_VALUE = "adaptive_algorithm"


class GenerationConfigRecord(Base):
    """
    A generation-settings payload from one configuration source.

    Scope columns are nullable: which of them are set depends on the source
    (an institution default only carries institution_id, a unit override
    carries course_id and unit_id, and so on). scope_key is the canonical
    rendering of the populated columns and is what uniqueness is enforced on.
    """

    __tablename__ = "generation_configs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    config_source: Mapped[str] = mapped_column(String(32), nullable=False)

    # Scope associations
    institution_id: Mapped[str | None] = mapped_column(Text)
    course_id: Mapped[str | None] = mapped_column(Text)
    unit_id: Mapped[str | None] = mapped_column(Text)
    user_id: Mapped[str | None] = mapped_column(Text)
    scope_key: Mapped[str] = mapped_column(Text, nullable=False)

    config_data: Mapped[dict] = mapped_column(JSON, nullable=False)

    # Adaptive learning metadata (only for adaptive_algorithm rows)
    adaptation_reason: Mapped[str | None] = mapped_column(Text)
    user_performance_level: Mapped[str | None] = mapped_column(String(20))
    learning_gaps: Mapped[list | None] = mapped_column(JSON)
    adaptive_factors: Mapped[dict | None] = mapped_column(JSON)

    # Lifecycle
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    applied_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
    created_by: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (
        Index("idx_generation_configs_lookup", "config_source", "scope_key", "is_active"),
        Index("idx_generation_configs_user", "user_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<GenerationConfigRecord source={self.config_source} "
            f"scope={self.scope_key} active={self.is_active}>"
        )


_single_active = (GenerationConfigRecord.is_active.is_(True)) & (
    GenerationConfigRecord.config_source != ADAPTIVE_SOURCE_VALUE
)

Index(
    "uq_generation_configs_active_scope",
    GenerationConfigRecord.config_source,
    GenerationConfigRecord.scope_key,
    unique=True,
    postgresql_where=_single_active,
    sqlite_where=_single_active,
)
