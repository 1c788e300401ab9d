"""
Priority merge of generation configuration sources.

Starts from the hardcoded system default and overlays each source's payload
field by field, lowest priority first, so a field set by a higher-priority
source always ends up in the result and unset fields fall through.
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Optional

from loguru import logger

from studyengine.generation.models import (
    DEFAULT_SOURCE_PRIORITIES,
    ConfigurationRecord,
    ConfigurationSource,
    GenerationConfig,
    system_default_config,
)

HARDCODED_BASELINE = "hardcoded"


class PriorityMerger:
    """
    Merge configuration records into one effective GenerationConfig.

    The priority table is injected so callers never depend on module state;
    it must give every source a distinct priority.
    """

    def __init__(
        self,
        priorities: Mapping[ConfigurationSource, int] = DEFAULT_SOURCE_PRIORITIES,
        baseline: Optional[GenerationConfig] = None,
    ):
        missing = set(ConfigurationSource) - set(priorities)
        if missing:
            raise ValueError(f"Priority table is missing sources: {sorted(s.value for s in missing)}")
        if len(set(priorities.values())) != len(priorities):
            raise ValueError("Configuration source priorities must be distinct")
        self._priorities = priorities
        self._baseline = baseline or system_default_config()

    def priority_of(self, source: ConfigurationSource) -> int:
        return self._priorities[source]

    def merge(self, records: Iterable[ConfigurationRecord]) -> GenerationConfig:
        """Produce the effective configuration. Pure: inputs are not modified."""
        merged, _ = self.merge_with_provenance(records)
        return merged

    def merge_with_provenance(
        self, records: Iterable[ConfigurationRecord]
    ) -> tuple[GenerationConfig, dict[str, str]]:
        """
        Merge and report which source supplied each field.

        Returns:
            (merged config, {field name: source value or 'hardcoded'})
        """
        provenance = {name: HARDCODED_BASELINE for name in GenerationConfig.model_fields}
        values = self._baseline.model_dump()

        for record in self._ordered(records):
            present = record.payload.present_fields()
            values.update(present)
            for name in present:
                provenance[name] = record.source.value

        merged = GenerationConfig.model_validate(values)
        return merged, provenance

    def _ordered(self, records: Iterable[ConfigurationRecord]) -> list[ConfigurationRecord]:
        """Active records sorted so higher priority is applied last."""
        active = []
        for record in records:
            if not record.is_active:
                logger.debug(f"Skipping inactive {record.source.value} config {record.id}")
                continue
            active.append(record)
        # applied_at breaks ties within one source (several adaptive log rows)
        return sorted(active, key=lambda r: (self._priorities[r.source], r.applied_at))
