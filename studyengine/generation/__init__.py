"""
Generation Configuration.

Resolves the settings a content generation job runs with.

Components:
- ConfigStore: Stores one active record per source and scope
- PriorityMerger: Overlays sources by priority into an effective config
- HttpGenerationJobClient: Submits generation jobs to the generation service
"""
from studyengine.generation.models import (
    CONTENT_TYPE_COUNT_FIELDS,
    DEFAULT_SOURCE_PRIORITIES,
    ConfigScope,
    ConfigurationRecord,
    ConfigurationSource,
    CuecardMode,
    Difficulty,
    Focus,
    GenerationConfig,
    GenerationSettings,
    count_field_for,
    system_default_config,
)
from studyengine.generation.merge import HARDCODED_BASELINE, PriorityMerger
from studyengine.generation.config_store import ConfigStore, ConfigUsageAnalytics
from studyengine.generation.jobs import (
    GenerationJobSubmitter,
    HttpGenerationJobClient,
    JobHandle,
)

__all__ = [
    # Components
    "ConfigStore",
    "PriorityMerger",
    "HttpGenerationJobClient",
    "GenerationJobSubmitter",
    # Data models
    "ConfigScope",
    "ConfigurationRecord",
    "ConfigUsageAnalytics",
    "GenerationConfig",
    "GenerationSettings",
    "JobHandle",
    # Enums
    "ConfigurationSource",
    "CuecardMode",
    "Difficulty",
    "Focus",
    # Constants
    "CONTENT_TYPE_COUNT_FIELDS",
    "DEFAULT_SOURCE_PRIORITIES",
    "HARDCODED_BASELINE",
    "count_field_for",
    "system_default_config",
]
