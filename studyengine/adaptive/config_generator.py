"""
Adaptive Config Generator.

Adjusts a merged GenerationConfig to a learner's PerformanceProfile:
1. Struggling learners get easier, more conceptual material and more of it
2. Excelling learners get harder, practical material and more exam exercises
3. Each learning-gap content type gets a remediation boost
4. The profile's preferred difficulty has the final say on difficulty

The input config is never modified and the output depends only on the inputs.
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping

from loguru import logger

from studyengine.adaptive.models import (
    EXCELLING_ADJUSTMENTS,
    GAP_ADJUSTMENTS,
    STRUGGLING_ADJUSTMENTS,
    AdaptiveGenerationConfig,
    CountAdjustment,
    PerformanceLevel,
    PerformanceProfile,
)
from studyengine.generation.models import (
    Difficulty,
    Focus,
    GenerationConfig,
    count_field_for,
)

_FIELD_LABELS = {
    "cuecards_count": "cuecards",
    "mcqs_count": "MCQs",
    "exam_exercises_count": "exam exercises",
    "golden_notes_count": "golden notes",
}


class AdaptiveConfigGenerator:
    """Apply the adaptation rules to a merged configuration."""

    def __init__(
        self,
        struggling: Iterable[CountAdjustment] = STRUGGLING_ADJUSTMENTS,
        excelling: Iterable[CountAdjustment] = EXCELLING_ADJUSTMENTS,
        gap_adjustments: Mapping[str, CountAdjustment] = GAP_ADJUSTMENTS,
    ):
        self.struggling = tuple(struggling)
        self.excelling = tuple(excelling)
        self.gap_adjustments = gap_adjustments

    def generate(
        self, config: GenerationConfig, profile: PerformanceProfile
    ) -> AdaptiveGenerationConfig:
        """
        Produce the adapted configuration.

        Args:
            config: Effective configuration from the priority merge
            profile: The learner's performance profile

        Returns:
            AdaptiveGenerationConfig with the adjusted config and reason trail
        """
        reasons: list[str] = []
        updates: dict = {}

        if profile.performance_level == PerformanceLevel.STRUGGLING:
            updates["difficulty"] = Difficulty.BEGINNER
            updates["focus"] = Focus.CONCEPTUAL
            self._apply_all(config, updates, self.struggling)
            reasons.append("Increased practice materials for struggling performance")
        elif profile.performance_level == PerformanceLevel.EXCELLING:
            updates["difficulty"] = Difficulty.ADVANCED
            updates["focus"] = Focus.PRACTICAL
            self._apply_all(config, updates, self.excelling)
            reasons.append("Increased challenge for excelling performance")

        boosted: set[str] = set()
        for content_type in profile.learning_gaps:
            field = count_field_for(content_type)
            if field is None or field not in self.gap_adjustments:
                logger.debug(f"No count field for gap content type '{content_type}'")
                continue
            if field in boosted:
                continue
            boosted.add(field)
            current = updates.get(field, getattr(config, field))
            updates[field] = self.gap_adjustments[field].apply(current)
            reasons.append(
                f"Increased {_FIELD_LABELS.get(field, field)} to address learning gap in {content_type}"
            )

        current_difficulty = updates.get("difficulty", config.difficulty)
        if profile.preferred_difficulty != current_difficulty:
            updates["difficulty"] = profile.preferred_difficulty
            reasons.append(f"Adjusted difficulty to {profile.preferred_difficulty.value}")

        adapted = config.model_copy(update=updates) if updates else config
        if reasons:
            logger.debug(f"Adapted generation config: {' | '.join(reasons)}")
            return AdaptiveGenerationConfig(
                config=adapted, profile=profile, adaptation_reasons=tuple(reasons)
            )
        return AdaptiveGenerationConfig(config=adapted, profile=profile)

    @staticmethod
    def _apply_all(
        config: GenerationConfig, updates: dict, adjustments: Iterable[CountAdjustment]
    ) -> None:
        for adjustment in adjustments:
            current = updates.get(adjustment.field, getattr(config, adjustment.field))
            updates[adjustment.field] = adjustment.apply(current)
