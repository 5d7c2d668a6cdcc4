"""Simplification engine - level-indexed transform of an analyzed score."""

import logging
from dataclasses import dataclass, replace
from typing import Dict, List, Optional

from ..core import AnalyzedScore, Measure, Note, ScoreType, SimplifiedScore
from .grand_staff import (
    BASS_LEVELS,
    SOPRANO_LEVELS,
    GrandStaffRecipe,
    preserve_grand_staff_measure,
    simplify_grand_staff_measure,
)
from .single_staff import (
    MAX_LEVEL,
    MIN_LEVEL,
    apply_level,
    simplify_rests,
    strip_embellishments,
)

logger = logging.getLogger(__name__)


LEVEL_DESCRIPTIONS: Dict[ScoreType, Dict[int, Dict[str, str]]] = {
    ScoreType.SINGLE_STAFF: {
        1: {
            "title": "Level 1 - Skeleton",
            "description": "One note per measure, held for the whole bar.",
        },
        2: {
            "title": "Level 2 - Strong Beats",
            "description": "One note on each strong beat, held until the next strong beat.",
        },
        3: {
            "title": "Level 3 - Beat Heads",
            "description": "One quarter note on each beat; subdivisions removed.",
        },
        4: {
            "title": "Level 4 - Rhythmic Core",
            "description": (
                "Quarter and eighth notes kept, shorter notes snapped to eighths. "
                "Syncopations, dotted rhythms and ties preserved."
            ),
        },
        5: {
            "title": "Level 5 - Near Original",
            "description": "Only ornaments (grace notes, trills, turns) removed.",
        },
    },
    ScoreType.GRAND_STAFF: {
        1: {
            "title": "Level 1 - Two-Voice Skeleton",
            "description": "Right hand: soprano (L1-5). Left hand: bass (L1-5).",
        },
        2: {
            "title": "Level 2 - Three Voices, Right Hand Enhanced",
            "description": "Right hand: soprano (L2-5) + alto on strong beats. Left hand: bass (L2-5).",
        },
        3: {
            "title": "Level 3 - Three Voices, Left Hand Enhanced",
            "description": "Right hand: soprano (L2-5). Left hand: tenor on strong beats + bass (L2-5).",
        },
        4: {
            "title": "Level 4 - Four-Voice Harmony",
            "description": (
                "Right hand: soprano (L2-5) + alto on strong beats. "
                "Left hand: tenor on strong beats + bass (L2-5)."
            ),
        },
        5: {
            "title": "Level 5 - Near Original",
            "description": (
                "All four voices with ornaments removed. "
                "Soprano and bass adjustable between L4 and L5."
            ),
        },
    },
}


@dataclass
class SimplificationConfig:
    """Configuration for simplification.

    Attributes:
        main_level: Level 1 (sparsest) to 5 (near original)
        soprano_level: Grand-staff soprano sub-level; clamped to the main
            level's range, default per level
        bass_level: Grand-staff bass sub-level; clamped likewise
    """

    main_level: int = 3
    soprano_level: Optional[int] = None
    bass_level: Optional[int] = None

    def __post_init__(self):
        if not isinstance(self.main_level, int) or not MIN_LEVEL <= self.main_level <= MAX_LEVEL:
            raise ValueError(
                f"main_level must be an integer {MIN_LEVEL}-{MAX_LEVEL}, got {self.main_level!r}"
            )

    @property
    def recipe(self) -> GrandStaffRecipe:
        return GrandStaffRecipe.for_level(self.main_level, self.soprano_level, self.bass_level)

    def sub_level_range(self, voice: str) -> range:
        """Allowed soprano/bass sub-levels for the main level."""
        table = SOPRANO_LEVELS if voice == "soprano" else BASS_LEVELS
        _, low, high = table[self.main_level]
        return range(low, high + 1)


class Simplifier:
    """Apply a simplification level to an analyzed score.

    Stateless: the same instance may simplify any number of scores.
    """

    def __init__(self, config: Optional[SimplificationConfig] = None):
        self.config = config or SimplificationConfig()

    def simplify(self, score: AnalyzedScore) -> SimplifiedScore:
        """
        Simplify every measure of a score.

        Args:
            score: Analyzer output

        Returns:
            SimplifiedScore with unchanged metadata
        """
        level = self.config.main_level
        time_signature = score.metadata.time_signature
        grand = score.score_type is ScoreType.GRAND_STAFF and bool(score.voices)
        recipe = self.config.recipe

        measures: List[Measure] = []
        for index, measure in enumerate(score.measures):
            if index == 0 and score.is_anacrusis:
                measures.append(
                    preserve_grand_staff_measure(measure) if grand else self._preserve(measure)
                )
            elif grand:
                measures.append(simplify_grand_staff_measure(measure, recipe, time_signature))
            else:
                measures.append(self._simplify_single(measure, level, score))

        before = sum(len(m.notes) for m in score.measures)
        after = sum(len(m.notes) for m in measures)
        logger.info("Level %d simplification: %d -> %d notes", level, before, after)

        return SimplifiedScore(
            metadata=score.metadata,
            measures=tuple(measures),
            level=level,
            score_type=score.score_type,
            soprano_level=recipe.soprano if grand else None,
            bass_level=recipe.bass if grand else None,
            is_anacrusis=score.is_anacrusis,
            container=score.container,
        )

    @staticmethod
    def _preserve(measure: Measure) -> Measure:
        notes: List[Note] = []
        for staff, voice in sorted({(n.staff, n.voice) for n in measure.notes}):
            notes.extend(strip_embellishments(
                [n for n in measure.notes if n.staff == staff and n.voice == voice]
            ))
        return replace(measure, notes=tuple(notes))

    @staticmethod
    def _simplify_single(measure: Measure, level: int, score: AnalyzedScore) -> Measure:
        time_signature = score.metadata.time_signature
        notes: List[Note] = []
        for staff, voice in sorted({(n.staff, n.voice) for n in measure.notes}):
            group = [n for n in measure.notes if n.staff == staff and n.voice == voice]
            notes.extend(apply_level(group, level, time_signature))
        return replace(measure, notes=tuple(notes), rests=tuple(simplify_rests(measure.rests, level)))


def simplify(
    score: AnalyzedScore,
    level: int,
    soprano_level: Optional[int] = None,
    bass_level: Optional[int] = None,
) -> SimplifiedScore:
    """Simplify an analyzed score at `level` (1-5)."""
    config = SimplificationConfig(main_level=level, soprano_level=soprano_level, bass_level=bass_level)
    return Simplifier(config).simplify(score)
