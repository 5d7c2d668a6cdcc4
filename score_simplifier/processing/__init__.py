"""Processing layer - Level-based score simplification.

This layer reduces rhythmic and harmonic density:
- Single-staff levels 1-5 (per voice)
- Grand-staff recipes over soprano/alto/tenor/bass
- Anacrusis protection and embellishment stripping
"""

from .simplifier import (
    LEVEL_DESCRIPTIONS,
    SimplificationConfig,
    Simplifier,
    simplify,
)
from .grand_staff import GrandStaffRecipe
from .single_staff import apply_level, strip_embellishments

__all__ = [
    "LEVEL_DESCRIPTIONS",
    "SimplificationConfig",
    "Simplifier",
    "simplify",
    "GrandStaffRecipe",
    "apply_level",
    "strip_embellishments",
]
