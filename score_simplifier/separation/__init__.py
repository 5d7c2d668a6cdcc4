"""Separation layer - split a grand staff into SATB voices.

- Rule tier: pitch order within simultaneous groups
- Embedding tier: optional similarity oracle with a deadline
- Validation tier: k-means anomaly report
"""

from .embedding import (
    EmbeddingCache,
    EmbeddingOracle,
    EmbeddingTier,
    NoteWindow,
    cosine_similarity,
)
from .validation import KMeansValidator
from .voices import SeparationResult, VoiceSeparator

__all__ = [
    "EmbeddingCache",
    "EmbeddingOracle",
    "EmbeddingTier",
    "NoteWindow",
    "cosine_similarity",
    "KMeansValidator",
    "SeparationResult",
    "VoiceSeparator",
]
