"""Analysis layer - Structural understanding of a parsed score.

This layer provides:
- Strong-beat grid and anacrusis detection
- Lock detection (notes that must survive simplification)
- Rhythm pattern classification
- Voice separation for grand-staff scores (via separation/)
"""

from .analyzer import AnalyzerConfig, ScoreAnalyzer, analyze, analyze_async
from .locks import LockDetector
from .meter import detect_anacrusis, is_strong_beat, strong_beats
from .rhythm import classify_rhythm, rhythm_patterns

__all__ = [
    "AnalyzerConfig",
    "ScoreAnalyzer",
    "analyze",
    "analyze_async",
    "LockDetector",
    "detect_anacrusis",
    "is_strong_beat",
    "strong_beats",
    "classify_rhythm",
    "rhythm_patterns",
]
