"""Core types and constants for Score Simplifier."""

from .note import (
    PENDING,
    Duration,
    Embellishment,
    LockReason,
    Note,
    Pitch,
    Rest,
    Tuplet,
    VoicePart,
)
from .score import (
    AnalyzedScore,
    ContainerFormat,
    KeySignature,
    Measure,
    ParsedScore,
    ScoreMetadata,
    ScoreType,
    SeparationReport,
    SimplifiedScore,
    TimeSignature,
    VoiceAnomaly,
    VoiceAssignment,
)
from .errors import (
    FormatError,
    OracleUnavailable,
    ScoreSimplifierError,
    UnsupportedStructureError,
)
from .constants import (
    DEFAULT_TEMPO,
    EXPORT_DIVISIONS,
    PITCH_NAMES,
    TICKS_PER_QUARTER,
)

__all__ = [
    "PENDING",
    "Duration",
    "Embellishment",
    "LockReason",
    "Note",
    "Pitch",
    "Rest",
    "Tuplet",
    "VoicePart",
    "AnalyzedScore",
    "ContainerFormat",
    "KeySignature",
    "Measure",
    "ParsedScore",
    "ScoreMetadata",
    "ScoreType",
    "SeparationReport",
    "SimplifiedScore",
    "TimeSignature",
    "VoiceAnomaly",
    "VoiceAssignment",
    "FormatError",
    "OracleUnavailable",
    "ScoreSimplifierError",
    "UnsupportedStructureError",
    "DEFAULT_TEMPO",
    "EXPORT_DIVISIONS",
    "PITCH_NAMES",
    "TICKS_PER_QUARTER",
]
