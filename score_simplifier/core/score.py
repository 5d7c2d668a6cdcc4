"""Score-level data classes: metadata, measures and the pipeline stages."""

from dataclasses import dataclass, field
from enum import Enum
from fractions import Fraction
from typing import Dict, Iterator, List, Optional, Tuple

from .constants import (
    DEFAULT_COMPOSER,
    DEFAULT_TEMPO,
    DEFAULT_TITLE,
    TICKS_PER_QUARTER,
)
from .note import LockReason, Note, Rest, VoicePart


class ScoreType(Enum):
    """Layout of the source score."""

    SINGLE_STAFF = "single_staff"
    GRAND_STAFF = "grand_staff"


class ContainerFormat(Enum):
    """Wire container the score was read from."""

    XML = "xml"
    MXL = "mxl"


@dataclass(frozen=True)
class TimeSignature:
    """Meter, e.g. 3/4. `type` is simple, compound or irregular."""

    beats: int = 4
    beat_type: int = 4
    type: str = "simple"

    @property
    def measure_ticks(self) -> int:
        """Nominal measure length in ticks."""
        return self.beats * TICKS_PER_QUARTER * 4 // self.beat_type

    @property
    def quarter_beats(self) -> Fraction:
        """Nominal measure length in quarter-note beats."""
        return Fraction(self.measure_ticks, TICKS_PER_QUARTER)

    @classmethod
    def classify(cls, beats: int, beat_type: int) -> "TimeSignature":
        if beat_type == 8 and beats in (6, 9, 12):
            kind = "compound"
        elif beats in (5, 7):
            kind = "irregular"
        else:
            kind = "simple"
        return cls(beats=beats, beat_type=beat_type, type=kind)

    def __str__(self) -> str:
        return f"{self.beats}/{self.beat_type}"


@dataclass(frozen=True)
class KeySignature:
    """Key as circle-of-fifths position plus mode."""

    fifths: int = 0
    mode: str = "major"


@dataclass(frozen=True)
class ScoreMetadata:
    """Header information, carried unchanged through every stage."""

    title: str = DEFAULT_TITLE
    composer: str = DEFAULT_COMPOSER
    tempo: int = DEFAULT_TEMPO
    time_signature: TimeSignature = field(default_factory=TimeSignature)
    key_signature: KeySignature = field(default_factory=KeySignature)
    clefs: Tuple[str, ...] = ()
    text_annotations: Tuple[str, ...] = ()
    staves: int = 1


@dataclass(frozen=True)
class Measure:
    """One bar of music. Notes are kept in source (insertion) order."""

    number: int
    notes: Tuple[Note, ...] = ()
    rests: Tuple[Rest, ...] = ()

    def voice_keys(self) -> List[Tuple[int, int]]:
        """Distinct (staff, voice) pairs with notes, sorted."""
        return sorted({(n.staff, n.voice) for n in self.notes})

    def notes_for(self, staff: int, voice: Optional[int] = None) -> List[Note]:
        """Notes on a staff (and optionally one voice), in source order."""
        return [
            n for n in self.notes
            if n.staff == staff and (voice is None or n.voice == voice)
        ]


@dataclass(frozen=True)
class ParsedScore:
    """Output of the parser."""

    metadata: ScoreMetadata
    measures: Tuple[Measure, ...]
    container: ContainerFormat = ContainerFormat.XML

    @property
    def score_type(self) -> ScoreType:
        if self.metadata.staves >= 2:
            return ScoreType.GRAND_STAFF
        return ScoreType.SINGLE_STAFF

    def iter_notes(self) -> Iterator[Note]:
        for measure in self.measures:
            yield from measure.notes


@dataclass(frozen=True)
class VoiceAssignment:
    """How one note got its voice part."""

    note_id: str
    voice_part: VoicePart
    tier: str  # "rule", "embedding" or "fallback"
    confidence: float = 1.0


@dataclass(frozen=True)
class VoiceAnomaly:
    """A note far from its k-means cluster centroid."""

    note_id: str
    cluster: int
    distance: float
    threshold: float


@dataclass(frozen=True)
class SeparationReport:
    """Diagnostics from voice separation."""

    assignments: Tuple[VoiceAssignment, ...] = ()
    anomalies: Tuple[VoiceAnomaly, ...] = ()
    oracle_used: bool = False
    oracle_failures: int = 0

    def count_by_tier(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for assignment in self.assignments:
            counts[assignment.tier] = counts.get(assignment.tier, 0) + 1
        return counts


@dataclass(frozen=True)
class AnalyzedScore:
    """Parsed score plus lock flags, voice partition and beat grid."""

    metadata: ScoreMetadata
    measures: Tuple[Measure, ...]
    strong_beats: Tuple[Fraction, ...]
    is_anacrusis: bool = False
    score_type: ScoreType = ScoreType.SINGLE_STAFF
    voices: Dict[VoicePart, Tuple[Note, ...]] = field(default_factory=dict)
    separation: SeparationReport = field(default_factory=SeparationReport)
    rhythm_patterns: Tuple[Dict[str, int], ...] = ()
    container: ContainerFormat = ContainerFormat.XML

    @property
    def locked_notes(self) -> List[Note]:
        return [n for m in self.measures for n in m.notes if n.is_locked]

    def lock_summary(self) -> Dict[LockReason, int]:
        counts: Dict[LockReason, int] = {}
        for note in self.locked_notes:
            counts[note.lock_reason] = counts.get(note.lock_reason, 0) + 1
        return counts


@dataclass(frozen=True)
class SimplifiedScore:
    """Output of the rule engine, ready for export."""

    metadata: ScoreMetadata
    measures: Tuple[Measure, ...]
    level: int
    score_type: ScoreType = ScoreType.SINGLE_STAFF
    soprano_level: Optional[int] = None
    bass_level: Optional[int] = None
    is_anacrusis: bool = False
    container: ContainerFormat = ContainerFormat.XML
