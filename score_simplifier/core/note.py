"""Note data classes - the fundamental units of a parsed score."""

from dataclasses import dataclass, field
from enum import Enum
from fractions import Fraction
from typing import Optional, Tuple

from .constants import (
    DURATION_TICKS,
    PITCH_NAMES,
    STEP_SEMITONES,
    TICKS_PER_QUARTER,
)

# Marker for a tie/slur start whose partner has not been found
PENDING = "pending"


class VoicePart(Enum):
    """SATB voice parts of a grand-staff score."""

    SOPRANO = "soprano"
    ALTO = "alto"
    TENOR = "tenor"
    BASS = "bass"

    @property
    def staff(self) -> int:
        """Staff the part is written on (1 = upper, 2 = lower)."""
        if self in (VoicePart.SOPRANO, VoicePart.ALTO):
            return 1
        return 2

    @property
    def voice(self) -> int:
        """Canonical voice number within its staff."""
        if self in (VoicePart.SOPRANO, VoicePart.TENOR):
            return 1
        return 2

    @property
    def is_primary(self) -> bool:
        """Outer voices (soprano, bass) are the primary lines."""
        return self in (VoicePart.SOPRANO, VoicePart.BASS)


class Embellishment(Enum):
    """Ornament-like markings removable by simplification."""

    GRACE_NOTE = "grace_note"
    TRILL = "trill"
    TURN = "turn"
    INVERTED_TURN = "inverted_turn"
    DELAYED_TURN = "delayed_turn"
    MORDENT_UPPER = "mordent_upper"
    MORDENT_LOWER = "mordent_lower"
    TREMOLO = "tremolo"
    SHAKE = "shake"
    WAVY_LINE = "wavy_line"
    SCHLEIFER = "schleifer"
    ARPEGGIO = "arpeggio"
    NON_ARPEGGIO = "non_arpeggio"
    GLISSANDO = "glissando"
    SLIDE = "slide"


class LockReason(Enum):
    """Why a note was locked against simplification."""

    SYNCOPATION = "syncopation"
    DOTTED_RHYTHM = "dotted_rhythm"
    CROSS_BEAT_TIE = "cross_beat_tie"
    OFF_BEAT_START = "off_beat_start"
    TRIPLET_HEAD = "triplet_head"
    MELODIC_TURNING_POINT = "melodic_turning_point"
    PHRASE_ENDING = "phrase_ending"


@dataclass(frozen=True)
class Pitch:
    """A spelled pitch. Enharmonic spellings are kept as written."""

    step: str
    octave: int
    alter: int = 0

    @property
    def midi(self) -> int:
        """MIDI note number (C4 = 60)."""
        return (self.octave + 1) * 12 + STEP_SEMITONES.get(self.step, 0) + self.alter

    @property
    def name(self) -> str:
        """Get note name (e.g., 'C4', 'A#3')."""
        return f"{PITCH_NAMES[self.midi % 12]}{self.midi // 12 - 1}"


@dataclass(frozen=True)
class Tuplet:
    """Tuplet ratio: `actual` notes in the time of `normal`."""

    actual: int
    normal: int


@dataclass(frozen=True)
class Duration:
    """A note value.

    `ticks` is authoritative. `type` and `dots` are display hints; for
    non-tuplet values they expand back to `ticks`.
    """

    ticks: int
    type: str = "quarter"
    dots: int = 0
    tuplet: Optional[Tuplet] = None

    @property
    def beats(self) -> Fraction:
        """Length in quarter-note beats."""
        return Fraction(self.ticks, TICKS_PER_QUARTER)

    @staticmethod
    def expand_dots(base: int, dots: int) -> int:
        """Ticks of a `base` value carrying `dots` augmentation dots."""
        total = base
        addition = base // 2
        for _ in range(dots):
            total += addition
            addition //= 2
        return total

    @classmethod
    def from_type(cls, type_name: str, dots: int = 0) -> "Duration":
        """Build a duration from its display type."""
        base = DURATION_TICKS.get(type_name, TICKS_PER_QUARTER)
        return cls(ticks=cls.expand_dots(base, dots), type=type_name, dots=dots)

    @classmethod
    def from_ticks(cls, ticks: int) -> "Duration":
        """Build a duration, choosing the largest type that fits.

        A single dot is added when it reproduces `ticks` exactly.
        """
        for type_name, base in DURATION_TICKS.items():
            if ticks >= base:
                if cls.expand_dots(base, 1) == ticks:
                    return cls(ticks=ticks, type=type_name, dots=1)
                return cls(ticks=ticks, type=type_name, dots=0)
        return cls(ticks=ticks, type="64th", dots=0)

    @property
    def is_notated(self) -> bool:
        """Whether type and dots reproduce the tick value."""
        if self.tuplet is not None:
            return True
        base = DURATION_TICKS.get(self.type)
        return base is not None and self.expand_dots(base, self.dots) == self.ticks


@dataclass(frozen=True)
class Rest:
    """A written rest."""

    id: str
    duration: Duration
    start_beat: Fraction
    voice: int = 1
    staff: int = 1

    @property
    def start_tick(self) -> int:
        """Offset from the start of the measure in ticks."""
        return int((self.start_beat - 1) * TICKS_PER_QUARTER)

    @property
    def end_beat(self) -> Fraction:
        return self.start_beat + self.duration.beats


@dataclass(frozen=True)
class Note:
    """Represents a pitched note within a measure."""

    id: str
    pitch: Pitch
    duration: Duration
    start_beat: Fraction  # 1-indexed, in quarter-note beats
    voice: int = 1
    staff: int = 1
    tied_to: Optional[str] = None
    slurred_with: Tuple[str, ...] = field(default_factory=tuple)
    is_locked: bool = False
    lock_reason: Optional[LockReason] = None
    embellishment: Optional[Embellishment] = None
    voice_part: Optional[VoicePart] = None
    is_chord: bool = False
    # Embellishment folded into this note by simplification (display only)
    ornament: Optional[Embellishment] = None

    @property
    def start_tick(self) -> int:
        """Offset from the start of the measure in ticks."""
        return int((self.start_beat - 1) * TICKS_PER_QUARTER)

    @property
    def end_beat(self) -> Fraction:
        return self.start_beat + self.duration.beats

    @property
    def midi(self) -> int:
        return self.pitch.midi

    @property
    def is_grace(self) -> bool:
        return self.embellishment is Embellishment.GRACE_NOTE
