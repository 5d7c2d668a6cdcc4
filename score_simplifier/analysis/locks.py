"""Lock detection - mark structurally essential notes.

A locked note must survive simplification unchanged (only its
embellishment may be stripped). Rules are tried in priority order and
the first match wins; embellished notes are never locked.
"""

from dataclasses import replace
from fractions import Fraction
from typing import Callable, List, Optional, Sequence

from ..core import LockReason, Measure, Note, TimeSignature
from ..core.constants import DURATION_TICKS, EIGHTH_TICKS, TICKS_PER_QUARTER
from .meter import is_strong_beat, strong_beats


class LockDetector:
    """Flag locked notes measure by measure.

    Thresholds default to an eighth for dotted rhythms, half a beat for
    off-beat starts and one beat for phrase endings.
    """

    def __init__(
        self,
        time_signature: TimeSignature,
        dotted_min_ticks: int = EIGHTH_TICKS,
        off_beat_min_beats: Fraction = Fraction(1, 2),
        phrase_end_min_ticks: int = TICKS_PER_QUARTER,
    ):
        self.time_signature = time_signature
        self.strong_beats = strong_beats(time_signature)
        self.dotted_min_ticks = dotted_min_ticks
        self.off_beat_min_beats = off_beat_min_beats
        self.phrase_end_min_ticks = phrase_end_min_ticks

        self._rules: List[Callable[[Note, Measure, int], Optional[LockReason]]] = [
            self._syncopation,
            self._dotted_rhythm,
            self._tie,
            self._off_beat_start,
            self._triplet_head,
            self._turning_point,
            self._phrase_ending,
        ]

    def detect(self, measure: Measure) -> Measure:
        """Return a copy of `measure` with lock flags set."""
        notes = []
        for index, note in enumerate(measure.notes):
            reason = self.lock_reason(note, measure, index)
            notes.append(replace(note, is_locked=reason is not None, lock_reason=reason))
        return replace(measure, notes=tuple(notes))

    def lock_reason(self, note: Note, measure: Measure, index: int) -> Optional[LockReason]:
        """First matching lock rule for the note at `index`, or None."""
        if note.embellishment is not None:
            return None
        for rule in self._rules:
            reason = rule(note, measure, index)
            if reason is not None:
                return reason
        return None

    # -- rules ---------------------------------------------------------

    def _syncopation(self, note: Note, measure: Measure, index: int) -> Optional[LockReason]:
        if is_strong_beat(note.start_beat, self.time_signature):
            return None
        if any(note.start_beat < sb < note.end_beat for sb in self.strong_beats):
            return LockReason.SYNCOPATION
        return None

    def _dotted_rhythm(self, note: Note, measure: Measure, index: int) -> Optional[LockReason]:
        if note.duration.dots > 0 and note.duration.ticks >= self.dotted_min_ticks:
            return LockReason.DOTTED_RHYTHM
        return None

    def _tie(self, note: Note, measure: Measure, index: int) -> Optional[LockReason]:
        if note.tied_to is not None:
            return LockReason.CROSS_BEAT_TIE
        return None

    def _off_beat_start(self, note: Note, measure: Measure, index: int) -> Optional[LockReason]:
        phase = note.start_beat % 1
        if phase >= Fraction(1, 2) and note.duration.beats >= self.off_beat_min_beats:
            return LockReason.OFF_BEAT_START
        return None

    def _triplet_head(self, note: Note, measure: Measure, index: int) -> Optional[LockReason]:
        tuplet = note.duration.tuplet
        if tuplet is None:
            return None
        base = DURATION_TICKS.get(note.duration.type)
        if base is not None:
            group = Fraction(base * tuplet.normal, TICKS_PER_QUARTER)
        else:
            group = Fraction(tuplet.normal, tuplet.actual)
        # Group starts may be rounded to the tick grid
        offset = (note.start_beat - 1) % group
        tolerance = Fraction(1, TICKS_PER_QUARTER)
        if offset <= tolerance or group - offset <= tolerance:
            return LockReason.TRIPLET_HEAD
        return None

    def _turning_point(self, note: Note, measure: Measure, index: int) -> Optional[LockReason]:
        same_staff = [n for n in measure.notes if n.staff == note.staff]
        position = next(i for i, n in enumerate(same_staff) if n.id == note.id)
        if is_turning_point(same_staff, position):
            return LockReason.MELODIC_TURNING_POINT
        return None

    def _phrase_ending(self, note: Note, measure: Measure, index: int) -> Optional[LockReason]:
        if index == len(measure.notes) - 1 and note.duration.ticks >= self.phrase_end_min_ticks:
            return LockReason.PHRASE_ENDING
        return None


def is_turning_point(notes: Sequence[Note], index: int) -> bool:
    """Local pitch maximum or minimum among three plain neighbours."""
    if index <= 0 or index >= len(notes) - 1:
        return False
    prev, cur, nxt = notes[index - 1], notes[index], notes[index + 1]
    if prev.embellishment or cur.embellishment or nxt.embellishment:
        return False
    return (cur.midi > prev.midi and cur.midi > nxt.midi) or (
        cur.midi < prev.midi and cur.midi < nxt.midi
    )
