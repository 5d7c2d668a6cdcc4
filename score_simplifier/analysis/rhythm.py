"""Rhythm pattern classification for reporting."""

from collections import Counter
from fractions import Fraction
from typing import Dict

from ..core import Measure, Note, TimeSignature
from .meter import is_strong_beat, strong_beats

RHYTHM_PATTERNS = {
    "syncopation": "Weak-beat start held into a strong beat",
    "dotted_quarter": "Dotted quarter",
    "dotted_eighth": "Dotted eighth",
    "double_dotted": "Double dotted value",
    "dotted": "Other dotted value",
    "triplet": "Tuplet member",
    "tied": "Tied across a beat or bar",
    "off_beat": "Starts on the back half of a beat",
    "beat_head": "Starts on a beat",
    "isorhythmic": "Even subdivision inside a beat",
}


def classify_rhythm(note: Note, time_signature: TimeSignature) -> str:
    """Name the rhythm pattern of a single note."""
    if not is_strong_beat(note.start_beat, time_signature) and any(
        note.start_beat < sb < note.end_beat for sb in strong_beats(time_signature)
    ):
        return "syncopation"

    duration = note.duration
    if duration.dots > 0:
        if duration.type == "quarter":
            return "dotted_quarter"
        if duration.type == "eighth":
            return "dotted_eighth"
        if duration.dots >= 2:
            return "double_dotted"
        return "dotted"

    if duration.tuplet is not None:
        return "triplet"
    if note.tied_to is not None:
        return "tied"

    phase = note.start_beat % 1
    if phase >= Fraction(1, 2):
        return "off_beat"
    if phase == 0:
        return "beat_head"
    return "isorhythmic"


def rhythm_patterns(measure: Measure, time_signature: TimeSignature) -> Dict[str, int]:
    """Count rhythm patterns over the measure's non-embellished notes."""
    counts = Counter(
        classify_rhythm(note, time_signature)
        for note in measure.notes
        if note.embellishment is None
    )
    return dict(counts)
