"""Meter helpers: strong-beat grid and pickup-measure detection.

All positions are 1-indexed quarter-note beats within a measure, so in
6/8 the strong beats 1 and 4 (eighth-note units) sit at 1 and 2.5.
"""

from fractions import Fraction
from typing import Dict, Tuple

from ..core import Measure, TimeSignature
from ..core.constants import ANACRUSIS_THRESHOLD, STRONG_BEATS, TICKS_PER_QUARTER


def beat_unit(time_signature: TimeSignature) -> Fraction:
    """Length of the meter's own beat unit in quarter notes."""
    return Fraction(4, time_signature.beat_type)


def strong_beats(time_signature: TimeSignature) -> Tuple[Fraction, ...]:
    """
    Strong-beat positions for a time signature.

    Args:
        time_signature: Meter of the score

    Returns:
        Tuple of quarter-note beat positions, first is always 1
    """
    table = STRONG_BEATS.get((time_signature.beats, time_signature.beat_type), (1,))
    unit = beat_unit(time_signature)
    return tuple(1 + (b - 1) * unit for b in table)


def is_strong_beat(beat: Fraction, time_signature: TimeSignature) -> bool:
    """Whether `beat` falls inside a strong beat's unit (e.g. 1 to 1.99 in 4/4)."""
    unit = beat_unit(time_signature)
    return any(sb <= beat < sb + unit for sb in strong_beats(time_signature))


def filled_beats(measure: Measure) -> Dict[Tuple[int, int], Fraction]:
    """Per (staff, voice), quarter beats from the measure start to the latest note end."""
    filled: Dict[Tuple[int, int], Fraction] = {}
    for note in measure.notes:
        key = (note.staff, note.voice)
        filled[key] = max(filled.get(key, Fraction(0)), note.end_beat - 1)
    return filled


def detect_anacrusis(
    measure: Measure,
    time_signature: TimeSignature,
    threshold: float = ANACRUSIS_THRESHOLD,
) -> bool:
    """
    Detect a pickup measure.

    The fullest (staff, voice) is compared against the nominal length;
    voices sound together so the maximum decides.

    Args:
        measure: First measure of the score
        time_signature: Meter of the score
        threshold: Fraction of the nominal length below which the
            measure counts as a pickup (default: 0.9)

    Returns:
        True if the measure is an anacrusis. An empty measure is not.
    """
    filled = filled_beats(measure)
    if not filled:
        return False
    nominal = Fraction(time_signature.measure_ticks, TICKS_PER_QUARTER)
    return max(filled.values()) < nominal * Fraction(threshold).limit_denominator(1000)
