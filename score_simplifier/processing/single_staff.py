"""Single-staff simplification levels.

Each level is a pure function over the notes of one voice in one
measure. Levels 1-4 also drop embellishments; level 5 drops them and
records each on its nearest surviving note.

    1 - one note stretched over the whole measure
    2 - one note per strong beat, stretched to the next strong beat
    3 - one quarter note per beat
    4 - short non-locked notes snapped to an eighth grid
    5 - embellishments removed only
"""

import math
from dataclasses import replace
from fractions import Fraction
from typing import Dict, List, Optional, Sequence, Set, Tuple

from ..core import Duration, Embellishment, Note, Rest, TimeSignature
from ..core.constants import EIGHTH_TICKS, TICKS_PER_QUARTER
from ..analysis.meter import strong_beats

MIN_LEVEL = 1
MAX_LEVEL = 5

EXACT_TOLERANCE = Fraction(1, 10)
NEAREST_LIMIT_L2 = 2
NEAREST_LIMIT_L3 = 1


def main_notes(notes: Sequence[Note]) -> List[Note]:
    """Non-embellished notes sorted by position (insertion order on ties)."""
    return sorted((n for n in notes if n.embellishment is None), key=lambda n: n.start_beat)


def tick_to_beat(tick: int) -> Fraction:
    return 1 + Fraction(tick, TICKS_PER_QUARTER)


def find_note_at_beat(
    notes: Sequence[Note],
    beat: Fraction,
    used: Optional[Set[str]] = None,
    tolerance: Fraction = EXACT_TOLERANCE,
    nearest_limit: Optional[Fraction] = NEAREST_LIMIT_L2,
) -> Optional[Note]:
    """
    Pick the note that best represents `beat`.

    Tries, in order: a note starting within `tolerance` of the beat, a
    note sounding through the beat, then the nearest note closer than
    `nearest_limit` beats. Notes whose ids are in `used` are skipped.
    """
    available = [n for n in notes if not used or n.id not in used]

    for note in available:
        if abs(note.start_beat - beat) < tolerance:
            return note
    for note in available:
        if note.start_beat <= beat < note.end_beat:
            return note

    best = None
    best_distance = None
    for note in available:
        distance = abs(note.start_beat - beat)
        if nearest_limit is not None and distance >= nearest_limit:
            continue
        if best_distance is None or distance < best_distance:
            best, best_distance = note, distance
    return best


def stretched(note: Note, start_beat: Fraction, ticks: int) -> Note:
    """Copy of `note` moved to `start_beat` with a plain duration."""
    return replace(note, start_beat=start_beat, duration=Duration.from_ticks(ticks))


# ----------------------------------------------------------------------
# Levels
# ----------------------------------------------------------------------


def apply_level1(notes: Sequence[Note], time_signature: TimeSignature) -> List[Note]:
    candidates = main_notes(notes)
    if not candidates:
        return []
    return [stretched(candidates[0], Fraction(1), time_signature.measure_ticks)]


def apply_level2(
    notes: Sequence[Note],
    time_signature: TimeSignature,
    is_anacrusis: bool = False,
    tolerance: Fraction = EXACT_TOLERANCE,
) -> List[Note]:
    """
    Keep one note per strong beat.

    `Simplifier` passes a pickup measure through whole, so it never sets
    `is_anacrusis`. The flag is for direct callers that want a pickup
    measure reduced at this level.

    Args:
        notes: Notes of one voice in one measure
        time_signature: Meter of the score
        is_anacrusis: Keep the first kept note at its own position
        tolerance: Exact-match window around each strong beat

    Returns:
        Notes repositioned to strong beats, each lasting until the next
        strong beat or the end of the measure
    """
    candidates = main_notes(notes)
    beats = strong_beats(time_signature)
    measure_end = 1 + time_signature.quarter_beats
    used: Set[str] = set()
    result = []

    for idx, beat in enumerate(beats):
        note = find_note_at_beat(candidates, beat, used, tolerance, NEAREST_LIMIT_L2)
        if note is None:
            continue
        used.add(note.id)

        next_beat = beats[idx + 1] if idx + 1 < len(beats) else measure_end
        start = beat
        if is_anacrusis and not result and note.start_beat < next_beat:
            start = note.start_beat
        ticks = int((next_beat - start) * TICKS_PER_QUARTER)
        result.append(stretched(note, start, ticks))
    return result


def apply_level3(notes: Sequence[Note], time_signature: TimeSignature) -> List[Note]:
    """
    Keep one note per integer beat, forced to a quarter note.

    A held note is repeated on every beat it sounds through. Repeats get
    their own ids, and only the last copy keeps the note's outgoing tie.
    Beats that fall in a rest stay empty unless a note starts within one
    beat.
    """
    candidates = main_notes(notes)
    measure_end = 1 + time_signature.quarter_beats
    picks: List[Tuple[Fraction, Note]] = []

    beat = Fraction(1)
    while beat < measure_end:
        note = find_note_at_beat(candidates, beat, None, EXACT_TOLERANCE, NEAREST_LIMIT_L3)
        if note is not None:
            picks.append((beat, note))
        beat += 1

    last_pick = {note.id: idx for idx, (_, note) in enumerate(picks)}
    seen: Set[str] = set()
    result = []
    for idx, (beat, note) in enumerate(picks):
        ticks = min(TICKS_PER_QUARTER, int((measure_end - beat) * TICKS_PER_QUARTER))
        copy = stretched(note, beat, ticks)
        if note.id in seen:
            copy = replace(copy, id=f"{note.id}-b{beat}")
        if last_pick[note.id] != idx:
            copy = replace(copy, tied_to=None)
        seen.add(note.id)
        result.append(copy)
    return result


def apply_level4(notes: Sequence[Note], time_signature: TimeSignature) -> List[Note]:
    """
    Keep locked and long notes, snap short ones to an eighth grid.

    Tuplet members snap down to their own subdivision instead. At most
    one snapped note survives per slot, and a slot already covered by a
    kept note is dropped.
    """
    candidates = main_notes(notes)
    measure_ticks = time_signature.measure_ticks

    kept = [n for n in candidates if n.is_locked or n.duration.ticks >= EIGHTH_TICKS]
    kept_spans = [(n.start_tick, n.start_tick + n.duration.ticks) for n in kept]

    slots: Dict[Tuple[str, int], Note] = {}
    for note in candidates:
        if note.is_locked or note.duration.ticks >= EIGHTH_TICKS:
            continue
        tuplet = note.duration.tuplet
        if tuplet is not None:
            unit = Fraction(EIGHTH_TICKS * tuplet.normal, tuplet.actual)
            slot = round(math.floor(note.start_tick / unit) * unit)
            ticks = round(EIGHTH_TICKS * tuplet.normal / tuplet.actual)
            key = ("tuplet", slot)
        else:
            slot = round(note.start_tick / EIGHTH_TICKS) * EIGHTH_TICKS
            slot = max(0, min(slot, measure_ticks - EIGHTH_TICKS))
            ticks = EIGHTH_TICKS
            key = ("eighth", slot)

        if key in slots:
            continue
        if any(start <= slot < end for start, end in kept_spans):
            continue

        duration = Duration.from_ticks(ticks)
        if tuplet is not None:
            duration = Duration(ticks=ticks, type="eighth", tuplet=tuplet)
        slots[key] = replace(note, start_beat=tick_to_beat(slot), duration=duration)

    result = kept + list(slots.values())
    return sorted(result, key=lambda n: n.start_beat)


def lengthen_rests(rests: Sequence[Rest]) -> List[Rest]:
    """Rests shorter than an eighth become eighth rests."""
    return [
        replace(r, duration=Duration.from_type("eighth")) if r.duration.ticks < EIGHTH_TICKS else r
        for r in rests
    ]


def strip_embellishments(notes: Sequence[Note]) -> List[Note]:
    """
    Remove embellished notes, recording each on its nearest main note.

    The annotation only fills `ornament` when it is empty, so running
    this twice gives the same notes as running it once.
    """
    mains = [n for n in notes if n.embellishment is None]
    if not mains:
        return []

    ornaments: Dict[str, Embellishment] = {}
    for emb in notes:
        if emb.embellishment is None:
            continue
        nearest = min(mains, key=lambda n: abs(n.start_beat - emb.start_beat))
        ornaments.setdefault(nearest.id, emb.embellishment)

    return [
        replace(n, ornament=ornaments[n.id]) if n.id in ornaments and n.ornament is None else n
        for n in mains
    ]


def apply_level5(notes: Sequence[Note], time_signature: TimeSignature) -> List[Note]:
    return strip_embellishments(notes)


LEVELS = {
    1: apply_level1,
    2: apply_level2,
    3: apply_level3,
    4: apply_level4,
    5: apply_level5,
}


def apply_level(
    notes: Sequence[Note],
    level: int,
    time_signature: TimeSignature,
) -> List[Note]:
    """Dispatch to one of the five single-staff levels."""
    if level not in LEVELS:
        raise ValueError(f"Simplification level must be {MIN_LEVEL}-{MAX_LEVEL}, got {level}")
    return LEVELS[level](notes, time_signature)


def simplify_rests(rests: Sequence[Rest], level: int) -> List[Rest]:
    """Rests carried into the simplified measure for a level."""
    if level <= 3:
        return []
    if level == 4:
        return lengthen_rests(rests)
    return list(rests)
