"""Grand-staff simplification - per-voice recipes over SATB parts.

Each main level picks a sub-level for the outer voices (soprano, bass)
and a density for the inner ones (alto, tenor):

    L1  soprano + bass
    L2  soprano + alto (strong beats) + bass
    L3  soprano + tenor (strong beats) + bass
    L4  all four, alto and tenor on strong beats
    L5  all four, alto and tenor at level 5
"""

from dataclasses import dataclass, replace
from fractions import Fraction
from typing import Dict, List, Optional, Sequence, Tuple, Union

from ..core import Measure, Note, TimeSignature, VoicePart
from .single_staff import apply_level, apply_level2, strip_embellishments

STRONG_BEAT_TOLERANCE = Fraction(1, 4)

# main level -> (default, min, max)
SOPRANO_LEVELS: Dict[int, Tuple[int, int, int]] = {
    1: (4, 1, 5),
    2: (4, 2, 5),
    3: (5, 2, 5),
    4: (4, 2, 5),
    5: (5, 4, 5),
}
BASS_LEVELS: Dict[int, Tuple[int, int, int]] = {
    1: (1, 1, 5),
    2: (2, 2, 5),
    3: (2, 2, 5),
    4: (2, 2, 5),
    5: (5, 4, 5),
}

STRONG = "strong"  # inner-voice mode: strong beats only

# A sub-level (1-5) or STRONG
VoiceMode = Union[int, str]

# main level -> (alto mode, tenor mode); None drops the voice
INNER_VOICES: Dict[int, Tuple[Optional[VoiceMode], Optional[VoiceMode]]] = {
    1: (None, None),
    2: (STRONG, None),
    3: (None, STRONG),
    4: (STRONG, STRONG),
    5: (5, 5),
}


def resolve_sub_level(table: Dict[int, Tuple[int, int, int]], level: int, requested: Optional[int]) -> int:
    """Default or clamp a soprano/bass sub-level for a main level."""
    default, low, high = table[level]
    if requested is None:
        return default
    return max(low, min(high, requested))


@dataclass(frozen=True)
class GrandStaffRecipe:
    """Per-voice plan for one main level."""

    soprano: int
    bass: int
    alto: Optional[VoiceMode]
    tenor: Optional[VoiceMode]

    @classmethod
    def for_level(
        cls,
        level: int,
        soprano_level: Optional[int] = None,
        bass_level: Optional[int] = None,
    ) -> "GrandStaffRecipe":
        alto, tenor = INNER_VOICES[level]
        return cls(
            soprano=resolve_sub_level(SOPRANO_LEVELS, level, soprano_level),
            bass=resolve_sub_level(BASS_LEVELS, level, bass_level),
            alto=alto,
            tenor=tenor,
        )

    def mode(self, part: VoicePart) -> Optional[VoiceMode]:
        if part is VoicePart.SOPRANO:
            return self.soprano
        if part is VoicePart.ALTO:
            return self.alto
        if part is VoicePart.TENOR:
            return self.tenor
        if part is VoicePart.BASS:
            return self.bass
        raise ValueError(f"Unknown voice part: {part}")


def retag(notes: Sequence[Note], part: VoicePart) -> List[Note]:
    """Move notes onto the canonical (staff, voice) of `part`."""
    return [replace(n, staff=part.staff, voice=part.voice, voice_part=part) for n in notes]


def split_by_part(measure: Measure) -> Dict[VoicePart, List[Note]]:
    """
    Group a measure's notes by voice part.

    Embellished notes carry no part of their own; each joins the part of
    the nearest main note on its staff so it can be stripped (and
    recorded) with that voice.
    """
    parts: Dict[VoicePart, List[Note]] = {part: [] for part in VoicePart}
    for note in measure.notes:
        if note.embellishment is None and note.voice_part is not None:
            parts[note.voice_part].append(note)

    for note in measure.notes:
        if note.embellishment is None:
            continue
        same_staff = [
            n for n in measure.notes
            if n.embellishment is None and n.voice_part is not None and n.staff == note.staff
        ]
        if not same_staff:
            continue
        nearest = min(same_staff, key=lambda n: abs(n.start_beat - note.start_beat))
        parts[nearest.voice_part].append(note)

    for part in parts:
        parts[part].sort(key=lambda n: n.start_beat)
    return parts


def simplify_part(
    notes: Sequence[Note],
    mode: Optional[VoiceMode],
    time_signature: TimeSignature,
) -> List[Note]:
    if mode is None:
        return []
    if mode == STRONG:
        return apply_level2(notes, time_signature, tolerance=STRONG_BEAT_TOLERANCE)
    return apply_level(notes, int(mode), time_signature)


def simplify_grand_staff_measure(
    measure: Measure,
    recipe: GrandStaffRecipe,
    time_signature: TimeSignature,
) -> Measure:
    """Apply a recipe to every voice part of one measure."""
    parts = split_by_part(measure)
    notes: List[Note] = []
    for part in VoicePart:
        notes.extend(retag(simplify_part(parts[part], recipe.mode(part), time_signature), part))
    return replace(measure, notes=tuple(notes), rests=())


def preserve_grand_staff_measure(measure: Measure) -> Measure:
    """Pickup measure: positions kept, embellishments removed, voices re-tagged."""
    parts = split_by_part(measure)
    notes: List[Note] = []
    for part in VoicePart:
        notes.extend(retag(strip_embellishments(parts[part]), part))
    return replace(measure, notes=tuple(notes))
