"""SATB voice separation for grand-staff scores.

Three tiers:
    1. Rule tier       - simultaneous notes split by pitch order
    2. Embedding tier  - optional oracle resolves single-note beats
    3. Validation tier - k-means anomaly report (diagnostic only)

A deterministic fallback handles every note the embedding tier does not
place, so separation never depends on the oracle being reachable.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from fractions import Fraction
from typing import Dict, List, Optional, Sequence, Tuple

from ..core import (
    Measure,
    Note,
    OracleUnavailable,
    SeparationReport,
    TimeSignature,
    VoiceAssignment,
    VoicePart,
)
from ..core.constants import BASS_CUTOFF, ORACLE_TIMEOUT, SOPRANO_CUTOFF
from .embedding import (
    CONTEXT_RADIUS,
    EmbeddingCache,
    EmbeddingOracle,
    EmbeddingTier,
    PendingNote,
)
from .validation import KMeansValidator

logger = logging.getLogger(__name__)

# Staff -> (primary, secondary)
STAFF_PARTS: Dict[int, Tuple[VoicePart, VoicePart]] = {
    1: (VoicePart.SOPRANO, VoicePart.ALTO),
    2: (VoicePart.BASS, VoicePart.TENOR),
}

GRID = 4  # groups on a quarter-of-a-beat grid


@dataclass(frozen=True)
class SeparationResult:
    """Measures with voice parts set, plus the per-part view and report."""

    measures: Tuple[Measure, ...]
    voices: Dict[VoicePart, Tuple[Note, ...]]
    report: SeparationReport


def grid_position(beat: Fraction) -> Fraction:
    return Fraction(round(beat * GRID), GRID)


class VoiceSeparator:
    """Partition a two-staff score into soprano/alto/tenor/bass."""

    def __init__(
        self,
        oracle: Optional[EmbeddingOracle] = None,
        cache: Optional[EmbeddingCache] = None,
        timeout: float = ORACLE_TIMEOUT,
        soprano_cutoff: int = SOPRANO_CUTOFF,
        bass_cutoff: int = BASS_CUTOFF,
        validator: Optional[KMeansValidator] = None,
    ):
        """
        Initialize VoiceSeparator.

        Args:
            oracle: Optional embedding service for ambiguous notes
            cache: Embedding cache handed to the embedding tier
            timeout: Oracle deadline in seconds
            soprano_cutoff: Upper-staff MIDI pitch at or above which a
                fallback note is soprano
            bass_cutoff: Lower-staff MIDI pitch below which a fallback
                note is bass
            validator: K-means validator (default: KMeansValidator())
        """
        self.tier = EmbeddingTier(oracle, cache, timeout) if oracle is not None else None
        self.soprano_cutoff = soprano_cutoff
        self.bass_cutoff = bass_cutoff
        self.validator = validator or KMeansValidator()

    def separate(self, measures: Sequence[Measure], time_signature: TimeSignature) -> SeparationResult:
        """Synchronous wrapper around separate_async."""
        return asyncio.run(self.separate_async(measures, time_signature))

    async def separate_async(
        self, measures: Sequence[Measure], time_signature: TimeSignature
    ) -> SeparationResult:
        """
        Assign a voice part to every non-embellished note.

        Args:
            measures: Measures of a grand-staff score
            time_signature: Meter of the score

        Returns:
            SeparationResult; embellished notes keep voice_part None
        """
        measure_index = {n.id: i for i, m in enumerate(measures) for n in m.notes}
        assignments: Dict[str, VoiceAssignment] = {}
        pending: List[Tuple[Note, bool]] = []  # (note, staff has a multi-note group)

        # Tier 1: rules
        for measure in measures:
            for staff, (primary, secondary) in STAFF_PARTS.items():
                groups = self._group(measure.notes_for(staff))
                has_chords = any(len(g) >= 2 for g in groups.values())
                for group in groups.values():
                    if len(group) == 1:
                        pending.append((group[0], has_chords))
                        continue
                    # highest first on the upper staff, lowest first on the lower
                    ordered = sorted(group, key=lambda n: n.midi, reverse=(staff == 1))
                    assignments[ordered[0].id] = VoiceAssignment(ordered[0].id, primary, "rule")
                    for note in ordered[1:]:
                        assignments[note.id] = VoiceAssignment(note.id, secondary, "rule")

        # Tier 2: oracle
        oracle_used = False
        oracle_failures = 0
        if pending and self.tier is not None:
            items = [
                self._pending_item(note, measures, measure_index, assignments)
                for note, _ in pending
            ]
            try:
                decisions = await self.tier.assign(items)
                oracle_used = True
                for decision in decisions:
                    if decision.voice_part is not None:
                        assignments[decision.note_id] = VoiceAssignment(
                            decision.note_id, decision.voice_part, "embedding", decision.confidence
                        )
            except OracleUnavailable as e:
                oracle_failures += 1
                logger.warning("Embedding tier unavailable, using pitch fallback: %s", e)

        # Fallback for anything still undecided
        for note, has_chords in pending:
            if note.id not in assignments:
                part = self.fallback_part(note, has_chords)
                assignments[note.id] = VoiceAssignment(note.id, part, "fallback", 0.5)

        new_measures = tuple(
            replace(
                m,
                notes=tuple(
                    replace(n, voice_part=assignments[n.id].voice_part) if n.id in assignments else n
                    for n in m.notes
                ),
            )
            for m in measures
        )
        voices: Dict[VoicePart, Tuple[Note, ...]] = {
            part: tuple(n for m in new_measures for n in m.notes if n.voice_part is part)
            for part in VoicePart
        }

        # Tier 3: validation
        anomalies = self.validator.find_anomalies(
            voices, measure_index, time_signature.quarter_beats
        )
        if anomalies:
            logger.info("Voice validation flagged %d anomalous notes", len(anomalies))

        report = SeparationReport(
            assignments=tuple(assignments[n.id] for m in measures for n in m.notes if n.id in assignments),
            anomalies=tuple(anomalies),
            oracle_used=oracle_used,
            oracle_failures=oracle_failures,
        )
        logger.debug("Voice separation tiers: %s", report.count_by_tier())
        return SeparationResult(measures=new_measures, voices=voices, report=report)

    def fallback_part(self, note: Note, staff_has_chords: bool) -> VoicePart:
        """Deterministic part for a note the oracle did not place.

        A staff with no simultaneous notes in the measure is a single line
        and belongs to its primary voice; otherwise pitch cutoffs decide.
        """
        primary, secondary = STAFF_PARTS.get(note.staff, STAFF_PARTS[2])
        if not staff_has_chords:
            return primary
        if note.staff == 1:
            return primary if note.midi >= self.soprano_cutoff else secondary
        return primary if note.midi < self.bass_cutoff else secondary

    @staticmethod
    def _group(notes: Sequence[Note]) -> Dict[Fraction, List[Note]]:
        groups: Dict[Fraction, List[Note]] = {}
        for note in notes:
            if note.embellishment is not None:
                continue
            groups.setdefault(grid_position(note.start_beat), []).append(note)
        return groups

    @staticmethod
    def _pending_item(
        note: Note,
        measures: Sequence[Measure],
        measure_index: Dict[str, int],
        assignments: Dict[str, VoiceAssignment],
    ) -> PendingNote:
        def order(n: Note) -> Tuple[int, Fraction]:
            return measure_index[n.id], n.start_beat

        staff_notes = sorted(
            (n for m in measures for n in m.notes if n.staff == note.staff and n.embellishment is None),
            key=order,
        )
        idx = next(i for i, n in enumerate(staff_notes) if n.id == note.id)
        context = tuple(staff_notes[max(0, idx - CONTEXT_RADIUS): idx + CONTEXT_RADIUS + 1])

        candidates = STAFF_PARTS.get(note.staff, STAFF_PARTS[2])
        history = {
            part: tuple(
                n for n in staff_notes[:idx]
                if n.id in assignments and assignments[n.id].voice_part is part
            )
            for part in candidates
        }
        return PendingNote(note=note, candidates=candidates, context=context, history=history)
