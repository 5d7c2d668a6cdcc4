"""MIDI export functionality."""

from pathlib import Path
from typing import Dict, Union

import pretty_midi

from ..core import Note, ScoreType, SimplifiedScore

STAFF_NAMES = {1: "Right Hand", 2: "Left Hand"}


class MIDIExporter:
    """Export a simplified score to MIDI format."""

    def __init__(
        self,
        velocity: int = 80,
        instrument_program: int = 0,
    ):
        """
        Initialize MIDIExporter.

        Args:
            velocity: Velocity for every note (notation carries no dynamics here)
            instrument_program: MIDI program number (0-127)
        """
        self.velocity = velocity
        self.instrument_program = instrument_program

    def export(self, score: SimplifiedScore, output_path: Union[str, Path]) -> None:
        """
        Export a score to a MIDI file.

        Args:
            score: Rule engine output
            output_path: Path to output MIDI file
        """
        midi = self.score_to_pretty_midi(score)

        # Ensure output directory exists
        Path(output_path).parent.mkdir(parents=True, exist_ok=True)

        midi.write(str(output_path))

    def score_to_pretty_midi(self, score: SimplifiedScore) -> pretty_midi.PrettyMIDI:
        """Convert a score to a PrettyMIDI object without saving.

        Grand-staff scores get one instrument per staff. Grace notes have
        no length and are skipped.
        """
        tempo = float(score.metadata.tempo)
        seconds_per_quarter = 60.0 / tempo
        measure_quarters = score.metadata.time_signature.quarter_beats

        midi = pretty_midi.PrettyMIDI(initial_tempo=tempo)
        instruments: Dict[int, pretty_midi.Instrument] = {}

        for index, measure in enumerate(score.measures):
            measure_start = index * measure_quarters
            for note in measure.notes:
                if note.duration.ticks <= 0:
                    continue
                instrument = instruments.get(note.staff)
                if instrument is None:
                    instrument = pretty_midi.Instrument(
                        program=self.instrument_program,
                        name=self._instrument_name(score, note),
                    )
                    instruments[note.staff] = instrument
                start = float(measure_start + note.start_beat - 1) * seconds_per_quarter
                end = float(measure_start + note.end_beat - 1) * seconds_per_quarter
                instrument.notes.append(
                    pretty_midi.Note(velocity=self.velocity, pitch=note.midi, start=start, end=end)
                )

        for staff in sorted(instruments):
            midi.instruments.append(instruments[staff])
        return midi

    @staticmethod
    def _instrument_name(score: SimplifiedScore, note: Note) -> str:
        if score.score_type is ScoreType.GRAND_STAFF:
            return STAFF_NAMES.get(note.staff, f"Staff {note.staff}")
        return "Acoustic Grand Piano"
