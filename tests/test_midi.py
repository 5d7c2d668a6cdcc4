"""Tests for MIDI rendering of simplified scores."""

import pretty_midi
import pytest

from score_simplifier import analyze, parse, simplify
from score_simplifier.core import Embellishment, Measure, ScoreMetadata, SimplifiedScore
from score_simplifier.output import MIDIExporter
from fixtures.notes import make_note
from fixtures.scores import grand_staff, simple_melody


def _simplified(raw, level=5):
    return simplify(analyze(parse(raw)), level)


class TestMIDIExporter:
    def test_single_staff_timing(self):
        midi = MIDIExporter().score_to_pretty_midi(_simplified(simple_melody()))
        assert len(midi.instruments) == 1
        assert midi.instruments[0].name == "Acoustic Grand Piano"
        notes = midi.instruments[0].notes
        assert [n.pitch for n in notes] == [60, 62, 64, 65, 67, 64]
        # tempo 100: a quarter lasts 0.6 seconds
        assert notes[1].start == pytest.approx(0.6)
        assert notes[4].start == pytest.approx(2.4)
        assert notes[4].end == pytest.approx(3.6)

    def test_grand_staff_has_one_instrument_per_staff(self):
        midi = MIDIExporter().score_to_pretty_midi(_simplified(grand_staff(), level=1))
        assert [i.name for i in midi.instruments] == ["Right Hand", "Left Hand"]

    def test_grace_notes_are_skipped(self):
        measure = Measure(
            number=1,
            notes=(
                make_note("D4", 1, 0, embellishment=Embellishment.GRACE_NOTE),
                make_note("C4", 1, 4096),
            ),
        )
        score = SimplifiedScore(metadata=ScoreMetadata(), measures=(measure,), level=5)
        midi = MIDIExporter(velocity=64).score_to_pretty_midi(score)
        notes = midi.instruments[0].notes
        assert len(notes) == 1
        assert notes[0].velocity == 64
        assert notes[0].end == pytest.approx(2.0)

    def test_export_writes_readable_file(self, tmp_path):
        path = tmp_path / "out" / "melody.mid"
        MIDIExporter(instrument_program=40).export(_simplified(simple_melody(), level=1), path)
        loaded = pretty_midi.PrettyMIDI(str(path))
        assert loaded.instruments[0].program == 40
        assert len(loaded.instruments[0].notes) == 2
