"""Tests for MusicXML and .mxl export."""

import io
import xml.etree.ElementTree as ET
import zipfile

import pytest

from score_simplifier.core import (
    ContainerFormat,
    Embellishment,
    KeySignature,
    Measure,
    ScoreMetadata,
    ScoreType,
    SimplifiedScore,
    TimeSignature,
    Tuplet,
    VoicePart,
)
from score_simplifier.input import parse
from score_simplifier.output import MusicXMLExporter, check_closure, export
from score_simplifier.output.musicxml import note_pieces, rest_pieces, rest_type
from score_simplifier.pipeline import simplify_bytes
from fixtures.notes import make_note
from fixtures.scores import grand_staff, simple_melody, tied_offbeat


def _score(*measures, grand=False, container=ContainerFormat.XML, time_signature=None):
    metadata = ScoreMetadata(
        title="Export Test",
        composer="Tester",
        tempo=90,
        time_signature=time_signature or TimeSignature(4, 4),
        key_signature=KeySignature(fifths=-1, mode="major"),
        clefs=("G2", "F4") if grand else ("G2",),
        staves=2 if grand else 1,
    )
    return SimplifiedScore(
        metadata=metadata,
        measures=tuple(measures),
        level=5,
        score_type=ScoreType.GRAND_STAFF if grand else ScoreType.SINGLE_STAFF,
        container=container,
    )


def _measure(number, *notes):
    return Measure(number=number, notes=tuple(notes))


def _root(document):
    return ET.fromstring(document)


def _events(measure_el):
    """(kind, duration, type) for every <note> in a measure."""
    events = []
    for note_el in measure_el.findall("note"):
        if note_el.find("rest") is not None:
            kind = "rest"
        elif note_el.find("grace") is not None:
            kind = "grace"
        elif note_el.find("chord") is not None:
            kind = "chord"
        else:
            kind = "note"
        duration = note_el.findtext("duration")
        events.append((kind, int(duration) if duration else 0, note_el.findtext("type")))
    return events


def _voice_totals(measure_el):
    """Sum of sounding durations per (staff, voice)."""
    totals = {}
    for note_el in measure_el.findall("note"):
        if note_el.find("chord") is not None or note_el.find("grace") is not None:
            continue
        key = (note_el.findtext("staff", "1"), note_el.findtext("voice"))
        totals[key] = totals.get(key, 0) + int(note_el.findtext("duration"))
    return totals


class TestDurationHelpers:
    def test_rest_pieces_greedy(self):
        assert rest_pieces(4096) == [4096]
        assert rest_pieces(3072) == [2048, 1024]
        assert rest_pieces(3000) == [2048, 512, 256, 128, 56]

    def test_rest_type(self):
        assert rest_type(2048) == "half"
        assert rest_type(700) == "eighth"
        assert rest_type(56) == "32nd"

    def test_note_pieces_notated_value_is_one_piece(self):
        pieces = note_pieces(1536)
        assert len(pieces) == 1
        assert (pieces[0].type, pieces[0].dots) == ("quarter", 1)

    def test_note_pieces_split_into_tied_values(self):
        assert [(p.ticks, p.type) for p in note_pieces(1280)] == [(1024, "quarter"), (256, "16th")]

    def test_note_pieces_fold_tiny_remainder(self):
        assert [p.ticks for p in note_pieces(1300)] == [1024, 276]


class TestHeader:
    """Work, identification, attributes and tempo."""

    def test_single_staff_header(self):
        root = _root(export(_score(_measure(1, make_note("C4", 1, 4096)))))
        assert root.tag == "score-partwise"
        assert root.findtext("work/work-title") == "Export Test"
        assert root.findtext("identification/creator") == "Tester"
        assert root.findtext("part-list/score-part/part-name") == "Music"

        attributes = root.find("part/measure/attributes")
        assert attributes.findtext("divisions") == "1024"
        assert attributes.findtext("key/fifths") == "-1"
        assert attributes.findtext("key/mode") == "major"
        assert attributes.findtext("time/beats") == "4"
        assert attributes.findtext("time/beat-type") == "4"
        assert attributes.find("staves") is None
        assert attributes.findtext("clef/sign") == "G"

        direction = root.find("part/measure/direction")
        assert direction.findtext("direction-type/metronome/per-minute") == "90"
        assert direction.find("sound").get("tempo") == "90"

    def test_grand_staff_header(self):
        root = _root(export(_score(_measure(1, make_note("C5", 1, 4096)), grand=True)))
        assert root.findtext("part-list/score-part/part-name") == "Piano"
        attributes = root.find("part/measure/attributes")
        assert attributes.findtext("staves") == "2"
        clefs = attributes.findall("clef")
        assert [(c.get("number"), c.findtext("sign"), c.findtext("line")) for c in clefs] == [
            ("1", "G", "2"),
            ("2", "F", "4"),
        ]

    def test_custom_part_name(self):
        document = MusicXMLExporter(part_name="Flute").export(_score(_measure(1, make_note("C4", 1, 4096))))
        assert _root(document).findtext("part-list/score-part/part-name") == "Flute"

    def test_attributes_only_in_first_measure(self):
        root = _root(export(_score(_measure(1, make_note("C4", 1, 4096)), _measure(2, make_note("D4", 1, 4096)))))
        measures = root.findall("part/measure")
        assert measures[0].find("attributes") is not None
        assert measures[1].find("attributes") is None

    def test_document_prologue(self):
        document = export(_score(_measure(1, make_note("C4", 1, 4096))))
        assert document.startswith(b'<?xml version="1.0" encoding="UTF-8"')
        assert b"<!DOCTYPE score-partwise" in document


class TestVoiceBlocks:
    """Every (staff, voice) block fills the measure."""

    def test_gaps_become_rests(self):
        measure_el = _root(export(_score(_measure(1, make_note("C4", 2, 1024))))).find("part/measure")
        assert _events(measure_el) == [
            ("rest", 1024, "quarter"),
            ("note", 1024, "quarter"),
            ("rest", 2048, "half"),
        ]

    def test_chord_members_marked(self):
        measure_el = _root(export(_score(_measure(
            1, make_note("C4", 1, 4096), make_note("E4", 1, 4096), make_note("G4", 1, 4096)
        )))).find("part/measure")
        assert [kind for kind, _, _ in _events(measure_el)] == ["note", "chord", "chord"]
        assert _voice_totals(measure_el) == {("1", "1"): 4096}

    def test_overlap_clipped_at_next_onset(self):
        measure_el = _root(export(_score(_measure(
            1, make_note("C4", 1, 2048), make_note("D4", 2, 1024)
        )))).find("part/measure")
        assert _events(measure_el) == [
            ("note", 1024, "quarter"),
            ("note", 1024, "quarter"),
            ("rest", 2048, "half"),
        ]

    def test_overhang_clipped_at_barline(self):
        measure_el = _root(export(_score(_measure(1, make_note("C4", 4, 2048))))).find("part/measure")
        assert _voice_totals(measure_el) == {("1", "1"): 4096}

    def test_odd_length_split_into_tied_notes(self):
        measure_el = _root(export(_score(_measure(1, make_note("C4", 1, 1280))))).find("part/measure")
        notes = [n for n in measure_el.findall("note") if n.find("rest") is None]
        assert [int(n.findtext("duration")) for n in notes] == [1024, 256]
        assert [t.get("type") for t in notes[0].findall("tie")] == ["start"]
        assert [t.get("type") for t in notes[1].findall("tie")] == ["stop"]
        assert _voice_totals(measure_el) == {("1", "1"): 4096}

    def test_tuplet_time_modification(self):
        triplet = Tuplet(3, 2)
        measure_el = _root(export(_score(_measure(
            1,
            make_note("C4", 1, 341, type_="eighth", tuplet=triplet),
            make_note("D4", 1 + 341 / 1024, 342, type_="eighth", tuplet=triplet),
            make_note("E4", 1 + 683 / 1024, 341, type_="eighth", tuplet=triplet),
        )))).find("part/measure")
        modified = measure_el.findall("note/time-modification")
        assert len(modified) == 3
        assert modified[0].findtext("actual-notes") == "3"
        assert modified[0].findtext("normal-notes") == "2"
        assert _voice_totals(measure_el) == {("1", "1"): 4096}

    def test_grace_written_before_its_note(self):
        measure_el = _root(export(_score(_measure(
            1,
            make_note("C4", 1, 1024),
            make_note("E4", 2, 0, embellishment=Embellishment.GRACE_NOTE),
            make_note("D4", 2, 3072),
        )))).find("part/measure")
        kinds = [kind for kind, _, _ in _events(measure_el)]
        assert kinds == ["note", "grace", "note"]
        grace = measure_el.findall("note")[1]
        assert grace.find("duration") is None

    def test_empty_measure_is_a_measure_rest(self):
        measure_el = _root(export(_score(_measure(1)))).find("part/measure")
        rest = measure_el.find("note/rest")
        assert rest.get("measure") == "yes"
        assert measure_el.findtext("note/duration") == "4096"

    def test_three_four_measure_length(self):
        score = _score(_measure(1, make_note("C4", 1, 1024)), time_signature=TimeSignature(3, 4))
        measure_el = _root(export(score)).find("part/measure")
        assert _voice_totals(measure_el) == {("1", "1"): 3072}


class TestGrandStaffLayout:
    def test_empty_lower_staff_gets_rest_in_bass_voice(self):
        soprano = make_note("C5", 1, 4096, voice_part=VoicePart.SOPRANO)
        measure_el = _root(export(_score(_measure(1, soprano), grand=True))).find("part/measure")
        notes = measure_el.findall("note")
        rest = notes[-1]
        assert rest.find("rest").get("measure") == "yes"
        assert rest.findtext("duration") == "4096"
        assert rest.findtext("voice") == "4"
        assert rest.findtext("staff") == "2"
        assert [b.findtext("duration") for b in measure_el.findall("backup")] == ["4096"]

    def test_voice_numbers_and_stems(self):
        notes = [
            make_note("E5", 1, 4096, staff=1, voice=1),
            make_note("G4", 1, 4096, staff=1, voice=2),
            make_note("C3", 1, 4096, staff=2, voice=2),
        ]
        measure_el = _root(export(_score(_measure(1, *notes), grand=True))).find("part/measure")
        written = [(n.findtext("voice"), n.findtext("staff"), n.findtext("stem")) for n in measure_el.findall("note")]
        assert written == [("1", "1", "up"), ("2", "1", "down"), ("4", "2", None)]
        assert _voice_totals(measure_el) == {("1", "1"): 4096, ("1", "2"): 4096, ("2", "4"): 4096}
        assert len(measure_el.findall("backup")) == 2


class TestTies:
    def test_tie_kept_when_target_survives(self):
        start = make_note("F4", 1, 4096, note_id="a", tied_to="b")
        stop = make_note("F4", 1, 1024, note_id="b")
        root = _root(export(_score(_measure(1, start), _measure(2, stop))))
        first, second = root.findall("part/measure")
        assert first.find("note/tie").get("type") == "start"
        assert first.find("note/notations/tied").get("type") == "start"
        assert second.find("note/tie").get("type") == "stop"

    def test_tie_dropped_when_target_removed(self):
        start = make_note("F4", 1, 4096, note_id="a", tied_to="gone")
        root = _root(export(_score(_measure(1, start))))
        assert root.find("part/measure/note/tie") is None
        assert root.find("part/measure/note/notations") is None


class TestContainerOutput:
    """Bare XML and .mxl selection, archive layout, determinism."""

    def test_compressed_mxl_layout(self):
        document = export(_score(_measure(1, make_note("C4", 1, 4096))), compressed=True)
        with zipfile.ZipFile(io.BytesIO(document)) as archive:
            assert archive.namelist() == ["mimetype", "META-INF/container.xml", "score.xml"]
            assert archive.getinfo("mimetype").compress_type == zipfile.ZIP_STORED
            assert archive.read("mimetype") == b"application/vnd.recordare.musicxml"
            assert b'full-path="score.xml"' in archive.read("META-INF/container.xml")
            assert archive.read("score.xml").startswith(b"<?xml")

    def test_mxl_reparses(self):
        document = export(_score(_measure(1, make_note("C4", 1, 4096))), compressed=True)
        parsed = parse(document)
        assert parsed.container is ContainerFormat.MXL
        assert parsed.metadata.title == "Export Test"

    def test_default_mirrors_input_container(self):
        measure = _measure(1, make_note("C4", 1, 4096))
        assert export(_score(measure, container=ContainerFormat.MXL)).startswith(b"PK")
        assert export(_score(measure, container=ContainerFormat.XML)).startswith(b"<?xml")

    def test_output_is_deterministic(self):
        score = _score(_measure(1, make_note("C4", 1, 1024), make_note("D4", 2, 3072)))
        assert export(score, compressed=False) == export(score, compressed=False)
        assert export(score, compressed=True) == export(score, compressed=True)

    def test_export_file_follows_suffix(self, tmp_path):
        score = _score(_measure(1, make_note("C4", 1, 4096)))
        exporter = MusicXMLExporter()
        exporter.export_file(score, tmp_path / "nested" / "out.mxl")
        exporter.export_file(score, tmp_path / "out.musicxml")
        assert zipfile.is_zipfile(tmp_path / "nested" / "out.mxl")
        assert (tmp_path / "out.musicxml").read_bytes().startswith(b"<?xml")


class TestClosureCheck:
    """Exported documents re-read by music21 balance every voice."""

    @pytest.mark.parametrize("build", [simple_melody, tied_offbeat, grand_staff])
    @pytest.mark.parametrize("level", [1, 4])
    def test_pipeline_output_is_balanced(self, build, level):
        pytest.importorskip("music21")
        document = simplify_bytes(build(), level=level, compressed=False)
        assert check_closure(document) == []
