"""Tests for the command-line interface."""

import io
import json
import zipfile

import pytest
from typer.testing import CliRunner

from score_simplifier.cli import app
from score_simplifier.input import parse
from fixtures.scores import grand_staff, simple_melody, to_mxl

runner = CliRunner()


@pytest.fixture
def melody_file(tmp_path):
    path = tmp_path / "melody.musicxml"
    path.write_bytes(simple_melody())
    return path


@pytest.fixture
def piano_file(tmp_path):
    path = tmp_path / "piano.mxl"
    path.write_bytes(to_mxl(grand_staff()))
    return path


class TestSimplifyCommand:
    def test_writes_output_file(self, melody_file, tmp_path):
        output = tmp_path / "easy.musicxml"
        result = runner.invoke(app, ["simplify", str(melody_file), "-l", "1", "-o", str(output)])
        assert result.exit_code == 0, result.output
        assert "Exported to" in result.output
        simplified = parse(output.read_bytes())
        assert [len(m.notes) for m in simplified.measures] == [1, 1]

    def test_default_output_name_follows_input_container(self, piano_file):
        result = runner.invoke(app, ["simplify", str(piano_file), "-l", "2"])
        assert result.exit_code == 0, result.output
        expected = piano_file.with_name("piano_L2.mxl")
        assert zipfile.is_zipfile(expected)

    def test_xml_flag_overrides_container(self, piano_file, tmp_path):
        output = tmp_path / "piano_out.mxl"
        result = runner.invoke(app, ["simplify", str(piano_file), "--xml", "-o", str(output)])
        assert result.exit_code == 0, result.output
        assert output.read_bytes().startswith(b"<?xml")

    def test_json_output(self, piano_file, tmp_path):
        output = tmp_path / "out.mxl"
        result = runner.invoke(
            app,
            ["simplify", str(piano_file), "-l", "5", "--soprano-level", "1", "-o", str(output), "--json"],
        )
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["level"] == 5
        assert data["score_type"] == "grand_staff"
        assert data["soprano_level"] == 4
        assert data["bass_level"] == 5
        assert data["notes_after"] <= data["notes_before"]

    def test_midi_rendering(self, melody_file, tmp_path):
        midi_path = tmp_path / "render" / "melody.mid"
        result = runner.invoke(
            app, ["simplify", str(melody_file), "-o", str(tmp_path / "out.musicxml"), "--midi", str(midi_path)]
        )
        assert result.exit_code == 0, result.output
        assert midi_path.read_bytes().startswith(b"MThd")

    def test_closure_check(self, melody_file, tmp_path):
        pytest.importorskip("music21")
        result = runner.invoke(
            app, ["simplify", str(melody_file), "-o", str(tmp_path / "out.musicxml"), "--check"]
        )
        assert result.exit_code == 0, result.output
        assert "Every voice fills its measures" in result.output

    def test_level_out_of_range(self, melody_file):
        result = runner.invoke(app, ["simplify", str(melody_file), "-l", "9"])
        assert result.exit_code != 0

    def test_missing_file(self, tmp_path):
        result = runner.invoke(app, ["simplify", str(tmp_path / "nope.musicxml")])
        assert result.exit_code == 1
        assert "File not found" in result.output

    def test_malformed_file(self, tmp_path):
        path = tmp_path / "bad.musicxml"
        path.write_bytes(b"<score-partwise version='4.0'><part-list/></score-partwise>")
        result = runner.invoke(app, ["simplify", str(path)])
        assert result.exit_code == 1
        assert "Error" in result.output

    def test_corrupt_container(self, tmp_path):
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_STORED) as archive:
            archive.writestr("score.xml", simple_melody())
        path = tmp_path / "broken.mxl"
        path.write_bytes(buffer.getvalue().replace(b"Test Piece", b"Test Piecf", 1))
        result = runner.invoke(app, ["simplify", str(path)])
        assert result.exit_code == 1
        assert "Error" in result.output


class TestAnalyzeCommand:
    def test_text_report(self, melody_file):
        result = runner.invoke(app, ["analyze", str(melody_file)])
        assert result.exit_code == 0, result.output
        assert "Analysis:" in result.output
        assert "Rhythm Patterns" in result.output

    def test_json_report_for_grand_staff(self, piano_file):
        result = runner.invoke(app, ["analyze", str(piano_file), "--json"])
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["title"] == "Piano Piece"
        assert data["score_type"] == "grand_staff"
        assert data["measures"] == 3
        assert data["strong_beats"] == ["1", "3"]
        assert set(data["voices"]) == {"soprano", "alto", "tenor", "bass"}
        assert data["separation"]["tiers"]["rule"] > 0

    def test_json_report_single_staff_has_no_voices(self, melody_file):
        result = runner.invoke(app, ["analyze", str(melody_file), "--json"])
        data = json.loads(result.output)
        assert "voices" not in data
        assert data["anacrusis"] is False


class TestLevelsCommand:
    def test_single_staff_levels(self):
        result = runner.invoke(app, ["levels"])
        assert result.exit_code == 0
        assert "Simplification Levels" in result.output
        assert "Skeleton" in result.output

    def test_grand_staff_levels(self):
        result = runner.invoke(app, ["levels", "--grand-staff"])
        assert result.exit_code == 0
        assert "(1-5)" in result.output
        assert "(4-5)" in result.output


class TestInfoCommand:
    def test_metadata_table(self, melody_file):
        result = runner.invoke(app, ["info", str(melody_file)])
        assert result.exit_code == 0, result.output
        assert "Score Info" in result.output
        assert "Test Piece" in result.output
        assert "4/4" in result.output

    def test_missing_file(self, tmp_path):
        result = runner.invoke(app, ["info", str(tmp_path / "missing.mxl")])
        assert result.exit_code == 1
