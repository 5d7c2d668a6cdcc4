"""MusicXML export - SimplifiedScore to a duration-balanced document.

Every (staff, voice) block is written independently and always fills the
whole measure:
- notes in beat order, chords as a primary note plus <chord/> members
- gaps before, between and after notes filled with greedy rests
- a <backup> of the full measure after every block except the last

Emitted durations are differences of integer tick positions (clipped at
the next onset and the barline), so each block sums to the nominal
measure length by construction.
"""

import io
import logging
import xml.etree.ElementTree as ET
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set, Tuple, Union

from ..core import ContainerFormat, Measure, Note, SimplifiedScore, ScoreType
from ..core.constants import DURATION_ORDER, DURATION_TICKS, EXPORT_DIVISIONS, MIN_REST_TICKS
from ..core.note import Duration

logger = logging.getLogger(__name__)

XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8" standalone="no"?>\n'
DOCTYPE = (
    '<!DOCTYPE score-partwise PUBLIC "-//Recordare//DTD MusicXML 4.0 Partwise//EN" '
    '"http://www.musicxml.org/dtds/partwise.dtd">\n'
)
MXL_MIMETYPE = "application/vnd.recordare.musicxml"
MXL_ROOT_FILE = "score.xml"
CONTAINER_XML = (
    '<?xml version="1.0" encoding="UTF-8"?>\n'
    "<container>\n"
    "  <rootfiles>\n"
    f'    <rootfile full-path="{MXL_ROOT_FILE}" media-type="application/vnd.recordare.musicxml+xml"/>\n'
    "  </rootfiles>\n"
    "</container>\n"
)
ZIP_DATE = (1980, 1, 1, 0, 0, 0)

DEFAULT_CLEFS = {1: ("G", "2"), 2: ("F", "4")}


@dataclass
class _Event:
    """One slot of a voice block: a rest, or a group of simultaneous notes."""

    ticks: int
    notes: List[Note] = field(default_factory=list)
    graces: List[Note] = field(default_factory=list)
    is_measure_rest: bool = False

    @property
    def is_rest(self) -> bool:
        return not self.notes


def rest_pieces(ticks: int) -> List[int]:
    """Greedy decomposition into whole, half, ..., 32nd rests.

    A remainder shorter than a 32nd is returned as the last item.
    """
    pieces = []
    for type_name in DURATION_ORDER:
        base = DURATION_TICKS[type_name]
        while ticks >= base:
            pieces.append(base)
            ticks -= base
    if ticks > 0:
        pieces.append(ticks)
    return pieces


def note_pieces(ticks: int) -> List[Duration]:
    """
    Split a note length into tied notated values.

    Uses the largest plain or single-dotted value that fits; a remainder
    shorter than a 32nd is folded into the last piece.
    """
    exact = Duration.from_ticks(ticks)
    if exact.is_notated:
        return [exact]

    pieces: List[Duration] = []
    remaining = ticks
    while remaining >= MIN_REST_TICKS:
        for type_name in DURATION_ORDER:
            base = DURATION_TICKS[type_name]
            dotted = Duration.expand_dots(base, 1)
            if dotted <= remaining:
                pieces.append(Duration(ticks=dotted, type=type_name, dots=1))
                break
            if base <= remaining:
                pieces.append(Duration(ticks=base, type=type_name))
                break
        remaining -= pieces[-1].ticks
    if remaining > 0:
        if pieces:
            last = pieces[-1]
            pieces[-1] = Duration(ticks=last.ticks + remaining, type=last.type, dots=last.dots)
        else:
            pieces.append(Duration(ticks=remaining, type="32nd"))
    return pieces


def rest_type(ticks: int) -> str:
    for type_name in DURATION_ORDER:
        if ticks >= DURATION_TICKS[type_name]:
            return type_name
    return "32nd"


class MusicXMLExporter:
    """Serialize a SimplifiedScore to MusicXML or compressed .mxl."""

    def __init__(self, part_name: Optional[str] = None):
        """
        Initialize MusicXMLExporter.

        Args:
            part_name: Name written to the part list (default: "Piano"
                for grand staff, "Music" otherwise)
        """
        self.part_name = part_name

    def export(self, score: SimplifiedScore, compressed: Optional[bool] = None) -> bytes:
        """
        Export to bytes.

        Args:
            score: Rule engine output
            compressed: True for .mxl, False for bare XML, None to mirror
                the container the score was read from

        Returns:
            Document bytes; identical input gives identical output
        """
        if compressed is None:
            compressed = score.container is ContainerFormat.MXL
        document = self.to_xml(score)
        if compressed:
            return self._write_mxl(document)
        return document

    def export_file(
        self,
        score: SimplifiedScore,
        output_path: Union[str, Path],
        compressed: Optional[bool] = None,
    ) -> None:
        """Export to a file; `compressed=None` follows the file suffix."""
        output_path = Path(output_path)
        if compressed is None:
            compressed = output_path.suffix.lower() == ".mxl"

        # Ensure output directory exists
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(self.export(score, compressed=compressed))

    def to_xml(self, score: SimplifiedScore) -> bytes:
        """Bare MusicXML document bytes."""
        root = ET.Element("score-partwise", version="4.0")
        work = ET.SubElement(root, "work")
        ET.SubElement(work, "work-title").text = score.metadata.title
        identification = ET.SubElement(root, "identification")
        ET.SubElement(identification, "creator", type="composer").text = score.metadata.composer

        part_list = ET.SubElement(root, "part-list")
        score_part = ET.SubElement(part_list, "score-part", id="P1")
        grand = score.score_type is ScoreType.GRAND_STAFF
        ET.SubElement(score_part, "part-name").text = self.part_name or ("Piano" if grand else "Music")

        part = ET.SubElement(root, "part", id="P1")
        staves = self._staff_count(score)
        ids = {n.id for m in score.measures for n in m.notes}
        tie_targets = {n.tied_to for m in score.measures for n in m.notes if n.tied_to in ids}

        for index, measure in enumerate(score.measures):
            measure_el = ET.SubElement(part, "measure", number=str(measure.number))
            if index == 0:
                self._write_attributes(measure_el, score, staves)
                self._write_tempo(measure_el, score)
            self._write_measure(measure_el, measure, score, staves, ids, tie_targets)

        ET.indent(root, space="  ")
        body = ET.tostring(root, encoding="unicode")
        return (XML_DECLARATION + DOCTYPE + body + "\n").encode("utf-8")

    # ------------------------------------------------------------------
    # Header
    # ------------------------------------------------------------------

    @staticmethod
    def _staff_count(score: SimplifiedScore) -> int:
        if score.score_type is ScoreType.GRAND_STAFF:
            return max(2, score.metadata.staves)
        return max(1, score.metadata.staves)

    def _write_attributes(self, measure_el: ET.Element, score: SimplifiedScore, staves: int) -> None:
        metadata = score.metadata
        attributes = ET.SubElement(measure_el, "attributes")
        ET.SubElement(attributes, "divisions").text = str(EXPORT_DIVISIONS)

        key = ET.SubElement(attributes, "key")
        ET.SubElement(key, "fifths").text = str(metadata.key_signature.fifths)
        ET.SubElement(key, "mode").text = metadata.key_signature.mode

        time = ET.SubElement(attributes, "time")
        ET.SubElement(time, "beats").text = str(metadata.time_signature.beats)
        ET.SubElement(time, "beat-type").text = str(metadata.time_signature.beat_type)

        if staves > 1:
            ET.SubElement(attributes, "staves").text = str(staves)

        for staff in range(1, staves + 1):
            sign, line = self._clef_for(metadata.clefs, staff)
            clef = ET.SubElement(attributes, "clef")
            if staves > 1:
                clef.set("number", str(staff))
            ET.SubElement(clef, "sign").text = sign
            ET.SubElement(clef, "line").text = line

    @staticmethod
    def _clef_for(clefs: Sequence[str], staff: int) -> Tuple[str, str]:
        if staff <= len(clefs) and len(clefs[staff - 1]) >= 2:
            return clefs[staff - 1][0], clefs[staff - 1][1:]
        return DEFAULT_CLEFS.get(staff, DEFAULT_CLEFS[2])

    @staticmethod
    def _write_tempo(measure_el: ET.Element, score: SimplifiedScore) -> None:
        direction = ET.SubElement(measure_el, "direction", placement="above")
        direction_type = ET.SubElement(direction, "direction-type")
        metronome = ET.SubElement(direction_type, "metronome")
        ET.SubElement(metronome, "beat-unit").text = "quarter"
        ET.SubElement(metronome, "per-minute").text = str(score.metadata.tempo)
        ET.SubElement(direction, "sound", tempo=str(score.metadata.tempo))

    # ------------------------------------------------------------------
    # Measures
    # ------------------------------------------------------------------

    def _write_measure(
        self,
        measure_el: ET.Element,
        measure: Measure,
        score: SimplifiedScore,
        staves: int,
        ids: Set[str],
        tie_targets: Set[str],
    ) -> None:
        measure_ticks = score.metadata.time_signature.measure_ticks
        grand = score.score_type is ScoreType.GRAND_STAFF

        blocks: List[Tuple[int, int, List[Note], bool]] = []  # staff, voice, notes, stem split
        for staff in range(1, staves + 1):
            voices = sorted({n.voice for n in measure.notes if n.staff == staff})
            if not voices:
                primary_voice = 2 if grand and staff == 2 else 1
                blocks.append((staff, primary_voice, [], False))
                continue
            for voice in voices:
                notes = [n for n in measure.notes if n.staff == staff and n.voice == voice]
                blocks.append((staff, voice, notes, len(voices) > 1))

        dropped = [n for n in measure.notes if n.staff < 1 or n.staff > staves]
        if dropped:
            logger.warning("Measure %s: %d notes on staves beyond %d dropped", measure.number, len(dropped), staves)

        for i, (staff, voice, notes, split) in enumerate(blocks):
            xml_voice = (staff - 1) * 2 + voice
            stem = None
            if split:
                first_voice = min(v for s, v, _, _ in blocks if s == staff)
                stem = "up" if voice == first_voice else "down"
            events = self._block_events(notes, measure_ticks)
            for event in events:
                self._write_event(measure_el, event, xml_voice, staff, staves, stem, ids, tie_targets)
            if i < len(blocks) - 1:
                backup = ET.SubElement(measure_el, "backup")
                ET.SubElement(backup, "duration").text = str(measure_ticks)

    def _block_events(self, notes: Sequence[Note], measure_ticks: int) -> List[_Event]:
        """Lay out one (staff, voice) block as events summing to `measure_ticks`."""
        if not notes:
            return [_Event(ticks=measure_ticks, is_measure_rest=True)]

        groups: Dict[int, List[Note]] = {}
        graces: Dict[int, List[Note]] = {}
        for note in sorted(notes, key=lambda n: n.start_tick):
            start = note.start_tick
            if start < 0 or start >= measure_ticks:
                logger.debug("Note %s at tick %d lies outside the measure", note.id, start)
                continue
            if note.duration.ticks <= 0:
                graces.setdefault(start, []).append(note)
            else:
                groups.setdefault(start, []).append(note)

        events: List[_Event] = []
        pending_graces: List[Note] = []
        positions = sorted(groups)
        cursor = 0

        def add_rest(ticks: int) -> None:
            for piece in rest_pieces(ticks):
                if piece < MIN_REST_TICKS and events:
                    # sub-32nd sliver joins the previous event
                    events[-1].ticks += piece
                else:
                    events.append(_Event(ticks=piece))

        for idx, position in enumerate(positions):
            for grace_pos in sorted(graces):
                if grace_pos <= position:
                    pending_graces.extend(graces.pop(grace_pos))
            if position > cursor:
                add_rest(position - cursor)
                cursor = position
            limit = positions[idx + 1] if idx + 1 < len(positions) else measure_ticks
            group = groups[position]
            ticks = min(max(n.duration.ticks for n in group), limit - position)
            events.append(_Event(ticks=ticks, notes=group, graces=pending_graces))
            pending_graces = []
            cursor = position + ticks

        if cursor < measure_ticks:
            add_rest(measure_ticks - cursor)
        return events

    def _write_event(
        self,
        measure_el: ET.Element,
        event: _Event,
        xml_voice: int,
        staff: int,
        staves: int,
        stem: Optional[str],
        ids: Set[str],
        tie_targets: Set[str],
    ) -> None:
        if event.is_rest:
            self._write_rest(measure_el, event, xml_voice, staff, staves)
            return

        for grace in event.graces:
            self._write_note(
                measure_el, grace, None, xml_voice, staff, staves, stem,
                is_chord=False, tie_start=False, tie_stop=False,
            )

        primary = event.notes[0]
        tuplet = primary.duration.tuplet
        if tuplet is not None and event.ticks <= primary.duration.ticks:
            pieces = [Duration(ticks=event.ticks, type=primary.duration.type,
                               dots=primary.duration.dots, tuplet=tuplet)]
        else:
            pieces = note_pieces(event.ticks)

        for p, piece in enumerate(pieces):
            last = p == len(pieces) - 1
            for c, note in enumerate(event.notes):
                source_start = last and note.tied_to in ids
                source_stop = p == 0 and note.id in tie_targets
                self._write_note(
                    measure_el, note, piece, xml_voice, staff, staves, stem,
                    is_chord=c > 0,
                    tie_start=not last or source_start,
                    tie_stop=p > 0 or source_stop,
                )

    @staticmethod
    def _write_rest(measure_el: ET.Element, event: _Event, xml_voice: int, staff: int, staves: int) -> None:
        note_el = ET.SubElement(measure_el, "note")
        rest = ET.SubElement(note_el, "rest")
        if event.is_measure_rest:
            rest.set("measure", "yes")
        ET.SubElement(note_el, "duration").text = str(event.ticks)
        ET.SubElement(note_el, "voice").text = str(xml_voice)
        if not event.is_measure_rest:
            ET.SubElement(note_el, "type").text = rest_type(event.ticks)
        if staves > 1:
            ET.SubElement(note_el, "staff").text = str(staff)

    @staticmethod
    def _write_note(
        measure_el: ET.Element,
        note: Note,
        piece: Optional[Duration],
        xml_voice: int,
        staff: int,
        staves: int,
        stem: Optional[str],
        is_chord: bool,
        tie_start: bool,
        tie_stop: bool,
    ) -> None:
        """Write one <note>; `piece` is None for a grace note."""
        note_el = ET.SubElement(measure_el, "note")
        if piece is None:
            ET.SubElement(note_el, "grace")
        if is_chord:
            ET.SubElement(note_el, "chord")

        pitch = ET.SubElement(note_el, "pitch")
        ET.SubElement(pitch, "step").text = note.pitch.step
        if note.pitch.alter:
            ET.SubElement(pitch, "alter").text = str(note.pitch.alter)
        ET.SubElement(pitch, "octave").text = str(note.pitch.octave)

        if piece is not None:
            ET.SubElement(note_el, "duration").text = str(piece.ticks)
        if tie_stop:
            ET.SubElement(note_el, "tie", type="stop")
        if tie_start:
            ET.SubElement(note_el, "tie", type="start")
        ET.SubElement(note_el, "voice").text = str(xml_voice)

        display = piece if piece is not None else note.duration
        ET.SubElement(note_el, "type").text = display.type
        for _ in range(display.dots):
            ET.SubElement(note_el, "dot")
        if piece is not None and piece.tuplet is not None:
            time_mod = ET.SubElement(note_el, "time-modification")
            ET.SubElement(time_mod, "actual-notes").text = str(piece.tuplet.actual)
            ET.SubElement(time_mod, "normal-notes").text = str(piece.tuplet.normal)
        if stem is not None:
            ET.SubElement(note_el, "stem").text = stem
        if staves > 1:
            ET.SubElement(note_el, "staff").text = str(staff)

        if tie_start or tie_stop:
            notations = ET.SubElement(note_el, "notations")
            if tie_stop:
                ET.SubElement(notations, "tied", type="stop")
            if tie_start:
                ET.SubElement(notations, "tied", type="start")

    # ------------------------------------------------------------------
    # Container
    # ------------------------------------------------------------------

    @staticmethod
    def _write_mxl(document: bytes) -> bytes:
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as archive:
            for name, data, compress_type in (
                ("mimetype", MXL_MIMETYPE.encode("ascii"), zipfile.ZIP_STORED),
                ("META-INF/container.xml", CONTAINER_XML.encode("utf-8"), zipfile.ZIP_DEFLATED),
                (MXL_ROOT_FILE, document, zipfile.ZIP_DEFLATED),
            ):
                info = zipfile.ZipInfo(name, date_time=ZIP_DATE)
                info.compress_type = compress_type
                info.create_system = 3
                info.external_attr = 0o644 << 16
                archive.writestr(info, data)
        return buffer.getvalue()


def export(score: SimplifiedScore, compressed: Optional[bool] = None) -> bytes:
    """Export a simplified score with a default exporter."""
    return MusicXMLExporter().export(score, compressed=compressed)


def check_closure(document: bytes) -> List[str]:
    """
    Re-read an exported (uncompressed) document with music21 and report
    any voice whose measure total differs from the bar length.

    Args:
        document: Bare MusicXML bytes

    Returns:
        List of problem descriptions, empty when every voice is balanced
    """
    try:
        from music21 import converter, stream
    except ImportError as exc:
        raise ImportError("music21 is required for closure checks") from exc

    parsed = converter.parse(document.decode("utf-8"), format="musicxml")
    problems = []
    for part in parsed.parts:
        for measure in part.getElementsByClass(stream.Measure):
            expected = float(measure.barDuration.quarterLength)
            voices = list(measure.voices) or [measure]
            for voice in voices:
                total = float(sum(el.quarterLength for el in voice.notesAndRests))
                if abs(total - expected) > 1e-6:
                    problems.append(
                        f"{part.id} measure {measure.number} voice {getattr(voice, 'id', '-')}: "
                        f"{total} != {expected}"
                    )
    return problems
