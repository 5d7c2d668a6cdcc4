"""MusicXML parser - wire bytes to a beat-indexed score model.

Walks each measure's children in document order with an exact time
cursor (a Fraction of quarter notes):
- note: non-chord, non-grace notes and rests advance the cursor
- backup: rewinds the cursor (a new voice or staff restarts)
- forward: skips ahead without emitting a note

Start and end positions are rounded to the tick grid independently so
consecutive tuplet members tile their beat exactly.
"""

import itertools
import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field, replace
from fractions import Fraction
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from ..core import (
    PENDING,
    Duration,
    Embellishment,
    FormatError,
    KeySignature,
    Measure,
    Note,
    ParsedScore,
    Pitch,
    Rest,
    ScoreMetadata,
    TimeSignature,
    Tuplet,
    UnsupportedStructureError,
)
from ..core.constants import (
    DEFAULT_COMPOSER,
    DEFAULT_DIVISIONS,
    DEFAULT_TEMPO,
    DEFAULT_TIME_SIGNATURE,
    DEFAULT_TITLE,
    DURATION_TICKS,
    TICKS_PER_QUARTER,
    TYPE_ALIASES,
)
from .loader import ScoreLoader

logger = logging.getLogger(__name__)

# (element path under <notations>, tag), first match wins
EMBELLISHMENT_PRECEDENCE: List[Tuple[str, Embellishment]] = [
    ("ornaments/trill-mark", Embellishment.TRILL),
    ("ornaments/turn", Embellishment.TURN),
    ("ornaments/inverted-turn", Embellishment.INVERTED_TURN),
    ("ornaments/delayed-turn", Embellishment.DELAYED_TURN),
    ("ornaments/mordent", Embellishment.MORDENT_UPPER),
    ("ornaments/inverted-mordent", Embellishment.MORDENT_LOWER),
    ("ornaments/tremolo", Embellishment.TREMOLO),
    ("ornaments/shake", Embellishment.SHAKE),
    ("ornaments/wavy-line", Embellishment.WAVY_LINE),
    ("ornaments/schleifer", Embellishment.SCHLEIFER),
    ("arpeggiate", Embellishment.ARPEGGIO),
    ("non-arpeggiate", Embellishment.NON_ARPEGGIO),
    ("glissando", Embellishment.GLISSANDO),
    ("slide", Embellishment.SLIDE),
]

LIFESPAN_RE = re.compile(r"\s*\(\d{4}\s*-\s*\d{4}\)")


class NoteIdAllocator:
    """Sequential ids scoped to a single parse."""

    def __init__(self, prefix: str = "n"):
        self.prefix = prefix
        self._counter = itertools.count(1)

    def next_id(self) -> str:
        return f"{self.prefix}{next(self._counter)}"


@dataclass
class _PendingLinks:
    """Tie/slur starts waiting for their partner note."""

    ties: List[str] = field(default_factory=list)
    slur_starts: Dict[str, List[str]] = field(default_factory=dict)  # note id -> slur numbers
    slur_stops: Dict[str, List[str]] = field(default_factory=dict)


def _text(element: Optional[ET.Element], path: str) -> Optional[str]:
    if element is None:
        return None
    found = element.find(path)
    if found is None or found.text is None:
        return None
    text = found.text.strip()
    return text or None


def _int(value: Optional[str], default: int) -> int:
    if value is None:
        return default
    try:
        return int(round(float(value)))
    except ValueError:
        return default


class MusicXMLParser:
    """Parse MusicXML (bare or .mxl) into a ParsedScore."""

    def __init__(self, loader: Optional[ScoreLoader] = None):
        """
        Initialize MusicXMLParser.

        Args:
            loader: Container loader (default: ScoreLoader())
        """
        self.loader = loader or ScoreLoader()

    def parse_file(self, path: Union[str, Path]) -> ParsedScore:
        """Load and parse a score file."""
        return self.parse(self.loader.load(path))

    def parse(self, raw: bytes) -> ParsedScore:
        """
        Parse raw score bytes.

        Args:
            raw: Bare MusicXML document or compressed .mxl container

        Returns:
            ParsedScore with metadata and measures

        Raises:
            FormatError: If the container or document cannot be read
        """
        root, container = self.loader.read_document(raw)
        if not root.tag.endswith("score-partwise"):
            raise FormatError(f"unsupported document root <{root.tag}>")

        parts = root.findall("part")
        if not parts:
            raise FormatError("score has no <part>")
        if len(parts) > 1:
            logger.warning("Score has %d parts, reading only the first", len(parts))
        part = parts[0]

        links = _PendingLinks()
        metadata = self._parse_metadata(root, part)
        measures = self._parse_measures(part, metadata.time_signature, links)
        measures = self._resolve_links(measures, links)

        # Staff numbers seen on notes count even when <staves> is missing
        max_staff = max((n.staff for m in measures for n in m.notes), default=1)
        if max_staff > metadata.staves:
            metadata = replace(metadata, staves=max_staff)

        logger.debug(
            "Parsed %d measures (%d notes), %s, %d staves",
            len(measures),
            sum(len(m.notes) for m in measures),
            metadata.time_signature,
            metadata.staves,
        )
        return ParsedScore(metadata=metadata, measures=tuple(measures), container=container)

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def _parse_metadata(self, root: ET.Element, part: ET.Element) -> ScoreMetadata:
        credits = [
            el for el in root.iter("credit-words") if el.text and el.text.strip()
        ]

        credit_title = None
        for cw in credits:
            if _int(cw.get("font-size"), 0) >= 18 or cw.get("justify") == "center":
                credit_title = cw.text.strip()
                break
        title = (
            _text(root, ".//work-title")
            or _text(root, ".//movement-title")
            or credit_title
            or DEFAULT_TITLE
        )

        credit_composer = None
        for cw in credits:
            text = cw.text.strip()
            if LIFESPAN_RE.search(text) or cw.get("justify") == "right":
                credit_composer = LIFESPAN_RE.sub("", text).strip()
                break
        composer = (
            _text(root, ".//creator[@type='composer']")
            or _text(root, ".//identification/creator")
            or credit_composer
            or DEFAULT_COMPOSER
        )

        sound = root.find(".//sound[@tempo]")
        if sound is not None:
            tempo = _int(sound.get("tempo"), DEFAULT_TEMPO)
        else:
            logger.warning("%s", UnsupportedStructureError("tempo", DEFAULT_TEMPO))
            tempo = DEFAULT_TEMPO

        time_signature = self._parse_time(part.find(".//attributes/time"))

        key = part.find(".//attributes/key")
        key_signature = KeySignature(
            fifths=_int(_text(key, "fifths"), 0),
            mode=_text(key, "mode") or "major",
        )

        clefs = tuple(
            f"{_text(clef, 'sign') or 'G'}{_text(clef, 'line') or '2'}"
            for clef in part.iter("clef")
        )
        annotations = tuple(
            el.text.strip() for el in part.iter("words") if el.text and el.text.strip()
        )
        staves = _int(_text(part, ".//attributes/staves"), 1)

        return ScoreMetadata(
            title=title,
            composer=composer,
            tempo=tempo,
            time_signature=time_signature,
            key_signature=key_signature,
            clefs=clefs,
            text_annotations=annotations,
            staves=max(1, staves),
        )

    def _parse_time(self, time: Optional[ET.Element]) -> TimeSignature:
        beats = _int(_text(time, "beats"), 0)
        beat_type = _int(_text(time, "beat-type"), 0)
        if beats <= 0 or beat_type <= 0:
            default = TimeSignature.classify(*DEFAULT_TIME_SIGNATURE)
            logger.warning("%s", UnsupportedStructureError("time signature", str(default)))
            return default
        return TimeSignature.classify(beats, beat_type)

    # ------------------------------------------------------------------
    # Measures
    # ------------------------------------------------------------------

    def _parse_measures(
        self, part: ET.Element, time_signature: TimeSignature, links: _PendingLinks
    ) -> List[Measure]:
        ids = NoteIdAllocator()

        divisions_text = _text(part, ".//attributes/divisions")
        divisions = _int(divisions_text, DEFAULT_DIVISIONS)
        if divisions_text is None or divisions <= 0:
            logger.warning("%s", UnsupportedStructureError("divisions", DEFAULT_DIVISIONS))
            divisions = DEFAULT_DIVISIONS

        measures = []
        for index, measure_el in enumerate(part.findall("measure")):
            number = _int(measure_el.get("number"), index + 1)
            notes: List[Note] = []
            rests: List[Rest] = []

            cursor = Fraction(0)
            last_non_chord = Fraction(0)

            for child in measure_el:
                tag = child.tag
                if tag == "attributes":
                    local = _int(_text(child, "divisions"), 0)
                    if local > 0:
                        divisions = local
                elif tag == "backup":
                    cursor -= Fraction(_int(_text(child, "duration"), 0), divisions)
                    cursor = max(cursor, Fraction(0))
                    last_non_chord = cursor
                elif tag == "forward":
                    cursor += Fraction(_int(_text(child, "duration"), 0), divisions)
                    last_non_chord = cursor
                elif tag == "note":
                    is_chord = child.find("chord") is not None
                    is_grace = child.find("grace") is not None
                    start = last_non_chord if is_chord else cursor
                    length = self._note_length(child, divisions, time_signature, is_grace)

                    if child.find("rest") is not None:
                        rests.append(self._make_rest(child, ids.next_id(), start, length))
                    elif child.find("pitch") is not None:
                        notes.append(
                            self._make_note(child, ids.next_id(), start, length, is_grace, is_chord, links)
                        )

                    if not is_chord and not is_grace:
                        last_non_chord = start
                        cursor += length

            measures.append(Measure(number=number, notes=tuple(notes), rests=tuple(rests)))
        return measures

    def _note_length(
        self,
        note_el: ET.Element,
        divisions: int,
        time_signature: TimeSignature,
        is_grace: bool,
    ) -> Fraction:
        """Length of a note or rest in quarter notes."""
        if is_grace:
            return Fraction(0)
        duration = _text(note_el, "duration")
        if duration is not None:
            return Fraction(_int(duration, 0), divisions)

        rest = note_el.find("rest")
        type_name = TYPE_ALIASES.get(_text(note_el, "type") or "")
        if type_name is None:
            if rest is not None and rest.get("measure") == "yes":
                return time_signature.quarter_beats
            type_name = "quarter"
        ticks = Duration.expand_dots(DURATION_TICKS[type_name], len(note_el.findall("dot")))
        return Fraction(ticks, TICKS_PER_QUARTER)

    def _duration(self, note_el: ET.Element, start: Fraction, length: Fraction) -> Tuple[Duration, Fraction]:
        start_tick = round(start * TICKS_PER_QUARTER)
        end_tick = round((start + length) * TICKS_PER_QUARTER)

        type_name = TYPE_ALIASES.get(_text(note_el, "type") or "")
        if type_name is None:
            type_name = Duration.from_ticks(max(end_tick - start_tick, 1)).type

        tuplet = None
        time_mod = note_el.find("time-modification")
        if time_mod is not None:
            tuplet = Tuplet(
                actual=_int(_text(time_mod, "actual-notes"), 3),
                normal=_int(_text(time_mod, "normal-notes"), 2),
            )

        duration = Duration(
            ticks=end_tick - start_tick,
            type=type_name,
            dots=len(note_el.findall("dot")),
            tuplet=tuplet,
        )
        return duration, 1 + Fraction(start_tick, TICKS_PER_QUARTER)

    def _make_rest(self, rest_el: ET.Element, rest_id: str, start: Fraction, length: Fraction) -> Rest:
        duration, start_beat = self._duration(rest_el, start, length)
        return Rest(
            id=rest_id,
            duration=duration,
            start_beat=start_beat,
            voice=_int(_text(rest_el, "voice"), 1),
            staff=_int(_text(rest_el, "staff"), 1),
        )

    def _make_note(
        self,
        note_el: ET.Element,
        note_id: str,
        start: Fraction,
        length: Fraction,
        is_grace: bool,
        is_chord: bool,
        links: _PendingLinks,
    ) -> Note:
        pitch_el = note_el.find("pitch")
        pitch = Pitch(
            step=(_text(pitch_el, "step") or "C").upper(),
            octave=_int(_text(pitch_el, "octave"), 4),
            alter=_int(_text(pitch_el, "alter"), 0),
        )
        duration, start_beat = self._duration(note_el, start, length)

        tied = any(t.get("type") == "start" for t in note_el.findall("tie")) or any(
            t.get("type") == "start" for t in note_el.findall("notations/tied")
        )
        if tied:
            links.ties.append(note_id)

        slurs = note_el.findall("notations/slur")
        starts = [s.get("number", "1") for s in slurs if s.get("type") == "start"]
        stops = [s.get("number", "1") for s in slurs if s.get("type") == "stop"]
        if starts:
            links.slur_starts[note_id] = starts
        if stops:
            links.slur_stops[note_id] = stops

        return Note(
            id=note_id,
            pitch=pitch,
            duration=duration,
            start_beat=start_beat,
            voice=_int(_text(note_el, "voice"), 1),
            staff=_int(_text(note_el, "staff"), 1),
            tied_to=PENDING if tied else None,
            slurred_with=tuple(PENDING for _ in starts),
            embellishment=self._parse_embellishment(note_el, is_grace),
            is_chord=is_chord,
        )

    @staticmethod
    def _parse_embellishment(note_el: ET.Element, is_grace: bool) -> Optional[Embellishment]:
        if is_grace:
            return Embellishment.GRACE_NOTE
        notations = note_el.find("notations")
        if notations is None:
            return None
        for path, embellishment in EMBELLISHMENT_PRECEDENCE:
            if notations.find(path) is not None:
                return embellishment
        return None

    # ------------------------------------------------------------------
    # Tie / slur resolution
    # ------------------------------------------------------------------

    def _resolve_links(self, measures: List[Measure], links: _PendingLinks) -> List[Measure]:
        """Replace pending tie/slur markers with partner note ids."""
        ordered = [n for m in measures for n in m.notes]
        position = {n.id: i for i, n in enumerate(ordered)}
        updates: Dict[str, Dict[str, object]] = {}

        for note_id in links.ties:
            note = ordered[position[note_id]]
            for candidate in ordered[position[note_id] + 1:]:
                if (
                    candidate.pitch.midi == note.pitch.midi
                    and candidate.staff == note.staff
                    and candidate.voice == note.voice
                ):
                    updates.setdefault(note_id, {})["tied_to"] = candidate.id
                    break

        for note_id, numbers in links.slur_starts.items():
            partners = []
            for number in numbers:
                partner = PENDING
                for candidate in ordered[position[note_id] + 1:]:
                    if number in links.slur_stops.get(candidate.id, ()):
                        partner = candidate.id
                        break
                partners.append(partner)
            updates.setdefault(note_id, {})["slurred_with"] = tuple(partners)

        if not updates:
            return measures
        return [
            replace(m, notes=tuple(replace(n, **updates[n.id]) if n.id in updates else n for n in m.notes))
            for m in measures
        ]


def parse(raw: bytes) -> ParsedScore:
    """Parse raw MusicXML or .mxl bytes with a fresh parser."""
    return MusicXMLParser().parse(raw)
