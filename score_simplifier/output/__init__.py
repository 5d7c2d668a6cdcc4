"""Output layer - Export simplified scores.

This layer handles exporting simplified scores to:
- MusicXML and compressed .mxl (for notation software)
- MIDI files (for playback)
"""

from .midi import MIDIExporter
from .musicxml import MusicXMLExporter, check_closure, export

__all__ = [
    "MIDIExporter",
    "MusicXMLExporter",
    "check_closure",
    "export",
]
