"""Input layer - Score loading and MusicXML parsing.

This layer handles:
- Reading .xml, .musicxml and .mxl files
- Unwrapping compressed containers
- Parsing measures, notes, ties, slurs and metadata
"""

from .loader import ScoreLoader
from .parser import MusicXMLParser, NoteIdAllocator, parse

__all__ = [
    "ScoreLoader",
    "MusicXMLParser",
    "NoteIdAllocator",
    "parse",
]
