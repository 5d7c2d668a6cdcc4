"""Score Simplifier - Graded simplification of MusicXML scores.

Architecture Layers:
    1. input/       - Container loading and MusicXML parsing
    2. analysis/    - Beat grid, lock detection, rhythm patterns, anacrusis
    3. separation/  - SATB voice separation for grand-staff scores
    4. processing/  - Level 1-5 simplification (single and grand staff)
    5. output/      - Export (MusicXML, .mxl, MIDI)
"""

__version__ = "0.3.0"

# Core types
from .core import (
    AnalyzedScore,
    FormatError,
    Note,
    ParsedScore,
    SimplifiedScore,
    VoicePart,
)

# Input layer
from .input import MusicXMLParser, ScoreLoader, parse

# Analysis layer
from .analysis import AnalyzerConfig, ScoreAnalyzer, analyze

# Separation layer
from .separation import EmbeddingCache, VoiceSeparator

# Processing layer
from .processing import SimplificationConfig, Simplifier, simplify

# Output layer
from .output import MIDIExporter, MusicXMLExporter, export

from .pipeline import PipelineResult, run_pipeline, simplify_bytes

__all__ = [
    # Core
    "AnalyzedScore",
    "FormatError",
    "Note",
    "ParsedScore",
    "SimplifiedScore",
    "VoicePart",
    # Input
    "MusicXMLParser",
    "ScoreLoader",
    "parse",
    # Analysis
    "AnalyzerConfig",
    "ScoreAnalyzer",
    "analyze",
    # Separation
    "EmbeddingCache",
    "VoiceSeparator",
    # Processing
    "SimplificationConfig",
    "Simplifier",
    "simplify",
    # Output
    "MIDIExporter",
    "MusicXMLExporter",
    "export",
    # Pipeline
    "PipelineResult",
    "run_pipeline",
    "simplify_bytes",
]
