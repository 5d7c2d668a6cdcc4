"""End-to-end pipeline: parse -> analyze -> simplify -> export."""

import logging
from dataclasses import dataclass
from typing import Optional

from .analysis import AnalyzerConfig, ScoreAnalyzer
from .core import AnalyzedScore, ParsedScore, SimplifiedScore
from .input import MusicXMLParser
from .output import MusicXMLExporter
from .processing import SimplificationConfig, Simplifier
from .separation import EmbeddingCache, EmbeddingOracle

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineResult:
    """Every stage's output, for callers that report on intermediate steps."""

    parsed: ParsedScore
    analyzed: AnalyzedScore
    simplified: SimplifiedScore
    document: bytes


def run_pipeline(
    raw: bytes,
    config: Optional[SimplificationConfig] = None,
    analyzer_config: Optional[AnalyzerConfig] = None,
    compressed: Optional[bool] = None,
    oracle: Optional[EmbeddingOracle] = None,
    cache: Optional[EmbeddingCache] = None,
) -> PipelineResult:
    """
    Run the full pipeline over raw score bytes.

    Args:
        raw: Bare MusicXML or .mxl bytes
        config: Simplification level settings (default: level 3)
        analyzer_config: Analysis thresholds
        compressed: Output container; None mirrors the input
        oracle: Optional embedding oracle for voice separation
        cache: Embedding cache for the oracle

    Returns:
        PipelineResult

    Raises:
        FormatError: If the input cannot be read
    """
    parsed = MusicXMLParser().parse(raw)
    analyzed = ScoreAnalyzer(analyzer_config, oracle=oracle, cache=cache).analyze(parsed)
    simplified = Simplifier(config).simplify(analyzed)
    document = MusicXMLExporter().export(simplified, compressed=compressed)
    logger.debug("Pipeline produced %d bytes", len(document))
    return PipelineResult(parsed=parsed, analyzed=analyzed, simplified=simplified, document=document)


def simplify_bytes(
    raw: bytes,
    level: int = 3,
    soprano_level: Optional[int] = None,
    bass_level: Optional[int] = None,
    compressed: Optional[bool] = None,
    oracle: Optional[EmbeddingOracle] = None,
    cache: Optional[EmbeddingCache] = None,
) -> bytes:
    """Simplify a score document and return the exported bytes."""
    config = SimplificationConfig(main_level=level, soprano_level=soprano_level, bass_level=bass_level)
    return run_pipeline(raw, config, compressed=compressed, oracle=oracle, cache=cache).document
