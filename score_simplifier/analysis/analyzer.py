"""Score analyzer - lock flags, beat grid, voice partition and pickup flag."""

import asyncio
import logging
from dataclasses import dataclass, replace
from fractions import Fraction
from typing import Optional

from ..core import AnalyzedScore, ParsedScore, ScoreType
from ..core.constants import (
    ANACRUSIS_THRESHOLD,
    ANOMALY_STD_FACTOR,
    BASS_CUTOFF,
    EIGHTH_TICKS,
    KMEANS_CLUSTERS,
    ORACLE_TIMEOUT,
    SOPRANO_CUTOFF,
    TICKS_PER_QUARTER,
)
from ..separation import EmbeddingCache, EmbeddingOracle, KMeansValidator, VoiceSeparator
from .locks import LockDetector
from .meter import detect_anacrusis, strong_beats
from .rhythm import rhythm_patterns

logger = logging.getLogger(__name__)


@dataclass
class AnalyzerConfig:
    """Configuration for score analysis.

    Attributes:
        anacrusis_threshold: Fill ratio of measure 1 below which it is a
            pickup (default: 0.9)
        dotted_min_ticks: Shortest dotted value that locks (default: 512)
        off_beat_min_beats: Shortest off-beat value that locks, in beats
            (default: 0.5)
        phrase_end_min_ticks: Shortest measure-final value that locks
            (default: 1024)
        soprano_cutoff: Fallback MIDI cutoff for soprano (default: 72)
        bass_cutoff: Fallback MIDI cutoff for bass (default: 48)
        oracle_timeout: Embedding oracle deadline in seconds (default: 3.0)
        kmeans_clusters: Validation cluster count (default: 4)
        anomaly_std_factor: Anomaly distance in cluster std devs (default: 2.0)
        kmeans_seed: Seed for k-means++ initialisation (default: 0)
        separate_voices: Run voice separation on grand-staff scores
            (default: True)
    """

    anacrusis_threshold: float = ANACRUSIS_THRESHOLD
    dotted_min_ticks: int = EIGHTH_TICKS
    off_beat_min_beats: float = 0.5
    phrase_end_min_ticks: int = TICKS_PER_QUARTER
    soprano_cutoff: int = SOPRANO_CUTOFF
    bass_cutoff: int = BASS_CUTOFF
    oracle_timeout: float = ORACLE_TIMEOUT
    kmeans_clusters: int = KMEANS_CLUSTERS
    anomaly_std_factor: float = ANOMALY_STD_FACTOR
    kmeans_seed: int = 0
    separate_voices: bool = True


class ScoreAnalyzer:
    """Turn a ParsedScore into an AnalyzedScore.

    Lock detection and anacrusis detection are pure functions of the
    parsed measures; voice separation may await the embedding oracle.
    """

    def __init__(
        self,
        config: Optional[AnalyzerConfig] = None,
        oracle: Optional[EmbeddingOracle] = None,
        cache: Optional[EmbeddingCache] = None,
    ):
        """
        Initialize ScoreAnalyzer.

        Args:
            config: Optional AnalyzerConfig
            oracle: Optional embedding oracle for voice separation
            cache: Embedding cache injected into the separator
        """
        self.config = config or AnalyzerConfig()
        self.separator = VoiceSeparator(
            oracle=oracle,
            cache=cache,
            timeout=self.config.oracle_timeout,
            soprano_cutoff=self.config.soprano_cutoff,
            bass_cutoff=self.config.bass_cutoff,
            validator=KMeansValidator(
                n_clusters=self.config.kmeans_clusters,
                std_factor=self.config.anomaly_std_factor,
                seed=self.config.kmeans_seed,
            ),
        )

    def analyze(self, score: ParsedScore) -> AnalyzedScore:
        """Analyze synchronously (runs its own event loop)."""
        return asyncio.run(self.analyze_async(score))

    async def analyze_async(self, score: ParsedScore) -> AnalyzedScore:
        """
        Analyze a parsed score.

        Args:
            score: Parser output

        Returns:
            AnalyzedScore; `score` itself is not modified
        """
        time_signature = score.metadata.time_signature
        detector = LockDetector(
            time_signature,
            dotted_min_ticks=self.config.dotted_min_ticks,
            off_beat_min_beats=Fraction(self.config.off_beat_min_beats).limit_denominator(64),
            phrase_end_min_ticks=self.config.phrase_end_min_ticks,
        )
        measures = tuple(detector.detect(m) for m in score.measures)

        is_anacrusis = bool(measures) and detect_anacrusis(
            measures[0], time_signature, self.config.anacrusis_threshold
        )

        analyzed = AnalyzedScore(
            metadata=score.metadata,
            measures=measures,
            strong_beats=strong_beats(time_signature),
            is_anacrusis=is_anacrusis,
            score_type=score.score_type,
            rhythm_patterns=tuple(rhythm_patterns(m, time_signature) for m in measures),
            container=score.container,
        )

        if score.score_type is ScoreType.GRAND_STAFF and self.config.separate_voices:
            result = await self.separator.separate_async(measures, time_signature)
            analyzed = replace(
                analyzed,
                measures=result.measures,
                voices=result.voices,
                separation=result.report,
            )

        logger.info(
            "Analyzed %d measures: %d locked notes, anacrusis=%s, %s",
            len(analyzed.measures),
            len(analyzed.locked_notes),
            analyzed.is_anacrusis,
            analyzed.score_type.value,
        )
        return analyzed


def analyze(
    score: ParsedScore,
    config: Optional[AnalyzerConfig] = None,
    oracle: Optional[EmbeddingOracle] = None,
    cache: Optional[EmbeddingCache] = None,
) -> AnalyzedScore:
    """Analyze a parsed score synchronously."""
    return ScoreAnalyzer(config, oracle, cache).analyze(score)


async def analyze_async(
    score: ParsedScore,
    config: Optional[AnalyzerConfig] = None,
    oracle: Optional[EmbeddingOracle] = None,
    cache: Optional[EmbeddingCache] = None,
) -> AnalyzedScore:
    """Analyze a parsed score inside a running event loop."""
    return await ScoreAnalyzer(config, oracle, cache).analyze_async(score)
