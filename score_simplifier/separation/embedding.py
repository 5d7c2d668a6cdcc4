"""Embedding tier - resolve ambiguous voice assignments with an oracle.

The oracle is an external similarity service consumed through the
EmbeddingOracle protocol; it maps a short note window to a fixed-length
vector. Calls are awaited under a hard deadline and any failure surfaces
as OracleUnavailable so the caller can take the deterministic path.
"""

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

import numpy as np

from ..core import Note, OracleUnavailable, VoicePart
from ..core.constants import ORACLE_TIMEOUT

logger = logging.getLogger(__name__)

# (MIDI pitch, ticks) per note
NoteWindow = Tuple[Tuple[int, int], ...]

CHUNK_SIZE = 8  # notes per voice history window
MIN_VOICE_NOTES = 4
MIN_WINDOW_NOTES = 3
CONTEXT_RADIUS = 2


class EmbeddingOracle(Protocol):
    """External embedding service."""

    async def embed(self, window: NoteWindow) -> Sequence[float]:
        ...


class EmbeddingCache:
    """Bounded LRU cache of window embeddings.

    Owned by whoever constructs the separator; nothing is shared between
    instances.
    """

    def __init__(self, maxsize: int = 256):
        self.maxsize = maxsize
        self._entries: "OrderedDict[NoteWindow, np.ndarray]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, window: NoteWindow) -> Optional[np.ndarray]:
        if window not in self._entries:
            self.misses += 1
            return None
        self.hits += 1
        self._entries.move_to_end(window)
        return self._entries[window]

    def put(self, window: NoteWindow, embedding: np.ndarray) -> None:
        self._entries[window] = embedding
        self._entries.move_to_end(window)
        while len(self._entries) > self.maxsize:
            self._entries.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, window: NoteWindow) -> bool:
        return window in self._entries


@dataclass(frozen=True)
class PendingNote:
    """A note the rule tier could not place."""

    note: Note
    candidates: Tuple[VoicePart, VoicePart]  # (primary, secondary)
    context: Tuple[Note, ...]  # the note with up to two neighbours each side
    history: Dict[VoicePart, Tuple[Note, ...]]  # decided notes before it


@dataclass(frozen=True)
class EmbeddingDecision:
    """Oracle vote for one pending note; voice_part is None when undecided."""

    note_id: str
    voice_part: Optional[VoicePart]
    confidence: float = 0.0


def to_window(notes: Sequence[Note]) -> NoteWindow:
    return tuple((n.midi, n.duration.ticks) for n in notes)


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity, 0 for mismatched or zero vectors."""
    if a.shape != b.shape:
        return 0.0
    denominator = float(np.linalg.norm(a) * np.linalg.norm(b))
    if denominator == 0.0:
        return 0.0
    return float(np.dot(a, b) / denominator)


class EmbeddingTier:
    """Assign ambiguous notes to the voice with the most similar embedding."""

    def __init__(
        self,
        oracle: EmbeddingOracle,
        cache: Optional[EmbeddingCache] = None,
        timeout: float = ORACLE_TIMEOUT,
    ):
        """
        Initialize EmbeddingTier.

        Args:
            oracle: Embedding service
            cache: LRU cache for window embeddings (default: a new
                EmbeddingCache private to this tier)
            timeout: Deadline in seconds for the whole tier
        """
        self.oracle = oracle
        self.cache = cache if cache is not None else EmbeddingCache()
        self.timeout = timeout

    async def assign(self, pending: Sequence[PendingNote]) -> List[EmbeddingDecision]:
        """
        Vote on every pending note under a single deadline.

        Raises:
            OracleUnavailable: On timeout or any oracle error
        """
        try:
            return await asyncio.wait_for(self._assign_all(pending), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise OracleUnavailable(f"embedding oracle timed out after {self.timeout}s") from e
        except OracleUnavailable:
            raise
        except Exception as e:
            raise OracleUnavailable(f"embedding oracle failed: {e}") from e

    async def _assign_all(self, pending: Sequence[PendingNote]) -> List[EmbeddingDecision]:
        decisions = []
        for item in pending:
            decisions.append(await self._assign_one(item))
        logger.debug(
            "Embedding tier placed %d of %d ambiguous notes (cache size %d)",
            sum(1 for d in decisions if d.voice_part is not None),
            len(decisions),
            len(self.cache),
        )
        return decisions

    async def _assign_one(self, item: PendingNote) -> EmbeddingDecision:
        if len(item.context) < MIN_WINDOW_NOTES:
            return EmbeddingDecision(item.note.id, None)

        query = await self._embed(item.context)
        scores = []
        for part in item.candidates:
            history = item.history.get(part, ())
            if len(history) < MIN_VOICE_NOTES:
                continue
            reference = await self._embed(history[-CHUNK_SIZE:])
            scores.append((cosine_similarity(query, reference), part))

        if len(scores) < len(item.candidates):
            return EmbeddingDecision(item.note.id, None)

        # Ties go to the first candidate (the primary voice)
        best_score, best_part = max(scores, key=lambda s: s[0])
        return EmbeddingDecision(
            note_id=item.note.id,
            voice_part=best_part,
            confidence=min(1.0, max(0.0, best_score)),
        )

    async def _embed(self, notes: Sequence[Note]) -> np.ndarray:
        window = to_window(notes)
        cached = self.cache.get(window)
        if cached is not None:
            return cached
        vector = np.asarray(await self.oracle.embed(window), dtype=float)
        self.cache.put(window, vector)
        return vector
