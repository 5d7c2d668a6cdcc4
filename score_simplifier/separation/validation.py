"""Validation tier - k-means sanity check of voice assignments.

Clusters notes on pitch, duration, beat phase and neighbour intervals
independently of their voice labels and reports notes lying far from
their centroid. Diagnostic only: nothing here changes an assignment.
"""

from fractions import Fraction
from typing import Dict, List, Sequence, Tuple

import numpy as np

from ..core import Note, VoiceAnomaly, VoicePart
from ..core.constants import ANOMALY_STD_FACTOR, KMEANS_CLUSTERS


def extract_features(
    notes: Sequence[Note],
    measure_index: Dict[str, int],
    measure_beats: Fraction,
) -> np.ndarray:
    """
    Build the feature matrix for one voice's notes.

    Args:
        notes: Notes of one voice part, in score order
        measure_index: Note id -> measure index
        measure_beats: Nominal measure length in quarter beats

    Returns:
        Array of shape (n_notes, 5): pitch/127, ticks/4096, beat phase,
        interval to previous/24, interval to next/24
    """
    ordered = sorted(notes, key=lambda n: (measure_index.get(n.id, 0), n.start_beat))
    rows = []
    for i, note in enumerate(ordered):
        prev_interval = note.midi - ordered[i - 1].midi if i > 0 else 0
        next_interval = ordered[i + 1].midi - note.midi if i < len(ordered) - 1 else 0
        phase = float((note.start_beat - 1) % measure_beats / measure_beats)
        rows.append([
            note.midi / 127.0,
            note.duration.ticks / 4096.0,
            phase,
            prev_interval / 24.0,
            next_interval / 24.0,
        ])
    return np.array(rows, dtype=float).reshape(-1, 5)


class KMeansValidator:
    """K-means with k-means++ seeding over a seeded generator."""

    def __init__(
        self,
        n_clusters: int = KMEANS_CLUSTERS,
        std_factor: float = ANOMALY_STD_FACTOR,
        max_iterations: int = 50,
        seed: int = 0,
    ):
        self.n_clusters = n_clusters
        self.std_factor = std_factor
        self.max_iterations = max_iterations
        self.seed = seed

    def fit(self, data: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Cluster rows of `data`.

        Returns:
            Tuple of (labels, centroids)
        """
        rng = np.random.default_rng(self.seed)
        centroids = self._init_centroids(data, rng)
        labels = np.full(len(data), -1)

        for _ in range(self.max_iterations):
            distances = np.linalg.norm(data[:, None, :] - centroids[None, :, :], axis=2)
            new_labels = np.argmin(distances, axis=1)
            if np.array_equal(labels, new_labels):
                break
            labels = new_labels
            for c in range(len(centroids)):
                members = data[labels == c]
                if len(members) > 0:
                    centroids[c] = members.mean(axis=0)

        return labels, centroids

    def _init_centroids(self, data: np.ndarray, rng: np.random.Generator) -> np.ndarray:
        centroids = [data[rng.integers(len(data))]]
        while len(centroids) < self.n_clusters:
            diffs = data[:, None, :] - np.array(centroids)[None, :, :]
            nearest = np.min(np.linalg.norm(diffs, axis=2), axis=1) ** 2
            total = nearest.sum()
            if total == 0:
                # All points coincide with a centroid already
                centroids.append(data[rng.integers(len(data))])
                continue
            centroids.append(data[rng.choice(len(data), p=nearest / total)])
        return np.array(centroids, dtype=float)

    def find_anomalies(
        self,
        voices: Dict[VoicePart, Sequence[Note]],
        measure_index: Dict[str, int],
        measure_beats: Fraction,
    ) -> List[VoiceAnomaly]:
        """
        Report notes further than std_factor standard deviations from
        their cluster centroid.

        Args:
            voices: Assigned notes per voice part
            measure_index: Note id -> measure index
            measure_beats: Nominal measure length in quarter beats

        Returns:
            List of VoiceAnomaly (empty when fewer notes than clusters)
        """
        ids: List[str] = []
        blocks = []
        for part in VoicePart:
            notes = sorted(
                voices.get(part, ()),
                key=lambda n: (measure_index.get(n.id, 0), n.start_beat),
            )
            if not notes:
                continue
            ids.extend(n.id for n in notes)
            blocks.append(extract_features(notes, measure_index, measure_beats))

        if len(ids) < self.n_clusters:
            return []

        data = np.vstack(blocks)
        labels, centroids = self.fit(data)
        distances = np.linalg.norm(data - centroids[labels], axis=1)

        anomalies = []
        for c in range(len(centroids)):
            member_distances = distances[labels == c]
            if len(member_distances) == 0:
                continue
            std = float(member_distances.std()) or 1.0
            threshold = self.std_factor * std
            for idx in np.flatnonzero((labels == c) & (distances > threshold)):
                anomalies.append(
                    VoiceAnomaly(
                        note_id=ids[idx],
                        cluster=int(c),
                        distance=float(distances[idx]),
                        threshold=threshold,
                    )
                )
        return anomalies
