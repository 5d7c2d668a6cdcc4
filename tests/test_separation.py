"""Tests for grand-staff voice separation."""

import asyncio

import numpy as np
import pytest

from score_simplifier.core import OracleUnavailable, TimeSignature, VoicePart
from score_simplifier.input import parse
from score_simplifier.separation import (
    EmbeddingCache,
    EmbeddingTier,
    KMeansValidator,
    VoiceSeparator,
    cosine_similarity,
)
from score_simplifier.separation.embedding import PendingNote
from fixtures.notes import make_note
from fixtures.scores import grand_staff

FOUR_FOUR = TimeSignature(4, 4)


class PitchOracle:
    """Deterministic oracle: mean pitch and mean length of the window."""

    def __init__(self):
        self.calls = 0

    async def embed(self, window):
        self.calls += 1
        pitches = [p for p, _ in window]
        lengths = [t for _, t in window]
        return [sum(pitches) / len(pitches), sum(lengths) / len(lengths) / 64.0, 1.0]


class SlowOracle:
    async def embed(self, window):
        await asyncio.sleep(10)
        return [1.0]


class BrokenOracle:
    async def embed(self, window):
        raise RuntimeError("service down")


def _separate(oracle=None, cache=None, timeout=3.0):
    parsed = parse(grand_staff())
    separator = VoiceSeparator(oracle=oracle, cache=cache, timeout=timeout)
    return parsed, separator.separate(parsed.measures, parsed.metadata.time_signature)


def _parts_by_pitch(result, measure_index):
    return {n.pitch.name: n.voice_part for n in result.measures[measure_index].notes}


class TestRuleTier:
    """Simultaneous notes are split by pitch order."""

    def test_upper_staff_chords(self):
        _, result = _separate()
        parts = _parts_by_pitch(result, 0)
        assert parts["E5"] is VoicePart.SOPRANO
        assert parts["G4"] is VoicePart.ALTO
        assert parts["C5"] is VoicePart.SOPRANO
        assert parts["E4"] is VoicePart.ALTO

    def test_lower_staff_chords(self):
        _, result = _separate()
        parts = _parts_by_pitch(result, 0)
        assert parts["C3"] is VoicePart.BASS
        assert parts["G3"] is VoicePart.TENOR
        assert parts["G2"] is VoicePart.BASS
        assert parts["D3"] is VoicePart.TENOR

    def test_every_note_is_assigned(self):
        parsed, result = _separate()
        assert all(n.voice_part is not None for m in result.measures for n in m.notes)
        assert sum(len(v) for v in result.voices.values()) == len(list(parsed.iter_notes()))

    def test_input_measures_are_not_modified(self):
        parsed, _ = _separate()
        assert all(n.voice_part is None for n in parsed.iter_notes())


class TestFallback:
    """Deterministic placement of notes the rule tier defers."""

    def test_single_line_staff_goes_to_primary_voice(self):
        _, result = _separate()
        parts = _parts_by_pitch(result, 1)
        assert parts == {
            "E5": VoicePart.SOPRANO,
            "D5": VoicePart.SOPRANO,
            "C5": VoicePart.SOPRANO,
            "C3": VoicePart.BASS,
        }

    def test_pitch_cutoffs_when_staff_has_chords(self):
        _, result = _separate()
        parts = _parts_by_pitch(result, 2)
        assert parts["G4"] is VoicePart.ALTO  # below C5 on the upper staff
        assert parts["A2"] is VoicePart.BASS  # below C3 on the lower staff

    def test_tier_counts_without_oracle(self):
        _, result = _separate()
        assert result.report.count_by_tier() == {"rule": 14, "fallback": 6}
        assert not result.report.oracle_used

    def test_fallback_part_directly(self):
        separator = VoiceSeparator()
        high = make_note("D5", staff=1)
        low = make_note("A4", staff=1)
        assert separator.fallback_part(high, staff_has_chords=True) is VoicePart.SOPRANO
        assert separator.fallback_part(low, staff_has_chords=True) is VoicePart.ALTO
        assert separator.fallback_part(low, staff_has_chords=False) is VoicePart.SOPRANO
        assert separator.fallback_part(make_note("C3", staff=2), staff_has_chords=True) is VoicePart.TENOR
        assert separator.fallback_part(make_note("B2", staff=2), staff_has_chords=True) is VoicePart.BASS


class TestEmbeddingTier:
    """Optional oracle with a deadline and an injected cache."""

    def test_oracle_places_note_with_enough_history(self):
        _, result = _separate(oracle=PitchOracle())
        report = result.report
        assert report.oracle_used
        assert report.oracle_failures == 0
        by_id = {a.note_id: a for a in report.assignments}
        g4 = next(n for n in result.measures[2].notes if n.pitch.name == "G4")
        assert by_id[g4.id].tier == "embedding"
        assert 0.0 <= by_id[g4.id].confidence <= 1.0
        assert report.count_by_tier() == {"rule": 14, "embedding": 1, "fallback": 5}

    def test_timeout_falls_back(self):
        _, result = _separate(oracle=SlowOracle(), timeout=0.05)
        assert not result.report.oracle_used
        assert result.report.oracle_failures == 1
        assert _parts_by_pitch(result, 2)["G4"] is VoicePart.ALTO
        assert "embedding" not in result.report.count_by_tier()

    def test_oracle_error_falls_back(self):
        _, result = _separate(oracle=BrokenOracle())
        assert result.report.oracle_failures == 1
        assert result.report.count_by_tier() == {"rule": 14, "fallback": 6}

    def test_tier_raises_oracle_unavailable(self):
        tier = EmbeddingTier(BrokenOracle(), timeout=1.0)
        context = tuple(make_note(n, beat) for n, beat in (("C4", 1), ("D4", 2), ("E4", 3)))
        item = PendingNote(
            note=context[1],
            candidates=(VoicePart.SOPRANO, VoicePart.ALTO),
            context=context,
            history={},
        )
        with pytest.raises(OracleUnavailable):
            asyncio.run(tier.assign([item]))

    def test_short_context_is_left_undecided(self):
        tier = EmbeddingTier(PitchOracle())
        note = make_note("C4")
        item = PendingNote(note=note, candidates=(VoicePart.SOPRANO, VoicePart.ALTO), context=(note,), history={})
        decisions = asyncio.run(tier.assign([item]))
        assert decisions[0].voice_part is None

    def test_shared_cache_avoids_repeat_calls(self):
        oracle = PitchOracle()
        cache = EmbeddingCache(maxsize=64)
        _separate(oracle=oracle, cache=cache)
        first_calls = oracle.calls
        assert first_calls > 0
        assert len(cache) > 0

        _separate(oracle=oracle, cache=cache)
        assert oracle.calls == first_calls
        assert cache.hits > 0

    def test_async_separation_inside_running_loop(self):
        parsed = parse(grand_staff())
        separator = VoiceSeparator(oracle=PitchOracle())

        async def run():
            return await separator.separate_async(parsed.measures, parsed.metadata.time_signature)

        result = asyncio.run(run())
        assert result.report.oracle_used


class TestEmbeddingCache:
    """Bounded LRU behaviour."""

    def test_evicts_least_recently_used(self):
        cache = EmbeddingCache(maxsize=2)
        a, b, c = ((60, 1024),), ((62, 1024),), ((64, 1024),)
        cache.put(a, np.array([1.0]))
        cache.put(b, np.array([2.0]))
        assert cache.get(a) is not None  # a is now most recent
        cache.put(c, np.array([3.0]))
        assert a in cache
        assert b not in cache
        assert c in cache
        assert len(cache) == 2

    def test_hit_and_miss_counters(self):
        cache = EmbeddingCache()
        window = ((60, 1024),)
        assert cache.get(window) is None
        cache.put(window, np.array([1.0]))
        cache.get(window)
        assert (cache.hits, cache.misses) == (1, 1)

    def test_clear(self):
        cache = EmbeddingCache()
        cache.put(((60, 1024),), np.array([1.0]))
        cache.clear()
        assert len(cache) == 0


class TestCosineSimilarity:
    def test_identical_vectors(self):
        assert cosine_similarity(np.array([1.0, 2.0]), np.array([2.0, 4.0])) == pytest.approx(1.0)

    def test_orthogonal_vectors(self):
        assert cosine_similarity(np.array([1.0, 0.0]), np.array([0.0, 1.0])) == pytest.approx(0.0)

    def test_zero_or_mismatched(self):
        assert cosine_similarity(np.zeros(2), np.array([1.0, 1.0])) == 0.0
        assert cosine_similarity(np.ones(2), np.ones(3)) == 0.0


class TestKMeansValidator:
    """Diagnostic anomaly report."""

    def test_fit_is_deterministic(self):
        rng = np.random.default_rng(7)
        data = rng.normal(size=(40, 5))
        first_labels, first_centroids = KMeansValidator(seed=3).fit(data)
        second_labels, second_centroids = KMeansValidator(seed=3).fit(data)
        assert np.array_equal(first_labels, second_labels)
        assert np.allclose(first_centroids, second_centroids)
        assert first_centroids.shape == (4, 5)

    def test_too_few_notes_reports_nothing(self):
        notes = [make_note("C4", 1), make_note("D4", 2)]
        voices = {VoicePart.SOPRANO: notes}
        index = {n.id: 0 for n in notes}
        assert KMeansValidator().find_anomalies(voices, index, FOUR_FOUR.quarter_beats) == []

    def test_anomalies_exceed_their_threshold(self):
        notes = [make_note("C4", beat) for beat in (1, 2, 3, 4)]
        notes += [make_note("D4", beat) for beat in (1, 2, 3, 4)]
        notes += [make_note("C7", 1, 4096)]
        index = {n.id: i // 4 for i, n in enumerate(notes)}
        voices = {VoicePart.SOPRANO: notes}
        anomalies = KMeansValidator().find_anomalies(voices, index, FOUR_FOUR.quarter_beats)
        for anomaly in anomalies:
            assert anomaly.distance > anomaly.threshold
            assert anomaly.note_id in index

    def test_separation_report_carries_anomalies_tuple(self):
        _, result = _separate()
        assert isinstance(result.report.anomalies, tuple)
