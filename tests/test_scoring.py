"""
Tests for the recommendation ranker.

What we test
------------
1. Output is ordered by non-decreasing score.
2. Equal scores order by newest update, then by beatmap id.
3. Ordering does not depend on input order.
4. Duplicate beatmaps keep only the best-scoring mod group.
5. Output is capped at max_results.
6. Recommendations survive the JSON dict round trip used by the cache.
"""

from __future__ import annotations

import random

import pytest

from beatmap_recs.candidates import Candidate
from beatmap_recs.config import RankerConfig
from beatmap_recs.features import Mods
from beatmap_recs.scoring import Recommendation, RecommendationRanker

from conftest import make_beatmap


def _candidate(beatmap_id, score, mods=Mods.NONE, updated_days=0) -> Candidate:
    return Candidate(beatmap=make_beatmap(beatmap_id, 4.0, updated_days), mods=mods, score=score)


class TestOrdering:
    def test_sorted_by_score(self):
        ranked = RecommendationRanker().rank([
            _candidate(1, 0.3), _candidate(2, 0.1), _candidate(3, 0.2),
        ])
        assert [r.beatmap.id for r in ranked] == [2, 3, 1]

    def test_ties_prefer_fresh_then_low_id(self):
        ranked = RecommendationRanker().rank([
            _candidate(5, 0.1, updated_days=1),
            _candidate(3, 0.1, updated_days=1),
            _candidate(9, 0.1, updated_days=30),
        ])
        assert [r.beatmap.id for r in ranked] == [9, 3, 5]

    @pytest.mark.parametrize("seed", range(10))
    def test_deterministic_regardless_of_input_order(self, seed):
        rng = random.Random(seed)
        candidates = [
            _candidate(i, round(rng.uniform(0, 0.5), 1), updated_days=rng.randint(0, 3))
            for i in range(1, 40)
        ]
        ranker = RecommendationRanker()
        expected = [r.beatmap.id for r in ranker.rank(candidates)]
        for _ in range(3):
            rng.shuffle(candidates)
            assert [r.beatmap.id for r in ranker.rank(candidates)] == expected

        ranked = ranker.rank(candidates)
        for a, b in zip(ranked, ranked[1:]):
            assert a.score <= b.score
            if a.score == b.score:
                key_a = (-a.beatmap.last_update.timestamp(), a.beatmap.id)
                key_b = (-b.beatmap.last_update.timestamp(), b.beatmap.id)
                assert key_a < key_b


class TestDeduplication:
    def test_keeps_best_group(self):
        ranked = RecommendationRanker().rank([
            _candidate(7, 0.4, Mods.NONE),
            _candidate(7, 0.1, Mods.HIDDEN),
            _candidate(8, 0.2, Mods.NONE),
        ])
        assert [r.beatmap.id for r in ranked] == [7, 8]
        assert ranked[0].mods == Mods.HIDDEN
        assert ranked[0].score == pytest.approx(0.1)

    def test_equal_scores_keep_lower_mod_value(self):
        deduped = RecommendationRanker.deduplicate([
            _candidate(7, 0.1, Mods.HIDDEN),
            _candidate(7, 0.1, Mods.NONE),
        ])
        assert len(deduped) == 1
        assert deduped[0].mods == Mods.NONE


class TestTruncation:
    def test_config_cap(self):
        candidates = [_candidate(i, i / 100) for i in range(1, 21)]
        ranked = RecommendationRanker(RankerConfig(max_results=5)).rank(candidates)
        assert [r.beatmap.id for r in ranked] == [1, 2, 3, 4, 5]

    def test_explicit_cap_overrides_config(self):
        candidates = [_candidate(i, i / 100) for i in range(1, 21)]
        assert len(RecommendationRanker().rank(candidates, max_results=3)) == 3
        assert RecommendationRanker().rank(candidates, max_results=0) == []

    def test_empty(self):
        assert RecommendationRanker().rank([]) == []


class TestRecommendationSerialization:
    def test_dict_round_trip(self):
        rec = Recommendation(beatmap=make_beatmap(3, 4.2, 5), mods=Mods.HIDDEN | Mods.HARD_ROCK, score=0.125)
        data = rec.to_dict()
        assert data["mods_acronym"] == "HDHR"

        restored = Recommendation.from_dict(data)
        assert restored.beatmap == rec.beatmap
        assert restored.beatmap.last_update == rec.beatmap.last_update
        assert restored.mods == rec.mods
        assert restored.score == pytest.approx(0.125)
