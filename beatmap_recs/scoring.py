"""
Recommendation Ranking
======================

Orders candidates into the final recommendation list:
1. Deduplicate by beatmap id, keeping the best-matching mod group
2. Sort by match score (closest difficulty first)
3. Break ties by freshest beatmap update, then by beatmap id
4. Truncate to the configured cap

The ordering is a pure function of the candidate set, so it does not
depend on the order concurrent searches finished in.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .config import DEFAULT_RANKER_CONFIG, RankerConfig
from .candidates import Candidate
from .features import Beatmap, Mods


@dataclass(frozen=True)
class Recommendation:
    """Single beatmap recommendation."""
    beatmap: Beatmap
    mods: Mods
    score: float

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "beatmap": self.beatmap.to_dict(),
            "mods": int(self.mods),
            "mods_acronym": self.mods.acronym,
            "score": round(self.score, 4),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Recommendation":
        return cls(
            beatmap=Beatmap.from_dict(data["beatmap"]),
            mods=Mods(int(data["mods"])),
            score=float(data["score"]),
        )


def _sort_key(candidate: Candidate):
    return (
        candidate.score,
        -candidate.beatmap.last_update.timestamp(),
        candidate.beatmap.id,
    )


class RecommendationRanker:
    """
    Deduplicates and orders candidates.
    """

    def __init__(self, config: RankerConfig = DEFAULT_RANKER_CONFIG):
        self.config = config

    @staticmethod
    def deduplicate(candidates: Iterable[Candidate]) -> List[Candidate]:
        """
        Keep one candidate per beatmap id: the lowest score, and on equal
        scores the group with the lower mod value.
        """
        best: Dict[int, Candidate] = {}
        for candidate in candidates:
            current = best.get(candidate.beatmap.id)
            if current is None or (candidate.score, int(candidate.mods)) < (current.score, int(current.mods)):
                best[candidate.beatmap.id] = candidate
        return list(best.values())

    def rank(
        self,
        candidates: Iterable[Candidate],
        max_results: Optional[int] = None
    ) -> List[Recommendation]:
        """
        Produce the final ordered recommendation list.

        Args:
            candidates: Candidates from any number of mod groups
            max_results: Cap on the output size (config default if None)

        Returns:
            Recommendations, best match first
        """
        limit = self.config.max_results if max_results is None else max_results
        ranked = sorted(self.deduplicate(candidates), key=_sort_key)
        return [
            Recommendation(beatmap=c.beatmap, mods=c.mods, score=c.score)
            for c in ranked[:max(limit, 0)]
        ]
