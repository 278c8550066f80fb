"""
Skill Profiling
===============

Turns a player's top plays into a per-mod-group target difficulty.

Mathematical Formulation:
-------------------------

For a mod group g with plays sorted by pp descending:

    target_g = Σ (d^i × stars_i) / Σ d^i

where d is the decay factor (0 < d <= 1), so the best plays dominate.
Groups with fewer than min_support plays get no target at all.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

import numpy as np

from .config import DEFAULT_PROFILER_CONFIG, ProfilerConfig
from .features import Mods, TopPlay

logger = logging.getLogger(__name__)


@dataclass
class SkillEstimate:
    """Target difficulty per mod group that had enough supporting plays."""
    targets: Dict[Mods, float] = field(default_factory=dict)
    support: Dict[Mods, int] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.targets)

    def __contains__(self, mods) -> bool:
        return mods in self.targets

    def __getitem__(self, mods: Mods) -> float:
        return self.targets[mods]

    def __iter__(self) -> Iterator[Mods]:
        return iter(sorted(self.targets, key=int))

    def get(self, mods: Mods, default: Optional[float] = None) -> Optional[float]:
        return self.targets.get(mods, default)

    def items(self) -> List[Tuple[Mods, float]]:
        """(mods, target) pairs in a stable order."""
        return [(mods, self.targets[mods]) for mods in self]

    @property
    def is_empty(self) -> bool:
        return not self.targets


class SkillProfiler:
    """
    Estimates the difficulty a player is comfortable with, per mod group.
    """

    def __init__(self, config: ProfilerConfig = DEFAULT_PROFILER_CONFIG):
        self.config = config

    def group_plays(self, top_plays: Iterable[TopPlay]) -> Dict[Mods, List[TopPlay]]:
        """
        Bucket plays by normalised mod combination.

        Plays whose difficulty was never resolved are left out. Untracked
        flags keep their exact combination as the key instead of being
        merged into one bucket.
        """
        groups: Dict[Mods, List[TopPlay]] = defaultdict(list)
        for play in top_plays:
            if play.star_rating is None:
                continue
            groups[play.group].append(play)
        return dict(groups)

    def weighted_target(self, plays: List[TopPlay]) -> float:
        """Decay-weighted mean star rating, best pp first."""
        ordered = sorted(plays, key=lambda p: (-p.pp, p.beatmap_id))
        stars = np.array([p.star_rating for p in ordered], dtype=float)
        weights = self.config.decay_factor ** np.arange(len(ordered))
        return float(np.average(stars, weights=weights))

    def estimate(self, top_plays: Iterable[TopPlay]) -> SkillEstimate:
        """
        Build a skill estimate from top plays.

        Args:
            top_plays: Plays with resolved star_rating

        Returns:
            SkillEstimate; empty when no group reaches min_support
        """
        estimate = SkillEstimate()

        for mods, plays in self.group_plays(top_plays).items():
            if len(plays) < self.config.min_support:
                logger.debug(
                    "Skipping %s: %d plays < min_support %d",
                    mods.acronym, len(plays), self.config.min_support,
                )
                continue
            estimate.targets[mods] = self.weighted_target(plays)
            estimate.support[mods] = len(plays)

        return estimate
