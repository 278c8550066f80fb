"""
Candidate Selection Module
==========================

Finds unplayed beatmaps close to the player's target difficulty for every
mod group in the skill estimate:
1. Search ranked/approved beatmaps in a star band around the target
2. Drop beatmaps the player already has a top play on (any mods)
3. Evaluate each survivor under the group's mods
4. Score by distance to the target (lower is better)

Mod groups are independent and run on a small thread pool so the number of
simultaneous requests stays within the service's rate limit.
"""

import logging
import threading
from concurrent.futures import CancelledError, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import AbstractSet, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from .config import DEFAULT_CANDIDATE_CONFIG, MOD_STAR_MULTIPLIERS, CandidateConfig
from .exceptions import AuthError, NotFoundError, OperationCancelled, ScoreServiceError
from .features import Beatmap, GameMode, Mods, estimate_star_multiplier
from .osu_client import OsuClient, PageCallback, SearchCriteria
from .profiler import SkillEstimate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Candidate:
    """An unplayed beatmap evaluated under one mod group."""
    beatmap: Beatmap
    mods: Mods
    score: float


@dataclass
class SelectionResult:
    """Outcome of a multi-group selection run."""
    candidates: List[Candidate] = field(default_factory=list)
    completed_groups: List[Mods] = field(default_factory=list)
    failed_groups: Dict[Mods, ScoreServiceError] = field(default_factory=dict)
    total_groups: int = 0
    cancelled: bool = False


class CandidateSelector:
    """
    Generates candidate beatmaps for each mod group of a skill estimate.
    """

    def __init__(
        self,
        client: OsuClient,
        config: CandidateConfig = DEFAULT_CANDIDATE_CONFIG,
        star_multipliers: Mapping[str, float] = MOD_STAR_MULTIPLIERS
    ):
        """
        Initialize candidate selector.

        Args:
            client: Scoring service client
            config: Tolerance band and concurrency
            star_multipliers: Used to centre the search band for mods
                that change difficulty
        """
        self.client = client
        self.config = config
        self.star_multipliers = star_multipliers

    def search_band(self, mods: Mods, target: float) -> Tuple[float, float]:
        """
        Base (no-mod) star range to search for a mod-adjusted target.
        """
        factor = estimate_star_multiplier(mods, self.star_multipliers)
        low = max(target - self.config.tolerance, 0.0) / factor
        high = (target + self.config.tolerance) / factor
        return low, high

    def select_for_group(
        self,
        mods: Mods,
        target: float,
        excluded_beatmap_ids: AbstractSet[int],
        game_mode: GameMode,
        cancel_event: Optional[threading.Event] = None,
        on_page: Optional[PageCallback] = None
    ) -> List[Candidate]:
        """
        Candidates for a single mod group.

        Args:
            mods: The group's mod combination
            target: Target star rating for the group
            excluded_beatmap_ids: Beatmaps already played
            game_mode: Player's game mode
            cancel_event: Checked between remote calls
            on_page: Forwarded to the search, called after each page

        Returns:
            One Candidate per surviving beatmap

        Raises:
            OperationCancelled: if cancelled part-way through the group
        """
        low, high = self.search_band(mods, target)
        beatmaps = self.client.search_beatmaps(
            SearchCriteria(game_mode=game_mode, min_stars=low, max_stars=high),
            on_page=on_page,
            cancel_event=cancel_event,
        )

        candidates = []
        seen = set()
        for beatmap in beatmaps:
            if beatmap.id in excluded_beatmap_ids or beatmap.id in seen:
                continue
            seen.add(beatmap.id)

            if mods.difficulty_mods:
                if cancel_event is not None and cancel_event.is_set():
                    raise OperationCancelled(f"Cancelled while evaluating {mods.acronym}")
                try:
                    traits = self.client.fetch_beatmap_traits(beatmap.id, mods, game_mode)
                except NotFoundError:
                    logger.warning("Beatmap %d vanished, skipping", beatmap.id)
                    continue
                beatmap = beatmap.with_traits(traits)

            score = abs(beatmap.traits.star_rating - target)
            candidates.append(Candidate(beatmap=beatmap, mods=mods, score=score))

        logger.info(
            "  → %s: %d candidates in %.2f-%.2f★",
            mods.acronym, len(candidates), low, high,
        )
        return candidates

    def _run_group(
        self,
        mods: Mods,
        target: float,
        excluded: AbstractSet[int],
        game_mode: GameMode,
        cancel_event: Optional[threading.Event],
        on_page: Optional[PageCallback]
    ) -> Optional[List[Candidate]]:
        # Groups that never started after a cancellation are not attempted
        if cancel_event is not None and cancel_event.is_set():
            return None
        return self.select_for_group(mods, target, excluded, game_mode, cancel_event, on_page)

    def select_candidates(
        self,
        skill_estimate: SkillEstimate,
        excluded_beatmap_ids: Iterable[int],
        game_mode: GameMode,
        on_group_done: Optional[Callable[[int, int], None]] = None,
        cancel_event: Optional[threading.Event] = None,
        on_progress: Optional[Callable[[float], None]] = None
    ) -> SelectionResult:
        """
        Search every mod group of the estimate.

        Service failures other than AuthError (rate limits, transient
        errors, a 404 on the search) are recorded per group and do not
        stop the others. An AuthError cancels groups that have not
        started yet and is re-raised once running ones finish.

        Args:
            skill_estimate: Target difficulty per mod group
            excluded_beatmap_ids: Beatmaps the player already has scores on
            game_mode: Player's game mode
            on_group_done: Called with (groups_done, total_groups)
            cancel_event: Stops scheduling new groups once set
            on_progress: Called with the finished share of the search work
                in [0, 1], after every search page and every group

        Returns:
            SelectionResult with candidates from completed groups
        """
        excluded = frozenset(excluded_beatmap_ids)
        groups = skill_estimate.items()
        result = SelectionResult(total_groups=len(groups))
        if not groups:
            return result

        progress_lock = threading.Lock()
        group_progress: Dict[Mods, float] = {}

        def advance(mods: Mods, fraction: float):
            if on_progress is None:
                return
            # Reported under the lock so concurrent groups deliver in order
            with progress_lock:
                group_progress[mods] = max(group_progress.get(mods, 0.0), fraction)
                on_progress(sum(group_progress.values()) / len(groups))

        def page_callback(mods: Mods) -> PageCallback:
            return lambda done, total: advance(mods, done / total if total else 1.0)

        auth_error: Optional[AuthError] = None
        workers = min(self.config.concurrency, len(groups))

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="candidates") as executor:
            futures = {
                executor.submit(
                    self._run_group, mods, target, excluded, game_mode,
                    cancel_event, page_callback(mods),
                ): mods
                for mods, target in groups
            }

            for done, future in enumerate(as_completed(futures), start=1):
                mods = futures[future]
                try:
                    candidates = future.result()
                except CancelledError:
                    pass
                except OperationCancelled:
                    result.cancelled = True
                except AuthError as e:
                    if auth_error is None:
                        auth_error = e
                        for pending in futures:
                            pending.cancel()
                except ScoreServiceError as e:
                    logger.warning("Skipping mod group %s: %s", mods.acronym, e)
                    result.failed_groups[mods] = e
                else:
                    if candidates is None:
                        result.cancelled = True
                    else:
                        result.candidates.extend(candidates)
                        result.completed_groups.append(mods)

                advance(mods, 1.0)
                if on_group_done:
                    on_group_done(done, len(groups))

        if auth_error is not None:
            raise auth_error

        result.completed_groups.sort(key=int)
        return result
