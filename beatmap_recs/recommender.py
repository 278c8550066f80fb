"""
Main Recommendation Engine
==========================

Orchestrates the complete recommendation pipeline:
1. Fetch the player's top plays
2. Resolve each played beatmap's difficulty under the play's mods
3. Profile skill per mod group
4. Select unplayed candidates per mod group
5. Rank, deduplicate and cap the result

Progress is reported as a fraction in [0, 1]:
    top plays 0.00 → 0.15, difficulty lookups 0.15 → 0.30,
    candidate search 0.30 → 0.90 (per search page and mod group), ranking 0.90 → 1.00.

Cancellation is cooperative. A cancellation seen before any mod group has
finished raises OperationCancelled; one seen while groups are still running
returns the ranked candidates of the groups that did finish, flagged as
cancelled.
"""

import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional, Tuple, Union

from .candidates import CandidateSelector
from .config import DEFAULT_ENGINE_CONFIG, OSU_API_KEY, EngineConfig
from .exceptions import (
    AuthError,
    NotFoundError,
    OperationCancelled,
    RecommendationsUnavailable,
    ScoreServiceError,
)
from .features import GameMode, Mods, TopPlay
from .osu_client import OsuClient
from .profiler import SkillEstimate, SkillProfiler
from .scoring import Recommendation, RecommendationRanker
from .utils import ProgressReporter, ProgressSink

logger = logging.getLogger(__name__)

TOP_PLAYS_DONE = 0.15
PROFILE_READY = 0.3
CANDIDATES_DONE = 0.9


@dataclass
class RecommendationOutput:
    """Complete recommendation output; iterates over the recommendations."""
    user_id: str
    game_mode: GameMode
    recommendations: List[Recommendation]
    skill_estimate: SkillEstimate = field(default_factory=SkillEstimate)
    skipped_groups: List[Mods] = field(default_factory=list)
    cancelled: bool = False

    def __len__(self) -> int:
        return len(self.recommendations)

    def __iter__(self):
        return iter(self.recommendations)

    def __getitem__(self, index):
        return self.recommendations[index]

    def to_dict(self) -> Dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "user_id": self.user_id,
            "game_mode": self.game_mode.name.lower(),
            "cancelled": self.cancelled,
            "skill": {
                mods.acronym: round(target, 4)
                for mods, target in self.skill_estimate.items()
            },
            "skipped_groups": [mods.acronym for mods in self.skipped_groups],
            "recommendations": [r.to_dict() for r in self.recommendations],
        }

    def to_json(self, indent: int = 2) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), indent=indent)


def _check_cancelled(cancel_event: Optional[threading.Event], stage: str):
    if cancel_event is not None and cancel_event.is_set():
        raise OperationCancelled(f"Cancelled {stage}")


class RecommendationEngine:
    """
    Main recommendation engine orchestrating the complete pipeline.

    The engine keeps no state between runs; a client is built per call
    from the supplied API key.

    Usage:
        engine = RecommendationEngine()
        result = engine.get_recommendations("2", api_key, GameMode.STANDARD)
        print(result.to_json())
    """

    def __init__(
        self,
        config: EngineConfig = DEFAULT_ENGINE_CONFIG,
        client_factory: Optional[Callable[[str], OsuClient]] = None
    ):
        """
        Initialize recommendation engine.

        Args:
            config: Engine configuration
            client_factory: Builds a client from an API key
        """
        self.config = config
        self.client_factory = client_factory or (lambda api_key: OsuClient(api_key, config.client))
        self.profiler = SkillProfiler(config.profiler)
        self.ranker = RecommendationRanker(config.ranker)

    def get_recommendations(
        self,
        user_id: Union[str, int],
        api_key: str,
        game_mode: GameMode = GameMode.STANDARD,
        progress: Optional[ProgressSink] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> RecommendationOutput:
        """
        Generate recommendations for a player.

        Args:
            user_id: Player id or username, forwarded to the service
            api_key: Service API key, forwarded to the service
            game_mode: Game mode to recommend for
            progress: Receives non-decreasing fractions in [0, 1]
            cancel_event: Cooperative cancellation token

        Returns:
            RecommendationOutput with ranked recommendations

        Raises:
            AuthError: credentials rejected
            NotFoundError: user does not exist
            RecommendationsUnavailable: no usable top plays, no played
                beatmap could be resolved, or every mod group failed
            OperationCancelled: cancelled before any mod group finished
        """
        reporter = ProgressReporter(progress)
        client = self.client_factory(api_key)
        reporter.report(0.0)

        # Step 1: Top plays
        logger.info("Fetching top plays for %s (%s)...", user_id, game_mode.name.lower())
        _check_cancelled(cancel_event, "before fetching top plays")
        top_plays = client.fetch_top_plays(
            user_id,
            game_mode,
            on_page=lambda done, total: reporter.report_step(0.0, TOP_PLAYS_DONE, done, total),
            cancel_event=cancel_event,
        )
        if not top_plays:
            raise RecommendationsUnavailable(
                f"No top plays for {user_id} in {game_mode.name.lower()}"
            )
        reporter.report(TOP_PLAYS_DONE)
        logger.info("   Top plays: %d", len(top_plays))

        # Step 2: Difficulty of every played beatmap under its mods
        top_plays = self._resolve_difficulty(client, top_plays, game_mode, reporter, cancel_event)
        excluded_ids = {play.beatmap_id for play in top_plays}

        # Step 3: Skill profile
        estimate = self.profiler.estimate(top_plays)
        if estimate.is_empty:
            raise RecommendationsUnavailable(
                f"Not enough top plays in any mod group (min_support="
                f"{self.config.profiler.min_support})"
            )
        for mods, target in estimate.items():
            logger.info("   %s: %.2f★ from %d plays", mods.acronym, target, estimate.support[mods])
        _check_cancelled(cancel_event, "before candidate search")
        reporter.report(PROFILE_READY)

        # Step 4: Candidates
        logger.info("Searching candidates for %d mod groups...", len(estimate))
        selector = CandidateSelector(client, self.config.candidates)
        selection = selector.select_candidates(
            estimate,
            excluded_ids,
            game_mode,
            cancel_event=cancel_event,
            on_progress=lambda fraction: reporter.report(
                PROFILE_READY + (CANDIDATES_DONE - PROFILE_READY) * fraction
            ),
        )

        if not selection.completed_groups:
            if selection.cancelled:
                raise OperationCancelled("Cancelled before any mod group finished")
            raise RecommendationsUnavailable("Candidate search failed for every mod group")

        skipped = sorted(selection.failed_groups, key=int)
        for mods in skipped:
            logger.warning("Mod group %s skipped: %s", mods.acronym, selection.failed_groups[mods])
        reporter.report(CANDIDATES_DONE)

        # Step 5: Rank
        recommendations = self.ranker.rank(selection.candidates)
        reporter.report(1.0)
        logger.info("Generated %d recommendations", len(recommendations))

        return RecommendationOutput(
            user_id=str(user_id),
            game_mode=game_mode,
            recommendations=recommendations,
            skill_estimate=estimate,
            skipped_groups=skipped,
            cancelled=selection.cancelled,
        )

    def _resolve_difficulty(
        self,
        client: OsuClient,
        top_plays: List[TopPlay],
        game_mode: GameMode,
        reporter: ProgressReporter,
        cancel_event: Optional[threading.Event]
    ) -> List[TopPlay]:
        """
        Attach the mod-adjusted star rating of each played beatmap.

        Lookups are shared between plays on the same beatmap with the same
        difficulty mods. Beatmaps the service no longer knows, or that
        keep failing after retries, are left unresolved and so do not count
        toward the profile. An AuthError stops the remaining lookups.

        Raises:
            AuthError: credentials rejected
            RecommendationsUnavailable: no played beatmap could be resolved
        """
        keys: List[Tuple[int, Mods]] = sorted(
            {(play.beatmap_id, play.group.difficulty_mods) for play in top_plays},
            key=lambda k: (k[0], int(k[1])),
        )
        stars: Dict[Tuple[int, Mods], float] = {}
        lock = threading.Lock()
        halt = threading.Event()
        done = [0]

        def lookup(key: Tuple[int, Mods]):
            # Another lookup already failed; its error is what gets raised
            if halt.is_set():
                return
            _check_cancelled(cancel_event, "while resolving beatmap difficulty")
            beatmap_id, mods = key
            try:
                traits = client.fetch_beatmap_traits(beatmap_id, mods, game_mode)
            except NotFoundError:
                logger.warning("Played beatmap %d not found, ignoring", beatmap_id)
            except AuthError:
                halt.set()
                raise
            except ScoreServiceError as e:
                logger.warning("Could not resolve played beatmap %d, ignoring: %s", beatmap_id, e)
            else:
                with lock:
                    stars[key] = traits.star_rating
            with lock:
                done[0] += 1
                finished = done[0]
            reporter.report_step(TOP_PLAYS_DONE, PROFILE_READY, finished, len(keys))

        workers = max(1, min(self.config.candidates.concurrency, len(keys)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="difficulty") as executor:
            # list() re-raises the first worker error
            list(executor.map(lookup, keys))

        if keys and not stars:
            raise RecommendationsUnavailable("Could not resolve any played beatmap")

        return [
            replace(play, star_rating=stars.get((play.beatmap_id, play.group.difficulty_mods)))
            for play in top_plays
        ]


def recommend_for_user(
    user_id: Union[str, int],
    api_key: str = OSU_API_KEY,
    game_mode: GameMode = GameMode.STANDARD
) -> Dict:
    """
    Convenience function for quick recommendations.

    Args:
        user_id: Player id or username
        api_key: Service API key
        game_mode: Game mode

    Returns:
        Dictionary with recommendations
    """
    engine = RecommendationEngine()
    return engine.get_recommendations(user_id, api_key, game_mode).to_dict()
