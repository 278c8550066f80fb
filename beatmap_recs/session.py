"""
Recommendation Session
======================

Caller-side glue around the engine: checks the credential pair, runs a
refresh, keeps the last result in the cache and turns engine errors into
short user-facing messages. Also holds the mod toggles used to filter the
list for display; the engine itself always returns the full ranked set.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Union

from .config import DEFAULT_ENGINE_CONFIG, LAST_RECOMMENDATIONS_KEY, EngineConfig
from .exceptions import (
    AuthError,
    NotFoundError,
    OperationCancelled,
    RecommendationsUnavailable,
    ScoreServiceError,
)
from .features import GameMode, Mods
from .recommender import RecommendationEngine
from .scoring import Recommendation
from .utils import Cache, CacheKind, ProgressSink

logger = logging.getLogger(__name__)

MSG_NOT_CONFIGURED = "Not configured - set user ID and API key in settings"
MSG_UPDATED = "Recommendations updated"
MSG_PARTIAL = "Refresh cancelled - showing partial recommendations"
MSG_UNAVAILABLE = "Recommendations unavailable - no top plays set in selected game mode"
MSG_UNAUTHORIZED = "Unauthorized - make sure API key is valid"
MSG_USER_NOT_FOUND = "User not found - check the user ID in settings"
MSG_SERVICE_DOWN = "Scoring service unavailable - try again later"


@dataclass(frozen=True)
class ModFilter:
    """Display toggles per mod bucket. A recommendation must pass every
    bucket its mods fall into."""
    nomod: bool = True
    hidden: bool = True
    hard_rock: bool = True
    double_time: bool = True
    other: bool = True

    def accepts(self, mods: Mods) -> bool:
        accepted = True
        if mods == Mods.NONE:
            accepted &= self.nomod
        if mods & Mods.HIDDEN:
            accepted &= self.hidden
        if mods & Mods.HARD_ROCK:
            accepted &= self.hard_rock
        if mods & Mods.DOUBLE_TIME:
            accepted &= self.double_time
        if mods.other:
            accepted &= self.other
        return accepted

    def apply(self, recommendations: Iterable[Recommendation]) -> List[Recommendation]:
        return [r for r in recommendations if self.accepts(r.mods)]


@dataclass
class RefreshOutcome:
    """Result of a refresh as the caller presents it."""
    ok: bool
    message: Optional[str]
    recommendations: List[Recommendation] = field(default_factory=list)
    cancelled: bool = False


class RecommendationSession:
    """
    Runs the engine for one configured player and persists the result.
    """

    def __init__(
        self,
        cache: Cache,
        user_id: Union[str, int, None],
        api_key: Optional[str],
        game_mode: GameMode = GameMode.STANDARD,
        config: EngineConfig = DEFAULT_ENGINE_CONFIG,
        engine: Optional[RecommendationEngine] = None
    ):
        self.cache = cache
        self.user_id = "" if user_id is None else str(user_id)
        self.api_key = api_key or ""
        self.game_mode = game_mode
        self.engine = engine or RecommendationEngine(config)

    @property
    def is_configured(self) -> bool:
        return bool(self.user_id.strip() and self.api_key.strip())

    def last_recommendations(self) -> List[Recommendation]:
        """Recommendations stored by the previous successful refresh."""
        data = self.cache.retrieve_or_default(
            LAST_RECOMMENDATIONS_KEY, default=[], kind=CacheKind.STRUCTURED
        )
        try:
            return [Recommendation.from_dict(item) for item in data]
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Discarding unreadable cached recommendations: %s", e)
            return []

    def refresh(
        self,
        progress: Optional[ProgressSink] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> RefreshOutcome:
        """
        Compute fresh recommendations and store them.

        On failure the previously stored list is returned alongside the
        message, so the caller can keep showing it. A run cancelled with
        partial results returns them without storing them.
        """
        if not self.is_configured:
            return RefreshOutcome(False, MSG_NOT_CONFIGURED, self.last_recommendations())

        try:
            output = self.engine.get_recommendations(
                self.user_id,
                self.api_key,
                self.game_mode,
                progress=progress,
                cancel_event=cancel_event,
            )
        except OperationCancelled:
            return RefreshOutcome(False, None, self.last_recommendations(), cancelled=True)
        except RecommendationsUnavailable:
            return RefreshOutcome(False, MSG_UNAVAILABLE, self.last_recommendations())
        except AuthError:
            return RefreshOutcome(False, MSG_UNAUTHORIZED, self.last_recommendations())
        except NotFoundError:
            return RefreshOutcome(False, MSG_USER_NOT_FOUND, self.last_recommendations())
        except ScoreServiceError as e:
            logger.warning("Refresh failed: %s", e)
            return RefreshOutcome(False, MSG_SERVICE_DOWN, self.last_recommendations())

        recommendations = list(output)
        if output.cancelled:
            # Partial results are shown once but never replace the stored list
            return RefreshOutcome(True, MSG_PARTIAL, recommendations, cancelled=True)

        self.cache.store(
            LAST_RECOMMENDATIONS_KEY,
            [r.to_dict() for r in recommendations],
            kind=CacheKind.STRUCTURED,
        )
        return RefreshOutcome(True, MSG_UPDATED, recommendations)
