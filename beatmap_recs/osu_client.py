"""
osu! API Client Wrapper
=======================

Handles all interactions with the scoring service including:
- Top play retrieval
- Beatmap search by difficulty band over the approved-beatmap catalogue
- Beatmap lookup with mod-adjusted difficulty
- Retry/backoff, throttling and error mapping
"""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Union

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import DEFAULT_CLIENT_CONFIG, ClientConfig, RetryConfig
from .exceptions import (
    AuthError,
    NotFoundError,
    OperationCancelled,
    RateLimitedError,
    ScoreServiceError,
    TransientError,
)
from .features import Beatmap, BeatmapTraits, FeatureExtractor, GameMode, Mods, TopPlay

logger = logging.getLogger(__name__)

PageCallback = Callable[[int, int], None]

# get_user_best caps limit at 100
MAX_TOP_PLAYS = 100

# Catalogue walks with no window start here
FIRST_RANKED_DATE = "2007-01-01"


@dataclass(frozen=True)
class SearchCriteria:
    """Filter for a beatmap search."""
    game_mode: GameMode
    min_stars: float
    max_stars: float
    ranked_only: bool = True


def create_session(retry_config: RetryConfig) -> requests.Session:
    """
    Returns a requests Session with bounded retry logic.

    429 and 5xx responses are retried with exponential backoff (honouring
    Retry-After). Once the budget is spent the last response is returned
    as-is so its status can be mapped to an error.
    """
    session = requests.Session()
    retries = Retry(
        total=max(retry_config.max_attempts - 1, 0),
        backoff_factor=retry_config.backoff_factor,
        backoff_max=retry_config.max_backoff,
        status_forcelist=list(retry_config.retry_statuses),
        allowed_methods=frozenset(["GET"]),
        respect_retry_after_header=True,
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retries)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class OsuClient:
    """
    Typed access to the scoring service.

    Attributes:
        session: requests Session carrying the retry policy
        extractor: Converts raw records into feature objects
    """

    def __init__(
        self,
        api_key: str,
        config: ClientConfig = DEFAULT_CLIENT_CONFIG,
        session: Optional[requests.Session] = None,
        extractor: Optional[FeatureExtractor] = None
    ):
        """
        Initialize the client.

        Args:
            api_key: Service API key, forwarded as-is
            config: Client configuration
            session: Pre-built session (a retrying one is created if None)
            extractor: Record parser
        """
        self.api_key = api_key
        self.config = config
        self.session = session or create_session(config.retry)
        self.extractor = extractor or FeatureExtractor()

        # Request throttling, shared by worker threads
        self._throttle_lock = threading.Lock()
        self._last_request_time = 0.0

        # Beatmap catalogue per game mode, filled on first search
        self._catalogue: Dict[GameMode, List[Beatmap]] = {}
        self._catalogue_lock = threading.Lock()

    def _throttle(self):
        """Ensure minimum time between requests."""
        with self._throttle_lock:
            elapsed = time.monotonic() - self._last_request_time
            interval = self.config.retry.min_request_interval
            if elapsed < interval:
                time.sleep(interval - elapsed)
            self._last_request_time = time.monotonic()

    def _raise_for_status(self, response: requests.Response, url: str):
        status = response.status_code
        if status < 400:
            return
        if status in (401, 403):
            raise AuthError("API key was rejected", status_code=status, url=url)
        if status == 404:
            raise NotFoundError("Resource not found", status_code=status, url=url)
        if status == 429:
            raise RateLimitedError(
                "Rate limit exceeded after retries",
                retry_after=_parse_retry_after(response.headers.get("Retry-After")),
                status_code=status,
                url=url,
            )
        if status >= 500:
            raise TransientError(f"Server error {status}", status_code=status, url=url)
        raise ScoreServiceError(f"Unexpected status {status}", status_code=status, url=url)

    def _get(self, endpoint: str, params: Dict[str, Any]) -> Any:
        """
        Perform one GET against the service and decode the JSON payload.

        Raises:
            AuthError, NotFoundError, RateLimitedError, TransientError
        """
        url = f"{self.config.base_url.rstrip('/')}/{endpoint}"
        query = {"k": self.api_key}
        query.update(params)

        self._throttle()
        logger.debug("GET %s %s", url, params)
        try:
            response = self.session.get(url, params=query, timeout=self.config.retry.timeout)
        except requests.exceptions.RequestException as e:
            raise TransientError(f"Request to {endpoint} failed: {e}", url=url) from e

        self._raise_for_status(response, url)

        try:
            payload = response.json()
        except ValueError as e:
            raise TransientError(
                f"Malformed response from {endpoint}",
                status_code=response.status_code,
                url=url,
            ) from e

        # The service reports some failures as {"error": "..."} with a 200
        if isinstance(payload, dict) and payload.get("error"):
            message = str(payload["error"])
            if "key" in message.lower():
                raise AuthError(message, status_code=response.status_code, url=url)
            raise TransientError(message, status_code=response.status_code, url=url)

        return payload

    def _catalogue_start(self) -> str:
        """First ``since`` value of the catalogue walk."""
        days = self.config.search_window_days
        if days is None:
            return FIRST_RANKED_DATE
        start = datetime.now(timezone.utc) - timedelta(days=days)
        return start.strftime("%Y-%m-%d")

    def _walk_catalogue(
        self,
        game_mode: GameMode,
        on_page: Optional[PageCallback] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> List[Beatmap]:
        """
        Page through get_beatmaps by approval date.

        The service only pages forward with ``since``; each page restarts
        from the latest approval date seen so far, so records on the
        boundary come back twice and are dropped by id. The walk ends on a
        short page, a page that does not move the date forward, or after
        max_search_pages.
        """
        page_size = self.config.search_page_size
        max_pages = self.config.max_search_pages
        since = self._catalogue_start()
        seen_ids = set()
        beatmaps: List[Beatmap] = []

        for page in range(max_pages):
            if cancel_event is not None and cancel_event.is_set():
                raise OperationCancelled("Cancelled while walking the beatmap catalogue")

            records = self._get("get_beatmaps", {
                "since": since,
                "m": int(game_mode),
                "a": 0,  # no converted maps
                "limit": page_size,
            }) or []

            if on_page:
                on_page(page + 1, max_pages)

            previous_since = since
            for record in records:
                approved_date = record.get("approved_date") or ""
                if approved_date > since:
                    since = approved_date
                try:
                    beatmap = self.extractor.extract_beatmap(record)
                except (KeyError, ValueError) as e:
                    logger.debug("Skipping malformed beatmap record: %s", e)
                    continue
                if beatmap.id in seen_ids:
                    continue
                seen_ids.add(beatmap.id)
                beatmaps.append(beatmap)

            if len(records) < page_size or since == previous_since:
                break

        logger.debug("Catalogue for %s: %d beatmaps", game_mode.name.lower(), len(beatmaps))
        return beatmaps

    def _catalogue_for(
        self,
        game_mode: GameMode,
        on_page: Optional[PageCallback] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> List[Beatmap]:
        # Concurrent mod groups share one walk per game mode
        with self._catalogue_lock:
            catalogue = self._catalogue.get(game_mode)
            if catalogue is None:
                catalogue = self._walk_catalogue(game_mode, on_page, cancel_event)
                self._catalogue[game_mode] = catalogue
            return catalogue

    # =========================================================================
    # USER OPERATIONS
    # =========================================================================

    def fetch_top_plays(
        self,
        user_id: Union[str, int],
        game_mode: GameMode,
        on_page: Optional[PageCallback] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> List[TopPlay]:
        """
        Fetch a user's best scores in one game mode.

        get_user_best has no offset parameter, so this is a single request
        for up to top_play_limit plays.

        Args:
            user_id: Numeric id or username
            game_mode: Game mode to fetch
            on_page: Called with (1, 1) once the request returns
            cancel_event: Checked before the request

        Returns:
            List of TopPlay in service order, one per (beatmap, mods)
        """
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelled("Cancelled before fetching top plays")

        user = str(user_id)
        params = {
            "u": user,
            "m": int(game_mode),
            "type": "id" if user.isdigit() else "string",
            "limit": min(max(self.config.top_play_limit, 1), MAX_TOP_PLAYS),
        }
        records = self._get("get_user_best", params) or []
        if on_page:
            on_page(1, 1)

        plays = []
        seen = set()
        for record in records:
            play = self.extractor.extract_top_play(record, game_mode)
            key = (play.beatmap_id, int(play.mods))
            if key in seen:
                continue
            seen.add(key)
            plays.append(play)
        return plays

    # =========================================================================
    # BEATMAP OPERATIONS
    # =========================================================================

    def search_beatmaps(
        self,
        criteria: SearchCriteria,
        on_page: Optional[PageCallback] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> List[Beatmap]:
        """
        Search beatmaps in a star rating band.

        The service has no difficulty search, so the band is applied to the
        catalogue walked by approval date. The catalogue is fetched once per
        game mode and reused by later searches on this client.

        Args:
            criteria: Mode, star band and status filter
            on_page: Called with (pages_done, max_pages) after each page
            cancel_event: Checked before every page

        Returns:
            List of Beatmap with base (no-mod) traits, in catalogue order
        """
        catalogue = self._catalogue_for(criteria.game_mode, on_page, cancel_event)
        return [
            beatmap for beatmap in catalogue
            if (not criteria.ranked_only or beatmap.status.is_accepted)
            and beatmap.game_mode == criteria.game_mode
            and criteria.min_stars <= beatmap.traits.star_rating <= criteria.max_stars
        ]

    def fetch_beatmap(
        self,
        beatmap_id: int,
        mods: Mods = Mods.NONE,
        game_mode: Optional[GameMode] = None
    ) -> Beatmap:
        """
        Fetch one beatmap, with traits adjusted to the given mods.

        The service's mod-adjusted star rating is used as-is; the other
        attributes are recomputed locally.

        Raises:
            NotFoundError: if the beatmap does not exist
        """
        difficulty_mods = mods.difficulty_mods
        params: Dict[str, Any] = {"b": int(beatmap_id), "mods": int(difficulty_mods)}
        if game_mode is not None:
            params["m"] = int(game_mode)
            params["a"] = 1

        records = self._get("get_beatmaps", params)
        if not records:
            raise NotFoundError(f"Beatmap {beatmap_id} not found")

        record = records[0]
        beatmap = self.extractor.extract_beatmap(record)
        if difficulty_mods:
            service_stars = record.get("difficultyrating")
            traits = self.extractor.adjust_traits(
                beatmap.traits,
                difficulty_mods,
                star_rating=float(service_stars) if service_stars not in (None, "") else None,
            )
            beatmap = beatmap.with_traits(traits)
        return beatmap

    def fetch_beatmap_traits(
        self,
        beatmap_id: int,
        mods: Mods = Mods.NONE,
        game_mode: Optional[GameMode] = None
    ) -> BeatmapTraits:
        """Difficulty attributes of a beatmap under a mod combination."""
        return self.fetch_beatmap(beatmap_id, mods, game_mode).traits
