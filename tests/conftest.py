"""
Shared pytest fixtures for the Beatmap Recs test suite.

Provides:
  - Factories for beatmaps and top plays.
  - ``FakeOsuClient``: an in-memory stand-in for ``OsuClient`` that records
    every call, used by the selector and engine tests.
  - ``fake_response``: builds ``requests.Response``-like mocks for the
    HTTP client tests.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional
from unittest.mock import MagicMock

import pytest

from beatmap_recs.features import (
    Beatmap,
    BeatmapStatus,
    BeatmapTraits,
    GameMode,
    Mods,
    TopPlay,
)
from beatmap_recs.osu_client import SearchCriteria

BASE_TIME = datetime(2020, 1, 1, tzinfo=timezone.utc)


def make_beatmap(
    beatmap_id: int,
    stars: float,
    updated_days: int = 0,
    status: BeatmapStatus = BeatmapStatus.RANKED,
    game_mode: GameMode = GameMode.STANDARD,
) -> Beatmap:
    return Beatmap(
        id=beatmap_id,
        map_set_id=beatmap_id * 10,
        game_mode=game_mode,
        status=status,
        artist="Artist",
        title=f"Song {beatmap_id}",
        version="Insane",
        creator="Mapper",
        last_update=BASE_TIME + timedelta(days=updated_days),
        traits=BeatmapTraits(
            star_rating=stars,
            length_seconds=120,
            drain_seconds=110,
            bpm=180.0,
            circle_size=4.0,
            approach_rate=9.0,
            overall_difficulty=8.0,
            hp_drain=6.0,
        ),
    )


def make_play(
    beatmap_id: int,
    pp: float,
    mods: Mods = Mods.NONE,
    stars: Optional[float] = None,
) -> TopPlay:
    return TopPlay(beatmap_id=beatmap_id, mods=mods, pp=pp, rank="S", accuracy=0.98, star_rating=stars)


class FakeOsuClient:
    """In-memory scoring service with call recording."""

    def __init__(
        self,
        top_plays: Optional[List[TopPlay]] = None,
        pool: Optional[List[Beatmap]] = None,
        top_play_error: Optional[Exception] = None,
        search_hook: Optional[Callable[[SearchCriteria], None]] = None,
    ):
        self.top_plays = list(top_plays or [])
        self.pool: Dict[int, Beatmap] = {b.id: b for b in (pool or [])}
        self.top_play_error = top_play_error
        self.search_hook = search_hook
        self.calls: List[tuple] = []
        self._lock = threading.Lock()

    def _record(self, *call):
        with self._lock:
            self.calls.append(call)

    def calls_to(self, name: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == name]

    def fetch_top_plays(self, user_id, game_mode, on_page=None, cancel_event=None):
        self._record("fetch_top_plays", user_id, game_mode)
        if self.top_play_error is not None:
            raise self.top_play_error
        if on_page:
            on_page(1, 1)
        return list(self.top_plays)

    def search_beatmaps(self, criteria, on_page=None, cancel_event=None):
        self._record("search_beatmaps", criteria)
        if self.search_hook is not None:
            self.search_hook(criteria)
        if on_page:
            on_page(1, 2)
            on_page(2, 2)
        return [
            b for b in sorted(self.pool.values(), key=lambda b: b.id)
            if criteria.min_stars <= b.traits.star_rating <= criteria.max_stars
            and b.game_mode == criteria.game_mode
            and (not criteria.ranked_only or b.status.is_accepted)
        ]

    def fetch_beatmap_traits(self, beatmap_id, mods=Mods.NONE, game_mode=None):
        self._record("fetch_beatmap_traits", beatmap_id, mods)
        return self.pool[beatmap_id].traits.with_mods(mods)


def fake_response(status: int = 200, payload=None, headers: Optional[dict] = None, bad_json: bool = False):
    response = MagicMock()
    response.status_code = status
    response.headers = headers or {}
    if bad_json:
        response.json.side_effect = ValueError("not json")
    else:
        response.json.return_value = payload
    return response


# ── Scenario fixtures ─────────────────────────────────────────────────────────

@pytest.fixture
def played_beatmaps() -> List[Beatmap]:
    """Five played maps: three no-mod (4.0/4.2/4.1★), two Hidden (4.5/4.6★)."""
    return [
        make_beatmap(1, 4.0),
        make_beatmap(2, 4.2),
        make_beatmap(3, 4.1),
        make_beatmap(4, 4.5),
        make_beatmap(5, 4.6),
    ]


@pytest.fixture
def scenario_plays() -> List[TopPlay]:
    """Top plays on the played maps; the 4.0★ play carries the most pp."""
    return [
        make_play(1, 300.0),
        make_play(2, 250.0),
        make_play(3, 200.0),
        make_play(4, 280.0, Mods.HIDDEN),
        make_play(5, 260.0, Mods.HIDDEN),
    ]


@pytest.fixture
def unplayed_beatmaps() -> List[Beatmap]:
    return [
        make_beatmap(10, 4.05),
        make_beatmap(11, 4.5),
        make_beatmap(12, 4.3),
        make_beatmap(13, 3.0),
        make_beatmap(14, 4.1, status=BeatmapStatus.GRAVEYARD),
    ]


@pytest.fixture
def scenario_client(scenario_plays, played_beatmaps, unplayed_beatmaps) -> FakeOsuClient:
    return FakeOsuClient(top_plays=scenario_plays, pool=played_beatmaps + unplayed_beatmaps)
