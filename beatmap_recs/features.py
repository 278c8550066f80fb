"""
Beatmap Feature Model
=====================

Value objects describing beatmaps, mod combinations and top plays,
plus extraction of those objects from raw scoring-service records.

Feature Categories:
    1. Mods (bit flags, acronyms, grouping normalisation)
    2. Beatmap traits (difficulty attributes, mod recomputation)
    3. Beatmap metadata
    4. Top plays (pp, rank, accuracy)
"""

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import IntEnum, IntFlag
from typing import Any, Dict, Mapping, Optional

from .config import ACCEPTED_STATUSES, MOD_STAR_MULTIPLIERS


class GameMode(IntEnum):
    """Game modes, using the service's wire values."""
    STANDARD = 0
    TAIKO = 1
    CATCH = 2
    MANIA = 3


class BeatmapStatus(IntEnum):
    """Beatmap approval states, using the service's wire values."""
    GRAVEYARD = -2
    WIP = -1
    PENDING = 0
    RANKED = 1
    APPROVED = 2
    QUALIFIED = 3
    LOVED = 4

    @property
    def is_accepted(self) -> bool:
        return self.value in ACCEPTED_STATUSES


class Mods(IntFlag):
    """Gameplay modifiers, using the service's bit values."""
    NONE = 0
    NO_FAIL = 1
    EASY = 2
    TOUCH_DEVICE = 4
    HIDDEN = 8
    HARD_ROCK = 16
    SUDDEN_DEATH = 32
    DOUBLE_TIME = 64
    RELAX = 128
    HALF_TIME = 256
    NIGHTCORE = 512
    FLASHLIGHT = 1024
    AUTOPLAY = 2048
    SPUN_OUT = 4096
    AUTOPILOT = 8192
    PERFECT = 16384
    KEY4 = 32768
    KEY5 = 65536
    KEY6 = 131072
    KEY7 = 262144
    KEY8 = 524288
    FADE_IN = 1048576
    RANDOM = 2097152
    CINEMA = 4194304
    TARGET = 8388608
    KEY9 = 16777216
    KEY_COOP = 33554432
    KEY1 = 67108864
    KEY3 = 134217728
    KEY2 = 268435456
    SCORE_V2 = 536870912
    MIRROR = 1073741824

    @classmethod
    def parse(cls, text: str) -> "Mods":
        """
        Parse an acronym string such as ``"HDDT"`` (``"NM"`` or ``""`` is no mod).

        Raises:
            ValueError: on an unknown acronym
        """
        text = (text or "").strip().upper()
        if text in ("", "NM", "NOMOD"):
            return cls.NONE
        if len(text) % 2:
            raise ValueError(f"Invalid mod string: {text!r}")

        lookup = {acronym: flag for flag, acronym in _ACRONYMS}
        result = 0
        for i in range(0, len(text), 2):
            chunk = text[i:i + 2]
            if chunk not in lookup:
                raise ValueError(f"Unknown mod acronym: {chunk!r}")
            result |= lookup[chunk]
        return cls(result)

    @property
    def acronym(self) -> str:
        """Compact display form, e.g. ``"HDDT"``; ``"NM"`` when empty."""
        value = int(self)
        parts = []
        for flag, acronym in _ACRONYMS:
            if not value & flag:
                continue
            # Nightcore and Perfect imply their base mod; show only one
            if flag == Mods.DOUBLE_TIME and value & Mods.NIGHTCORE:
                continue
            if flag == Mods.SUDDEN_DEATH and value & Mods.PERFECT:
                continue
            parts.append(acronym)
        return "".join(parts) or "NM"

    @property
    def other(self) -> "Mods":
        """Flags outside the tracked Hidden / HardRock / DoubleTime set."""
        return Mods(int(self) & ~int(TRACKED_MODS))

    @property
    def difficulty_mods(self) -> "Mods":
        """Only the flags that change a beatmap's difficulty attributes."""
        return Mods(int(self) & int(DIFFICULTY_MODS))

    @property
    def speed_multiplier(self) -> float:
        if self & (Mods.DOUBLE_TIME | Mods.NIGHTCORE):
            return 1.5
        if self & Mods.HALF_TIME:
            return 0.75
        return 1.0

    def normalized(self) -> "Mods":
        """
        Collapse a play's mods into the combination used for grouping.

        Nightcore counts as DoubleTime, Perfect as SuddenDeath, and the
        score-only NoFail / SuddenDeath flags are dropped.
        """
        value = int(self)
        if value & Mods.NIGHTCORE:
            value = (value & ~int(Mods.NIGHTCORE)) | int(Mods.DOUBLE_TIME)
        value &= ~int(Mods.PERFECT | Mods.SUDDEN_DEATH | Mods.NO_FAIL)
        return Mods(value)


TRACKED_MODS = Mods.HIDDEN | Mods.HARD_ROCK | Mods.DOUBLE_TIME
DIFFICULTY_MODS = (
    Mods.EASY | Mods.HARD_ROCK | Mods.DOUBLE_TIME
    | Mods.NIGHTCORE | Mods.HALF_TIME | Mods.FLASHLIGHT
)

# Display order for acronyms
_ACRONYMS = (
    (Mods.NO_FAIL, "NF"),
    (Mods.EASY, "EZ"),
    (Mods.TOUCH_DEVICE, "TD"),
    (Mods.HIDDEN, "HD"),
    (Mods.HARD_ROCK, "HR"),
    (Mods.SUDDEN_DEATH, "SD"),
    (Mods.DOUBLE_TIME, "DT"),
    (Mods.RELAX, "RX"),
    (Mods.HALF_TIME, "HT"),
    (Mods.NIGHTCORE, "NC"),
    (Mods.FLASHLIGHT, "FL"),
    (Mods.AUTOPLAY, "AT"),
    (Mods.SPUN_OUT, "SO"),
    (Mods.AUTOPILOT, "AP"),
    (Mods.PERFECT, "PF"),
    (Mods.KEY4, "4K"),
    (Mods.KEY5, "5K"),
    (Mods.KEY6, "6K"),
    (Mods.KEY7, "7K"),
    (Mods.KEY8, "8K"),
    (Mods.FADE_IN, "FI"),
    (Mods.RANDOM, "RD"),
    (Mods.CINEMA, "CN"),
    (Mods.TARGET, "TP"),
    (Mods.KEY9, "9K"),
    (Mods.KEY_COOP, "CO"),
    (Mods.KEY1, "1K"),
    (Mods.KEY3, "3K"),
    (Mods.KEY2, "2K"),
    (Mods.SCORE_V2, "V2"),
    (Mods.MIRROR, "MR"),
)


def estimate_star_multiplier(
    mods: Mods,
    multipliers: Mapping[str, float] = MOD_STAR_MULTIPLIERS
) -> float:
    """Approximate star rating factor of a mod combination."""
    factor = 1.0
    for flag, acronym in _ACRONYMS:
        if mods.difficulty_mods & flag:
            factor *= multipliers.get(acronym, 1.0)
    # Nightcore has no entry of its own
    if mods & Mods.NIGHTCORE and not mods & Mods.DOUBLE_TIME:
        factor *= multipliers.get("DT", 1.0)
    return factor


# =============================================================================
# DIFFICULTY WINDOWS
# =============================================================================

def _ar_to_ms(ar: float) -> float:
    return 1800 - 120 * ar if ar < 5 else 1200 - 150 * (ar - 5)


def _ms_to_ar(ms: float) -> float:
    return (1800 - ms) / 120 if ms > 1200 else 5 + (1200 - ms) / 150


def _od_to_ms(od: float) -> float:
    return 80 - 6 * od


def _ms_to_od(ms: float) -> float:
    return (80 - ms) / 6


@dataclass(frozen=True)
class BeatmapTraits:
    """Numeric difficulty attributes of a single beatmap difficulty."""
    star_rating: float
    length_seconds: int = 0
    drain_seconds: int = 0
    bpm: float = 0.0
    circle_size: float = 0.0
    approach_rate: float = 0.0
    overall_difficulty: float = 0.0
    hp_drain: float = 0.0
    max_combo: int = 0
    circle_count: int = 0
    slider_count: int = 0
    spinner_count: int = 0

    @property
    def object_count(self) -> int:
        return self.circle_count + self.slider_count + self.spinner_count

    def with_mods(
        self,
        mods: Mods,
        star_rating: Optional[float] = None,
        multipliers: Mapping[str, float] = MOD_STAR_MULTIPLIERS
    ) -> "BeatmapTraits":
        """
        Recompute these (no-mod) traits under a mod combination.

        Args:
            mods: Mod combination to apply
            star_rating: Mod-adjusted star rating from the service, if known.
                Takes precedence over the local approximation.
            multipliers: Star multipliers used when star_rating is None

        Returns:
            New BeatmapTraits
        """
        cs = self.circle_size
        ar = self.approach_rate
        od = self.overall_difficulty
        hp = self.hp_drain

        if mods & Mods.HARD_ROCK:
            cs = min(cs * 1.3, 10.0)
            ar = min(ar * 1.4, 10.0)
            od = min(od * 1.4, 10.0)
            hp = min(hp * 1.4, 10.0)
        elif mods & Mods.EASY:
            cs, ar, od, hp = cs * 0.5, ar * 0.5, od * 0.5, hp * 0.5

        speed = mods.speed_multiplier
        if speed != 1.0:
            ar = _ms_to_ar(_ar_to_ms(ar) / speed)
            od = _ms_to_od(_od_to_ms(od) / speed)

        if star_rating is None:
            star_rating = self.star_rating * estimate_star_multiplier(mods, multipliers)

        return replace(
            self,
            star_rating=star_rating,
            length_seconds=int(round(self.length_seconds / speed)),
            drain_seconds=int(round(self.drain_seconds / speed)),
            bpm=self.bpm * speed,
            circle_size=cs,
            approach_rate=ar,
            overall_difficulty=od,
            hp_drain=hp,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "star_rating": self.star_rating,
            "length_seconds": self.length_seconds,
            "drain_seconds": self.drain_seconds,
            "bpm": self.bpm,
            "circle_size": self.circle_size,
            "approach_rate": self.approach_rate,
            "overall_difficulty": self.overall_difficulty,
            "hp_drain": self.hp_drain,
            "max_combo": self.max_combo,
            "circle_count": self.circle_count,
            "slider_count": self.slider_count,
            "spinner_count": self.spinner_count,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BeatmapTraits":
        return cls(**{k: data[k] for k in cls.__dataclass_fields__ if k in data})


@dataclass(frozen=True, eq=False)
class Beatmap:
    """A single beatmap difficulty. Identity is the beatmap id."""
    id: int
    map_set_id: int
    game_mode: GameMode
    status: BeatmapStatus
    artist: str
    title: str
    version: str
    creator: str
    last_update: datetime
    traits: BeatmapTraits

    def __eq__(self, other):
        if not isinstance(other, Beatmap):
            return NotImplemented
        return self.id == other.id

    def __hash__(self):
        return hash(self.id)

    @property
    def full_name(self) -> str:
        return f"{self.artist} - {self.title} [{self.version}]"

    @property
    def map_set_full_name(self) -> str:
        return f"{self.artist} - {self.title}"

    @property
    def url(self) -> str:
        return f"https://osu.ppy.sh/b/{self.id}"

    @property
    def thumbnail_url(self) -> str:
        return f"https://b.ppy.sh/thumb/{self.map_set_id}l.jpg"

    @property
    def cover_url(self) -> str:
        return f"https://assets.ppy.sh/beatmaps/{self.map_set_id}/covers/cover.jpg"

    def with_traits(self, traits: BeatmapTraits) -> "Beatmap":
        return replace(self, traits=traits)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "map_set_id": self.map_set_id,
            "game_mode": int(self.game_mode),
            "status": int(self.status),
            "artist": self.artist,
            "title": self.title,
            "version": self.version,
            "creator": self.creator,
            "last_update": self.last_update.isoformat(),
            "traits": self.traits.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Beatmap":
        return cls(
            id=int(data["id"]),
            map_set_id=int(data["map_set_id"]),
            game_mode=GameMode(data["game_mode"]),
            status=BeatmapStatus(data["status"]),
            artist=data["artist"],
            title=data["title"],
            version=data["version"],
            creator=data["creator"],
            last_update=datetime.fromisoformat(data["last_update"]),
            traits=BeatmapTraits.from_dict(data["traits"]),
        )


@dataclass(frozen=True)
class TopPlay:
    """One of a user's best scores."""
    beatmap_id: int
    mods: Mods
    pp: float
    rank: str = ""
    accuracy: float = 0.0
    date: Optional[datetime] = None

    # Mod-adjusted star rating of the played beatmap, filled in before profiling
    star_rating: Optional[float] = None

    @property
    def group(self) -> Mods:
        return self.mods.normalized()


# =============================================================================
# EXTRACTION FROM SERVICE RECORDS
# =============================================================================

def _to_float(value: Any, default: float = 0.0) -> float:
    if value is None or value == "":
        return default
    return float(value)


def _to_int(value: Any, default: int = 0) -> int:
    if value is None or value == "":
        return default
    return int(float(value))


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse the service's ``YYYY-MM-DD HH:MM:SS`` (UTC) timestamps."""
    if not value:
        return None
    try:
        parsed = datetime.strptime(value, "%Y-%m-%d %H:%M:%S")
    except ValueError:
        parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class FeatureExtractor:
    """
    Turns raw scoring-service records into typed feature objects.
    """

    def __init__(self, star_multipliers: Mapping[str, float] = MOD_STAR_MULTIPLIERS):
        """
        Args:
            star_multipliers: Per-mod star factors for local recomputation
        """
        self.star_multipliers = star_multipliers

    def extract_traits(self, record: Mapping[str, Any]) -> BeatmapTraits:
        """Read the difficulty attributes of a beatmap record."""
        return BeatmapTraits(
            star_rating=_to_float(record.get("difficultyrating")),
            length_seconds=_to_int(record.get("total_length")),
            drain_seconds=_to_int(record.get("hit_length")),
            bpm=_to_float(record.get("bpm")),
            circle_size=_to_float(record.get("diff_size")),
            approach_rate=_to_float(record.get("diff_approach")),
            overall_difficulty=_to_float(record.get("diff_overall")),
            hp_drain=_to_float(record.get("diff_drain")),
            max_combo=_to_int(record.get("max_combo")),
            circle_count=_to_int(record.get("count_normal")),
            slider_count=_to_int(record.get("count_slider")),
            spinner_count=_to_int(record.get("count_spinner")),
        )

    def extract_beatmap(self, record: Mapping[str, Any]) -> Beatmap:
        """
        Build a Beatmap from a beatmap record.

        Raises:
            KeyError / ValueError: if the record has no usable id
        """
        return Beatmap(
            id=int(record["beatmap_id"]),
            map_set_id=_to_int(record.get("beatmapset_id")),
            game_mode=GameMode(_to_int(record.get("mode"))),
            status=BeatmapStatus(_to_int(record.get("approved"))),
            artist=record.get("artist") or "",
            title=record.get("title") or "",
            version=record.get("version") or "",
            creator=record.get("creator") or "",
            last_update=(
                parse_timestamp(record.get("last_update"))
                or datetime.fromtimestamp(0, tz=timezone.utc)
            ),
            traits=self.extract_traits(record),
        )

    def adjust_traits(
        self,
        base: BeatmapTraits,
        mods: Mods,
        star_rating: Optional[float] = None
    ) -> BeatmapTraits:
        """Recompute base traits under mods (service star rating wins)."""
        if not mods.difficulty_mods:
            return base
        return base.with_mods(mods, star_rating=star_rating, multipliers=self.star_multipliers)

    def extract_top_play(
        self,
        record: Mapping[str, Any],
        game_mode: GameMode
    ) -> TopPlay:
        """Build a TopPlay from a user-best record."""
        return TopPlay(
            beatmap_id=int(record["beatmap_id"]),
            mods=Mods(_to_int(record.get("enabled_mods"))),
            pp=_to_float(record.get("pp")),
            rank=record.get("rank") or "",
            accuracy=self.compute_accuracy(record, game_mode),
            date=parse_timestamp(record.get("date")),
        )

    @staticmethod
    def compute_accuracy(record: Mapping[str, Any], game_mode: GameMode) -> float:
        """
        Accuracy in [0, 1] from hit counts, using each mode's formula.

        Args:
            record: Score record with count300/count100/... fields
            game_mode: Mode the score was set in

        Returns:
            Accuracy, 0.0 when there are no hits at all
        """
        n300 = _to_int(record.get("count300"))
        n100 = _to_int(record.get("count100"))
        n50 = _to_int(record.get("count50"))
        miss = _to_int(record.get("countmiss"))
        geki = _to_int(record.get("countgeki"))
        katu = _to_int(record.get("countkatu"))

        if game_mode == GameMode.TAIKO:
            total = n300 + n100 + miss
            hit = n300 + 0.5 * n100
        elif game_mode == GameMode.CATCH:
            total = n300 + n100 + n50 + katu + miss
            hit = n300 + n100 + n50
        elif game_mode == GameMode.MANIA:
            total = n300 + n100 + n50 + geki + katu + miss
            hit = (300 * (n300 + geki) + 200 * katu + 100 * n100 + 50 * n50) / 300
        else:
            total = n300 + n100 + n50 + miss
            hit = (300 * n300 + 100 * n100 + 50 * n50) / 300

        return hit / total if total else 0.0
