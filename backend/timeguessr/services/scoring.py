from math import radians, sin, cos, sqrt, atan2, floor
from typing import List, Tuple

from ..models.game import GeoPoint, Rank, RoundAttempt, BonusBreakdown, ScoreBreakdown


# Earth's radius in kilometers
EARTH_RADIUS_KM = 6371.0

MAX_SCORE = 1000
TIME_WEIGHT = 0.6
LOCATION_WEIGHT = 0.4

SPEED_BASELINE_SECONDS = 120
SPEED_MULTIPLIER = 5
LIGHTNING_THRESHOLD = 450

PERFECT_DISTANCE_KM = 0.1
PERFECT_BOTH_BONUS = 500
PERFECT_SINGLE_BONUS = 200

STREAK_MULTIPLIER = 50
MAX_STREAK_BONUS = 500

# (upper bound inclusive, rank, display colour)
TIME_RANKS: List[Tuple[float, Rank, str]] = [
    (0, Rank.PERFECT, "text-yellow-400"),
    (1, Rank.EXCELLENT, "text-green-400"),
    (3, Rank.VERY_GOOD, "text-blue-400"),
    (5, Rank.GOOD, "text-purple-400"),
    (10, Rank.AVERAGE, "text-orange-400"),
    (20, Rank.POOR, "text-red-400"),
    (float("inf"), Rank.VERY_POOR, "text-gray-400"),
]

LOCATION_RANKS: List[Tuple[float, Rank, str]] = [
    (0.1, Rank.PERFECT, "text-yellow-400"),
    (1, Rank.EXCELLENT, "text-green-400"),
    (5, Rank.VERY_GOOD, "text-blue-400"),
    (25, Rank.GOOD, "text-purple-400"),
    (100, Rank.AVERAGE, "text-orange-400"),
    (500, Rank.POOR, "text-red-400"),
    (float("inf"), Rank.VERY_POOR, "text-gray-400"),
]


def distance_km(a: GeoPoint, b: GeoPoint) -> float:
    """
    Calculate the great circle distance between two points on Earth.

    Coordinates are not range checked; out-of-range input still yields a
    (meaningless) non-negative distance.

    Args:
        a, b: Points to measure between (degrees)

    Returns:
        Distance in kilometers
    """
    lat1_rad = radians(a.lat)
    lon1_rad = radians(a.lng)
    lat2_rad = radians(b.lat)
    lon2_rad = radians(b.lng)

    # Haversine formula
    dlat = lat2_rad - lat1_rad
    dlon = lon2_rad - lon1_rad

    h = sin(dlat / 2)**2 + cos(lat1_rad) * cos(lat2_rad) * sin(dlon / 2)**2
    c = 2 * atan2(sqrt(h), sqrt(1 - h))

    return EARTH_RADIUS_KM * c


def year_difference(guessed: int, actual: int) -> int:
    """Absolute number of years between the guess and the actual year."""
    return abs(guessed - actual)


def _round_half_up(value: float) -> int:
    # Matches the backend's rounding, which never rounds halves to even.
    return int(floor(value + 0.5))


def _clamp(value: float) -> float:
    return min(MAX_SCORE, max(0, value))


def compute_time_score(year_diff: int) -> int:
    """
    Score the year guess.

    Each band applies its own penalty to the whole difference, so the score
    drops abruptly when a band edge is crossed (5 years -> 925, 6 -> 880).

    - exact year: 1000
    - 1 year off: 10 points per year
    - 2-5 years off: 15 points per year
    - 6-10 years off: 20 points per year
    - more: 25 points per year, never below 0
    """
    if year_diff == 0:
        score = MAX_SCORE
    elif year_diff <= 1:
        score = MAX_SCORE - year_diff * 10
    elif year_diff <= 5:
        score = MAX_SCORE - year_diff * 15
    elif year_diff <= 10:
        score = MAX_SCORE - year_diff * 20
    else:
        score = MAX_SCORE - year_diff * 25
    return _round_half_up(_clamp(score))


def compute_location_score(distance: float) -> int:
    """
    Score the location guess.

    - <= 1km: 5 points per km
    - <= 10km: 10 points per km
    - <= 100km: 15 points per km
    - further: 20 points per km, never below 0
    """
    if distance <= 1:
        score = MAX_SCORE - distance * 5
    elif distance <= 10:
        score = MAX_SCORE - distance * 10
    elif distance <= 100:
        score = MAX_SCORE - distance * 15
    else:
        score = MAX_SCORE - distance * 20
    return _round_half_up(_clamp(score))


def compute_bonus(
    answer_time_seconds: int,
    year_diff: int,
    distance: float,
    streak_count: int
) -> BonusBreakdown:
    """
    Calculate the speed, perfect and streak bonuses of a round.

    The speed bonus has no upper cap. Achievements are derived from the
    same thresholds and are only used for display.
    """
    speed_bonus = max(0, (SPEED_BASELINE_SECONDS - answer_time_seconds) * SPEED_MULTIPLIER)

    perfect_time = year_diff == 0
    perfect_location = distance <= PERFECT_DISTANCE_KM
    if perfect_time and perfect_location:
        perfect_bonus = PERFECT_BOTH_BONUS
    elif perfect_time or perfect_location:
        perfect_bonus = PERFECT_SINGLE_BONUS
    else:
        perfect_bonus = 0

    streak_bonus = min(streak_count * STREAK_MULTIPLIER, MAX_STREAK_BONUS)

    achievements = []
    if speed_bonus >= LIGHTNING_THRESHOLD:
        achievements.append("lightning")
    if perfect_bonus == PERFECT_BOTH_BONUS:
        achievements.append("perfectionist")
    elif perfect_bonus == PERFECT_SINGLE_BONUS:
        achievements.append("single-perfect")
    if streak_bonus > 0:
        achievements.append(f"{streak_count}-streak")
    if speed_bonus > 0:
        achievements.append("speed-bonus")

    return BonusBreakdown(
        speed_bonus=_round_half_up(speed_bonus),
        perfect_bonus=perfect_bonus,
        streak_bonus=_round_half_up(streak_bonus),
        achievements=tuple(achievements)
    )


def get_time_rank(year_diff: int) -> Tuple[Rank, str]:
    """Rank and display colour for a year difference."""
    for threshold, rank, color in TIME_RANKS:
        if year_diff <= threshold:
            return rank, color
    return TIME_RANKS[-1][1], TIME_RANKS[-1][2]


def get_location_rank(distance: float) -> Tuple[Rank, str]:
    """Rank and display colour for a distance in kilometers."""
    for threshold, rank, color in LOCATION_RANKS:
        if distance <= threshold:
            return rank, color
    return LOCATION_RANKS[-1][1], LOCATION_RANKS[-1][2]


def compute_score(
    distance: float,
    year_diff: int,
    answer_time_seconds: int,
    streak_count: int = 0
) -> ScoreBreakdown:
    """
    Calculate the full score breakdown of a round.

    final = round(time * 0.6 + location * 0.4) + bonus

    Pure and total: any finite input produces a breakdown.
    """
    time_score = compute_time_score(year_diff)
    location_score = compute_location_score(distance)
    bonus = compute_bonus(answer_time_seconds, year_diff, distance, streak_count)

    base_score = _round_half_up(time_score * TIME_WEIGHT + location_score * LOCATION_WEIGHT)

    return ScoreBreakdown(
        time_score=time_score,
        location_score=location_score,
        bonus_score=bonus.total,
        speed_bonus=bonus.speed_bonus,
        perfect_bonus=bonus.perfect_bonus,
        streak_bonus=bonus.streak_bonus,
        final_score=base_score + bonus.total,
        time_rank=get_time_rank(year_diff)[0],
        location_rank=get_location_rank(distance)[0],
        achievements=bonus.achievements
    )


def score_attempt(attempt: RoundAttempt) -> ScoreBreakdown:
    """Evaluate and score a submitted attempt."""
    return compute_score(
        distance_km(attempt.guessed_location, attempt.actual_location),
        year_difference(attempt.guessed_year, attempt.actual_year),
        attempt.answer_time_seconds,
        attempt.streak_count
    )


def format_distance(distance: float) -> str:
    """Human readable distance: meters below 1km, otherwise one decimal km."""
    if distance < 1:
        return f"{_round_half_up(distance * 1000)}m"
    return f"{distance:.1f}km"


def format_time(seconds: int) -> str:
    """Human readable answer time, e.g. 45s or 2m5s."""
    if seconds < 60:
        return f"{seconds}s"
    minutes, remaining = divmod(seconds, 60)
    return f"{minutes}m{remaining}s"
