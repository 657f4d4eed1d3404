# langlog_server/processing_service/logic/experience.py
"""
Level curve and per-activity experience. Pure functions, no I/O.

Step cost from level L to L+1 is A + B(L-1) + C(L-1)^2, growing until
CAP_LEVEL and flat from there on.
"""

import math
from typing import Iterable, Optional

from langlog_server.processing_service.db_models import ContentSource, MediaType
from langlog_server.processing_service.models import ApplyExperienceResult

BASE_A = 150
BASE_B = 17
BASE_C = 2
CAP_LEVEL = 51

HOUR_XP = 100
BASE_RATE_PER_MIN = HOUR_XP / 60

SKILL_WEIGHTS = {
    "listening": 1.0,
    "reading": 1.5,
    "writing": 2.0,
    "speaking": 2.0,
}
SKILL_PREFERENCE = ("speaking", "writing", "reading", "listening")

RAMP_IN_MIN = 5
DIMINISH_AFTER_MIN = 90
DIMINISH_FACTOR = 0.5
MAX_ENTRY_MIN = 300
MAX_MANUAL_XP_PER_ENTRY = 300

HABIT_CAP_DAYS = 21

SOURCE_DEFAULT_MEDIA = {
    ContentSource.YOUTUBE: MediaType.VIDEO,
    ContentSource.SPOTIFY: MediaType.AUDIO,
    ContentSource.WEBSITE: MediaType.TEXT,
}


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def xp_for_next_level(level: int) -> int:
    """XP required to go from `level` to `level + 1`."""
    step = min(level, CAP_LEVEL) - 1
    return BASE_A + BASE_B * step + BASE_C * step ** 2


def xp_for_last_level(level: int) -> int:
    # Same curve, kept separate because ledger rows snapshot both values
    return xp_for_next_level(level)


def total_xp_for_level(level: int) -> int:
    """Total XP needed to reach `level` from zero."""
    if level < 1:
        return 0
    return sum(xp_for_next_level(i) for i in range(1, level))


def level_from_xp(xp: int):
    """Returns (level, remainder) with remainder < xp_for_next_level(level)."""
    if xp <= 0:
        return 1, 0
    level = 1
    remaining = xp
    while True:
        cost = xp_for_next_level(level)
        if remaining < cost:
            return level, remaining
        remaining -= cost
        level += 1


def apply_experience(current_total_experience: float, delta_experience: float) -> ApplyExperienceResult:
    previous_total = max(0, math.floor(current_total_experience or 0))
    delta = math.floor(delta_experience or 0)
    new_total = max(0, previous_total + delta)

    previous_level, _ = level_from_xp(previous_total)
    new_level, remainder = level_from_xp(new_total)
    return ApplyExperienceResult(
        previous_total_experience=previous_total,
        new_total_experience=new_total,
        previous_level=previous_level,
        new_level=new_level,
        levels_gained=max(0, new_level - previous_level),
        remainder_towards_next_level=remainder,
        next_level_cost=xp_for_next_level(new_level),
        last_level_cost=xp_for_last_level(new_level),
    )


def _ramp_in_factor(minutes: float) -> float:
    if minutes <= 0:
        return 0.0
    if minutes >= RAMP_IN_MIN:
        return 1.0
    return minutes / RAMP_IN_MIN


def _effective_minutes(raw_minutes: float) -> float:
    minutes = min(max(round_half_up(raw_minutes), 0), MAX_ENTRY_MIN)
    if minutes <= DIMINISH_AFTER_MIN:
        return minutes
    return DIMINISH_AFTER_MIN + (minutes - DIMINISH_AFTER_MIN) * DIMINISH_FACTOR


def pick_primary_skill(skill_categories: Optional[Iterable[str]] = None,
                       content_categories: Optional[Iterable] = None) -> str:
    """Most effortful named skill wins; otherwise inferred from content; reading by default."""
    skills = set(skill_categories or ())
    for skill in SKILL_PREFERENCE:
        if skill in skills:
            return skill
    categories = {c.value if isinstance(c, MediaType) else c for c in (content_categories or ())}
    if "audio" in categories or "video" in categories:
        return "listening"
    if "text" in categories:
        return "reading"
    return "reading"


def get_experience_for_activity(duration_in_minutes: float, source: Optional[ContentSource] = None,
                                content_categories: Optional[Iterable] = None,
                                is_manually_tracked: bool = False,
                                skill_categories: Optional[Iterable[str]] = None) -> int:
    if not duration_in_minutes or duration_in_minutes <= 0:
        return 0
    if not content_categories and source in SOURCE_DEFAULT_MEDIA:
        content_categories = [SOURCE_DEFAULT_MEDIA[source]]

    weight = SKILL_WEIGHTS[pick_primary_skill(skill_categories, content_categories)]
    # Ramp-in uses raw minutes so tiny sessions are discounted
    raw_xp = BASE_RATE_PER_MIN * _effective_minutes(duration_in_minutes) * weight * _ramp_in_factor(duration_in_minutes)
    if is_manually_tracked:
        raw_xp = min(raw_xp, MAX_MANUAL_XP_PER_ENTRY)
    return max(0, round_half_up(raw_xp))


def streak_bonus_multiplier(current_streak: int) -> float:
    progress = min(1.0, max(0, current_streak or 0) / HABIT_CAP_DAYS)
    return round(1 + progress, 3)


def duration_ms_to_minutes(duration_ms: float) -> int:
    """Whole minutes for XP, never below one."""
    return max(1, round_half_up(duration_ms / 60000))
