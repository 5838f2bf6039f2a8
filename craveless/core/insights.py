import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

MAX_STAT_KEYS = 20
PATTERN_MIN_TOTAL = 3


class GoalMode(str, Enum):
    reduce = "reduce"
    quit = "quit"
    weight = "weight"
    health = "health"
    habit = "habit"


class TonePreference(str, Enum):
    professional_calm = "professional-calm"
    gentle = "gentle"
    direct = "direct"


class PatternConfidence(BaseModel):
    primary_trigger: Optional[str] = None
    trigger_confidence: Optional[float] = None
    peak_time: Optional[str] = None
    time_confidence: Optional[float] = None


class UserInsightProfile(BaseModel):
    goal_mode: Optional[GoalMode] = None
    tone_preference: TonePreference = TonePreference.gentle
    distress_flag: bool = False
    trigger_stats: dict[str, int] = Field(default_factory=dict)
    emotion_stats: dict[str, int] = Field(default_factory=dict)
    sweet_preference_stats: dict[str, int] = Field(default_factory=dict)
    time_bucket_stats: dict[str, int] = Field(default_factory=dict)
    pattern_confidence: PatternConfidence = Field(default_factory=PatternConfidence)
    last_updated_iso: Optional[str] = None


class MemoryUpdates(BaseModel):
    goal_mode: Optional[GoalMode] = None
    add_triggers: list[str] = Field(default_factory=list)
    add_sweet_preferences: list[str] = Field(default_factory=list)
    add_peak_times: list[str] = Field(default_factory=list)
    add_emotions: list[str] = Field(default_factory=list)
    tone_preference: Optional[TonePreference] = None
    distress_flag: bool = False


@dataclass
class InferredSignals:
    time_bucket: str
    inferred_triggers: list[str] = field(default_factory=list)
    inferred_emotions: list[str] = field(default_factory=list)
    inferred_sweet_prefs: list[str] = field(default_factory=list)


def increment_stat(stats: dict[str, int], key: str, amount: int = 1) -> dict[str, int]:
    updated = dict(stats)
    updated[key] = updated.get(key, 0) + amount
    return updated


def top_k(stats: dict[str, int], k: int) -> list[tuple[str, int]]:
    # sorted() is stable, so ties keep insertion order.
    ranked = sorted(stats.items(), key=lambda item: item[1], reverse=True)
    return ranked[: max(0, k)]


def compute_confidence(primary_count: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(primary_count / total, 2)


def prune_stats(stats: dict[str, int], max_keys: int = MAX_STAT_KEYS) -> dict[str, int]:
    return dict(top_k(stats, max_keys))


def time_bucket_for_hour(hour: int) -> str:
    if 5 <= hour < 12:
        return "morning"
    if 12 <= hour < 17:
        return "afternoon"
    if 17 <= hour < 22:
        return "evening"
    return "late-night"


TIME_WORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("late-night", ("night", "tonight", "late", "midnight", "before bed")),
    ("morning", ("morning", "breakfast")),
    ("afternoon", ("afternoon", "after lunch")),
    ("evening", ("evening", "dinner")),
)

EMOTION_WORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("stressed", ("stress", "overwhelm", "pressure", "deadline")),
    ("bored", ("bored", "boring", "nothing to do")),
    ("tired", ("tired", "exhausted", "sleepy", "drained")),
    ("anxious", ("anxious", "anxiety", "nervous", "worried")),
    ("sad", ("sad", "lonely", "down", "upset")),
    ("celebratory", ("celebrat", "party", "birthday", "reward myself")),
)

SWEET_WORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("chocolate", ("chocolate",)),
    ("candy", ("candy", "gummy", "gummies", "sweets")),
    ("soda", ("soda", "coke", "soft drink", "fizzy drink")),
    ("ice-cream", ("ice cream", "ice-cream", "gelato")),
    ("other", ("dessert", "sweet")),
    ("cookies", ("cookie", "biscuit")),
    ("cake", ("cake", "cupcake", "brownie")),
    ("pastry", ("pastry", "pastries", "donut", "doughnut", "croissant")),
)


def infer_signals_from_user_text(text: str, now: Optional[datetime] = None) -> InferredSignals:
    current = now or datetime.now(timezone.utc)
    lowered = (text or "").lower()

    # Time words must be whole words: "chocolate" and "lately" are not "late".
    time_bucket = time_bucket_for_hour(current.hour)
    for bucket, words in TIME_WORDS:
        if any(re.search(rf"\b{re.escape(word)}\b", lowered) for word in words):
            time_bucket = bucket
            break

    signals = InferredSignals(time_bucket=time_bucket)
    for emotion, words in EMOTION_WORDS:
        if any(word in lowered for word in words):
            signals.inferred_triggers.append(emotion)
            signals.inferred_emotions.append(emotion)
    for sweet, words in SWEET_WORDS:
        if any(word in lowered for word in words) and sweet not in signals.inferred_sweet_prefs:
            signals.inferred_sweet_prefs.append(sweet)
    return signals


def _primary_with_confidence(stats: dict[str, int]) -> tuple[Optional[str], Optional[float]]:
    total = sum(stats.values())
    if total < PATTERN_MIN_TOTAL:
        return None, None
    ranked = top_k(stats, 1)
    if not ranked:
        return None, None
    key, count = ranked[0]
    return key, compute_confidence(count, total)


def derive_primary_trigger(profile: UserInsightProfile) -> tuple[Optional[str], Optional[float]]:
    stored = profile.pattern_confidence
    if stored.primary_trigger and stored.trigger_confidence is not None:
        return stored.primary_trigger, stored.trigger_confidence
    return _primary_with_confidence(profile.trigger_stats)


def derive_peak_time(profile: UserInsightProfile) -> tuple[Optional[str], Optional[float]]:
    stored = profile.pattern_confidence
    if stored.peak_time and stored.time_confidence is not None:
        return stored.peak_time, stored.time_confidence
    return _primary_with_confidence(profile.time_bucket_stats)


def refresh_pattern_confidence(profile: UserInsightProfile) -> UserInsightProfile:
    primary_trigger, trigger_confidence = _primary_with_confidence(profile.trigger_stats)
    peak_time, time_confidence = _primary_with_confidence(profile.time_bucket_stats)
    return profile.model_copy(
        update={
            "pattern_confidence": PatternConfidence(
                primary_trigger=primary_trigger,
                trigger_confidence=trigger_confidence,
                peak_time=peak_time,
                time_confidence=time_confidence,
            )
        }
    )


def _clean_labels(values: list[Any]) -> list[str]:
    cleaned: list[str] = []
    for value in values:
        label = str(value).strip().lower()
        if label:
            cleaned.append(label)
    return cleaned


def _merge_counts(stats: dict[str, int], labels: list[str]) -> dict[str, int]:
    merged = stats
    for label in _clean_labels(labels):
        merged = increment_stat(merged, label)
    return prune_stats(merged)


def apply_memory_updates(
    profile: UserInsightProfile,
    updates: MemoryUpdates,
    signals: Optional[InferredSignals] = None,
    now: Optional[datetime] = None,
) -> UserInsightProfile:
    triggers = list(updates.add_triggers)
    emotions = list(updates.add_emotions)
    sweets = list(updates.add_sweet_preferences)
    peak_times = list(updates.add_peak_times)
    if signals is not None:
        triggers.extend(signals.inferred_triggers)
        emotions.extend(signals.inferred_emotions)
        sweets.extend(signals.inferred_sweet_prefs)
        peak_times.append(signals.time_bucket)

    changes: dict[str, Any] = {
        "trigger_stats": _merge_counts(profile.trigger_stats, triggers),
        "emotion_stats": _merge_counts(profile.emotion_stats, emotions),
        "sweet_preference_stats": _merge_counts(profile.sweet_preference_stats, sweets),
        "time_bucket_stats": _merge_counts(profile.time_bucket_stats, peak_times),
        "last_updated_iso": (now or datetime.now(timezone.utc)).isoformat(),
    }
    if updates.goal_mode is not None:
        changes["goal_mode"] = updates.goal_mode
    if updates.tone_preference is not None:
        changes["tone_preference"] = updates.tone_preference
    if updates.distress_flag:
        changes["distress_flag"] = True

    return refresh_pattern_confidence(profile.model_copy(update=changes))
