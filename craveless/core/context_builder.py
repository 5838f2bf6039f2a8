from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from craveless.core.insights import (
    UserInsightProfile,
    derive_peak_time,
    derive_primary_trigger,
    time_bucket_for_hour,
    top_k,
)

RECENT_WINDOW_DAYS = 7
INTENSITY_DELTA_MIN = 1.0


@dataclass
class CravingRecord:
    timestamp: datetime
    emotion: Optional[str] = None
    intensity: Optional[float] = None
    delay_used: bool = False
    post_delay_intensity: Optional[float] = None
    delay_completed_at: Optional[datetime] = None
    local_hour: Optional[int] = None


@dataclass
class RecentStats:
    cravings_count_7d: int = 0
    peak_time_buckets: list[str] = field(default_factory=list)
    top_emotions: list[str] = field(default_factory=list)
    top_triggers: list[str] = field(default_factory=list)
    delay_completion_rate_7d: int = 0
    avg_intensity_drop_after_delay_7d: float = 0.0
    avg_intensity_7d: Optional[float] = None


@dataclass
class AiTurn:
    id: str
    timestamp_iso: str
    role: str
    content: str


@dataclass
class CurrentMoment:
    time_bucket: Optional[str] = None
    intensity: Optional[float] = None
    emotion: Optional[str] = None


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _avg(values: list[float], digits: int = 1) -> Optional[float]:
    if not values:
        return None
    return round(sum(values) / len(values), digits)


def _fmt_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return str(value)


def build_recent_stats(cravings: list[CravingRecord], now: Optional[datetime] = None) -> RecentStats:
    current = _as_utc(now or datetime.now(timezone.utc))
    since = current - timedelta(days=RECENT_WINDOW_DAYS)
    recent = [item for item in cravings if _as_utc(item.timestamp) >= since]

    time_counts: dict[str, int] = {}
    emotion_counts: dict[str, int] = {}
    trigger_counts: dict[str, int] = {}
    delay_started = 0
    delay_completed = 0
    drops: list[float] = []
    intensities: list[float] = []

    for item in recent:
        hour = item.local_hour if item.local_hour is not None else _as_utc(item.timestamp).hour
        bucket = time_bucket_for_hour(hour)
        time_counts[bucket] = time_counts.get(bucket, 0) + 1

        if item.emotion:
            emotion_counts[item.emotion] = emotion_counts.get(item.emotion, 0) + 1
            # Triggers are tracked from the same emotion field.
            trigger_counts[item.emotion] = trigger_counts.get(item.emotion, 0) + 1

        if item.delay_used:
            delay_started += 1
            if item.delay_completed_at is not None:
                delay_completed += 1

        if item.intensity is not None:
            intensities.append(float(item.intensity))
            if item.post_delay_intensity is not None:
                drop = float(item.intensity) - float(item.post_delay_intensity)
                if drop > 0:
                    drops.append(drop)

    completion_rate = (delay_completed / delay_started) * 100 if delay_started else 0
    return RecentStats(
        cravings_count_7d=len(recent),
        peak_time_buckets=[key for key, _ in top_k(time_counts, 2)],
        top_emotions=[key for key, _ in top_k(emotion_counts, 2)],
        top_triggers=[key for key, _ in top_k(trigger_counts, 2)],
        delay_completion_rate_7d=int(round(completion_rate)),
        avg_intensity_drop_after_delay_7d=_avg(drops) or 0.0,
        avg_intensity_7d=_avg(intensities),
    )


def _pattern_line(label: str, value: Optional[str], confidence: Optional[float]) -> str:
    if not value:
        return f"- {label}: unknown (not enough data yet)"
    return f"- {label}: {value} (confidence {confidence:.2f})"


def build_context_snapshot(
    profile: UserInsightProfile,
    stats: RecentStats,
    current_moment: Optional[CurrentMoment] = None,
) -> str:
    primary_trigger, trigger_confidence = derive_primary_trigger(profile)
    peak_time, time_confidence = derive_peak_time(profile)
    goal_mode = profile.goal_mode.value if profile.goal_mode else "not set"

    lines = [
        "IMPORTANT CONTEXT",
        f"- Goal mode: {goal_mode}",
        f"- Distress mode: {'true' if profile.distress_flag else 'false'}",
        _pattern_line("Primary trigger", primary_trigger, trigger_confidence),
        _pattern_line("Peak time", peak_time, time_confidence),
        "",
        "Additional context",
        f"- Tone preference: {profile.tone_preference.value}",
    ]

    sweets = [key for key, _ in top_k(profile.sweet_preference_stats, 2)]
    lines.append(f"- Sweet preferences: {', '.join(sweets) if sweets else 'none recorded'}")
    lines.append(
        f"- Last 7d: cravings={stats.cravings_count_7d}, "
        f"delay completion={stats.delay_completion_rate_7d}%, "
        f"avg intensity drop={_fmt_number(stats.avg_intensity_drop_after_delay_7d)}"
    )

    if current_moment is not None:
        lines.extend(["", "Current moment:"])
        if current_moment.time_bucket:
            note = ""
            if peak_time:
                note = " (this is their usual peak time)" if current_moment.time_bucket == peak_time else " (outside usual peak time)"
            lines.append(f"- Time bucket: {current_moment.time_bucket}{note}")
        if current_moment.emotion:
            note = ""
            if primary_trigger:
                note = " (matches primary trigger)" if current_moment.emotion == primary_trigger else " (differs from primary trigger)"
            lines.append(f"- Emotion: {current_moment.emotion}{note}")
        if current_moment.intensity is not None:
            line = f"- Intensity: {_fmt_number(current_moment.intensity)}"
            if stats.avg_intensity_7d is not None:
                delta = round(float(current_moment.intensity) - stats.avg_intensity_7d, 1)
                if abs(delta) >= INTENSITY_DELTA_MIN:
                    direction = "stronger" if delta > 0 else "milder"
                    line += (
                        f" ({'+' if delta > 0 else ''}{_fmt_number(delta)} vs recent average "
                        f"{_fmt_number(stats.avg_intensity_7d)}, {direction} than usual)"
                    )
            lines.append(line)

    return "\n".join(lines)
