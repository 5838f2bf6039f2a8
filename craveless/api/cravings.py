from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field, model_validator
from sqlalchemy.orm import Session

from craveless.api.users import get_current_user
from craveless.core.context_builder import build_recent_stats
from craveless.db.models import CravingEntry, User
from craveless.db.session import get_db
from craveless.services.memory_store import CravingLog, naive_utc

router = APIRouter(prefix="/cravings", tags=["cravings"])


class CravingCreateRequest(BaseModel):
    logged_at: Optional[datetime] = None
    local_hour: Optional[int] = Field(default=None, ge=0, le=23)
    sweet_type: Optional[str] = Field(default=None, max_length=32)
    emotion: Optional[str] = Field(default=None, max_length=32)
    intensity: Optional[float] = Field(default=None, ge=0, le=10)
    outcome: Optional[str] = Field(default=None, pattern="^(resisted|gave_in|delayed)$")
    delay_used: bool = False
    post_delay_intensity: Optional[float] = Field(default=None, ge=0, le=10)
    delay_completed_at: Optional[datetime] = None

    @model_validator(mode="after")
    def validate_delay(self):
        if self.delay_completed_at is not None and not self.delay_used:
            raise ValueError("delay_completed_at requires delay_used")
        return self


class CravingItem(BaseModel):
    id: int
    logged_at: datetime
    local_hour: Optional[int] = None
    sweet_type: Optional[str] = None
    emotion: Optional[str] = None
    intensity: Optional[float] = None
    outcome: Optional[str] = None
    delay_used: bool
    post_delay_intensity: Optional[float] = None
    delay_completed_at: Optional[datetime] = None


class RecentStatsResponse(BaseModel):
    cravings_count_7d: int
    peak_time_buckets: list[str]
    top_emotions: list[str]
    top_triggers: list[str]
    delay_completion_rate_7d: int
    avg_intensity_drop_after_delay_7d: float
    avg_intensity_7d: Optional[float] = None


@router.post("", response_model=CravingItem, status_code=status.HTTP_201_CREATED)
def log_craving(
    payload: CravingCreateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> CravingItem:
    logged_at = payload.logged_at or datetime.now(timezone.utc)
    entry = CravingEntry(
        logged_at=naive_utc(logged_at),
        local_hour=payload.local_hour,
        sweet_type=(payload.sweet_type or "").strip().lower() or None,
        emotion=(payload.emotion or "").strip().lower() or None,
        intensity=payload.intensity,
        outcome=payload.outcome,
        delay_used=payload.delay_used,
        post_delay_intensity=payload.post_delay_intensity,
        delay_completed_at=naive_utc(payload.delay_completed_at) if payload.delay_completed_at else None,
    )
    entry = CravingLog(db, user.id).add(entry)
    return CravingItem(
        id=entry.id,
        logged_at=entry.logged_at,
        local_hour=entry.local_hour,
        sweet_type=entry.sweet_type,
        emotion=entry.emotion,
        intensity=entry.intensity,
        outcome=entry.outcome,
        delay_used=entry.delay_used,
        post_delay_intensity=entry.post_delay_intensity,
        delay_completed_at=entry.delay_completed_at,
    )


@router.get("/stats", response_model=RecentStatsResponse)
def recent_stats(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> RecentStatsResponse:
    now = datetime.now(timezone.utc)
    stats = build_recent_stats(CravingLog(db, user.id).recent(now), now)
    return RecentStatsResponse(
        cravings_count_7d=stats.cravings_count_7d,
        peak_time_buckets=stats.peak_time_buckets,
        top_emotions=stats.top_emotions,
        top_triggers=stats.top_triggers,
        delay_completion_rate_7d=stats.delay_completion_rate_7d,
        avg_intensity_drop_after_delay_7d=stats.avg_intensity_drop_after_delay_7d,
        avg_intensity_7d=stats.avg_intensity_7d,
    )
