import logging
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from craveless.api.users import clear_distress_mode, get_current_user
from craveless.core.insights import (
    GoalMode,
    TonePreference,
    UserInsightProfile,
    derive_peak_time,
    derive_primary_trigger,
)
from craveless.db.models import User
from craveless.db.session import get_db
from craveless.services.memory_store import ProfileStore

router = APIRouter(prefix="/profile", tags=["profile"])
logger = logging.getLogger("uvicorn.error")


class ProfileSettingsRequest(BaseModel):
    goal_mode: Optional[GoalMode] = None
    tone_preference: Optional[TonePreference] = None


class InsightsResponse(BaseModel):
    profile: UserInsightProfile
    primary_trigger: Optional[str] = None
    trigger_confidence: Optional[float] = None
    peak_time: Optional[str] = None
    time_confidence: Optional[float] = None
    distress_mode_active: bool
    streaks_paused: bool


def _insights_response(profile: UserInsightProfile, user: User) -> InsightsResponse:
    primary_trigger, trigger_confidence = derive_primary_trigger(profile)
    peak_time, time_confidence = derive_peak_time(profile)
    return InsightsResponse(
        profile=profile,
        primary_trigger=primary_trigger,
        trigger_confidence=trigger_confidence,
        peak_time=peak_time,
        time_confidence=time_confidence,
        distress_mode_active=user.distress_mode_active,
        streaks_paused=user.streaks_paused,
    )


@router.get("/insights", response_model=InsightsResponse)
def get_insights(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> InsightsResponse:
    return _insights_response(ProfileStore(db, user.id).load(), user)


@router.put("/settings", response_model=InsightsResponse, status_code=status.HTTP_200_OK)
def update_settings(
    payload: ProfileSettingsRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> InsightsResponse:
    store = ProfileStore(db, user.id)
    profile = store.load()
    changes = payload.model_dump(exclude_none=True)
    if changes:
        profile = store.save(profile.model_copy(update=changes))
        logger.info("profile_settings_updated user_id=%s fields=%s", user.id, ",".join(sorted(changes)))
    return _insights_response(profile, user)


@router.post("/distress/clear", response_model=InsightsResponse, status_code=status.HTTP_200_OK)
def clear_distress(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> InsightsResponse:
    clear_distress_mode(db, user)
    store = ProfileStore(db, user.id)
    profile = store.load()
    if profile.distress_flag:
        profile = store.save(profile.model_copy(update={"distress_flag": False}))
    logger.info("distress_mode_cleared user_id=%s", user.id)
    return _insights_response(profile, user)
