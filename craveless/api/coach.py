import logging
from datetime import datetime, timezone
from functools import partial
from typing import Optional

from fastapi import APIRouter, Depends, status
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field, model_validator
from sqlalchemy.orm import Session

from craveless.api.users import activate_distress_mode, apply_safety_signals, get_current_user
from craveless.core.coach import Classification, LessAiResult, get_reply, get_safe_reply
from craveless.core.context_builder import AiTurn, CurrentMoment, RecentStats, build_recent_stats
from craveless.core.insights import (
    MemoryUpdates,
    UserInsightProfile,
    apply_memory_updates,
    infer_signals_from_user_text,
)
from craveless.core.prompts import UserContext
from craveless.core.safety import MessageCategory, SafetyAnalysis, classify_message
from craveless.db.models import User
from craveless.db.session import get_db
from craveless.services.llm import TextGenerator, get_text_generator
from craveless.services.memory_store import CravingLog, ProfileStore, TurnHistoryStore

router = APIRouter(prefix="/coach", tags=["coach"])
logger = logging.getLogger("uvicorn.error")

FALLBACK_CLASSIFICATIONS = {
    MessageCategory.crisis: Classification.crisis,
    MessageCategory.disordered_eating: Classification.disordered_eating,
    MessageCategory.medical_advice_request: Classification.medical_request,
}


class CurrentMomentInput(BaseModel):
    time_bucket: Optional[str] = Field(default=None, pattern="^(morning|afternoon|evening|late-night)$")
    intensity: Optional[float] = Field(default=None, ge=0, le=10)
    emotion: Optional[str] = Field(default=None, max_length=32)


class CoachMessageRequest(BaseModel):
    message: str = Field(min_length=1, max_length=1000)
    local_hour: Optional[int] = Field(default=None, ge=0, le=23)
    current_moment: Optional[CurrentMomentInput] = None


class CoachMessageResponse(BaseModel):
    assistant_message: str
    classification: Classification
    quick_actions: list[str]
    safety_category: MessageCategory
    source: str
    distress_mode_active: bool
    streaks_paused: bool


class SafeChatRequest(BaseModel):
    message: Optional[str] = Field(default=None, max_length=1000)
    need_more_help: bool = False
    local_hour: Optional[int] = Field(default=None, ge=0, le=23)

    @model_validator(mode="after")
    def validate_message(self):
        if self.need_more_help or (self.message or "").strip():
            return self
        raise ValueError("message is required unless need_more_help is set")


class SafeChatResponse(BaseModel):
    message: str
    safety_category: MessageCategory
    risk_level: str
    used_fallback: bool
    distress_mode_active: bool
    streaks_paused: bool


class TurnItem(BaseModel):
    id: str
    role: str
    content: str
    timestamp_iso: str


class TurnListResponse(BaseModel):
    items: list[TurnItem]


class ClearTurnsResponse(BaseModel):
    cleared: int


def _local_now(local_hour: Optional[int]) -> datetime:
    now = datetime.now(timezone.utc)
    if local_hour is None:
        return now
    return now.replace(hour=local_hour)


def _local_fallback_result(category: MessageCategory, fallback_text: str, distress: bool) -> LessAiResult:
    return LessAiResult(
        assistant_message=fallback_text,
        classification=FALLBACK_CLASSIFICATIONS[category],
        quick_actions=[],
        memory_updates=MemoryUpdates(distress_flag=distress),
    )


def _load_message_state(
    db: Session, user: User, analysis: SafetyAnalysis, now: datetime
) -> tuple[UserInsightProfile, list[AiTurn], RecentStats, bool]:
    apply_safety_signals(db, user, analysis)
    profile = ProfileStore(db, user.id).load()
    if analysis.should_use_fallback:
        return profile, [], RecentStats(), user.distress_mode_active
    turns = TurnHistoryStore(db, user.id).load_recent()
    stats = build_recent_stats(CravingLog(db, user.id).recent(now), now)
    return profile, turns, stats, user.distress_mode_active


def _load_chat_state(db: Session, user: User) -> tuple[list[AiTurn], UserInsightProfile, tuple[int, int]]:
    turns = TurnHistoryStore(db, user.id).load_recent()
    return turns, ProfileStore(db, user.id).load(), CravingLog(db, user.id).totals()


def _persist_exchange(
    db: Session,
    user: User,
    *,
    user_message: Optional[str],
    assistant_message: str,
    profile: Optional[UserInsightProfile] = None,
    analysis: Optional[SafetyAnalysis] = None,
    activate_distress: bool = False,
) -> tuple[bool, bool]:
    if analysis is not None:
        apply_safety_signals(db, user, analysis)
    if profile is not None:
        ProfileStore(db, user.id).save(profile)
    if activate_distress:
        activate_distress_mode(db, user)
    # Turns are written only once the final reply is settled.
    turn_store = TurnHistoryStore(db, user.id)
    if user_message:
        turn_store.append("user", user_message)
    turn_store.append("assistant", assistant_message)
    return user.distress_mode_active, user.streaks_paused


@router.post("/message", response_model=CoachMessageResponse, status_code=status.HTTP_200_OK)
async def send_coach_message(
    payload: CoachMessageRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    generator: TextGenerator = Depends(get_text_generator),
) -> CoachMessageResponse:
    message = payload.message.strip()
    analysis = classify_message(message)
    now = datetime.now(timezone.utc)
    # SQLAlchemy work runs in the threadpool so generation does not share the loop with SQLite I/O.
    profile, recent_turns, stats, distress_active = await run_in_threadpool(
        _load_message_state, db, user, analysis, now
    )

    if analysis.should_use_fallback and analysis.fallback_response:
        logger.info("coach_local_fallback user_id=%s category=%s", user.id, analysis.category.value)
        result = _local_fallback_result(
            analysis.category, analysis.fallback_response, analysis.should_activate_distress_mode
        )
        profile = apply_memory_updates(profile, result.memory_updates, now=now)
        source = "safety_fallback"
    else:
        moment = CurrentMoment(**payload.current_moment.model_dump()) if payload.current_moment else None
        result = await get_reply(
            message,
            profile,
            recent_turns,
            stats,
            moment,
            distress_mode=distress_active or profile.distress_flag,
            generator=generator,
            log=logger,
        )
        signals = infer_signals_from_user_text(message, _local_now(payload.local_hour))
        profile = apply_memory_updates(profile, result.memory_updates, signals, now=now)
        source = "coach"

    if analysis.should_activate_distress_mode and not profile.distress_flag:
        profile = profile.model_copy(update={"distress_flag": True})
    distress_mode_active, streaks_paused = await run_in_threadpool(
        partial(
            _persist_exchange,
            db,
            user,
            user_message=message,
            assistant_message=result.assistant_message,
            profile=profile,
            activate_distress=result.memory_updates.distress_flag,
        )
    )

    return CoachMessageResponse(
        assistant_message=result.assistant_message,
        classification=result.classification,
        quick_actions=result.quick_actions,
        safety_category=analysis.category,
        source=source,
        distress_mode_active=distress_mode_active,
        streaks_paused=streaks_paused,
    )


@router.post("/chat", response_model=SafeChatResponse, status_code=status.HTTP_200_OK)
async def send_safe_chat(
    payload: SafeChatRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    generator: TextGenerator = Depends(get_text_generator),
) -> SafeChatResponse:
    turns, profile, (logged, resisted) = await run_in_threadpool(_load_chat_state, db, user)
    message = (payload.message or "").strip()
    if payload.need_more_help:
        last_user = next((turn.content for turn in reversed(turns) if turn.role == "user"), "")
        message = last_user or message

    user_context = UserContext(
        goal_mode=profile.goal_mode.value if profile.goal_mode else None,
        cravings_logged=logged,
        cravings_resisted=resisted,
        hour=_local_now(payload.local_hour).hour,
    )
    reply = await get_safe_reply(
        message,
        turns,
        user_context,
        generator=generator,
        need_more_help=payload.need_more_help,
        log=logger,
    )

    # A "need more help" request repeats the last user turn, so only the reply is stored.
    distress_mode_active, streaks_paused = await run_in_threadpool(
        partial(
            _persist_exchange,
            db,
            user,
            user_message=None if payload.need_more_help else message,
            assistant_message=reply.message,
            analysis=None if payload.need_more_help else reply.analysis,
        )
    )

    return SafeChatResponse(
        message=reply.message,
        safety_category=reply.analysis.category,
        risk_level=reply.analysis.risk_level.value,
        used_fallback=reply.analysis.should_use_fallback,
        distress_mode_active=distress_mode_active,
        streaks_paused=streaks_paused,
    )


@router.get("/turns", response_model=TurnListResponse)
def list_turns(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> TurnListResponse:
    turns = TurnHistoryStore(db, user.id).load_recent()
    return TurnListResponse(
        items=[
            TurnItem(id=turn.id, role=turn.role, content=turn.content, timestamp_iso=turn.timestamp_iso)
            for turn in turns
        ]
    )


@router.delete("/turns", response_model=ClearTurnsResponse)
def clear_turns(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ClearTurnsResponse:
    return ClearTurnsResponse(cleared=TurnHistoryStore(db, user.id).clear())
