import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import uuid4

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from craveless.core.context_builder import AiTurn, CravingRecord, RECENT_WINDOW_DAYS
from craveless.core.insights import UserInsightProfile
from craveless.db.models import AiTurnRow, CravingEntry, InsightProfile

MAX_TURNS = 10
MAX_TURN_CHARS = 8000

logger = logging.getLogger("uvicorn.error")


def naive_utc(value: datetime) -> datetime:
    # SQLite DateTime columns hold naive values; everything is stored as UTC.
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class ProfileStore:
    def __init__(self, db: Session, user_id: int) -> None:
        self.db = db
        self.user_id = user_id

    def _row(self) -> Optional[InsightProfile]:
        return self.db.query(InsightProfile).filter(InsightProfile.user_id == self.user_id).first()

    def load(self) -> UserInsightProfile:
        try:
            row = self._row()
        except SQLAlchemyError as exc:
            logger.warning("insight_profile_read_failed user_id=%s detail=%s", self.user_id, str(exc)[:220])
            self.db.rollback()
            return UserInsightProfile()
        if not row or not row.profile_json:
            return UserInsightProfile()
        try:
            return UserInsightProfile.model_validate_json(row.profile_json)
        except ValidationError as exc:
            logger.warning("insight_profile_unreadable user_id=%s detail=%s", self.user_id, str(exc)[:220])
            return UserInsightProfile()

    def save(self, profile: UserInsightProfile) -> UserInsightProfile:
        stamped = profile.model_copy(update={"last_updated_iso": datetime.now(timezone.utc).isoformat()})
        row = self._row()
        if not row:
            row = InsightProfile(user_id=self.user_id)
            self.db.add(row)
        row.profile_json = stamped.model_dump_json()
        row.updated_at = naive_utc(datetime.now(timezone.utc))
        self.db.commit()
        return stamped


def _turn_from_row(row: AiTurnRow) -> AiTurn:
    return AiTurn(
        id=row.turn_id,
        timestamp_iso=row.created_at.isoformat(),
        role=row.role,
        content=row.content,
    )


class TurnHistoryStore:
    def __init__(self, db: Session, user_id: int, max_turns: int = MAX_TURNS) -> None:
        self.db = db
        self.user_id = user_id
        self.max_turns = max_turns

    def _newest_first(self):
        return (
            self.db.query(AiTurnRow)
            .filter(AiTurnRow.user_id == self.user_id)
            .order_by(AiTurnRow.created_at.desc(), AiTurnRow.id.desc())
        )

    def load_recent(self, max_turns: Optional[int] = None) -> list[AiTurn]:
        limit = self.max_turns if max_turns is None else max_turns
        if limit <= 0:
            return []
        try:
            rows = self._newest_first().limit(limit).all()
        except SQLAlchemyError as exc:
            logger.warning("turn_history_read_failed user_id=%s detail=%s", self.user_id, str(exc)[:220])
            self.db.rollback()
            return []
        return [_turn_from_row(row) for row in reversed(rows)]

    def append(self, role: str, content: str) -> Optional[AiTurn]:
        text = (content or "").strip()
        if role not in {"user", "assistant"} or not text:
            return None
        row = AiTurnRow(
            turn_id=uuid4().hex,
            user_id=self.user_id,
            role=role,
            content=text[:MAX_TURN_CHARS],
            created_at=naive_utc(datetime.now(timezone.utc)),
        )
        self.db.add(row)
        self.db.flush()
        # Oldest turns beyond the window are evicted first.
        stale = self._newest_first().offset(self.max_turns).all()
        for item in stale:
            self.db.delete(item)
        self.db.commit()
        return _turn_from_row(row)

    def clear(self) -> int:
        count = self.db.query(AiTurnRow).filter(AiTurnRow.user_id == self.user_id).delete()
        self.db.commit()
        return int(count or 0)


def _record_from_row(row: CravingEntry) -> CravingRecord:
    return CravingRecord(
        timestamp=row.logged_at,
        emotion=row.emotion,
        intensity=row.intensity,
        delay_used=bool(row.delay_used),
        post_delay_intensity=row.post_delay_intensity,
        delay_completed_at=row.delay_completed_at,
        local_hour=row.local_hour,
    )


class CravingLog:
    def __init__(self, db: Session, user_id: int) -> None:
        self.db = db
        self.user_id = user_id

    def add(self, entry: CravingEntry) -> CravingEntry:
        entry.user_id = self.user_id
        self.db.add(entry)
        self.db.commit()
        self.db.refresh(entry)
        return entry

    def recent(self, now: Optional[datetime] = None, days: int = RECENT_WINDOW_DAYS) -> list[CravingRecord]:
        since = naive_utc(now or datetime.now(timezone.utc)) - timedelta(days=days)
        rows = (
            self.db.query(CravingEntry)
            .filter(CravingEntry.user_id == self.user_id, CravingEntry.logged_at >= since)
            .order_by(CravingEntry.logged_at.asc())
            .all()
        )
        return [_record_from_row(row) for row in rows]

    def totals(self) -> tuple[int, int]:
        rows = self.db.query(CravingEntry.outcome).filter(CravingEntry.user_id == self.user_id).all()
        logged = len(rows)
        resisted = sum(1 for (outcome,) in rows if outcome == "resisted")
        return logged, resisted
