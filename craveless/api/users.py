from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from craveless.core.safety import SafetyAnalysis
from craveless.db.models import User
from craveless.db.session import get_db
from craveless.services.memory_store import naive_utc


def get_current_user(
    x_user_id: Optional[str] = Header(default=None, max_length=128),
    db: Session = Depends(get_db),
) -> User:
    external_id = (x_user_id or "").strip()
    if not external_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header")
    user = db.query(User).filter(User.external_id == external_id).first()
    if user:
        return user
    user = User(external_id=external_id, created_at=naive_utc(datetime.now(timezone.utc)))
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def activate_distress_mode(db: Session, user: User) -> None:
    if user.distress_mode_active:
        return
    user.distress_mode_active = True
    user.distress_mode_activated_at = naive_utc(datetime.now(timezone.utc))
    db.commit()


def pause_streaks(db: Session, user: User) -> None:
    if user.streaks_paused:
        return
    user.streaks_paused = True
    user.streaks_paused_at = naive_utc(datetime.now(timezone.utc))
    db.commit()


def apply_safety_signals(db: Session, user: User, analysis: SafetyAnalysis) -> None:
    if analysis.should_activate_distress_mode:
        activate_distress_mode(db, user)
    if analysis.should_pause_streaks:
        pause_streaks(db, user)


def clear_distress_mode(db: Session, user: User) -> None:
    user.distress_mode_active = False
    user.distress_mode_activated_at = None
    user.streaks_paused = False
    user.streaks_paused_at = None
    db.commit()
