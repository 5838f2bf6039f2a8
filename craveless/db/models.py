from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, declarative_base, mapped_column, relationship

Base = declarative_base()


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    external_id: Mapped[str] = mapped_column(String(128), unique=True, index=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    # App-wide state the classifier signals; rendered by the client.
    distress_mode_active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    distress_mode_activated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    streaks_paused: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    streaks_paused_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    insight_profile: Mapped["InsightProfile"] = relationship(
        "InsightProfile", back_populates="user", uselist=False, cascade="all, delete-orphan"
    )
    ai_turns: Mapped[list["AiTurnRow"]] = relationship(
        "AiTurnRow", back_populates="user", cascade="all, delete-orphan"
    )
    cravings: Mapped[list["CravingEntry"]] = relationship(
        "CravingEntry", back_populates="user", cascade="all, delete-orphan"
    )


class InsightProfile(Base):
    __tablename__ = "insight_profiles"
    __table_args__ = (UniqueConstraint("user_id", name="uq_insight_profiles_user_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    profile_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user: Mapped[User] = relationship("User", back_populates="insight_profile")


class AiTurnRow(Base):
    __tablename__ = "ai_turns"
    __table_args__ = (Index("ix_ai_turns_user_created", "user_id", "created_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    turn_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    user: Mapped[User] = relationship("User", back_populates="ai_turns")


class CravingEntry(Base):
    __tablename__ = "craving_entries"
    __table_args__ = (Index("ix_craving_entries_user_logged", "user_id", "logged_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    logged_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    local_hour: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    sweet_type: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    emotion: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    intensity: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    outcome: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    delay_used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    post_delay_intensity: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    delay_completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    user: Mapped[User] = relationship("User", back_populates="cravings")
