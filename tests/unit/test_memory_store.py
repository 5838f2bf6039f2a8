from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError

from craveless.core.insights import GoalMode, UserInsightProfile
from craveless.db.models import CravingEntry, InsightProfile
from craveless.services.memory_store import CravingLog, ProfileStore, TurnHistoryStore, naive_utc


def test_naive_utc_converts_aware_values() -> None:
    aware = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    assert naive_utc(aware) == datetime(2024, 5, 1, 12, 0)
    assert naive_utc(datetime(2024, 5, 1, 8, 0)) == datetime(2024, 5, 1, 8, 0)


def test_profile_store_round_trip(db_session, create_user) -> None:
    user = create_user()
    store = ProfileStore(db_session, user.id)
    assert store.load() == UserInsightProfile()

    saved = store.save(UserInsightProfile(goal_mode=GoalMode.health, trigger_stats={"tired": 2}))
    assert saved.last_updated_iso
    loaded = store.load()
    assert loaded.goal_mode == GoalMode.health
    assert loaded.trigger_stats == {"tired": 2}


def test_profile_store_unreadable_row_returns_default(db_session, create_user) -> None:
    user = create_user()
    db_session.add(InsightProfile(user_id=user.id, profile_json='{"goal_mode": "fly"}'))
    db_session.commit()
    assert ProfileStore(db_session, user.id).load() == UserInsightProfile()


def test_turn_store_ignores_empty_and_unknown_roles(db_session, create_user) -> None:
    user = create_user()
    store = TurnHistoryStore(db_session, user.id, max_turns=3)
    assert store.append("user", "   ") is None
    assert store.append("system", "hello") is None
    for idx in range(5):
        store.append("user", f"msg {idx}")
    assert [turn.content for turn in store.load_recent()] == ["msg 2", "msg 3", "msg 4"]
    assert [turn.content for turn in store.load_recent(max_turns=1)] == ["msg 4"]
    assert store.clear() == 3


def test_craving_log_totals(db_session, create_user) -> None:
    user = create_user()
    log = CravingLog(db_session, user.id)
    now = naive_utc(datetime.now(timezone.utc))
    log.add(CravingEntry(logged_at=now, outcome="resisted"))
    log.add(CravingEntry(logged_at=now, outcome="gave_in"))
    assert log.totals() == (2, 1)
    assert len(log.recent()) == 2


def test_store_read_failures_fall_back(db_session, create_user, monkeypatch) -> None:
    user = create_user()

    def _boom(*_args, **_kwargs):
        raise SQLAlchemyError("disk I/O error")

    monkeypatch.setattr(ProfileStore, "_row", _boom)
    monkeypatch.setattr(TurnHistoryStore, "_newest_first", _boom)
    assert ProfileStore(db_session, user.id).load() == UserInsightProfile()
    assert TurnHistoryStore(db_session, user.id).load_recent() == []


def test_turn_store_zero_limit_returns_nothing(db_session, create_user) -> None:
    user = create_user()
    store = TurnHistoryStore(db_session, user.id)
    store.append("user", "craving candy")
    assert store.load_recent(max_turns=0) == []
    assert TurnHistoryStore(db_session, user.id, max_turns=0).load_recent() == []
    assert len(store.load_recent()) == 1
