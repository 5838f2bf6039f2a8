import os
import tempfile
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Optional
from uuid import uuid4

# The engine is built at import time, so point it somewhere writable first.
os.environ.setdefault("DB_PATH", str(Path(tempfile.mkdtemp()) / "craveless_import.db"))

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from craveless.db.models import CravingEntry, User  # noqa: E402
from craveless.db.session import SessionLocal, configure_database, create_tables  # noqa: E402
from craveless.services.llm import get_text_generator  # noqa: E402
from craveless.services.memory_store import naive_utc  # noqa: E402


class FakeScenario(str, Enum):
    OK_NORMAL = "OK_NORMAL"
    OK_FENCED = "OK_FENCED"
    NO_JSON = "NO_JSON"
    NO_JSON_THEN_OK = "NO_JSON_THEN_OK"
    MISSING_FIELDS = "MISSING_FIELDS"
    MALFORMED_JSON = "MALFORMED_JSON"
    TIMEOUT = "TIMEOUT"
    PLAIN_TEXT = "PLAIN_TEXT"
    EMPTY = "EMPTY"


PROSE_REPLY = "Sure! Let's take a breath together and see how the craving feels in a minute."
PLAIN_TEXT_REPLY = "Hey, I'm Less. Cravings can feel loud, so let's slow down for a moment together."


class FakeTextGenerator:
    def __init__(self, scenario: FakeScenario, fixture_dir: Path) -> None:
        self.scenario = scenario
        self.fixture_dir = fixture_dir
        self.prompts: list[str] = []

    @property
    def calls(self) -> int:
        return len(self.prompts)

    def _fixture(self, name: str, suffix: str = "json") -> str:
        return (self.fixture_dir / f"{name}.{suffix}").read_text(encoding="utf-8")

    def _normal_reply(self) -> str:
        return self._fixture("OK_NORMAL")

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        attempt = len(self.prompts)
        if self.scenario == FakeScenario.OK_NORMAL:
            return self._normal_reply()
        if self.scenario == FakeScenario.OK_FENCED:
            return f"Here you go:\n```json\n{self._normal_reply()}\n```\nHope that helps!"
        if self.scenario == FakeScenario.NO_JSON:
            return PROSE_REPLY
        if self.scenario == FakeScenario.NO_JSON_THEN_OK:
            return PROSE_REPLY if attempt == 1 else self._normal_reply()
        if self.scenario == FakeScenario.MISSING_FIELDS:
            return self._fixture("MISSING_FIELDS")
        if self.scenario == FakeScenario.MALFORMED_JSON:
            return self._fixture("MALFORMED_JSON", "txt")
        if self.scenario == FakeScenario.TIMEOUT:
            raise TimeoutError("simulated timeout")
        if self.scenario == FakeScenario.PLAIN_TEXT:
            return PLAIN_TEXT_REPLY
        if self.scenario == FakeScenario.EMPTY:
            return "   "
        raise ValueError("Unknown fake scenario")


@pytest.fixture(scope="session")
def fixture_dir() -> Path:
    return Path(__file__).resolve().parent / "fixtures" / "llm"


@pytest.fixture(scope="session")
def test_db_path(tmp_path_factory: pytest.TempPathFactory) -> Path:
    db_path = tmp_path_factory.mktemp("db") / "craveless_test.db"
    configure_database(str(db_path))
    create_tables()
    return db_path


@pytest.fixture(scope="session")
def app(test_db_path: Path):
    from craveless.main import app as fastapi_app

    return fastapi_app


@pytest.fixture
def client(app):
    app.dependency_overrides = {}
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides = {}


@pytest.fixture
def db_session(test_db_path: Path):
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def user_headers() -> dict[str, str]:
    return {"X-User-Id": f"user_{uuid4().hex[:10]}"}


@pytest.fixture
def create_user(db_session: Session) -> Callable[..., User]:
    def _create_user(external_id: Optional[str] = None) -> User:
        user = User(external_id=external_id or f"user_{uuid4().hex[:10]}")
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _create_user


@pytest.fixture
def seed_cravings(db_session: Session):
    def _seed(user_id: int) -> list[CravingEntry]:
        now = datetime.now(timezone.utc)
        rows = [
            CravingEntry(
                user_id=user_id,
                logged_at=naive_utc(now - timedelta(days=1)),
                local_hour=21,
                sweet_type="chocolate",
                emotion="stressed",
                intensity=8,
                outcome="resisted",
                delay_used=True,
                post_delay_intensity=5,
                delay_completed_at=naive_utc(now - timedelta(days=1) + timedelta(minutes=10)),
            ),
            CravingEntry(
                user_id=user_id,
                logged_at=naive_utc(now - timedelta(days=2)),
                local_hour=20,
                sweet_type="candy",
                emotion="stressed",
                intensity=6,
                outcome="gave_in",
                delay_used=True,
            ),
            CravingEntry(
                user_id=user_id,
                logged_at=naive_utc(now - timedelta(days=3)),
                local_hour=15,
                emotion="bored",
                intensity=4,
                outcome="resisted",
            ),
            CravingEntry(
                user_id=user_id,
                logged_at=naive_utc(now - timedelta(days=12)),
                local_hour=9,
                emotion="tired",
                intensity=9,
                outcome="gave_in",
            ),
        ]
        db_session.add_all(rows)
        db_session.commit()
        return rows

    return _seed


@pytest.fixture
def fake_generator_factory(fixture_dir: Path) -> Callable[[FakeScenario], FakeTextGenerator]:
    def _factory(scenario: FakeScenario) -> FakeTextGenerator:
        return FakeTextGenerator(scenario=scenario, fixture_dir=fixture_dir)

    return _factory


@pytest.fixture
def override_generator(app, fake_generator_factory):
    def _override(scenario: FakeScenario) -> FakeTextGenerator:
        generator = fake_generator_factory(scenario)
        app.dependency_overrides[get_text_generator] = lambda: generator
        return generator

    return _override
