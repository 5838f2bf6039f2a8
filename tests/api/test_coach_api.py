import threading

from conftest import FakeScenario
from craveless.core.coach import SAFE_FALLBACK_MESSAGE
from craveless.core.prompts import DISTRESS_MODE_DIRECTIVE
from craveless.services.memory_store import ProfileStore, TurnHistoryStore


def _send(client, headers, message: str, **extra):
    return client.post("/coach/message", headers=headers, json={"message": message, **extra})


def test_coach_message_requires_user_header(client) -> None:
    response = client.post("/coach/message", json={"message": "I want candy"})
    assert response.status_code == 401


def test_coach_message_validates_body(client, user_headers) -> None:
    assert _send(client, user_headers, "").status_code == 422
    assert _send(client, user_headers, "hi", local_hour=25).status_code == 422


def test_coach_message_normal_flow(client, user_headers, override_generator) -> None:
    generator = override_generator(FakeScenario.OK_NORMAL)
    response = _send(
        client,
        user_headers,
        "I'm craving chocolate after a stressful day",
        local_hour=18,
        current_moment={"time_bucket": "evening", "intensity": 7, "emotion": "stressed"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["classification"] == "normal"
    assert body["quick_actions"] == ["start_pause", "log_intensity"]
    assert body["safety_category"] == "normal-craving"
    assert body["source"] == "coach"
    assert body["distress_mode_active"] is False
    assert generator.calls == 1
    assert "- Time bucket: evening" in generator.prompts[0]

    profile = client.get("/profile/insights", headers=user_headers).json()["profile"]
    # Model-supplied and text-inferred signals both count.
    assert profile["trigger_stats"] == {"stressed": 2}
    assert profile["sweet_preference_stats"] == {"chocolate": 2}
    assert profile["time_bucket_stats"] == {"evening": 1}
    assert profile["goal_mode"] == "reduce"
    assert profile["last_updated_iso"]

    turns = client.get("/coach/turns", headers=user_headers).json()["items"]
    assert [turn["role"] for turn in turns] == ["user", "assistant"]
    assert turns[0]["content"] == "I'm craving chocolate after a stressful day"
    assert turns[1]["content"] == body["assistant_message"]


def test_coach_message_crisis_bypasses_generation(client, user_headers, override_generator) -> None:
    generator = override_generator(FakeScenario.OK_NORMAL)
    response = _send(client, user_headers, "I want to kill myself")
    assert response.status_code == 200
    body = response.json()
    assert generator.calls == 0
    assert body["classification"] == "crisis"
    assert body["source"] == "safety_fallback"
    assert body["quick_actions"] == []
    assert "988" in body["assistant_message"]
    assert body["distress_mode_active"] is True
    assert body["streaks_paused"] is True

    insights = client.get("/profile/insights", headers=user_headers).json()
    assert insights["profile"]["distress_flag"] is True
    assert len(client.get("/coach/turns", headers=user_headers).json()["items"]) == 2


def test_coach_message_binge_uses_local_fallback(client, user_headers, override_generator) -> None:
    generator = override_generator(FakeScenario.OK_NORMAL)
    body = _send(client, user_headers, "I binged on cookies last night").json()
    assert generator.calls == 0
    assert body["classification"] == "disordered_eating"
    assert body["safety_category"] == "disordered-eating"
    assert "isn't a failure" in body["assistant_message"]
    assert body["distress_mode_active"] is True


def test_coach_message_medical_request_refused_locally(client, user_headers, override_generator) -> None:
    generator = override_generator(FakeScenario.OK_NORMAL)
    body = _send(client, user_headers, "Can you give me a meal plan?").json()
    assert generator.calls == 0
    assert body["classification"] == "medical_request"
    assert body["distress_mode_active"] is False
    assert body["streaks_paused"] is False


def test_coach_message_non_json_twice_returns_safe_fallback(client, user_headers, override_generator) -> None:
    generator = override_generator(FakeScenario.NO_JSON)
    body = _send(client, user_headers, "I want some candy").json()
    assert generator.calls == 2
    assert body["assistant_message"] == SAFE_FALLBACK_MESSAGE
    assert body["classification"] == "normal"
    assert body["quick_actions"] == ["start_pause"]
    turns = client.get("/coach/turns", headers=user_headers).json()["items"]
    assert turns[-1]["content"] == SAFE_FALLBACK_MESSAGE


def test_coach_message_mental_distress_sets_directive(client, user_headers, override_generator) -> None:
    generator = override_generator(FakeScenario.OK_NORMAL)
    body = _send(client, user_headers, "I feel hopeless tonight").json()
    assert generator.calls == 1
    assert generator.prompts[0].endswith(DISTRESS_MODE_DIRECTIVE)
    assert body["distress_mode_active"] is True
    assert body["streaks_paused"] is True


def test_coach_message_slip_pauses_streaks_only(client, user_headers, override_generator) -> None:
    override_generator(FakeScenario.OK_NORMAL)
    body = _send(client, user_headers, "I messed up with the cookies today").json()
    assert body["safety_category"] == "slip-overeating"
    assert body["streaks_paused"] is True
    assert body["distress_mode_active"] is False


def test_repeated_stress_builds_primary_trigger(client, user_headers, override_generator) -> None:
    override_generator(FakeScenario.OK_NORMAL)
    for _ in range(3):
        assert _send(client, user_headers, "Work stress again, I want something sweet").status_code == 200
    insights = client.get("/profile/insights", headers=user_headers).json()
    assert insights["primary_trigger"] == "stressed"
    assert insights["trigger_confidence"] == 1.0


def test_turn_history_is_bounded_and_clearable(client, user_headers, override_generator) -> None:
    override_generator(FakeScenario.OK_NORMAL)
    for idx in range(6):
        _send(client, user_headers, f"craving number {idx}")
    turns = client.get("/coach/turns", headers=user_headers).json()["items"]
    assert len(turns) == 10
    assert turns[0]["content"] == "craving number 1"
    assert turns[-1]["role"] == "assistant"

    cleared = client.delete("/coach/turns", headers=user_headers)
    assert cleared.status_code == 200
    assert cleared.json() == {"cleared": 10}
    assert client.get("/coach/turns", headers=user_headers).json()["items"] == []


def test_safe_chat_flow_and_need_more_help(client, user_headers, override_generator) -> None:
    generator = override_generator(FakeScenario.PLAIN_TEXT)
    first = client.post("/coach/chat", headers=user_headers, json={"message": "I really want candy", "local_hour": 15})
    assert first.status_code == 200
    assert first.json()["used_fallback"] is False
    assert "FIRST message" in generator.prompts[0]
    assert "TIME: Afternoon (15:00)" in generator.prompts[0]

    again = client.post("/coach/chat", headers=user_headers, json={"need_more_help": True})
    assert again.status_code == 200
    assert "USER MESSAGE: I really want candy" in generator.prompts[1]
    assert "Need more help" in generator.prompts[1]

    roles = [turn["role"] for turn in client.get("/coach/turns", headers=user_headers).json()["items"]]
    assert roles == ["user", "assistant", "assistant"]


def test_safe_chat_requires_message(client, user_headers) -> None:
    response = client.post("/coach/chat", headers=user_headers, json={"message": "   "})
    assert response.status_code == 422


def test_safe_chat_crisis_uses_fallback(client, user_headers, override_generator) -> None:
    generator = override_generator(FakeScenario.PLAIN_TEXT)
    body = client.post("/coach/chat", headers=user_headers, json={"message": "thinking about suicide"}).json()
    assert generator.calls == 0
    assert body["used_fallback"] is True
    assert body["risk_level"] == "crisis"
    assert body["distress_mode_active"] is True


def _record_threads(monkeypatch, generator) -> dict[str, set[int]]:
    seen: dict[str, set[int]] = {"loop": set(), "db": set()}
    original_generate = generator.generate
    original_load = ProfileStore.load
    original_append = TurnHistoryStore.append

    async def generate(prompt: str) -> str:
        seen["loop"].add(threading.get_ident())
        return await original_generate(prompt)

    def load(self):
        seen["db"].add(threading.get_ident())
        return original_load(self)

    def append(self, role, content):
        seen["db"].add(threading.get_ident())
        return original_append(self, role, content)

    monkeypatch.setattr(generator, "generate", generate)
    monkeypatch.setattr(ProfileStore, "load", load)
    monkeypatch.setattr(TurnHistoryStore, "append", append)
    return seen


def test_coach_message_database_work_stays_off_event_loop(
    client, user_headers, override_generator, monkeypatch
) -> None:
    generator = override_generator(FakeScenario.OK_NORMAL)
    seen = _record_threads(monkeypatch, generator)
    assert _send(client, user_headers, "I want candy").status_code == 200
    assert len(seen["loop"]) == 1
    assert seen["db"]
    assert seen["loop"].isdisjoint(seen["db"])


def test_safe_chat_database_work_stays_off_event_loop(
    client, user_headers, override_generator, monkeypatch
) -> None:
    generator = override_generator(FakeScenario.PLAIN_TEXT)
    seen = _record_threads(monkeypatch, generator)
    response = client.post("/coach/chat", headers=user_headers, json={"message": "I want candy"})
    assert response.status_code == 200
    assert len(seen["loop"]) == 1
    assert seen["db"]
    assert seen["loop"].isdisjoint(seen["db"])
