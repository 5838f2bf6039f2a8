from conftest import FakeScenario


def test_insights_default_profile(client, user_headers) -> None:
    response = client.get("/profile/insights", headers=user_headers)
    assert response.status_code == 200
    body = response.json()
    assert body["profile"]["goal_mode"] is None
    assert body["profile"]["tone_preference"] == "gentle"
    assert body["profile"]["distress_flag"] is False
    assert body["primary_trigger"] is None
    assert body["peak_time"] is None
    assert body["distress_mode_active"] is False


def test_update_settings(client, user_headers) -> None:
    response = client.put(
        "/profile/settings",
        headers=user_headers,
        json={"goal_mode": "quit", "tone_preference": "direct"},
    )
    assert response.status_code == 200
    assert response.json()["profile"]["goal_mode"] == "quit"

    body = client.get("/profile/insights", headers=user_headers).json()
    assert body["profile"]["goal_mode"] == "quit"
    assert body["profile"]["tone_preference"] == "direct"
    assert body["profile"]["last_updated_iso"]


def test_update_settings_rejects_unknown_goal(client, user_headers) -> None:
    response = client.put("/profile/settings", headers=user_headers, json={"goal_mode": "starve"})
    assert response.status_code == 422


def test_goal_mode_reaches_coach_prompt(client, user_headers, override_generator) -> None:
    client.put("/profile/settings", headers=user_headers, json={"goal_mode": "habit"})
    generator = override_generator(FakeScenario.PLAIN_TEXT)
    client.post("/coach/chat", headers=user_headers, json={"message": "I want a cookie"})
    assert "GOAL MODE: Habit Control" in generator.prompts[0]


def test_distress_mode_stays_until_cleared(client, user_headers, override_generator) -> None:
    generator = override_generator(FakeScenario.OK_NORMAL)
    crisis = client.post("/coach/message", headers=user_headers, json={"message": "I want to end my life"})
    assert crisis.json()["distress_mode_active"] is True

    later = client.post("/coach/message", headers=user_headers, json={"message": "I want a cookie"})
    assert later.json()["distress_mode_active"] is True
    assert generator.prompts[-1].endswith("no streak/goal talk]")

    cleared = client.post("/profile/distress/clear", headers=user_headers)
    assert cleared.status_code == 200
    body = cleared.json()
    assert body["distress_mode_active"] is False
    assert body["streaks_paused"] is False
    assert body["profile"]["distress_flag"] is False

    after = client.post("/coach/message", headers=user_headers, json={"message": "I want a cookie"})
    assert after.json()["distress_mode_active"] is False
    assert not generator.prompts[-1].endswith("no streak/goal talk]")
