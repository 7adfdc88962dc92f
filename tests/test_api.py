from __future__ import annotations

from fastapi.testclient import TestClient

from mentor import main
from mentor.db import SqlStore
from mentor.errors import ModelUnavailable
from mentor.main import create_app


def register(client, name="Asha", email="asha@example.com", **extra):
    res = client.post("/api/user/create", json={"name": name, "email": email, **extra})
    assert res.status_code == 200, res.text
    return res.json()["user_id"]


def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    body = res.json()
    assert body["status"] == "OK"
    assert "timestamp" in body
    assert body["store"] == "ok"


def test_create_user(client, store):
    res = client.post(
        "/api/user/create",
        json={"name": "Asha", "email": "asha@example.com", "preparation_stage": "Revision"},
    )
    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    user = store.get_user(body["user_id"])
    assert user.preparation_stage == "Revision"
    assert user.exam_target == "NEET PG"


def test_create_user_missing_fields(client, store):
    assert client.post("/api/user/create", json={"email": "asha@example.com"}).status_code == 400
    assert client.post("/api/user/create", json={"name": "Asha"}).status_code == 400
    assert client.post("/api/user/create", json={"name": " ", "email": ""}).status_code == 400
    assert store._users == {}


def test_create_user_duplicate_email(client):
    register(client)
    res = client.post("/api/user/create", json={"name": "Other", "email": "asha@example.com"})
    assert res.status_code == 400


def test_get_user(client):
    user_id = register(client)
    res = client.get(f"/api/user/{user_id}")
    assert res.status_code == 200
    assert res.json()["name"] == "Asha"
    assert client.get("/api/user/missing").status_code == 500


def test_chat_then_history(client):
    user_id = register(client)

    res = client.post("/api/chat", json={"user_id": user_id, "message": "Studied 6 hours today"})
    assert res.status_code == 200
    assert res.json() == {"success": True, "response": "Great job! What subject?"}

    history = client.get(f"/api/chat/history/{user_id}").json()
    assert [(h["sender"], h["content"]) for h in history] == [
        ("user", "Studied 6 hours today"),
        ("assistant", "Great job! What subject?"),
    ]
    assert all("timestamp" in h for h in history)


def test_history_limit_returns_latest_turns(client):
    user_id = register(client)
    client.post("/api/chat", json={"user_id": user_id, "message": "one"})
    client.post("/api/chat", json={"user_id": user_id, "message": "two"})

    history = client.get(f"/api/chat/history/{user_id}", params={"limit": 2}).json()
    assert [h["content"] for h in history] == ["two", "Great job! What subject?"]


def test_history_empty_for_new_user(client):
    user_id = register(client)
    res = client.get(f"/api/chat/history/{user_id}")
    assert res.status_code == 200
    assert res.json() == []


def test_chat_missing_fields(client):
    assert client.post("/api/chat", json={"message": "hi"}).status_code == 400
    assert client.post("/api/chat", json={"user_id": "abc"}).status_code == 400
    assert client.post("/api/chat", json={"user_id": "abc", "message": ""}).status_code == 400


def test_chat_unknown_user(client):
    res = client.post("/api/chat", json={"user_id": "ghost", "message": "hi"})
    assert res.status_code == 500


def test_chat_model_failure_keeps_user_turn(store, settings, model_factory):
    client = TestClient(create_app(store=store, model=model_factory(error=ModelUnavailable("quota")), settings=settings))
    user_id = register(client)

    res = client.post("/api/chat", json={"user_id": user_id, "message": "Studied 6 hours today"})
    assert res.status_code == 500
    assert "quota" in res.json()["detail"]

    history = client.get(f"/api/chat/history/{user_id}").json()
    assert [(h["sender"], h["content"]) for h in history] == [("user", "Studied 6 hours today")]


def test_stats_default_for_unknown_user(client):
    res = client.get("/api/stats/ghost")
    assert res.status_code == 200
    assert res.json() == {"total_check_ins": 0}


def test_checkin_updates_stats(client):
    user_id = register(client)
    res = client.post(
        "/api/checkin",
        json={
            "user_id": user_id,
            "study_hours": 6,
            "subjects": "Anatomy, Physiology",
            "mood_rating": 8,
            "challenges": "Too many MCQs",
        },
    )
    assert res.status_code == 200
    assert res.json()["success"] is True
    assert res.json()["total_check_ins"] == 1

    stats = client.get(f"/api/stats/{user_id}").json()
    assert stats["total_check_ins"] == 1
    assert stats["total_study_hours"] == 6
    assert stats["current_streak"] == 1
    assert stats["last_check_in"] is not None


def test_checkin_validation(client):
    user_id = register(client)
    assert client.post("/api/checkin", json={"study_hours": 2}).status_code == 400
    assert client.post("/api/checkin", json={"user_id": user_id, "mood_rating": 11}).status_code == 400
    assert client.post("/api/checkin", json={"user_id": "ghost", "study_hours": 1}).status_code == 500


def test_chat_does_not_touch_stats(client):
    user_id = register(client)
    client.post("/api/chat", json={"user_id": user_id, "message": "hello"})
    assert client.get(f"/api/stats/{user_id}").json()["total_check_ins"] == 0


def test_routes_also_served_without_api_prefix(client):
    res = client.post("/user/create", json={"name": "Asha", "email": "asha@example.com"})
    assert res.status_code == 200
    user_id = res.json()["user_id"]

    res = client.post("/chat", json={"user_id": user_id, "message": "Studied 6 hours today"})
    assert res.json()["response"] == "Great job! What subject?"

    history = client.get(f"/chat/history/{user_id}").json()
    assert [h["sender"] for h in history] == ["user", "assistant"]
    assert client.post("/checkin", json={"user_id": user_id, "study_hours": 3}).status_code == 200
    assert client.get(f"/stats/{user_id}").json()["total_check_ins"] == 1


def test_store_errors_return_500(tmp_path, stub_model, settings):
    store = SqlStore(f"sqlite:///{tmp_path / 'missing' / 'mentor.db'}")
    client = TestClient(create_app(store=store, model=stub_model, settings=settings))

    health = client.get("/health")
    assert health.status_code == 200
    assert health.json()["store"] == "unavailable"

    assert client.post("/api/user/create", json={"name": "Asha", "email": "asha@example.com"}).status_code == 500
    assert client.get("/api/chat/history/u1").status_code == 500
    assert client.get("/api/stats/u1").status_code == 500
    assert client.post("/api/checkin", json={"user_id": "u1", "study_hours": 2}).status_code == 500
    assert client.post("/api/chat", json={"user_id": "u1", "message": "hi"}).status_code == 500
    assert stub_model.payloads == []


def test_importing_main_does_not_build_an_app():
    assert not hasattr(main, "app")
