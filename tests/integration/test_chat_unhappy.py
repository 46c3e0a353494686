from fastapi.testclient import TestClient

from assistant.main import app


client = TestClient(app)


def test_chat_unknown_message_gets_general_reply():
    response = client.post(
        "/chat",
        json={"thread_id": "conv-unknown", "content": "blorbledygook"},
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "completed"
    assert "what would you like to do" in payload["message"].lower()


def test_chat_missing_content_returns_400():
    response = client.post("/chat", json={"thread_id": "conv-err"})
    assert response.status_code == 400


def test_chat_blank_content_returns_400():
    response = client.post("/chat", json={"thread_id": "conv-err", "content": "   "})
    assert response.status_code == 400


def test_chat_missing_thread_returns_400():
    response = client.post("/chat", json={"content": "hello"})
    assert response.status_code == 400


def test_resume_missing_fields_returns_400():
    response = client.post("/resume", json={"thread_id": "conv-err", "content": "yes"})
    assert response.status_code == 400


def test_resume_without_pending_question_is_rejected():
    response = client.post(
        "/resume",
        json={"thread_id": "conv-never-suspended", "step_id": "s1", "content": "yes"},
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "rejected"
    assert payload["resume_outcome"] == "rejected_mismatch"


def test_capability_match_requires_query():
    assert client.get("/capabilities/match").status_code == 400


def test_unknown_thread_returns_404():
    assert client.get("/threads/does-not-exist").status_code == 404


def test_retry_missing_thread_returns_400():
    response = client.post("/retry", json={})
    assert response.status_code == 400


def test_retry_without_failed_turn_is_rejected():
    response = client.post("/retry", json={"thread_id": "conv-never-failed"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "rejected"
    assert payload["retryable"] is False
