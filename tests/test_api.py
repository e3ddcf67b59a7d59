"""End-to-end HTTP flows against a temporary SQLite database and a scripted oracle."""
from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timedelta
from pathlib import Path

import httpx
import pytest

from fakes import PDF_BYTES
from socratic_tutor.controller import Phase
from socratic_tutor.db import SessionLocal
from socratic_tutor.difficulty import Quality
from socratic_tutor.main import app
from socratic_tutor.models import LearningSession
from socratic_tutor.registry import controllers
from socratic_tutor.settings import settings

PASSWORD = "Secret123"
GOOD_ANSWER = "Light energy is captured by chlorophyll to make ATP."


def _signup(client, name: str = "Ada") -> dict:
    email = f"{uuid.uuid4().hex[:10]}@example.com"
    r = client.post("/api/auth/signup", json={"email": email, "password": PASSWORD, "name": name})
    assert r.status_code == 201, r.text
    data = r.json()["data"]
    return {"email": email, "headers": {"Authorization": f"Bearer {data['accessToken']}"}, **data}


def _upload(client, headers) -> dict:
    r = client.post(
        "/api/pdfs/upload",
        files={"file": ("lecture.pdf", PDF_BYTES, "application/pdf")},
        headers=headers,
    )
    assert r.status_code == 201, r.text
    return r.json()["data"]["pdf"]


def _session(client, headers) -> str:
    pdf = _upload(client, headers)
    r = client.post("/api/sessions", json={"pdfId": pdf["id"]}, headers=headers)
    assert r.status_code == 201, r.text
    return r.json()["data"]["session"]["id"]


def test_health_and_root(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["success"] is True
    assert client.get("/").json()["data"]["name"] == "Socratic Tutor API"


def test_signup_login_refresh_me(client):
    user = _signup(client)
    r = client.post("/api/auth/login", json={"email": user["email"].upper(), "password": PASSWORD})
    assert r.status_code == 200
    assert r.json()["message"] == "Login successful"

    r = client.post("/api/auth/refresh", json={"refreshToken": user["refreshToken"]})
    assert r.status_code == 200
    access = r.json()["data"]["accessToken"]

    r = client.get("/api/auth/me", headers={"Authorization": f"Bearer {access}"})
    assert r.json()["data"]["user"]["email"] == user["email"]


def test_refresh_token_is_not_an_access_token(client):
    user = _signup(client)
    r = client.get("/api/auth/me", headers={"Authorization": f"Bearer {user['refreshToken']}"})
    assert r.status_code == 401
    assert r.json()["success"] is False


def test_signup_validation(client):
    r = client.post("/api/auth/signup", json={"email": "a@example.com", "password": "weakpass"})
    assert r.status_code == 400
    assert "uppercase" in r.json()["message"]

    r = client.post("/api/auth/signup", json={"email": "not-an-email", "password": PASSWORD})
    assert r.status_code == 400

    user = _signup(client)
    r = client.post("/api/auth/signup", json={"email": user["email"], "password": PASSWORD})
    assert r.status_code == 409


def test_wrong_password_and_missing_token(client):
    user = _signup(client)
    r = client.post("/api/auth/login", json={"email": user["email"], "password": "Wrong1234"})
    assert r.status_code == 401
    assert client.get("/api/pdfs").status_code == 401


def test_oauth2_token_endpoint(client):
    user = _signup(client)
    r = client.post("/api/auth/token", data={"username": user["email"], "password": PASSWORD})
    assert r.status_code == 200
    assert r.json()["token_type"] == "bearer"


def test_pdf_crud(client, oracle):
    user = _signup(client)
    headers = user["headers"]
    pdf = _upload(client, headers)
    assert pdf["topics"] == oracle.topics
    assert (Path(settings.upload_dir) / pdf["fileUrl"]).exists()

    r = client.get("/api/pdfs", params={"page": 1, "limit": 5}, headers=headers)
    body = r.json()["data"]
    assert [p["id"] for p in body["pdfs"]] == [pdf["id"]]
    assert body["pagination"] == {"page": 1, "limit": 5, "total": 1, "totalPages": 1}

    r = client.get(f"/api/pdfs/{pdf['id']}", headers=headers)
    assert r.json()["data"]["pdf"]["extractedText"]

    r = client.put(f"/api/pdfs/{pdf['id']}", json={"fileName": "  Week 1.pdf "}, headers=headers)
    assert r.json()["data"]["pdf"]["fileName"] == "Week 1.pdf"

    r = client.delete(f"/api/pdfs/{pdf['id']}", headers=headers)
    assert r.status_code == 200
    assert not (Path(settings.upload_dir) / pdf["fileUrl"]).exists()
    assert client.get(f"/api/pdfs/{pdf['id']}", headers=headers).status_code == 404


def test_upload_rejects_non_pdf(client, oracle):
    user = _signup(client)
    r = client.post(
        "/api/pdfs/upload",
        files={"file": ("notes.txt", b"plain text", "text/plain")},
        headers=user["headers"],
    )
    assert r.status_code == 400
    assert oracle.count("extract_text") == 0


def test_bad_pagination(client):
    user = _signup(client)
    r = client.get("/api/pdfs", params={"limit": 500}, headers=user["headers"])
    assert r.status_code == 400


def test_other_users_cannot_see_pdf(client):
    owner = _signup(client)
    pdf = _upload(client, owner["headers"])
    other = _signup(client, name="Eve")
    assert client.get(f"/api/pdfs/{pdf['id']}", headers=other["headers"]).status_code == 404


def test_session_crud_and_messages(client):
    user = _signup(client)
    headers = user["headers"]
    session_id = _session(client, headers)

    r = client.put(
        f"/api/sessions/{session_id}",
        json={"difficulty": 3, "currentQuestion": 2, "progress": {"questionsAsked": 2, "hintsUsed": 1}},
        headers=headers,
    )
    session = r.json()["data"]["session"]
    assert session["difficulty"] == 3
    assert session["progress"]["questionsAsked"] == 2

    assert client.put(f"/api/sessions/{session_id}", json={"difficulty": 9}, headers=headers).status_code == 400

    r = client.post(f"/api/sessions/{session_id}/messages", json={"type": "intro", "content": "Hello"}, headers=headers)
    assert r.status_code == 201
    r = client.post(f"/api/sessions/{session_id}/messages", json={"type": "shout", "content": "Hi"}, headers=headers)
    assert r.status_code == 400

    r = client.get("/api/sessions", headers=headers)
    assert r.json()["data"]["sessions"][0]["messageCount"] == 1


def test_tutor_turns_persist_messages_and_progress(client, oracle):
    user = _signup(client)
    headers = user["headers"]
    session_id = _session(client, headers)
    base = f"/api/sessions/{session_id}/tutor"

    r = client.post(f"{base}/start", headers=headers)
    assert r.status_code == 200, r.text
    state = r.json()["data"]["state"]
    assert state["phase"] == "awaiting_answer"
    assert state["currentQuestion"].startswith("Question 1")

    r = client.post(f"{base}/answer", json={"answer": "too short"}, headers=headers)
    assert r.json()["data"]["result"] is None
    assert "20 characters" in r.json()["message"]

    oracle.qualities = [Quality.PARTIAL, Quality.STRONG]
    r = client.post(f"{base}/answer", json={"answer": GOOD_ANSWER}, headers=headers)
    assert r.json()["data"]["result"]["quality"] == "partial"

    r = client.post(f"{base}/hint", headers=headers)
    assert r.json()["data"]["result"] == "Think about energy, step 1."

    r = client.post(f"{base}/answer", json={"answer": GOOD_ANSWER + " via ATP"}, headers=headers)
    result = r.json()["data"]["result"]
    assert result["advanced"] is True
    assert result["nextQuestion"].startswith("Question 2")

    session = client.get(f"/api/sessions/{session_id}", headers=headers).json()["data"]["session"]
    assert [m["type"] for m in session["messages"]] == [
        "intro", "ai-question", "user-answer", "ai-explanation", "user-answer", "ai-explanation", "ai-question",
    ]
    assert session["currentQuestion"] == 2
    assert session["progress"]["questionsAsked"] == 2
    assert session["progress"]["correctAnswers"] == 1
    assert session["progress"]["hintsUsed"] == 1
    assert session["progress"]["thinkingScore"] is not None

    stats = client.get("/api/progress/stats", headers=headers).json()["data"]["stats"]
    assert stats["totalSessions"] == 1
    assert stats["totalQuestionsAsked"] == 2
    assert stats["overallAccuracy"] == 50.0
    assert stats["activeSessions"] == 1

    pdf_id = session["pdfId"]
    detail = client.get(f"/api/progress/pdfs/{pdf_id}", headers=headers).json()["data"]
    assert detail["statistics"]["totalCorrectAnswers"] == 1
    assert detail["sessions"][0]["messageCount"] == 7


def test_tutor_evaluation_failure_then_retry(client, oracle):
    user = _signup(client)
    headers = user["headers"]
    session_id = _session(client, headers)
    base = f"/api/sessions/{session_id}/tutor"
    client.post(f"{base}/start", headers=headers)

    oracle.fail_next("evaluate_answer", RuntimeError("model overloaded"))
    r = client.post(f"{base}/answer", json={"answer": GOOD_ANSWER}, headers=headers)
    assert r.status_code == 502
    assert r.json()["error"] == "EvaluationError"

    state = client.get(f"{base}/state", headers=headers).json()["data"]["state"]
    assert state["canRetry"] is True
    assert state["messages"][-1]["type"] == "user-answer"

    oracle.qualities = [Quality.NEEDS_WORK]
    r = client.post(f"{base}/retry", headers=headers)
    assert r.status_code == 200
    assert r.json()["data"]["result"]["quality"] == "needs_work"
    assert r.json()["data"]["state"]["attemptCount"] == 1


def test_tutor_rate_limit_maps_to_429(client, oracle):
    user = _signup(client)
    headers = user["headers"]
    session_id = _session(client, headers)
    oracle.fail_next("generate_intro", RuntimeError("429 Resource exhausted"))
    r = client.post(f"/api/sessions/{session_id}/tutor/start", headers=headers)
    assert r.status_code == 429
    assert r.json()["error"] == "RATE_LIMITED"


def test_tutor_state_survives_controller_loss(client, oracle):
    user = _signup(client)
    headers = user["headers"]
    session_id = _session(client, headers)
    base = f"/api/sessions/{session_id}/tutor"
    question = client.post(f"{base}/start", headers=headers).json()["data"]["state"]["currentQuestion"]

    controllers.forget(session_id)
    state = client.get(f"{base}/state", headers=headers).json()["data"]["state"]
    assert state["phase"] == "awaiting_answer"
    assert state["currentQuestion"] == question
    assert state["questionsAsked"] == 1

    oracle.qualities = [Quality.STRONG]
    r = client.post(f"{base}/answer", json={"answer": GOOD_ANSWER}, headers=headers)
    assert r.json()["data"]["result"]["advanced"] is True


def test_tutor_reset_clears_history(client):
    user = _signup(client)
    headers = user["headers"]
    session_id = _session(client, headers)
    base = f"/api/sessions/{session_id}/tutor"
    client.post(f"{base}/start", headers=headers)

    r = client.post(f"{base}/reset", headers=headers)
    state = r.json()["data"]["state"]
    assert state["phase"] == "awaiting_intro"
    assert state["transcript"] == []

    session = client.get(f"/api/sessions/{session_id}", headers=headers).json()["data"]["session"]
    assert session["messages"] == []
    assert session["progress"]["questionsAsked"] == 0


def test_failed_restart_keeps_previous_run(client, oracle):
    user = _signup(client)
    headers = user["headers"]
    session_id = _session(client, headers)
    base = f"/api/sessions/{session_id}/tutor"
    client.post(f"{base}/start", headers=headers)
    oracle.qualities = [Quality.STRONG]
    client.post(f"{base}/answer", json={"answer": GOOD_ANSWER}, headers=headers)
    before = client.get(f"/api/sessions/{session_id}", headers=headers).json()["data"]["session"]
    assert len(before["messages"]) == 5

    oracle.fail_next("generate_intro", RuntimeError("model overloaded"))
    r = client.post(f"{base}/start", headers=headers)
    assert r.status_code == 502

    after = client.get(f"/api/sessions/{session_id}", headers=headers).json()["data"]["session"]
    assert after["messages"] == before["messages"]
    assert after["progress"] == before["progress"]
    assert after["currentQuestion"] == 2

    state = client.get(f"{base}/state", headers=headers).json()["data"]["state"]
    assert state["phase"] == "awaiting_answer"
    assert state["questionNumber"] == 2


def test_restart_with_failed_first_question_can_retry(client, oracle):
    user = _signup(client)
    headers = user["headers"]
    session_id = _session(client, headers)
    base = f"/api/sessions/{session_id}/tutor"
    client.post(f"{base}/start", headers=headers)

    oracle.fail_next("generate_question", RuntimeError("model overloaded"))
    r = client.post(f"{base}/start", headers=headers)
    assert r.status_code == 502

    session = client.get(f"/api/sessions/{session_id}", headers=headers).json()["data"]["session"]
    assert [m["type"] for m in session["messages"]] == ["intro"]
    state = client.get(f"{base}/state", headers=headers).json()["data"]["state"]
    assert state["canRetry"] is True

    r = client.post(f"{base}/retry", headers=headers)
    assert r.status_code == 200
    assert r.json()["data"]["state"]["phase"] == "awaiting_answer"


def test_login_locks_after_repeated_failures(client):
    user = _signup(client)
    for _ in range(settings.auth_max_failed_attempts):
        r = client.post("/api/auth/login", json={"email": user["email"], "password": "Wrong1234"})
        assert r.status_code == 401

    r = client.post("/api/auth/login", json={"email": user["email"], "password": PASSWORD})
    assert r.status_code == 429
    assert r.json()["success"] is False
    assert r.json()["error"] == "RATE_LIMIT_EXCEEDED"

    r = client.post("/api/auth/token", data={"username": user["email"], "password": PASSWORD})
    assert r.status_code == 429

    other = _signup(client, name="Bea")
    r = client.post("/api/auth/login", json={"email": other["email"], "password": PASSWORD})
    assert r.status_code == 200


def test_deleting_pdf_drops_live_controllers(client):
    user = _signup(client)
    headers = user["headers"]
    session_id = _session(client, headers)
    client.post(f"/api/sessions/{session_id}/tutor/start", headers=headers)
    assert session_id in controllers

    pdf_id = client.get(f"/api/sessions/{session_id}", headers=headers).json()["data"]["session"]["pdfId"]
    client.delete(f"/api/pdfs/{pdf_id}", headers=headers)
    assert session_id not in controllers


def test_thinking_score_is_timed_from_the_current_run(client, oracle):
    user = _signup(client)
    headers = user["headers"]
    session_id = _session(client, headers)
    db = SessionLocal()
    try:
        row = db.get(LearningSession, session_id)
        row.created_at = datetime.utcnow() - timedelta(hours=5)
        db.commit()
    finally:
        db.close()

    base = f"/api/sessions/{session_id}/tutor"
    client.post(f"{base}/start", headers=headers)
    oracle.qualities = [Quality.STRONG]
    client.post(f"{base}/answer", json={"answer": GOOD_ANSWER}, headers=headers)

    # 1 of 2 correct is 30 points, plus 10 for a quick pace
    session = client.get(f"/api/sessions/{session_id}", headers=headers).json()["data"]["session"]
    assert session["progress"]["thinkingScore"] == 40.0
    stats = client.get("/api/progress/stats", headers=headers).json()["data"]["stats"]
    assert stats["averageThinkingScore"] == 40.0


@pytest.mark.asyncio
async def test_reset_cuts_short_the_pause_between_questions(client, oracle, monkeypatch):
    monkeypatch.setattr(settings, "advance_delay_seconds", 5.0)
    user = _signup(client)
    headers = user["headers"]
    session_id = _session(client, headers)
    base = f"/api/sessions/{session_id}/tutor"
    client.post(f"{base}/start", headers=headers)
    controller = controllers.get(session_id).controller

    oracle.qualities = [Quality.STRONG]
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        answering = asyncio.create_task(ac.post(f"{base}/answer", json={"answer": GOOD_ANSWER}, headers=headers))
        for _ in range(200):
            await asyncio.sleep(0.01)
            if controller.phase is Phase.ADVANCING:
                break
        assert controller.phase is Phase.ADVANCING

        r = await asyncio.wait_for(ac.post(f"{base}/reset", headers=headers), timeout=2.0)
        answered = await asyncio.wait_for(answering, timeout=2.0)

    assert r.json()["data"]["state"]["phase"] == "awaiting_intro"
    assert answered.json()["data"]["result"]["nextQuestion"] is None
    assert oracle.count("generate_question") == 1
    session = client.get(f"/api/sessions/{session_id}", headers=headers).json()["data"]["session"]
    assert session["messages"] == []
