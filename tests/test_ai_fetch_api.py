import json

from database.models import AiFetchLog, Board, Chapter, McqPoolQuestion, PaperStage, Subject


def _mcq(question):
    return {
        "question": question,
        "options": ["A", "B", "C", "D"],
        "correct_option": 2,
        "explanation": "Because.",
        "subject": "Physics",
        "chapter": "Motion",
    }


def test_requires_admin(client, regular_user):
    from auth.security import create_access_token

    payload = {"state_id": 1, "state_name": "West Bengal"}
    assert client.post("/api/ai-fetch/boards", json=payload).status_code == 401
    headers = {"Authorization": f"Bearer {create_access_token(regular_user)}"}
    response = client.post("/api/ai-fetch/boards", json=payload, headers=headers)
    assert response.status_code == 403
    assert response.json()["detail"] == "Admin access required"


def test_invalid_token_rejected(client):
    response = client.get("/api/ai-fetch/logs", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401


def test_admin_boards_saved_pending_and_skipped_on_repeat(
    client, db_session, admin_headers, west_bengal, active_provider, provider_reply,
):
    provider_reply('["WBBSE", "WBCHSE", "Board 2", "West Bengal University of Technology"]')
    payload = {"state_id": west_bengal.id, "state_name": "West Bengal"}

    first = client.post("/api/ai-fetch/boards", json=payload, headers=admin_headers)
    assert first.status_code == 200
    assert first.json()["message"] == "2 Boards fetched and saved as pending approval"
    assert [row["name"] for row in first.json()["data"]] == ["WBBSE", "WBCHSE"]
    assert all(row["is_approved"] is False for row in first.json()["data"])

    second = client.post("/api/ai-fetch/boards", json=payload, headers=admin_headers)
    assert second.json()["data"] == []

    db_session.expire_all()
    assert db_session.query(Board).count() == 2


def test_admin_papers_keep_roman_numerals(client, db_session, admin_headers, active_provider, provider_reply):
    provider_reply('["Paper I", "Paper II", "Prelims"]')
    response = client.post(
        "/api/ai-fetch/papers", json={"category_id": 3, "category_name": "UPSC"}, headers=admin_headers,
    )
    assert len(response.json()["data"]) == 3
    db_session.expire_all()
    assert db_session.query(PaperStage).filter(PaperStage.category_id == 3).count() == 3


def test_admin_subjects_scope(client, db_session, admin_headers, active_provider, provider_reply):
    provider_reply('["Data Structures", "Operating Systems"]')
    response = client.post("/api/ai-fetch/subjects", json={
        "context_name": "MAKAUT B.Tech Semester 3", "university_id": 2, "semester_id": 3,
    }, headers=admin_headers)
    assert response.status_code == 200

    db_session.expire_all()
    subjects = db_session.query(Subject).all()
    assert len(subjects) == 2
    assert all(s.university_id == 2 and s.semester_id == 3 and s.board_id is None for s in subjects)
    assert all(s.is_approved is False for s in subjects)


def test_admin_chapters_rollback_on_failure(client, db_session, admin_headers, active_provider,
                                            provider_reply, monkeypatch):
    from sqlalchemy.exc import SQLAlchemyError

    from services import ingestion

    provider_reply('["Motion", "Force", "Gravitation"]')
    real = ingestion._insert_skip_existing

    def fail_on_last(db, model, scope, name, values):
        if name == "Gravitation":
            raise SQLAlchemyError("deadlock detected")
        return real(db, model, scope, name, values)

    monkeypatch.setattr(ingestion, "_insert_skip_existing", fail_on_last)
    response = client.post(
        "/api/ai-fetch/chapters", json={"subject_id": 1, "subject_name": "Physics"}, headers=admin_headers,
    )

    assert response.status_code == 500
    assert "deadlock detected" in response.json()["detail"]
    db_session.expire_all()
    assert db_session.query(Chapter).count() == 0
    assert db_session.query(AiFetchLog).one().status == "failed"


def test_admin_mcqs_saved_pending(client, db_session, admin_headers, active_provider, provider_reply):
    provider_reply(json.dumps({"questions": [_mcq("Unit of force?"), _mcq("Unit of work?")]}))
    response = client.post(
        "/api/ai-fetch/mcqs", json={"topic": "Physics", "count": 2, "subject_id": 5}, headers=admin_headers,
    )
    assert response.status_code == 200
    assert response.json()["message"] == "2 MCQs generated and saved as pending approval"

    db_session.expire_all()
    mcqs = db_session.query(McqPoolQuestion).order_by(McqPoolQuestion.id).all()
    assert [m.question for m in mcqs] == ["Unit of force?", "Unit of work?"]
    assert all(m.is_approved is False and m.subject_id == 5 for m in mcqs)
    assert mcqs[0].options == ["A", "B", "C", "D"]


def test_admin_mcqs_count_validated(client, admin_headers):
    response = client.post("/api/ai-fetch/mcqs", json={"topic": "Physics", "count": 50}, headers=admin_headers)
    assert response.status_code == 422


def test_providers_and_logs(client, admin_headers, active_provider, provider_reply, west_bengal):
    provider_reply('["WBBSE"]')
    client.post(
        "/api/ai-fetch/boards", json={"state_id": west_bengal.id, "state_name": "West Bengal"}, headers=admin_headers,
    )

    providers = client.get("/api/ai-fetch/providers", headers=admin_headers).json()
    assert providers == [{"id": active_provider.id, "name": "Gemini", "model_name": "gemini-1.5-flash", "is_active": True}]

    logs = client.get("/api/ai-fetch/logs", headers=admin_headers).json()
    assert logs[0]["kind"] == "boards"
    assert logs[0]["source"] == "admin"
    assert logs[0]["saved_count"] == 1
