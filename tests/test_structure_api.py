import asyncio
import json

import httpx
import pytest
from sqlalchemy.exc import SQLAlchemyError

import generation.ai_client as ai_client
import routers.structure as structure_router
from database.models import AiFetchLog, Board, Chapter, SchoolClass, State, Subject
from main import app
from services.fetch_guard import fetch_guard, fetch_limiter


@pytest.fixture
def state_seven(db_session):
    state = State(id=7, name="West Bengal")
    db_session.add(state)
    db_session.commit()
    return state


# ── Lookups ───────────────────────────────────────────────────────────────────

def test_boards_lookup_hides_inactive(client, db_session, state_seven):
    db_session.add_all([
        Board(name="WBBSE", state_id=7),
        Board(name="WBCHSE", state_id=7),
        Board(name="Old Board", state_id=7, is_active=False),
    ])
    db_session.commit()

    response = client.get("/api/structure/boards/7")
    assert response.status_code == 200
    assert [b["name"] for b in response.json()] == ["WBBSE", "WBCHSE"]


def test_subjects_lookup_filters_by_scope(client, db_session):
    db_session.add_all([
        Subject(name="Physics", board_id=1, class_id=11),
        Subject(name="History", board_id=1, class_id=10),
        Subject(name="Biology", board_id=2, class_id=11),
    ])
    db_session.commit()

    response = client.get("/api/structure/subjects", params={"board_id": 1, "class_id": 11})
    assert [s["name"] for s in response.json()] == ["Physics"]
    response = client.get("/api/structure/subjects/11")
    assert [s["name"] for s in response.json()] == ["Biology", "Physics"]


def test_categories_and_classes(client, db_session, school_category):
    db_session.add_all([SchoolClass(name="Class 9"), SchoolClass(name="Class 10")])
    db_session.commit()
    assert client.get("/api/structure/categories").json()[0]["name"] == "School"
    assert [c["name"] for c in client.get("/api/structure/classes").json()] == ["Class 9", "Class 10"]


# ── Fetch-out ─────────────────────────────────────────────────────────────────

def test_fetch_out_boards_end_to_end(client, db_session, state_seven, active_provider, provider_reply):
    provider_reply(json.dumps([{"name": "WBCHSE"}, {"name": "Some University Board"}, {"name": "WBBSE"}]))

    response = client.post("/api/structure/fetch-out-boards", json={"state_id": 7, "state_name": "West Bengal"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["count"] == 2
    assert [row["name"] for row in body["data"]] == ["WBCHSE", "WBBSE"]
    assert all(isinstance(row["id"], int) for row in body["data"])

    db_session.expire_all()
    boards = db_session.query(Board).filter(Board.state_id == 7).all()
    assert sorted(b.name for b in boards) == ["WBBSE", "WBCHSE"]
    assert all(b.is_active and b.is_approved for b in boards)
    assert not fetch_guard.is_held("boards_7")


def test_fetch_out_boards_repeat_reuses_rows(client, db_session, state_seven, active_provider, provider_reply):
    provider_reply('["WBBSE", "WBCHSE"]')
    first = client.post("/api/structure/fetch-out-boards", json={"state_id": 7, "state_name": "West Bengal"}).json()
    second = client.post("/api/structure/fetch-out-boards", json={"state_id": 7, "state_name": "West Bengal"}).json()
    assert first["data"] == second["data"]
    db_session.expire_all()
    assert db_session.query(Board).count() == 2


def test_fetch_out_without_provider_saves_nothing(client, db_session, state_seven):
    response = client.post("/api/structure/fetch-out-boards", json={"state_id": 7, "state_name": "West Bengal"})
    assert response.status_code == 200
    assert response.json() == {"success": True, "count": 0, "data": []}
    db_session.expire_all()
    assert db_session.query(Board).count() == 0


@pytest.mark.parametrize("path,payload,detail", [
    ("/api/structure/fetch-out-boards", {"state_name": "West Bengal"}, "Missing state info"),
    ("/api/structure/fetch-out-boards", {}, "Missing state info"),
    ("/api/structure/fetch-out-subjects", {"board_id": 1, "board_name": "WBBSE", "class_id": 10}, "Missing required info"),
    ("/api/structure/fetch-out-chapters", {"subject_id": 1, "subject_name": "Physics"}, "Missing required info"),
])
def test_fetch_out_missing_fields(client, db_session, path, payload, detail):
    response = client.post(path, json=payload)
    assert response.status_code == 400
    assert response.json()["detail"] == detail
    db_session.expire_all()
    assert db_session.query(AiFetchLog).count() == 0


def test_fetch_out_subjects_sets_school_category(client, db_session, school_category, active_provider, provider_reply):
    provider_reply('[{"name": "Mathematics"}, {"name": "Subject 1"}, {"name": "Physical Science"}]')
    response = client.post("/api/structure/fetch-out-subjects", json={
        "board_id": 1, "board_name": "WBBSE", "class_id": 10, "class_name": "Class 10",
    })
    assert response.status_code == 200
    assert response.json()["count"] == 2

    db_session.expire_all()
    subjects = db_session.query(Subject).order_by(Subject.id).all()
    assert [s.name for s in subjects] == ["Mathematics", "Physical Science"]
    assert all(s.category_id == school_category.id and s.stream_id is None for s in subjects)


def test_fetch_out_chapters(client, db_session, active_provider, provider_reply):
    calls = provider_reply('["Real Numbers", "Chapter 2", "Quadratic Equations"]')
    response = client.post("/api/structure/fetch-out-chapters", json={
        "subject_id": 4, "subject_name": "Mathematics", "board_name": "WBBSE", "class_name": "Class 10",
    })
    assert [row["name"] for row in response.json()["data"]] == ["Real Numbers", "Quadratic Equations"]
    assert '"Mathematics"' in calls[0]
    db_session.expire_all()
    assert db_session.query(Chapter).filter(Chapter.subject_id == 4).count() == 2


def test_fetch_out_rate_limited_per_ip(client, state_seven, monkeypatch):
    monkeypatch.setattr(fetch_limiter, "max_requests", 2)
    payload = {"state_id": 7, "state_name": "West Bengal"}
    codes = [client.post("/api/structure/fetch-out-boards", json=payload).status_code for _ in range(3)]
    assert codes == [200, 200, 429]


def test_forwarded_for_from_untrusted_peer_does_not_reset_limit(client, state_seven, monkeypatch):
    monkeypatch.setattr(fetch_limiter, "max_requests", 2)
    payload = {"state_id": 7, "state_name": "West Bengal"}
    codes = [
        client.post(
            "/api/structure/fetch-out-boards", json=payload, headers={"X-Forwarded-For": f"1.1.1.{i}"},
        ).status_code
        for i in range(5)
    ]
    assert codes == [200, 200, 429, 429, 429]
    assert fetch_limiter.get("testclient").count == 5
    assert fetch_limiter.get("1.1.1.0") is None


def test_forwarded_for_from_trusted_proxy_identifies_client(client, state_seven, monkeypatch):
    from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

    monkeypatch.setattr(fetch_limiter, "max_requests", 2)
    payload = {"state_id": 7, "state_name": "West Bengal"}
    behind_proxy = ProxyHeadersMiddleware(app, trusted_hosts="127.0.0.1")

    async def run():
        transport = httpx.ASGITransport(app=behind_proxy, client=("127.0.0.1", 5000))
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
            codes = []
            for forwarded in ["10.0.0.9", "10.0.0.9", "10.0.0.9", "10.0.0.10"]:
                response = await ac.post(
                    "/api/structure/fetch-out-boards", json=payload, headers={"X-Forwarded-For": forwarded},
                )
                codes.append(response.status_code)
            return codes

    assert asyncio.run(run()) == [200, 200, 429, 200]
    assert fetch_limiter.get("10.0.0.9").count == 3


def test_fetch_out_rejected_while_target_in_flight(client, db_session, state_seven):
    assert fetch_guard.try_acquire("boards_7")
    try:
        response = client.post("/api/structure/fetch-out-boards", json={"state_id": 7, "state_name": "West Bengal"})
        assert response.status_code == 429
        assert response.json()["detail"] == "Fetch already in progress. Please wait."
        assert fetch_guard.is_held("boards_7")
    finally:
        fetch_guard.release("boards_7")


def test_fetch_out_failure_releases_guard_and_logs(client, db_session, state_seven, active_provider,
                                                   provider_reply, monkeypatch):
    provider_reply('["WBBSE"]')

    def broken_ingest(*args, **kwargs):
        raise SQLAlchemyError("database is locked")

    monkeypatch.setattr(structure_router, "ingest", broken_ingest)
    response = client.post("/api/structure/fetch-out-boards", json={"state_id": 7, "state_name": "West Bengal"})

    assert response.status_code == 500
    assert response.json()["detail"] == "Failed to fetch boards"
    assert not fetch_guard.is_held("boards_7")
    db_session.expire_all()
    entry = db_session.query(AiFetchLog).one()
    assert entry.status == "failed"
    assert entry.source == "fetch_out"


def test_concurrent_fetch_out_for_same_target(client, db_session, state_seven, active_provider, monkeypatch):
    async def slow_provider(provider, prompt, temperature=0.7, max_tokens=2048):
        await asyncio.sleep(0.3)
        return '["WBBSE", "WBCHSE"]'

    monkeypatch.setattr(ai_client, "call_provider", slow_provider)
    payload = {"state_id": 7, "state_name": "West Bengal"}

    async def run_both():
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
            return await asyncio.gather(
                ac.post("/api/structure/fetch-out-boards", json=payload),
                ac.post("/api/structure/fetch-out-boards", json=payload),
            )

    responses = asyncio.run(run_both())

    assert sorted(r.status_code for r in responses) == [200, 429]
    assert not fetch_guard.is_held("boards_7")
    db_session.expire_all()
    assert db_session.query(Board).count() == 2
