import pytest
from sqlalchemy.exc import SQLAlchemyError

from database.models import AiFetchLog, Board, Chapter, Subject
from generation.structure_filter import BOARD_RULE, CHAPTER_RULE, SUBJECT_RULE
from services import ingestion
from services.ingestion import IngestMode, ingest, record_fetch_log


def _names(db, model):
    return sorted(r.name for r in db.query(model).all())


# ── Reactivate mode ───────────────────────────────────────────────────────────

def test_reactivate_is_idempotent(db_session, west_bengal):
    scope = {"state_id": west_bengal.id}
    first = ingest(db_session, Board, scope, [{"name": "WBBSE"}], BOARD_RULE, IngestMode.REACTIVATE)
    second = ingest(db_session, Board, scope, [{"name": "WBBSE"}], BOARD_RULE, IngestMode.REACTIVATE)
    assert first == second
    assert db_session.query(Board).count() == 1


def test_reactivate_turns_inactive_row_back_on(db_session, west_bengal):
    board = Board(name="WBCHSE", state_id=west_bengal.id, is_active=False)
    db_session.add(board)
    db_session.commit()

    saved = ingest(
        db_session, Board, {"state_id": west_bengal.id}, [{"name": "wbchse"}], BOARD_RULE, IngestMode.REACTIVATE,
    )
    db_session.refresh(board)
    assert board.is_active is True
    assert saved == [{"id": board.id, "name": "WBCHSE"}]
    assert db_session.query(Board).count() == 1


def test_reactivate_keeps_candidate_order_and_drops_rejects(db_session, west_bengal):
    candidates = [{"name": "WBCHSE"}, {"name": "Some University Board"}, {"name": "Board 1"}, {"name": "WBBSE"}]
    saved = ingest(db_session, Board, {"state_id": west_bengal.id}, candidates, BOARD_RULE, IngestMode.REACTIVATE)
    assert [row["name"] for row in saved] == ["WBCHSE", "WBBSE"]


def test_duplicate_candidates_in_one_batch_saved_once(db_session, west_bengal):
    saved = ingest(
        db_session, Board, {"state_id": west_bengal.id},
        [{"name": "CBSE"}, {"name": "cbse"}], BOARD_RULE, IngestMode.REACTIVATE,
    )
    assert len(saved) == 1
    assert db_session.query(Board).count() == 1


def test_null_aware_scope_matching(db_session):
    existing_null = Subject(name="Physics", board_id=1, class_id=11, stream_id=None, is_active=False)
    existing_five = Subject(name="Chemistry", board_id=1, class_id=11, stream_id=5, is_active=False)
    db_session.add_all([existing_null, existing_five])
    db_session.commit()

    scope = {"board_id": 1, "class_id": 11, "stream_id": None}
    saved = ingest(
        db_session, Subject, scope, [{"name": "Physics"}, {"name": "Chemistry"}], SUBJECT_RULE, IngestMode.REACTIVATE,
    )

    assert saved[0]["id"] == existing_null.id
    assert saved[1]["id"] != existing_five.id
    assert db_session.query(Subject).filter(Subject.name == "Chemistry").count() == 2
    db_session.refresh(existing_five)
    assert existing_five.is_active is False


def test_extra_values_only_used_on_insert(db_session):
    saved = ingest(
        db_session, Subject, {"board_id": 1, "class_id": 10, "stream_id": None},
        ["Mathematics"], SUBJECT_RULE, IngestMode.REACTIVATE, extra={"category_id": 3},
    )
    subject = db_session.get(Subject, saved[0]["id"])
    assert subject.category_id == 3
    assert subject.is_approved is True


def test_reactivate_keeps_committed_prefix_on_failure(db_session, monkeypatch):
    real = ingestion._reactivate_or_insert

    def fail_on_second(db, model, scope, name, values):
        if name == "Optics":
            raise SQLAlchemyError("connection lost")
        return real(db, model, scope, name, values)

    monkeypatch.setattr(ingestion, "_reactivate_or_insert", fail_on_second)
    with pytest.raises(SQLAlchemyError):
        ingest(
            db_session, Chapter, {"subject_id": 1},
            ["Motion", "Optics", "Waves"], CHAPTER_RULE, IngestMode.REACTIVATE,
        )
    assert _names(db_session, Chapter) == ["Motion"]


# ── Skip-existing mode ────────────────────────────────────────────────────────

def test_skip_existing_uses_unique_constraint(db_session, west_bengal):
    scope = {"state_id": west_bengal.id}
    first = ingest(db_session, Board, scope, ["WBBSE", "WBCHSE"], BOARD_RULE, IngestMode.SKIP_EXISTING, approved=False)
    second = ingest(db_session, Board, scope, ["WBBSE", "CBSE"], BOARD_RULE, IngestMode.SKIP_EXISTING, approved=False)

    assert [row["name"] for row in first] == ["WBBSE", "WBCHSE"]
    assert [row["name"] for row in second] == ["CBSE"]
    assert db_session.query(Board).count() == 3
    assert all(b.is_approved is False for b in db_session.query(Board).all())


def test_skip_existing_ignores_case_variants(db_session, west_bengal):
    scope = {"state_id": west_bengal.id}
    ingest(db_session, Board, scope, ["CBSE"], BOARD_RULE, IngestMode.SKIP_EXISTING, approved=False)
    saved = ingest(db_session, Board, scope, ["cbse", "Cbse"], BOARD_RULE, IngestMode.SKIP_EXISTING, approved=False)
    assert saved == []
    assert _names(db_session, Board) == ["CBSE"]


def test_skip_existing_case_variants_within_one_batch(db_session):
    saved = ingest(
        db_session, Chapter, {"subject_id": 1}, ["Motion", "MOTION"], CHAPTER_RULE, IngestMode.SKIP_EXISTING,
    )
    assert [row["name"] for row in saved] == ["Motion"]
    assert db_session.query(Chapter).count() == 1


def test_skip_existing_does_not_reactivate(db_session, west_bengal):
    board = Board(name="WBBSE", state_id=west_bengal.id, is_active=False)
    db_session.add(board)
    db_session.commit()

    saved = ingest(db_session, Board, {"state_id": west_bengal.id}, ["WBBSE"], BOARD_RULE, IngestMode.SKIP_EXISTING)
    db_session.refresh(board)
    assert saved == []
    assert board.is_active is False


def test_skip_existing_subject_without_constraint(db_session):
    scope = {"university_id": 2, "semester_id": 1}
    ingest(db_session, Subject, scope, ["Data Structures"], SUBJECT_RULE, IngestMode.SKIP_EXISTING, approved=False)
    saved = ingest(db_session, Subject, scope, ["data structures"], SUBJECT_RULE, IngestMode.SKIP_EXISTING)
    assert saved == []
    assert db_session.query(Subject).count() == 1


def test_skip_existing_rolls_back_whole_batch(db_session, monkeypatch):
    real = ingestion._insert_skip_existing

    def fail_on_third(db, model, scope, name, values):
        if name == "Waves":
            raise SQLAlchemyError("constraint violation")
        return real(db, model, scope, name, values)

    monkeypatch.setattr(ingestion, "_insert_skip_existing", fail_on_third)
    with pytest.raises(SQLAlchemyError):
        ingest(
            db_session, Chapter, {"subject_id": 1},
            ["Motion", "Optics", "Waves"], CHAPTER_RULE, IngestMode.SKIP_EXISTING,
        )
    assert db_session.query(Chapter).count() == 0


# ── Fetch log ─────────────────────────────────────────────────────────────────

def test_record_fetch_log(db_session):
    record_fetch_log(db_session, "boards", "West Bengal", "fetch_out", 3, 2)
    record_fetch_log(db_session, "boards", "Assam", "fetch_out", 0, 0, error="boom")
    statuses = [(e.context, e.status) for e in db_session.query(AiFetchLog).order_by(AiFetchLog.id)]
    assert statuses == [("West Bengal", "success"), ("Assam", "failed")]
