"""
Public structure API
Read-only taxonomy lookups plus the user-triggered AI "fetch-out" endpoints.

Fetch-out rows go live immediately (is_active + is_approved) because they feed
public browsing. Each fetch-out call is rate limited per client IP and guarded
against a second concurrent run for the same target.
"""

import logging
from typing import Awaitable, Callable, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database import schemas
from database.database import get_db
from database.models import (
    Board, BoardClass, Category, Chapter, DegreeType, Language, PaperStage,
    SchoolClass, Semester, State, Stream, Subject, University,
)
from generation.ai_client import (
    generate_school_boards, generate_school_chapters, generate_school_subjects,
)
from generation.structure_filter import BOARD_RULE, CHAPTER_RULE, SUBJECT_RULE, FilterRule
from services.fetch_guard import (
    FetchInProgress, boards_key, chapters_key, fetch_guard, fetch_rate_limit, subjects_key,
)
from services.ingestion import IngestMode, ingest, record_fetch_log

router = APIRouter(prefix="/api/structure", tags=["structure"])
log = logging.getLogger(__name__)


# ─── Read helpers ──────────────────────────────────────────────────────────────

def _id_name(rows) -> List[Dict]:
    return [{"id": r.id, "name": r.name} for r in rows]


def _safe_fetch(load: Callable[[], list]):
    """Run a read; answer 500 with an empty data list instead of a stack trace."""
    try:
        return load()
    except SQLAlchemyError as e:
        log.error("Structure Fetch Error: %s", e)
        return JSONResponse(status_code=500, content={"message": "Server error", "data": []})


# ─── Lookups ───────────────────────────────────────────────────────────────────

@router.get("/")
def structure_health():
    return {"message": "Structure service is running"}


@router.get("/categories")
def list_categories(db: Session = Depends(get_db)):
    return _safe_fetch(lambda: [
        {
            "id": c.id,
            "name": c.name,
            "image_url": c.image_url,
            "description": c.description,
            "sort_order": c.sort_order,
        }
        for c in db.query(Category).filter(Category.is_active == True).order_by(Category.sort_order).all()
    ])


@router.get("/states")
def list_states(db: Session = Depends(get_db)):
    return _safe_fetch(lambda: _id_name(db.query(State).order_by(State.name).all()))


@router.get("/languages")
def list_languages(db: Session = Depends(get_db)):
    return _safe_fetch(lambda: _id_name(db.query(Language).order_by(Language.name).all()))


@router.get("/boards/{state_id}")
def list_boards(state_id: int, db: Session = Depends(get_db)):
    return _safe_fetch(lambda: _id_name(
        db.query(Board)
        .filter(Board.state_id == state_id, Board.is_active == True)
        .order_by(Board.name)
        .all()
    ))


@router.get("/classes")
def list_classes(db: Session = Depends(get_db)):
    return _safe_fetch(lambda: _id_name(
        db.query(SchoolClass).filter(SchoolClass.is_active == True).order_by(SchoolClass.id).all()
    ))


@router.get("/classes/{board_id}")
def list_board_classes(board_id: int, db: Session = Depends(get_db)):
    return _safe_fetch(lambda: _id_name(
        db.query(SchoolClass)
        .join(BoardClass, BoardClass.class_id == SchoolClass.id)
        .filter(BoardClass.board_id == board_id, BoardClass.is_active == True)
        .order_by(SchoolClass.id)
        .all()
    ))


@router.get("/streams")
def list_streams(db: Session = Depends(get_db)):
    return _safe_fetch(lambda: _id_name(
        db.query(Stream).filter(Stream.is_active == True).order_by(Stream.name).all()
    ))


@router.get("/universities/{state_id}")
def list_universities(state_id: int, db: Session = Depends(get_db)):
    return _safe_fetch(lambda: _id_name(
        db.query(University)
        .filter(University.state_id == state_id, University.is_active == True)
        .order_by(University.name)
        .all()
    ))


@router.get("/degree-types")
def list_degree_types(db: Session = Depends(get_db)):
    return _safe_fetch(lambda: _id_name(db.query(DegreeType).order_by(DegreeType.name).all()))


@router.get("/semesters")
def list_semesters(db: Session = Depends(get_db)):
    return _safe_fetch(lambda: _id_name(db.query(Semester).order_by(Semester.id).all()))


@router.get("/papers-stages/{category_id}")
def list_papers_stages(category_id: int, db: Session = Depends(get_db)):
    return _safe_fetch(lambda: _id_name(
        db.query(PaperStage)
        .filter(PaperStage.category_id == category_id, PaperStage.is_active == True)
        .order_by(PaperStage.name)
        .all()
    ))


@router.get("/subjects")
def list_subjects(
    category_id: Optional[int] = None,
    board_id: Optional[int] = None,
    class_id: Optional[int] = None,
    stream_id: Optional[int] = None,
    university_id: Optional[int] = None,
    semester_id: Optional[int] = None,
    paper_stage_id: Optional[int] = None,
    db: Session = Depends(get_db),
):
    """Active subjects, narrowed by any combination of scope keys."""
    filters = {
        "category_id": category_id,
        "board_id": board_id,
        "class_id": class_id,
        "stream_id": stream_id,
        "university_id": university_id,
        "semester_id": semester_id,
        "paper_stage_id": paper_stage_id,
    }

    def load():
        q = db.query(Subject).filter(Subject.is_active == True)
        for key, value in filters.items():
            if value:
                q = q.filter(getattr(Subject, key) == value)
        return _id_name(q.order_by(Subject.name).all())

    return _safe_fetch(load)


@router.get("/subjects/{class_id}")
def list_subjects_by_class(class_id: int, db: Session = Depends(get_db)):
    return _safe_fetch(lambda: _id_name(
        db.query(Subject)
        .filter(Subject.class_id == class_id, Subject.is_active == True)
        .order_by(Subject.name)
        .all()
    ))


@router.get("/chapters/{subject_id}")
def list_chapters(subject_id: int, db: Session = Depends(get_db)):
    return _safe_fetch(lambda: _id_name(
        db.query(Chapter)
        .filter(Chapter.subject_id == subject_id, Chapter.is_active == True)
        .order_by(Chapter.name)
        .all()
    ))


# ─── Fetch-out ─────────────────────────────────────────────────────────────────

async def _fetch_out(
    db: Session,
    kind: str,
    key: str,
    context: str,
    generate: Callable[[], Awaitable[list]],
    model,
    scope: Dict[str, Optional[int]],
    rule: FilterRule,
    extra: Optional[dict] = None,
) -> dict:
    requested = 0
    try:
        with fetch_guard.hold(key):
            candidates = await generate()
            requested = len(candidates)
            saved = ingest(db, model, scope, candidates, rule, IngestMode.REACTIVATE, approved=True, extra=extra)
    except FetchInProgress:
        log.info("Rejected duplicate fetch-out for %s", key)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Fetch already in progress. Please wait.",
        )
    except Exception as e:
        log.exception("Fetch Out %s Error", kind.capitalize())
        record_fetch_log(db, kind, context, "fetch_out", requested, 0, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to fetch {kind}",
        )

    record_fetch_log(db, kind, context, "fetch_out", requested, len(saved))
    return {"success": True, "count": len(saved), "data": saved}


def _school_category_id(db: Session) -> Optional[int]:
    category = db.query(Category).filter(func.lower(Category.name) == "school").first()
    return category.id if category else None


@router.post(
    "/fetch-out-boards",
    response_model=schemas.FetchOutResponse,
    dependencies=[Depends(fetch_rate_limit)],
)
async def fetch_out_boards(request: schemas.FetchOutBoardsRequest, db: Session = Depends(get_db)):
    """Generate school boards for a state and make them visible right away."""
    if request.state_id is None or not request.state_name:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing state info")

    return await _fetch_out(
        db,
        kind="boards",
        key=boards_key(request.state_id),
        context=request.state_name,
        generate=lambda: generate_school_boards(db, request.state_name),
        model=Board,
        scope={"state_id": request.state_id},
        rule=BOARD_RULE,
    )


@router.post(
    "/fetch-out-subjects",
    response_model=schemas.FetchOutResponse,
    dependencies=[Depends(fetch_rate_limit)],
)
async def fetch_out_subjects(request: schemas.FetchOutSubjectsRequest, db: Session = Depends(get_db)):
    """Generate subjects for a board + class (+ optional stream)."""
    if (
        request.board_id is None or not request.board_name
        or request.class_id is None or not request.class_name
    ):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing required info")

    return await _fetch_out(
        db,
        kind="subjects",
        key=subjects_key(request.board_id, request.class_id, request.stream_id),
        context=f"{request.board_name} {request.class_name}",
        generate=lambda: generate_school_subjects(
            db, request.board_name, request.class_name, request.stream_name
        ),
        model=Subject,
        scope={
            "board_id": request.board_id,
            "class_id": request.class_id,
            "stream_id": request.stream_id,
        },
        rule=SUBJECT_RULE,
        extra={"category_id": _school_category_id(db)},
    )


@router.post(
    "/fetch-out-chapters",
    response_model=schemas.FetchOutResponse,
    dependencies=[Depends(fetch_rate_limit)],
)
async def fetch_out_chapters(request: schemas.FetchOutChaptersRequest, db: Session = Depends(get_db)):
    """Generate chapters for a subject."""
    if (
        request.subject_id is None or not request.subject_name
        or not request.board_name or not request.class_name
    ):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing required info")

    return await _fetch_out(
        db,
        kind="chapters",
        key=chapters_key(request.subject_id),
        context=request.subject_name,
        generate=lambda: generate_school_chapters(
            db, request.subject_name, request.board_name, request.class_name
        ),
        model=Chapter,
        scope={"subject_id": request.subject_id},
        rule=CHAPTER_RULE,
    )
