"""
Admin AI Fetch router
Generates taxonomy entries and MCQs with the active AI provider.

Unlike the public fetch-out endpoints, everything saved here waits for admin
approval (is_approved = False), existing names are skipped rather than
reactivated, and each batch is written in a single transaction.
"""

import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from auth.security import require_admin
from database import schemas
from database.database import get_db
from database.models import (
    AiFetchLog, AiProvider, Board, Chapter, McqPoolQuestion, PaperStage, Subject, University, User,
)
from generation.ai_client import fetch_structure, generate_mcqs
from generation.structure_filter import (
    BOARD_RULE, CHAPTER_RULE, PAPER_RULE, SUBJECT_RULE, UNIVERSITY_RULE, FilterRule,
)
from services.ingestion import IngestMode, ingest, record_fetch_log, row_to_dict

router = APIRouter(prefix="/api/ai-fetch", tags=["ai-fetch"])
log = logging.getLogger(__name__)


async def _admin_fetch(
    db: Session,
    kind: str,
    label: str,
    context: str,
    model,
    scope: Dict[str, Optional[int]],
    rule: FilterRule,
) -> dict:
    requested = 0
    try:
        candidates = await fetch_structure(db, label, context)
        requested = len(candidates)
        saved = ingest(db, model, scope, candidates, rule, IngestMode.SKIP_EXISTING, approved=False)
    except Exception as e:
        log.exception("AI fetch of %s failed", kind)
        record_fetch_log(db, kind, context, "admin", requested, 0, error=str(e))
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    record_fetch_log(db, kind, context, "admin", requested, len(saved))
    return {
        "message": f"{len(saved)} {label} fetched and saved as pending approval",
        "data": saved,
    }


# ─── Info ──────────────────────────────────────────────────────────────────────

@router.get("/")
def ai_fetch_health():
    return {"message": "AI Fetch service is running"}


@router.get("/providers")
def list_active_providers(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    """Active AI providers (API keys are never returned)."""
    providers = db.query(AiProvider).filter(AiProvider.is_active == True).all()
    return [
        {"id": p.id, "name": p.name, "model_name": p.model_name, "is_active": p.is_active}
        for p in providers
    ]


@router.get("/logs")
def list_fetch_logs(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    """Latest 50 fetch runs."""
    logs = db.query(AiFetchLog).order_by(AiFetchLog.created_at.desc(), AiFetchLog.id.desc()).limit(50).all()
    return [row_to_dict(entry) for entry in logs]


# ─── Taxonomy fetches ──────────────────────────────────────────────────────────

@router.post("/boards", response_model=schemas.AiFetchResponse)
async def ai_fetch_boards(
    request: schemas.AiFetchBoardsRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return await _admin_fetch(
        db, "boards", "Boards",
        f"State of {request.state_name}, India. Strictly provide original board names only. No placeholders.",
        Board, {"state_id": request.state_id}, BOARD_RULE,
    )


@router.post("/universities", response_model=schemas.AiFetchResponse)
async def ai_fetch_universities(
    request: schemas.AiFetchBoardsRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return await _admin_fetch(
        db, "universities", "Universities",
        f"State of {request.state_name}, India. Strictly provide original names only.",
        University, {"state_id": request.state_id}, UNIVERSITY_RULE,
    )


@router.post("/papers", response_model=schemas.AiFetchResponse)
async def ai_fetch_papers(
    request: schemas.AiFetchPapersRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return await _admin_fetch(
        db, "papers", "Papers/Stages",
        f"Exam Category: {request.category_name}. Strictly original names.",
        PaperStage, {"category_id": request.category_id}, PAPER_RULE,
    )


@router.post("/subjects", response_model=schemas.AiFetchResponse)
async def ai_fetch_subjects(
    request: schemas.AiFetchSubjectsRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    scope = request.model_dump(exclude={"context_name"})
    return await _admin_fetch(
        db, "subjects", "Subjects",
        f"Context: {request.context_name}. Strictly original syllabus subject names only. No placeholders.",
        Subject, scope, SUBJECT_RULE,
    )


@router.post("/chapters", response_model=schemas.AiFetchResponse)
async def ai_fetch_chapters(
    request: schemas.AiFetchChaptersRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return await _admin_fetch(
        db, "chapters", "Chapters",
        f"Subject: {request.subject_name}. Strictly original syllabus chapter names only.",
        Chapter, {"subject_id": request.subject_id}, CHAPTER_RULE,
    )


# ─── MCQs ──────────────────────────────────────────────────────────────────────

@router.post("/mcqs", response_model=schemas.AiFetchResponse)
async def ai_generate_mcqs(
    request: schemas.AiFetchMcqsRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Generate MCQs for a topic into the pool, pending approval."""
    mcqs = await generate_mcqs(db, request.topic, request.count)
    created = []
    try:
        for item in mcqs:
            question = McqPoolQuestion(
                question=item["question"],
                options=item["options"],
                correct_option=item["correct_option"],
                explanation=item.get("explanation"),
                subject=item.get("subject") or request.topic,
                chapter=item.get("chapter"),
                subject_id=request.subject_id,
                chapter_id=request.chapter_id,
                is_approved=False,
            )
            db.add(question)
            created.append(question)
        db.commit()
    except Exception as e:
        db.rollback()
        log.exception("Saving generated MCQs failed")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    for question in created:
        db.refresh(question)
    record_fetch_log(db, "mcqs", request.topic, "admin", len(mcqs), len(created))
    return {
        "message": f"{len(created)} MCQs generated and saved as pending approval",
        "data": [row_to_dict(q) for q in created],
    }
