"""
Taxonomy ingestion for AI-generated candidates.

Two modes:

REACTIVATE (public fetch-out)
    Match each name case-insensitively inside its scope, with null-aware
    equality on every scope key. A match is reactivated, otherwise a new active
    row is inserted. Each row is committed on its own, so a failure keeps the
    rows already processed.

SKIP_EXISTING (admin fetch)
    Insert new rows as pending approval and skip names that already exist
    (same case-insensitive, null-aware lookup). Tables with a (scope, name)
    unique constraint insert with "on conflict do nothing" so a concurrent
    insert of the same name is skipped too. The whole batch is one transaction: any
    failure rolls everything back and re-raises.

Candidates are processed strictly in the order given.
"""

import enum
import logging
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from database.models import AiFetchLog, Board, Chapter, PaperStage, University
from generation.structure_filter import FilterRule, normalize

log = logging.getLogger(__name__)

# Tables with a (scope, name) unique constraint
CONFLICT_SKIP_MODELS = (Board, University, PaperStage, Chapter)

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class IngestMode(str, enum.Enum):
    REACTIVATE = "reactivate"
    SKIP_EXISTING = "skip_existing"


# ── Queries ───────────────────────────────────────────────────────────────────

def scope_filters(model, scope: Dict[str, Optional[int]]) -> list:
    """Null-aware equality: a None scope value only matches NULL."""
    clauses = []
    for key, value in scope.items():
        column = getattr(model, key)
        clauses.append(column.is_(None) if value is None else column == value)
    return clauses


def find_existing(db: Session, model, scope: Dict[str, Optional[int]], name: str):
    return (
        db.query(model)
        .filter(*scope_filters(model, scope), func.lower(model.name) == name.lower())
        .order_by(model.id)
        .first()
    )


def row_to_dict(row) -> Dict[str, Any]:
    return {column.name: getattr(row, column.name) for column in row.__table__.columns}


# ── Modes ─────────────────────────────────────────────────────────────────────

def _reactivate_or_insert(db: Session, model, scope: dict, name: str, values: dict):
    existing = find_existing(db, model, scope, name)
    if existing is not None:
        existing.is_active = True
        return existing

    row = model(**values)
    try:
        db.add(row)
        db.flush()
    except IntegrityError:
        # Lost a race with a concurrent insert of the same name. Rows are
        # committed one at a time, so this only discards the current one.
        db.rollback()
        existing = find_existing(db, model, scope, name)
        if existing is None:
            raise
        existing.is_active = True
        return existing
    return row


def _insert_skip_existing(db: Session, model, scope: dict, name: str, values: dict) -> Optional[Dict[str, Any]]:
    # Names are unique case-insensitively; the unique constraint only catches
    # exact duplicates from a concurrent insert.
    if find_existing(db, model, scope, name) is not None:
        return None

    dialect_insert = _INSERT_BY_DIALECT.get(db.get_bind().dialect.name)
    if model in CONFLICT_SKIP_MODELS and dialect_insert is not None:
        stmt = (
            dialect_insert(model.__table__)
            .values(**values)
            .on_conflict_do_nothing()
            .returning(*model.__table__.columns)
        )
        inserted = db.execute(stmt).mappings().first()
        return dict(inserted) if inserted else None

    row = model(**values)
    db.add(row)
    db.flush()
    return row_to_dict(row)


def ingest(
    db: Session,
    model,
    scope: Dict[str, Optional[int]],
    candidates: Sequence[Any],
    rule: FilterRule,
    mode: IngestMode,
    approved: bool = True,
    extra: Optional[Dict[str, Any]] = None,
) -> List[Dict[str, Any]]:
    """
    Persist the candidates that pass `rule` under `scope`.

    Args:
        model:      Taxonomy model (Board, Subject, Chapter, ...)
        scope:      Parent keys, e.g. {"board_id": 3, "class_id": 10, "stream_id": None}
        candidates: Items from the AI client ({"name": ...} or bare strings)
        rule:       Rejection rule for this taxonomy type
        mode:       REACTIVATE or SKIP_EXISTING
        approved:   is_approved value for inserted rows
        extra:      Insert-only column values that are not part of the scope

    Returns:
        Created or reactivated rows in candidate order.
        REACTIVATE rows are {"id", "name"}; SKIP_EXISTING rows carry every column.
    """
    saved: List[Dict[str, Any]] = []
    seen_ids = set()

    if mode is IngestMode.SKIP_EXISTING:
        try:
            for candidate in candidates:
                name = normalize(candidate, rule)
                if name is None:
                    continue
                values = {**(extra or {}), **scope, "name": name, "is_active": True, "is_approved": approved}
                row = _insert_skip_existing(db, model, scope, name, values)
                if row is not None and row["id"] not in seen_ids:
                    seen_ids.add(row["id"])
                    saved.append(row)
            db.commit()
        except Exception:
            db.rollback()
            raise
        log.info("Ingested %d new %s (skip existing)", len(saved), model.__tablename__)
        return saved

    for candidate in candidates:
        name = normalize(candidate, rule)
        if name is None:
            continue
        values = {**(extra or {}), **scope, "name": name, "is_active": True, "is_approved": approved}
        try:
            row = _reactivate_or_insert(db, model, scope, name, values)
            db.commit()
        except Exception:
            db.rollback()
            log.error("Ingestion of %r into %s failed after %d rows", name, model.__tablename__, len(saved))
            raise
        if row.id not in seen_ids:
            seen_ids.add(row.id)
            saved.append({"id": row.id, "name": row.name})

    log.info("Ingested %d %s (reactivate)", len(saved), model.__tablename__)
    return saved


# ── Fetch log ─────────────────────────────────────────────────────────────────

def record_fetch_log(
    db: Session,
    kind: str,
    context: str,
    source: str,
    requested_count: int,
    saved_count: int,
    error: Optional[str] = None,
) -> None:
    """Audit one fetch run. A failure to write the log never fails the request."""
    entry = AiFetchLog(
        kind=kind,
        context=context,
        source=source,
        requested_count=requested_count,
        saved_count=saved_count,
        status="failed" if error else "success",
        error=error,
    )
    try:
        db.add(entry)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        log.error("Could not write ai_fetch_logs entry for %s: %s", kind, e)
