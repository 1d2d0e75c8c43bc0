"""
Admin router
Login, dashboard stats, and CRUD over users, taxonomy, MCQs, AI providers,
subscription plans, referrals, payments and system settings.
Everything except /login requires an admin token.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Dict

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from auth.security import create_access_token, require_admin, verify_password
from database import schemas
from database.database import get_db
from database.models import (
    AiProvider, Board, Category, Chapter, DegreeType, Language, LegalPage, McqPoolQuestion,
    PaperStage, Payment, PaymentGatewaySetting, Referral, SchoolClass, Semester, State,
    Stream, Subject, SubscriptionPlan, SystemSetting, University, User, UserDailyUsage,
)
from services.ingestion import row_to_dict

router = APIRouter(prefix="/api/admin", tags=["admin"])
protected = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])
log = logging.getLogger(__name__)


def _get_or_404(db: Session, model, row_id: int, label: str):
    row = db.query(model).filter(model.id == row_id).first()
    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{label} not found")
    return row


def _upsert_settings(db: Session, values: Dict[str, object]) -> None:
    for key, value in values.items():
        setting = db.query(SystemSetting).filter(SystemSetting.key == key).first()
        if setting is None:
            db.add(SystemSetting(key=key, value=str(value)))
        else:
            setting.value = str(value)
    db.commit()


def _start_of_day() -> datetime:
    now = datetime.now(timezone.utc)
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


# ─── Login ─────────────────────────────────────────────────────────────────────

@router.post("/login")
def admin_login(request: schemas.LoginRequest, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == request.email).first()
    if not user or user.role != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized")
    if not verify_password(request.password, user.password):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    log.info("Admin login: %s", user.email)
    return {
        "token": create_access_token(user),
        "user": {"id": user.id, "email": user.email, "role": user.role},
    }


# ─── 1. Dashboard ──────────────────────────────────────────────────────────────

def _captured_revenue(db: Session, since: datetime) -> float:
    total = (
        db.query(func.sum(Payment.amount))
        .filter(Payment.status == "captured", Payment.created_at >= since)
        .scalar()
    )
    return float(total or 0)


@protected.get("/stats")
def dashboard_stats(db: Session = Depends(get_db)):
    today = _start_of_day()
    month = today.replace(day=1)
    year = month.replace(month=1)
    return {
        "activeUsers": db.query(func.count(func.distinct(UserDailyUsage.user_id)))
        .filter(UserDailyUsage.date == date.today())
        .scalar() or 0,
        "totalUsersToday": db.query(func.count(User.id)).filter(User.created_at >= today).scalar() or 0,
        "totalMCQs": db.query(func.count(McqPoolQuestion.id)).scalar() or 0,
        "totalCategories": db.query(func.count(Category.id)).scalar() or 0,
        "revenueToday": _captured_revenue(db, today),
        "revenueMonthly": _captured_revenue(db, month),
        "revenueYearly": _captured_revenue(db, year),
    }


@protected.get("/stats/revenue")
def revenue_by_day(db: Session = Depends(get_db)):
    """Captured revenue per day, most recent 30 days with payments."""
    day = func.date(Payment.created_at)
    rows = (
        db.query(day.label("date"), func.sum(Payment.amount).label("amount"))
        .filter(Payment.status == "captured")
        .group_by(day)
        .order_by(day.desc())
        .limit(30)
        .all()
    )
    return [{"date": str(r.date), "amount": float(r.amount or 0)} for r in reversed(rows)]


# ─── 2. Users ──────────────────────────────────────────────────────────────────

@protected.get("/users")
def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    search: str = "",
    db: Session = Depends(get_db),
):
    q = db.query(User)
    if search:
        pattern = f"%{search}%"
        q = q.filter(or_(User.email.ilike(pattern), User.username.ilike(pattern)))
    users = q.order_by(User.created_at.desc(), User.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return [schemas.UserOut.model_validate(u).model_dump() for u in users]


@protected.put("/users/{user_id}/status")
def update_user_status(user_id: int, request: schemas.UserStatusUpdate, db: Session = Depends(get_db)):
    user = _get_or_404(db, User, user_id, "User")
    user.is_active = request.is_active
    db.commit()
    return {"message": "Status updated"}


@protected.put("/users/{user_id}/subscription")
def adjust_subscription(user_id: int, request: schemas.SubscriptionAdjust, db: Session = Depends(get_db)):
    """Extend or reduce premium by 24 hours."""
    user = _get_or_404(db, User, user_id, "User")
    hours = 24 if request.action == "extend" else -24
    base = user.premium_expiry or datetime.now(timezone.utc)
    user.premium_expiry = base + timedelta(hours=hours)
    user.is_premium = True
    db.commit()
    return {"message": "Subscription updated"}


@protected.post("/users/{user_id}/reset-usage")
def reset_usage(user_id: int, db: Session = Depends(get_db)):
    db.query(UserDailyUsage).filter(
        UserDailyUsage.user_id == user_id, UserDailyUsage.date == date.today()
    ).delete(synchronize_session=False)
    db.commit()
    return {"message": "Usage reset"}


# ─── 3. Categories, states, languages ─────────────────────────────────────────

@protected.get("/categories")
def admin_list_categories(db: Session = Depends(get_db)):
    return [row_to_dict(c) for c in db.query(Category).order_by(Category.sort_order).all()]


@protected.post("/categories")
def create_category(request: schemas.CategoryPayload, db: Session = Depends(get_db)):
    db.add(Category(**request.model_dump()))
    db.commit()
    return {"message": "Category added"}


@protected.put("/categories/{category_id}")
def update_category(category_id: int, request: schemas.CategoryPayload, db: Session = Depends(get_db)):
    category = _get_or_404(db, Category, category_id, "Category")
    for field, value in request.model_dump().items():
        setattr(category, field, value)
    db.commit()
    return {"message": "Category updated"}


@protected.get("/states")
def admin_list_states(db: Session = Depends(get_db)):
    return [row_to_dict(s) for s in db.query(State).order_by(State.name).all()]


@protected.put("/states/{state_id}")
def update_state(state_id: int, request: schemas.NamedStatusUpdate, db: Session = Depends(get_db)):
    state = _get_or_404(db, State, state_id, "State")
    state.name = request.name
    state.is_active = request.is_active
    db.commit()
    return {"message": "State updated"}


@protected.get("/languages")
def admin_list_languages(db: Session = Depends(get_db)):
    return [row_to_dict(lang) for lang in db.query(Language).order_by(Language.name).all()]


@protected.put("/languages/{language_id}")
def update_language(language_id: int, request: schemas.NamedStatusUpdate, db: Session = Depends(get_db)):
    language = _get_or_404(db, Language, language_id, "Language")
    language.name = request.name
    language.is_active = request.is_active
    db.commit()
    return {"message": "Language updated"}


# ─── 4. School hierarchy ──────────────────────────────────────────────────────

@protected.get("/boards")
def admin_list_boards(db: Session = Depends(get_db)):
    rows = (
        db.query(Board, State.name.label("state_name"))
        .outerjoin(State, Board.state_id == State.id)
        .order_by(Board.name)
        .all()
    )
    return [{**row_to_dict(board), "state_name": state_name} for board, state_name in rows]


@protected.post("/boards")
def create_board(request: schemas.BoardPayload, db: Session = Depends(get_db)):
    db.add(Board(**request.model_dump()))
    db.commit()
    return {"message": "Board added"}


@protected.put("/boards/{board_id}")
def update_board(board_id: int, request: schemas.BoardPayload, db: Session = Depends(get_db)):
    board = _get_or_404(db, Board, board_id, "Board")
    for field, value in request.model_dump().items():
        setattr(board, field, value)
    db.commit()
    return {"message": "Board updated"}


@protected.put("/boards/{board_id}/approve")
def approve_board(board_id: int, db: Session = Depends(get_db)):
    board = _get_or_404(db, Board, board_id, "Board")
    board.is_approved = True
    db.commit()
    return {"message": "Board approved"}


@protected.get("/classes")
def admin_list_classes(db: Session = Depends(get_db)):
    return [row_to_dict(c) for c in db.query(SchoolClass).order_by(SchoolClass.id).all()]


@protected.get("/streams")
def admin_list_streams(db: Session = Depends(get_db)):
    return [row_to_dict(s) for s in db.query(Stream).order_by(Stream.name).all()]


# ─── 5. University & competitive ──────────────────────────────────────────────

@protected.get("/universities")
def admin_list_universities(db: Session = Depends(get_db)):
    rows = (
        db.query(University, State.name.label("state_name"))
        .outerjoin(State, University.state_id == State.id)
        .order_by(University.name)
        .all()
    )
    return [{**row_to_dict(u), "state_name": state_name} for u, state_name in rows]


@protected.post("/universities")
def create_university(request: schemas.UniversityPayload, db: Session = Depends(get_db)):
    db.add(University(**request.model_dump()))
    db.commit()
    return {"message": "University added"}


@protected.get("/degree-types")
def admin_list_degree_types(db: Session = Depends(get_db)):
    return [row_to_dict(d) for d in db.query(DegreeType).order_by(DegreeType.name).all()]


@protected.get("/semesters")
def admin_list_semesters(db: Session = Depends(get_db)):
    return [row_to_dict(s) for s in db.query(Semester).order_by(Semester.id).all()]


@protected.get("/papers-stages")
def admin_list_papers_stages(db: Session = Depends(get_db)):
    rows = (
        db.query(PaperStage, Category.name.label("category_name"))
        .outerjoin(Category, PaperStage.category_id == Category.id)
        .order_by(PaperStage.name)
        .all()
    )
    return [{**row_to_dict(p), "category_name": category_name} for p, category_name in rows]


# ─── 6. Subjects & chapters ────────────────────────────────────────────────────

@protected.get("/subjects")
def admin_list_subjects(db: Session = Depends(get_db)):
    rows = (
        db.query(
            Subject,
            Board.name.label("board_name"),
            SchoolClass.name.label("class_name"),
            Stream.name.label("stream_name"),
            Category.name.label("category_name"),
        )
        .outerjoin(Board, Subject.board_id == Board.id)
        .outerjoin(SchoolClass, Subject.class_id == SchoolClass.id)
        .outerjoin(Stream, Subject.stream_id == Stream.id)
        .outerjoin(Category, Subject.category_id == Category.id)
        .order_by(Subject.name)
        .all()
    )
    return [
        {
            **row_to_dict(subject),
            "board_name": board_name,
            "class_name": class_name,
            "stream_name": stream_name,
            "category_name": category_name,
        }
        for subject, board_name, class_name, stream_name, category_name in rows
    ]


@protected.post("/subjects")
def create_subject(request: schemas.SubjectPayload, db: Session = Depends(get_db)):
    db.add(Subject(**request.model_dump()))
    db.commit()
    return {"message": "Subject added"}


@protected.get("/chapters")
def admin_list_chapters(db: Session = Depends(get_db)):
    rows = (
        db.query(Chapter, Subject.name.label("subject_name"))
        .outerjoin(Subject, Chapter.subject_id == Subject.id)
        .order_by(Chapter.name)
        .all()
    )
    return [{**row_to_dict(ch), "subject_name": subject_name} for ch, subject_name in rows]


@protected.post("/chapters")
def create_chapter(request: schemas.ChapterPayload, db: Session = Depends(get_db)):
    _get_or_404(db, Subject, request.subject_id, "Subject")
    db.add(Chapter(**request.model_dump()))
    db.commit()
    return {"message": "Chapter added"}


# ─── 7. MCQ pool ───────────────────────────────────────────────────────────────

@protected.get("/mcqs")
def list_mcqs(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    status_filter: str = Query("all", alias="status", pattern="^(all|pending|approved)$"),
    db: Session = Depends(get_db),
):
    q = db.query(McqPoolQuestion)
    if status_filter == "pending":
        q = q.filter(McqPoolQuestion.is_approved == False)
    elif status_filter == "approved":
        q = q.filter(McqPoolQuestion.is_approved == True)
    mcqs = (
        q.order_by(McqPoolQuestion.created_at.desc(), McqPoolQuestion.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return [row_to_dict(m) for m in mcqs]


@protected.put("/mcqs/{mcq_id}/approve")
def approve_mcq(mcq_id: int, db: Session = Depends(get_db)):
    mcq = _get_or_404(db, McqPoolQuestion, mcq_id, "MCQ")
    mcq.is_approved = True
    db.commit()
    return {"message": "MCQ Approved"}


@protected.delete("/mcqs/{mcq_id}")
def delete_mcq(mcq_id: int, db: Session = Depends(get_db)):
    mcq = _get_or_404(db, McqPoolQuestion, mcq_id, "MCQ")
    db.delete(mcq)
    db.commit()
    return {"message": "MCQ Deleted"}


# ─── 8. AI providers ───────────────────────────────────────────────────────────

@protected.get("/ai-providers")
def list_ai_providers(db: Session = Depends(get_db)):
    return [
        {**row_to_dict(p), "api_key": None, "has_api_key": bool(p.api_key)}
        for p in db.query(AiProvider).order_by(AiProvider.id).all()
    ]


@protected.put("/ai-providers/{provider_id}")
def update_ai_provider(provider_id: int, request: schemas.AiProviderUpdate, db: Session = Depends(get_db)):
    """Update a provider. Activating one deactivates every other provider."""
    provider = _get_or_404(db, AiProvider, provider_id, "AI provider")
    if request.is_active:
        db.query(AiProvider).update({AiProvider.is_active: False}, synchronize_session=False)
    provider.base_url = request.base_url
    provider.api_key = request.api_key
    provider.model_name = request.model_name
    provider.is_active = request.is_active
    db.commit()
    return {"message": "AI Provider updated"}


# ─── 9. Plans & referrals ──────────────────────────────────────────────────────

@protected.get("/plans")
def list_plans(db: Session = Depends(get_db)):
    plans = db.query(SubscriptionPlan).order_by(SubscriptionPlan.price).all()
    return [{**row_to_dict(p), "price": float(p.price)} for p in plans]


@protected.post("/plans")
def create_plan(request: schemas.PlanPayload, db: Session = Depends(get_db)):
    db.add(SubscriptionPlan(**request.model_dump()))
    db.commit()
    return {"message": "Plan added"}


@protected.put("/plans/{plan_id}")
def update_plan(plan_id: int, request: schemas.PlanPayload, db: Session = Depends(get_db)):
    plan = _get_or_404(db, SubscriptionPlan, plan_id, "Plan")
    for field, value in request.model_dump().items():
        setattr(plan, field, value)
    db.commit()
    return {"message": "Plan updated"}


@protected.get("/referrals")
def list_referrals(db: Session = Depends(get_db)):
    referrals = db.query(Referral).order_by(Referral.created_at.desc(), Referral.id.desc()).all()
    return [
        {
            **row_to_dict(r),
            "referrer_email": r.referrer.email if r.referrer else None,
            "referred_email": r.referred_user.email if r.referred_user else None,
        }
        for r in referrals
    ]


@protected.put("/referrals/{referral_id}/reward")
def adjust_referral_reward(referral_id: int, request: schemas.ReferralRewardUpdate, db: Session = Depends(get_db)):
    referral = _get_or_404(db, Referral, referral_id, "Referral")
    referral.status = request.status
    referral.reward_given = request.reward_given
    db.commit()
    return {"message": "Referral reward adjusted"}


# ─── 10. Transactions ──────────────────────────────────────────────────────────

@protected.get("/payments/transactions")
def list_transactions(db: Session = Depends(get_db)):
    payments = db.query(Payment).order_by(Payment.created_at.desc(), Payment.id.desc()).limit(100).all()
    return [
        {**row_to_dict(p), "amount": float(p.amount), "user_email": p.user.email if p.user else None}
        for p in payments
    ]


# ─── 11. Settings ──────────────────────────────────────────────────────────────

@protected.get("/settings")
def get_settings(db: Session = Depends(get_db)):
    system = {s.key: s.value for s in db.query(SystemSetting).all()}
    legal = [row_to_dict(p) for p in db.query(LegalPage).order_by(LegalPage.slug).all()]
    payment = [
        {"id": g.id, "provider": g.provider, "is_active": g.is_active, "has_api_key": bool(g.api_key)}
        for g in db.query(PaymentGatewaySetting).all()
    ]
    return {"system": system, "legal": legal, "payment": payment}


@protected.put("/settings/global")
def update_global_settings(request: schemas.GlobalSettingsUpdate, db: Session = Depends(get_db)):
    _upsert_settings(db, request.settings)
    return {"message": "Settings updated"}


@protected.put("/settings/free-limit")
def update_free_limit(request: schemas.FreeLimitUpdate, db: Session = Depends(get_db)):
    _upsert_settings(db, {"FREE_DAILY_LIMIT": request.limit, "FREE_LIMIT_RESET_LOGIC": request.logic})
    return {"message": "Free limit control updated"}


@protected.put("/settings/legal/{slug}")
def update_legal_page(slug: str, request: schemas.LegalPageUpdate, db: Session = Depends(get_db)):
    page = db.query(LegalPage).filter(LegalPage.slug == slug).first()
    if not page:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Legal page not found")
    page.title = request.title
    page.content = request.content
    db.commit()
    return {"message": "Legal page updated"}


@protected.put("/settings/ads")
def update_ads_settings(request: schemas.AdsSettingsUpdate, db: Session = Depends(get_db)):
    _upsert_settings(db, {
        "ADS_HEADER_SCRIPT": request.ADS_HEADER_SCRIPT or "",
        "ADS_BODY_SCRIPT": request.ADS_BODY_SCRIPT or "",
        "ADS_TXT": request.ADS_TXT or "",
        "ADS_ENABLED": str(request.ADS_ENABLED).lower(),
    })
    return {"message": "Ads settings updated"}


@protected.put("/settings/seo")
def update_seo_settings(request: schemas.SeoSettingsUpdate, db: Session = Depends(get_db)):
    _upsert_settings(db, {
        "GOOGLE_ANALYTICS_ID": request.GA_ID or "",
        "GOOGLE_SEARCH_CONSOLE_CODE": request.SEARCH_CONSOLE_CODE or "",
        "META_TITLE": request.META_TITLE or "",
        "META_DESC": request.META_DESC or "",
        "META_KEYWORDS": request.KEYWORDS or "",
    })
    return {"message": "SEO settings updated"}


@protected.put("/settings/payments")
def update_payment_gateway(request: schemas.PaymentGatewayUpdate, db: Session = Depends(get_db)):
    gateway = db.query(PaymentGatewaySetting).filter(PaymentGatewaySetting.provider == request.provider).first()
    if gateway is None:
        gateway = PaymentGatewaySetting(provider=request.provider)
        db.add(gateway)
    gateway.api_key = request.api_key
    gateway.api_secret = request.api_secret
    gateway.is_active = request.is_active
    db.commit()
    return {"message": "Payment gateway settings updated"}
