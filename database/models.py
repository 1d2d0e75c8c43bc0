"""
SQLAlchemy models for the ExamReady backend

Curriculum taxonomy:
    State → Board → Class (board_classes) → Stream → Subject → Chapter
    State → University, Category → Paper/Stage, plus degree types and semesters

Every taxonomy node carries is_active (visible to the public structure API)
and is_approved (admin review flag for AI-fetched rows).
"""

from sqlalchemy import (
    Column, Integer, String, Boolean, ForeignKey, DateTime, Date, Text, Numeric,
    JSON, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database.database import Base


# ==========================================
# USERS
# ==========================================

class User(Base):
    """
    Platform account. role is 'user' or 'admin'.
    Premium access comes from is_premium plus sessions_left or premium_expiry.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(100), nullable=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password = Column(String(255), nullable=True)
    role = Column(String(20), default="user", nullable=False)
    is_premium = Column(Boolean, default=False, nullable=False)
    premium_expiry = Column(DateTime(timezone=True), nullable=True)
    sessions_left = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}', role='{self.role}')>"


class UserDailyUsage(Base):
    """Per-day MCQ usage counter for free-tier limits."""
    __tablename__ = "user_daily_usage"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    date = Column(Date, server_default=func.current_date(), nullable=False)
    questions_attempted = Column(Integer, default=0, nullable=False)


# ==========================================
# LOOKUP TABLES
# ==========================================

class State(Base):
    __tablename__ = "states"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)


class Language(Base):
    __tablename__ = "languages"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)


class Category(Base):
    """Top-level exam category (School, University, Competitive, ...)."""
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    image_url = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    sort_order = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)


class SchoolClass(Base):
    """School class / grade (Class 1 … Class 12)."""
    __tablename__ = "classes"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), unique=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)


class Stream(Base):
    """Higher-secondary stream (Science, Commerce, Arts)."""
    __tablename__ = "streams"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)


class DegreeType(Base):
    __tablename__ = "degree_types"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False)


class Semester(Base):
    __tablename__ = "semesters"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), unique=True, nullable=False)


# ==========================================
# TAXONOMY NODES
# ==========================================

class Board(Base):
    """School education board, scoped by state. Unique (state_id, name)."""
    __tablename__ = "boards"
    __table_args__ = (UniqueConstraint("state_id", "name", name="uq_boards_state_name"),)

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    state_id = Column(Integer, ForeignKey("states.id", ondelete="CASCADE"), nullable=True, index=True)
    logo_url = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    is_approved = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    state = relationship("State")

    def __repr__(self):
        return f"<Board(id={self.id}, name='{self.name}', state_id={self.state_id})>"


class BoardClass(Base):
    """Which classes a board offers."""
    __tablename__ = "board_classes"
    __table_args__ = (UniqueConstraint("board_id", "class_id", name="uq_board_classes"),)

    id = Column(Integer, primary_key=True, index=True)
    board_id = Column(Integer, ForeignKey("boards.id", ondelete="CASCADE"), nullable=False, index=True)
    class_id = Column(Integer, ForeignKey("classes.id", ondelete="CASCADE"), nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)


class University(Base):
    """University, scoped by state. Unique (state_id, name)."""
    __tablename__ = "universities"
    __table_args__ = (UniqueConstraint("state_id", "name", name="uq_universities_state_name"),)

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    state_id = Column(Integer, ForeignKey("states.id", ondelete="CASCADE"), nullable=True, index=True)
    logo_url = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    is_approved = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class PaperStage(Base):
    """Competitive exam paper or stage (Prelims, Mains, Paper I …), scoped by category."""
    __tablename__ = "papers_stages"
    __table_args__ = (UniqueConstraint("category_id", "name", name="uq_papers_stages_category_name"),)

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    category_id = Column(Integer, ForeignKey("categories.id", ondelete="CASCADE"), nullable=True, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    is_approved = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class Subject(Base):
    """
    Subject under any branch of the taxonomy.
    All scope keys are nullable; uniqueness of the name inside its scope is
    enforced by the ingestion pipeline with null-aware matching, not by the DB.
    """
    __tablename__ = "subjects"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    category_id = Column(Integer, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True, index=True)
    board_id = Column(Integer, ForeignKey("boards.id", ondelete="CASCADE"), nullable=True, index=True)
    university_id = Column(Integer, ForeignKey("universities.id", ondelete="CASCADE"), nullable=True, index=True)
    class_id = Column(Integer, ForeignKey("classes.id", ondelete="SET NULL"), nullable=True, index=True)
    stream_id = Column(Integer, ForeignKey("streams.id", ondelete="SET NULL"), nullable=True, index=True)
    semester_id = Column(Integer, ForeignKey("semesters.id", ondelete="SET NULL"), nullable=True)
    degree_type_id = Column(Integer, ForeignKey("degree_types.id", ondelete="SET NULL"), nullable=True)
    paper_stage_id = Column(Integer, ForeignKey("papers_stages.id", ondelete="CASCADE"), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    is_approved = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    chapters = relationship("Chapter", back_populates="subject", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Subject(id={self.id}, name='{self.name}')>"


class Chapter(Base):
    """Chapter of a subject. Unique (subject_id, name)."""
    __tablename__ = "chapters"
    __table_args__ = (UniqueConstraint("subject_id", "name", name="uq_chapters_subject_name"),)

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    subject_id = Column(Integer, ForeignKey("subjects.id", ondelete="CASCADE"), nullable=False, index=True)
    description = Column(Text, nullable=True)
    sort_order = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    is_approved = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    subject = relationship("Subject", back_populates="chapters")

    def __repr__(self):
        return f"<Chapter(id={self.id}, name='{self.name}', subject_id={self.subject_id})>"


# ==========================================
# CONTENT
# ==========================================

class McqPoolQuestion(Base):
    """
    MCQ content pool. AI-generated questions land with is_approved=False
    and stay hidden until an admin approves them.
    """
    __tablename__ = "mcq_pool"

    id = Column(Integer, primary_key=True, index=True)
    question = Column(Text, nullable=False)
    options = Column(JSON, nullable=False)  # list of 4 option strings
    correct_option = Column(Integer, nullable=False)  # 0-3
    explanation = Column(Text, nullable=True)
    subject = Column(String(200), nullable=True)
    chapter = Column(String(200), nullable=True)
    subject_id = Column(Integer, ForeignKey("subjects.id", ondelete="SET NULL"), nullable=True, index=True)
    chapter_id = Column(Integer, ForeignKey("chapters.id", ondelete="SET NULL"), nullable=True, index=True)
    is_approved = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


# ==========================================
# AI PROVIDERS
# ==========================================

class AiProvider(Base):
    """
    Generative-AI provider configuration. At most one row is active;
    base_url must expose an OpenAI-compatible chat completions API.
    """
    __tablename__ = "ai_providers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    base_url = Column(Text, nullable=True)
    api_key = Column(Text, nullable=True)
    model_name = Column(String(100), nullable=True)
    is_active = Column(Boolean, default=False, nullable=False)

    def __repr__(self):
        return f"<AiProvider(id={self.id}, name='{self.name}', model='{self.model_name}')>"


class AiFetchLog(Base):
    """One row per AI structure fetch run (admin or fetch-out)."""
    __tablename__ = "ai_fetch_logs"

    id = Column(Integer, primary_key=True, index=True)
    kind = Column(String(50), nullable=False)  # boards, subjects, chapters, ...
    context = Column(Text, nullable=True)
    source = Column(String(20), nullable=False)  # admin | fetch_out
    requested_count = Column(Integer, default=0, nullable=False)
    saved_count = Column(Integer, default=0, nullable=False)
    status = Column(String(20), nullable=False)  # success | failed
    error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


# ==========================================
# COMMERCE
# ==========================================

class SubscriptionPlan(Base):
    __tablename__ = "subscription_plans"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    duration_hours = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    plan_id = Column(Integer, ForeignKey("subscription_plans.id", ondelete="SET NULL"), nullable=True)
    amount = Column(Numeric(10, 2), nullable=False)
    status = Column(String(20), default="created", nullable=False)  # created | captured | failed
    gateway_order_id = Column(String(100), nullable=True)
    gateway_payment_id = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    user = relationship("User")


class Referral(Base):
    __tablename__ = "referrals"

    id = Column(Integer, primary_key=True, index=True)
    referrer_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    referred_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    status = Column(String(20), default="pending", nullable=False)
    reward_given = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    referrer = relationship("User", foreign_keys=[referrer_id])
    referred_user = relationship("User", foreign_keys=[referred_user_id])


# ==========================================
# SETTINGS
# ==========================================

class SystemSetting(Base):
    """Key/value store for global, ads, SEO and free-limit settings."""
    __tablename__ = "system_settings"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=True)


class LegalPage(Base):
    __tablename__ = "legal_pages"

    id = Column(Integer, primary_key=True, index=True)
    slug = Column(String(100), unique=True, nullable=False)
    title = Column(String(200), nullable=False)
    content = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class PaymentGatewaySetting(Base):
    __tablename__ = "payment_gateway_settings"

    id = Column(Integer, primary_key=True, index=True)
    provider = Column(String(50), unique=True, nullable=False)
    api_key = Column(Text, nullable=True)
    api_secret = Column(Text, nullable=True)
    is_active = Column(Boolean, default=False, nullable=False)
