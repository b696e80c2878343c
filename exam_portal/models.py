"""SQLModel models for the Exam Portal."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, Index, UniqueConstraint, text
from sqlmodel import Field, SQLModel

# Sections whose questions carry four options and one correct answer
CHOICE_SECTIONS = ("mcqs", "aptitude", "ai")
CODING_SECTION = "coding"
SECTIONS = CHOICE_SECTIONS + (CODING_SECTION,)

STATUS_IN_PROGRESS = "in-progress"
STATUS_COMPLETED = "completed"
STATUS_TERMINATED = "terminated"  # reserved for proctoring violations
EXAM_STATUSES = (STATUS_IN_PROGRESS, STATUS_COMPLETED, STATUS_TERMINATED)


def utcnow() -> datetime:
    """Naive UTC timestamp; datetime columns are declared as plain ``DateTime``."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(SQLModel, table=True):
    """Application user: an exam taker (role='user') or an admin."""

    __table_args__ = (UniqueConstraint("email", name="uq_user_email"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    email: str  # stored lower-cased
    password_hash: str
    role: str = Field(default="user")  # "user", "admin"
    is_active: bool = Field(default=True)
    # Blocked users may not start new exam sessions
    is_blocked: bool = Field(default=False)
    last_login: Optional[datetime] = Field(default=None, sa_type=DateTime)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


# ===================== QUESTION CATALOG =====================


class Question(SQLModel, table=True):
    """A question in the bank; its shape is fixed by its section."""

    __table_args__ = (
        UniqueConstraint("section", "question_number", name="uq_question_section_number"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    question_key: str  # "{section}-{question_number}", display only
    section: str
    question_number: int
    text: str
    # Single-choice sections only
    option_a: Optional[str] = None
    option_b: Optional[str] = None
    option_c: Optional[str] = None
    option_d: Optional[str] = None
    answer: Optional[str] = None
    status: str = Field(default="active")  # active | inactive
    created_by: int = Field(foreign_key="user.id")
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)

    @property
    def options(self) -> list[str]:
        values = [self.option_a, self.option_b, self.option_c, self.option_d]
        return [v for v in values if v is not None]


class QuestionTestCase(SQLModel, table=True):
    """A stdin/expected-stdout pair used to grade a coding question."""

    id: Optional[int] = Field(default=None, primary_key=True)
    question_id: int = Field(foreign_key="question.id", index=True)
    position: int
    input: str
    expected_output: str
    is_hidden: bool = Field(default=False)


# ===================== EXAMS =====================


class Exam(SQLModel, table=True):
    """A single timed exam session taken by one user."""

    # At most one in-progress exam per user
    __table_args__ = (
        Index(
            "uq_exam_user_in_progress",
            "user_id",
            unique=True,
            sqlite_where=text("status = 'in-progress'"),
            postgresql_where=text("status = 'in-progress'"),
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    start_time: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    duration_minutes: float
    # Durable auto-submit deadline (start_time + duration); swept after restarts
    deadline: datetime = Field(index=True, sa_type=DateTime)
    end_time: Optional[datetime] = Field(default=None, sa_type=DateTime)
    status: str = Field(default=STATUS_IN_PROGRESS, index=True)
    score: float = Field(default=0)
    video_recording: Optional[str] = None
    # Bumped on every write that depends on status; guards read-modify-write
    version: int = Field(default=0)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class ExamAllowedUser(SQLModel, table=True):
    """Users (besides the owner and admins) allowed to view an exam."""

    __table_args__ = (
        UniqueConstraint("exam_id", "user_id", name="uq_exam_allowed_user"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    exam_id: int = Field(foreign_key="exam.id")
    user_id: int = Field(foreign_key="user.id")


class ExamQuestionSlot(SQLModel, table=True):
    """Snapshot of the question presented at (section, question_number)."""

    __table_args__ = (
        UniqueConstraint("exam_id", "section", "question_number", name="uq_exam_slot"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    exam_id: int = Field(foreign_key="exam.id", index=True)
    question_id: int = Field(foreign_key="question.id")
    section: str
    question_number: int


class ExamAnswer(SQLModel, table=True):
    """The latest response for one question slot within an exam."""

    __table_args__ = (
        UniqueConstraint("exam_id", "section", "question_number", name="uq_exam_answer"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    exam_id: int = Field(foreign_key="exam.id", index=True)
    question_id: int = Field(foreign_key="question.id")
    section: str
    question_number: int
    answer_text: Optional[str] = None
    code: Optional[str] = None
    language: Optional[str] = None
    is_correct: bool = Field(default=False)
    total_test_cases: int = Field(default=0)
    test_cases_passed: int = Field(default=0)
    submitted_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
