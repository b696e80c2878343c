"""Question bank routes (admin CRUD plus the candidate-facing listing)."""

from typing import List, Optional

from fastapi import APIRouter, Body, Depends
from fastapi import status as http_status
from pydantic import BaseModel
from sqlmodel import Session

from exam_portal.database import get_session
from exam_portal.deps import require_role
from exam_portal.models import User
from exam_portal.services import question_service

router = APIRouter()


class TestCaseIn(BaseModel):
    input: str
    expected_output: str
    is_hidden: bool = False


class QuestionIn(BaseModel):
    section: str
    question_number: int
    text: str
    options: Optional[List[str]] = None
    answer: Optional[str] = None
    test_cases: Optional[List[TestCaseIn]] = None


class QuestionPatch(BaseModel):
    section: Optional[str] = None
    question_number: Optional[int] = None
    text: Optional[str] = None
    options: Optional[List[str]] = None
    answer: Optional[str] = None
    test_cases: Optional[List[TestCaseIn]] = None
    status: Optional[str] = None


def _admin_view(session: Session, question) -> dict:
    return question_service.admin_view(
        question, question_service.get_test_cases(session, question.id)
    )


@router.get("/")
def list_all_questions(
    session: Session = Depends(get_session),
    current_user: User = Depends(require_role(["admin"])),
):
    return [_admin_view(session, q) for q in question_service.list_questions(session)]


@router.get("/sections/{section}")
def list_section_questions(section: str, session: Session = Depends(get_session)):
    """Candidate view of a section: answer keys and hidden test cases removed."""
    return [
        question_service.public_view(q, question_service.get_test_cases(session, q.id))
        for q in question_service.list_by_section(session, section)
        if q.status == "active"
    ]


@router.post("/", status_code=http_status.HTTP_201_CREATED)
def create_question(
    payload: QuestionIn = Body(...),
    session: Session = Depends(get_session),
    current_user: User = Depends(require_role(["admin"])),
):
    question = question_service.create_question(
        session,
        created_by=current_user.id,
        section=payload.section,
        question_number=payload.question_number,
        text=payload.text,
        options=payload.options,
        answer=payload.answer,
        test_cases=[c.model_dump() for c in payload.test_cases] if payload.test_cases else None,
    )
    return _admin_view(session, question)


@router.put("/{question_id}")
def update_question(
    question_id: int,
    payload: QuestionPatch = Body(...),
    session: Session = Depends(get_session),
    current_user: User = Depends(require_role(["admin"])),
):
    # Only fields present in the request take part in the merge
    patch = payload.model_dump(exclude_unset=True)
    question = question_service.update_question(session, question_id, patch)
    return _admin_view(session, question)


@router.delete("/{question_id}")
def delete_question(
    question_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_role(["admin"])),
):
    question_service.delete_question(session, question_id)
    return {"message": "Question deleted successfully"}
