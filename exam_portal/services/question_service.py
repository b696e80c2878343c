"""Question bank: creation, shape validation and candidate-safe views."""

import logging
from typing import Any, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from exam_portal.errors import InvalidStateError, NotFoundError, ValidationError
from exam_portal.models import (
    CHOICE_SECTIONS,
    CODING_SECTION,
    SECTIONS,
    ExamAnswer,
    ExamQuestionSlot,
    Question,
    QuestionTestCase,
    utcnow,
)
from exam_portal.utils import sanitize_question_text

logger = logging.getLogger(__name__)

OPTION_COUNT = 4
# Test cases beyond this many are always hidden from exam takers
MAX_VISIBLE_TEST_CASES = 2
QUESTION_STATUSES = ("active", "inactive")
QUESTION_TEXT_MAX_LENGTH = 5000

_UPDATABLE_FIELDS = {
    "section",
    "question_number",
    "text",
    "options",
    "answer",
    "test_cases",
    "status",
}


def _normalize_test_cases(test_cases: Optional[list]) -> list[dict]:
    normalized = []
    for index, case in enumerate(test_cases or []):
        if not isinstance(case, dict):
            raise ValidationError(f"Test case {index + 1} must be an object.")
        stdin = case.get("input")
        expected = case.get("expected_output")
        if stdin is None or expected is None:
            raise ValidationError(
                f"Test case {index + 1} requires both input and expected_output."
            )
        normalized.append(
            {
                "input": str(stdin),
                "expected_output": str(expected),
                "is_hidden": bool(case.get("is_hidden", False)),
            }
        )
    return normalized


def _apply_visibility(test_cases: list[dict]) -> list[dict]:
    """Force every test case past the visible limit to hidden."""
    return [
        {**case, "is_hidden": case["is_hidden"] or index >= MAX_VISIBLE_TEST_CASES}
        for index, case in enumerate(test_cases)
    ]


def validate_shape(
    section: str,
    question_number: Any,
    text: Optional[str],
    options: Optional[list],
    answer: Optional[str],
    test_cases: Optional[list],
) -> dict:
    """Validate a full question definition and return its cleaned fields.

    Raises:
        ValidationError: If any field violates the rules for its section
    """
    if section not in SECTIONS:
        raise ValidationError(
            f"Section must be one of: {', '.join(SECTIONS)}."
        )
    if not isinstance(question_number, int) or isinstance(question_number, bool) or question_number < 1:
        raise ValidationError("Question number must be a positive integer.")

    clean_text = sanitize_question_text(text or "")
    if not clean_text:
        raise ValidationError("Question text is required.")
    if len(clean_text) > QUESTION_TEXT_MAX_LENGTH:
        raise ValidationError(
            f"Question text must be at most {QUESTION_TEXT_MAX_LENGTH} characters."
        )

    options = list(options or [])
    cases = _normalize_test_cases(test_cases)

    if section in CHOICE_SECTIONS:
        if len(options) != OPTION_COUNT:
            raise ValidationError("Options must have exactly 4 choices.")
        if any(not isinstance(o, str) or not o.strip() for o in options):
            raise ValidationError("All options must be provided and non-empty.")
        if not answer:
            raise ValidationError("Answer is required.")
        if cases:
            raise ValidationError("Test cases are only allowed for coding questions.")
    else:
        if options:
            raise ValidationError("Options must not be provided for coding questions.")
        if answer:
            raise ValidationError("Answer must not be provided for coding questions.")
        if not cases:
            raise ValidationError("At least one test case is required for coding questions.")

    return {
        "section": section,
        "question_number": question_number,
        "text": clean_text,
        "options": options,
        "answer": answer if section in CHOICE_SECTIONS else None,
        "test_cases": _apply_visibility(cases),
    }


def _number_taken(
    session: Session, section: str, question_number: int, exclude_id: Optional[int] = None
) -> bool:
    stmt = select(Question).where(
        (Question.section == section) & (Question.question_number == question_number)
    )
    existing = session.exec(stmt).first()
    return existing is not None and existing.id != exclude_id


def _assign(question: Question, fields: dict) -> None:
    question.section = fields["section"]
    question.question_number = fields["question_number"]
    question.question_key = f"{fields['section']}-{fields['question_number']}"
    question.text = fields["text"]
    options = fields["options"] or [None] * OPTION_COUNT
    question.option_a, question.option_b, question.option_c, question.option_d = options
    question.answer = fields["answer"]


def _replace_test_cases(session: Session, question_id: int, cases: list[dict]) -> None:
    for old in get_test_cases(session, question_id):
        session.delete(old)
    for position, case in enumerate(cases):
        session.add(QuestionTestCase(question_id=question_id, position=position, **case))


def get_test_cases(session: Session, question_id: int) -> List[QuestionTestCase]:
    stmt = (
        select(QuestionTestCase)
        .where(QuestionTestCase.question_id == question_id)
        .order_by(QuestionTestCase.position)
    )
    return session.exec(stmt).all()


def get_question(session: Session, question_id: int) -> Question:
    question = session.get(Question, question_id)
    if not question:
        raise NotFoundError(f"Question with id={question_id} does not exist")
    return question


def create_question(
    session: Session,
    created_by: int,
    section: str,
    question_number: int,
    text: str,
    options: Optional[list] = None,
    answer: Optional[str] = None,
    test_cases: Optional[list] = None,
) -> Question:
    """Validate and store a new question.

    Nothing is written when validation fails.

    Raises:
        ValidationError: Bad shape for the section, or (section, number) taken
    """
    fields = validate_shape(section, question_number, text, options, answer, test_cases)
    if _number_taken(session, section, question_number):
        raise ValidationError(
            f"Question number {question_number} already exists in section '{section}'."
        )

    question = Question(question_key="", created_by=created_by)
    _assign(question, fields)
    session.add(question)
    try:
        session.flush()
        _replace_test_cases(session, question.id, fields["test_cases"])
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise ValidationError(
            f"Question number {question_number} already exists in section '{section}'."
        ) from exc
    session.refresh(question)
    logger.info("Created question %s (id=%s)", question.question_key, question.id)
    return question


def update_question(session: Session, question_id: int, patch: dict) -> Question:
    """Merge ``patch`` into a question and re-validate the merged result.

    Test cases in the patch replace the stored list. Passing ``options=None``
    and ``answer=None`` clears them, which is required when switching a
    question to the coding section.

    Raises:
        NotFoundError: If the question does not exist
        ValidationError: If the merged question has an invalid shape
    """
    question = get_question(session, question_id)

    unknown = set(patch) - _UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(f"Unknown question fields: {', '.join(sorted(unknown))}.")

    status = patch.get("status", question.status)
    if status not in QUESTION_STATUSES:
        raise ValidationError("Status must be 'active' or 'inactive'.")

    current_cases = [
        {"input": c.input, "expected_output": c.expected_output, "is_hidden": c.is_hidden}
        for c in get_test_cases(session, question_id)
    ]
    merged = {
        "section": question.section,
        "question_number": question.question_number,
        "text": question.text,
        "options": question.options,
        "answer": question.answer,
        "test_cases": current_cases,
    }
    merged.update({k: v for k, v in patch.items() if k != "status"})

    fields = validate_shape(**merged)
    if _number_taken(session, fields["section"], fields["question_number"], exclude_id=question.id):
        raise ValidationError(
            f"Question number {fields['question_number']} already exists in section '{fields['section']}'."
        )

    _assign(question, fields)
    question.status = status
    question.updated_at = utcnow()
    session.add(question)
    _replace_test_cases(session, question.id, fields["test_cases"])
    session.commit()
    session.refresh(question)
    logger.info("Updated question %s (id=%s)", question.question_key, question.id)
    return question


def delete_question(session: Session, question_id: int) -> None:
    """Delete a question and its test cases.

    Raises:
        NotFoundError: If the question does not exist
        InvalidStateError: If an exam has presented or answered the question
    """
    question = get_question(session, question_id)

    referenced = session.exec(
        select(ExamQuestionSlot).where(ExamQuestionSlot.question_id == question_id)
    ).first() or session.exec(
        select(ExamAnswer).where(ExamAnswer.question_id == question_id)
    ).first()
    if referenced:
        raise InvalidStateError(
            "Question is referenced by an exam; mark it inactive instead."
        )

    for case in get_test_cases(session, question_id):
        session.delete(case)
    session.delete(question)
    session.commit()
    logger.info("Deleted question id=%s", question_id)


def list_by_section(session: Session, section: str) -> List[Question]:
    if section not in SECTIONS:
        raise ValidationError(f"Section must be one of: {', '.join(SECTIONS)}.")
    stmt = (
        select(Question)
        .where(Question.section == section)
        .order_by(Question.question_number)
    )
    return session.exec(stmt).all()


def list_questions(session: Session) -> List[Question]:
    return [q for section in SECTIONS for q in list_by_section(session, section)]


def admin_view(question: Question, test_cases: List[QuestionTestCase]) -> dict:
    data = {
        "id": question.id,
        "question_key": question.question_key,
        "section": question.section,
        "question_number": question.question_number,
        "text": question.text,
        "status": question.status,
        "created_by": question.created_by,
    }
    if question.section == CODING_SECTION:
        data["test_cases"] = [
            {
                "input": c.input,
                "expected_output": c.expected_output,
                "is_hidden": c.is_hidden,
            }
            for c in test_cases
        ]
    else:
        data["options"] = question.options
        data["answer"] = question.answer
    return data


def public_view(question: Question, test_cases: List[QuestionTestCase]) -> dict:
    """Exam-taker view: no answer key and no hidden test cases."""
    data = {
        "id": question.id,
        "section": question.section,
        "question_number": question.question_number,
        "text": question.text,
    }
    if question.section == CODING_SECTION:
        data["test_cases"] = [
            {"input": c.input, "expected_output": c.expected_output}
            for c in test_cases
            if not c.is_hidden
        ]
        data["hidden_test_cases"] = sum(1 for c in test_cases if c.is_hidden)
    else:
        data["options"] = question.options
    return data
