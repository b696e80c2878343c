"""Exam lifecycle: start, answer submission, recordings and completion.

An exam moves ``in-progress -> completed`` exactly once. Completion is
guarded by a compare-and-swap on ``status`` so that a manual end racing the
auto-submit timer (or a sweep on another process) scores the exam once.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import List, Optional, Protocol, Tuple

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlmodel import Session, select

from exam_portal.config import settings
from exam_portal.errors import (
    AuthorizationError,
    ExamOperationError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from exam_portal.models import (
    CODING_SECTION,
    SECTIONS,
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    Exam,
    ExamAllowedUser,
    ExamAnswer,
    ExamQuestionSlot,
    Question,
    User,
    utcnow,
)
from exam_portal.services.code_runner import get_code_runner
from exam_portal.services.evaluator import CodeRunner, evaluate
from exam_portal.services.question_service import get_test_cases, public_view
from exam_portal.services.scoring import compute_score
from exam_portal.utils import is_valid_video_reference

logger = logging.getLogger(__name__)


class Scheduler(Protocol):
    def arm(self, exam_id: int, deadline: datetime) -> None:
        ...

    def cancel(self, exam_id: int) -> bool:
        ...


# ===================== LOOKUPS =====================


def _get_exam(session: Session, exam_id: int) -> Exam:
    exam = session.get(Exam, exam_id, populate_existing=True)
    if not exam:
        raise NotFoundError(f"Exam with id={exam_id} does not exist")
    return exam


def _get_owned_exam(session: Session, exam_id: int, caller_id: int) -> Exam:
    exam = _get_exam(session, exam_id)
    if exam.user_id != caller_id:
        raise AuthorizationError("Not authorized")
    return exam


def _allowed_user_ids(session: Session, exam_id: int) -> List[int]:
    stmt = select(ExamAllowedUser.user_id).where(ExamAllowedUser.exam_id == exam_id)
    return list(session.exec(stmt).all())


def _ensure_in_progress(session: Session, exam: Exam, scheduler: Optional[Scheduler]) -> None:
    if exam.status != STATUS_IN_PROGRESS:
        raise InvalidStateError("Exam already ended")
    if exam.deadline <= utcnow():
        # Timer or sweep has not caught up yet; finish it now
        complete_exam(session, exam.id, scheduler)
        raise InvalidStateError("Exam time is over and it has been submitted")


def _bump_version(session: Session, exam_id: int, **values) -> bool:
    """Conditionally touch an in-progress exam; False if it has finished."""
    now = utcnow()
    result = session.execute(
        update(Exam)
        .where((Exam.id == exam_id) & (Exam.status == STATUS_IN_PROGRESS))
        .values(version=Exam.version + 1, updated_at=now, **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def get_exam(session: Session, exam_id: int, viewer: User) -> Exam:
    """Return an exam visible to ``viewer`` (owner, allow-listed user or admin)."""
    exam = _get_exam(session, exam_id)
    if viewer.role == "admin" or exam.user_id == viewer.id:
        return exam
    if viewer.id in _allowed_user_ids(session, exam_id):
        return exam
    raise AuthorizationError("Not authorized")


def list_user_exams(session: Session, user_id: int) -> List[Exam]:
    stmt = (
        select(Exam)
        .where(Exam.user_id == user_id)
        .order_by(Exam.start_time.desc(), Exam.id.desc())
    )
    return session.exec(stmt).all()


def list_in_progress_exams(session: Session) -> List[Exam]:
    return session.exec(select(Exam).where(Exam.status == STATUS_IN_PROGRESS)).all()


def _slots(session: Session, exam_id: int) -> List[ExamQuestionSlot]:
    slots = session.exec(
        select(ExamQuestionSlot).where(ExamQuestionSlot.exam_id == exam_id)
    ).all()
    return sorted(slots, key=lambda s: (SECTIONS.index(s.section), s.question_number))


def _answers(session: Session, exam_id: int) -> List[ExamAnswer]:
    stmt = (
        select(ExamAnswer)
        .where(ExamAnswer.exam_id == exam_id)
        .order_by(ExamAnswer.submitted_at, ExamAnswer.id)
    )
    return session.exec(stmt).all()


def get_exam_paper(session: Session, exam_id: int, viewer: User) -> List[dict]:
    """Questions presented in this exam, without answer keys or hidden tests."""
    get_exam(session, exam_id, viewer)
    paper = []
    for slot in _slots(session, exam_id):
        question = session.get(Question, slot.question_id)
        if question is None:
            continue
        view = public_view(question, get_test_cases(session, question.id))
        view.update(section=slot.section, question_number=slot.question_number)
        paper.append(view)
    return paper


def exam_view(session: Session, exam: Exam) -> dict:
    """Serializable summary of an exam; ``score`` is final only once completed."""
    return {
        "id": exam.id,
        "user_id": exam.user_id,
        "status": exam.status,
        "start_time": exam.start_time,
        "duration_minutes": exam.duration_minutes,
        "deadline": exam.deadline,
        "end_time": exam.end_time,
        "score": exam.score if exam.status == STATUS_COMPLETED else None,
        "video_recording": exam.video_recording,
        "allowed_users": _allowed_user_ids(session, exam.id),
        "questions": [
            {
                "question_id": s.question_id,
                "section": s.section,
                "question_number": s.question_number,
            }
            for s in _slots(session, exam.id)
        ],
        "answers": [
            {
                "question_id": a.question_id,
                "section": a.section,
                "question_number": a.question_number,
                "answer_text": a.answer_text,
                "code": a.code,
                "is_correct": a.is_correct,
                "total_test_cases": a.total_test_cases,
                "test_cases_passed": a.test_cases_passed,
                "submitted_at": a.submitted_at,
            }
            for a in _answers(session, exam.id)
        ],
    }


# ===================== START =====================


def _snapshot_questions(session: Session, exam_id: int) -> None:
    """Fix the exam's question set.

    Within each section, active questions are ranked by creation time and the
    rank becomes the number the candidate answers against.
    """
    for section in SECTIONS:
        stmt = (
            select(Question)
            .where((Question.section == section) & (Question.status == "active"))
            .order_by(Question.created_at, Question.id)
        )
        for rank, question in enumerate(session.exec(stmt).all(), start=1):
            session.add(
                ExamQuestionSlot(
                    exam_id=exam_id,
                    question_id=question.id,
                    section=section,
                    question_number=rank,
                )
            )


def _active_exam(session: Session, user_id: int) -> Optional[Exam]:
    stmt = select(Exam).where(
        (Exam.user_id == user_id) & (Exam.status == STATUS_IN_PROGRESS)
    )
    return session.exec(stmt).first()


def start_exam(
    session: Session,
    user_id: int,
    duration_minutes: float,
    allowed_users: Optional[List[int]] = None,
    scheduler: Optional[Scheduler] = None,
    started_at: Optional[datetime] = None,
) -> Exam:
    """Create an in-progress exam and arm its auto-submit.

    If the deadline is already in the past (``started_at`` back-dated), the
    exam is completed before returning instead of being scheduled.

    Raises:
        ValidationError: Bad duration or unknown allow-listed user
        NotFoundError: Unknown user
        AuthorizationError: User is blocked or inactive
        InvalidStateError: User already has an exam in progress
    """
    if (
        isinstance(duration_minutes, bool)
        or not isinstance(duration_minutes, (int, float))
        or not math.isfinite(duration_minutes)
        or duration_minutes <= 0
    ):
        raise ValidationError("Invalid exam duration")
    limit = settings.MAX_EXAM_DURATION_MINUTES
    if limit is not None and duration_minutes > limit:
        raise ValidationError(f"Duration must be at most {limit} minutes.")

    user = session.get(User, user_id)
    if not user:
        raise NotFoundError(f"User with id={user_id} does not exist")
    if not user.is_active or user.is_blocked:
        raise AuthorizationError("User is not allowed to start an exam")

    active = _active_exam(session, user_id)
    if active and active.deadline <= utcnow():
        complete_exam(session, active.id, scheduler)
        active = None
    if active:
        raise InvalidStateError(f"Exam {active.id} is already in progress")

    allowed_ids = sorted({uid for uid in (allowed_users or []) if uid != user_id})
    for uid in allowed_ids:
        if session.get(User, uid) is None:
            raise ValidationError(f"Allowed user {uid} does not exist")

    start = started_at or utcnow()
    exam = Exam(
        user_id=user_id,
        start_time=start,
        duration_minutes=duration_minutes,
        deadline=start + timedelta(minutes=duration_minutes),
        status=STATUS_IN_PROGRESS,
    )
    session.add(exam)
    try:
        session.flush()
    except IntegrityError as exc:
        # A concurrent start for the same user won the partial unique index
        session.rollback()
        raise InvalidStateError("An exam is already in progress") from exc
    for uid in allowed_ids:
        session.add(ExamAllowedUser(exam_id=exam.id, user_id=uid))
    _snapshot_questions(session, exam.id)
    session.commit()
    session.refresh(exam)
    logger.info(
        "Exam %s started by user %s (deadline %s)", exam.id, user_id, exam.deadline
    )

    if exam.deadline <= utcnow():
        return complete_exam(session, exam.id, scheduler)
    if scheduler is not None:
        scheduler.arm(exam.id, exam.deadline)
    return exam


# ===================== ANSWERS & RECORDINGS =====================


def submit_answer(
    session: Session,
    exam_id: int,
    caller_id: int,
    section: str,
    question_number: int,
    answer_text: Optional[str] = None,
    code: Optional[str] = None,
    language: Optional[str] = None,
    runner: Optional[CodeRunner] = None,
    scheduler: Optional[Scheduler] = None,
) -> ExamAnswer:
    """Evaluate and record a response for (section, question_number).

    A later submission for the same slot replaces the earlier one.

    Raises:
        NotFoundError: Unknown exam, or no question at that slot
        AuthorizationError: Caller does not own the exam
        InvalidStateError: Exam is not in progress (or ran out of time)
    """
    exam = _get_owned_exam(session, exam_id, caller_id)
    _ensure_in_progress(session, exam, scheduler)

    slot = session.exec(
        select(ExamQuestionSlot).where(
            (ExamQuestionSlot.exam_id == exam_id)
            & (ExamQuestionSlot.section == section)
            & (ExamQuestionSlot.question_number == question_number)
        )
    ).first()
    if not slot:
        raise NotFoundError("Question not found")
    question = session.get(Question, slot.question_id)
    if not question:
        raise NotFoundError("Question not found")

    if runner is None and question.section == CODING_SECTION:
        runner = get_code_runner()
    result = evaluate(
        question,
        get_test_cases(session, question.id),
        answer_text,
        code,
        language or settings.DEFAULT_LANGUAGE,
        runner,
    )

    # Evaluation may be slow; refuse to write if the exam finished meanwhile
    if not _bump_version(session, exam_id):
        session.rollback()
        raise InvalidStateError("Exam already ended")

    answer = session.exec(
        select(ExamAnswer).where(
            (ExamAnswer.exam_id == exam_id)
            & (ExamAnswer.section == section)
            & (ExamAnswer.question_number == question_number)
        )
    ).first()
    if answer is None:
        answer = ExamAnswer(
            exam_id=exam_id, section=section, question_number=question_number,
            question_id=question.id,
        )
    answer.question_id = question.id
    answer.answer_text = answer_text
    answer.code = code
    answer.language = (language or settings.DEFAULT_LANGUAGE) if code else None
    answer.is_correct = result.is_correct
    answer.total_test_cases = result.total_test_cases
    answer.test_cases_passed = result.test_cases_passed
    answer.submitted_at = utcnow()
    session.add(answer)
    session.commit()
    session.refresh(answer)
    logger.info(
        "Exam %s: answer for %s-%s recorded (correct=%s)",
        exam_id, section, question_number, result.is_correct,
    )
    return answer


def check_can_modify(
    session: Session, exam_id: int, caller_id: int, scheduler: Optional[Scheduler] = None
) -> Exam:
    """Ownership and state checks shared by writes from the exam taker."""
    exam = _get_owned_exam(session, exam_id, caller_id)
    _ensure_in_progress(session, exam, scheduler)
    return exam


def submit_recording(
    session: Session,
    exam_id: int,
    caller_id: int,
    video_ref: str,
    scheduler: Optional[Scheduler] = None,
) -> Exam:
    """Attach a proctoring video reference to an in-progress exam.

    Raises:
        ValidationError: ``video_ref`` is not an accepted URL or upload path
    """
    exam = check_can_modify(session, exam_id, caller_id, scheduler)
    if not is_valid_video_reference(video_ref, settings.UPLOAD_URL_PREFIX):
        raise ValidationError("Invalid video URL format.")
    if not _bump_version(session, exam_id, video_recording=video_ref):
        session.rollback()
        raise InvalidStateError("Exam already ended")
    session.commit()
    session.refresh(exam)
    logger.info("Exam %s: recording attached", exam_id)
    return exam


# ===================== COMPLETION =====================


def _complete_once(
    session: Session, exam_id: int, scheduler: Optional[Scheduler]
) -> Tuple[Exam, bool]:
    exam = _get_exam(session, exam_id)
    if exam.status != STATUS_IN_PROGRESS:
        return exam, False

    if scheduler is not None:
        scheduler.cancel(exam_id)

    now = utcnow()
    swapped = session.execute(
        update(Exam)
        .where((Exam.id == exam_id) & (Exam.status == STATUS_IN_PROGRESS))
        .values(
            status=STATUS_COMPLETED,
            end_time=now,
            updated_at=now,
            version=Exam.version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    if swapped.rowcount != 1:
        # Someone else completed it between our read and the swap
        session.rollback()
        return _get_exam(session, exam_id), False

    score = compute_score(_answers(session, exam_id))
    session.execute(
        update(Exam)
        .where(Exam.id == exam_id)
        .values(score=score)
        .execution_options(synchronize_session=False)
    )
    session.commit()
    exam = _get_exam(session, exam_id)
    logger.info("Exam %s completed with score %s", exam_id, score)
    return exam, True


def _complete(
    session: Session, exam_id: int, scheduler: Optional[Scheduler]
) -> Tuple[Exam, bool]:
    for attempt in (1, 2):
        try:
            return _complete_once(session, exam_id, scheduler)
        except OperationalError as exc:
            session.rollback()
            if attempt == 2:
                logger.error("Giving up completing exam %s: %s", exam_id, exc)
                raise ExamOperationError(f"Could not complete exam {exam_id}") from exc
            logger.warning("Retrying completion of exam %s after: %s", exam_id, exc)


def complete_exam(
    session: Session, exam_id: int, scheduler: Optional[Scheduler] = None
) -> Exam:
    """Finish and score an exam; a no-op if it is no longer in progress.

    Safe to call concurrently for the same exam: exactly one caller wins the
    status swap and computes the score.

    Raises:
        NotFoundError: Unknown exam
        ExamOperationError: Persistence kept failing after one retry
    """
    exam, _ = _complete(session, exam_id, scheduler)
    return exam


def end_exam(
    session: Session, exam_id: int, caller_id: int, scheduler: Optional[Scheduler] = None
) -> Exam:
    """Manual submission by the exam owner."""
    exam = _get_owned_exam(session, exam_id, caller_id)
    if exam.status != STATUS_IN_PROGRESS:
        raise InvalidStateError("Exam already ended")
    return complete_exam(session, exam_id, scheduler)


def auto_complete(
    session: Session, exam_id: int, scheduler: Optional[Scheduler] = None
) -> Optional[Exam]:
    """Timer callback. Missing or already finished exams are ignored."""
    exam = session.get(Exam, exam_id, populate_existing=True)
    if not exam or exam.status != STATUS_IN_PROGRESS:
        return exam
    exam, won = _complete(session, exam_id, scheduler)
    if won:
        logger.info("Exam %s auto-submitted", exam_id)
    return exam


def complete_expired_exams(
    session: Session, now: Optional[datetime] = None, scheduler: Optional[Scheduler] = None
) -> List[int]:
    """Complete every in-progress exam past its deadline; return the ids completed here."""
    cutoff = now or utcnow()
    overdue = session.exec(
        select(Exam.id).where(
            (Exam.status == STATUS_IN_PROGRESS) & (Exam.deadline <= cutoff)
        )
    ).all()
    completed = []
    for exam_id in overdue:
        _, won = _complete(session, exam_id, scheduler)
        if won:
            completed.append(exam_id)
    if completed:
        logger.info("Sweep completed %d overdue exam(s): %s", len(completed), completed)
    return completed
