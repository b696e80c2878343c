"""Administrative views over users and exam results."""

import logging
import math

from sqlalchemy import func
from sqlmodel import Session, select

from exam_portal.errors import InvalidStateError, NotFoundError
from exam_portal.models import STATUS_COMPLETED, Exam, ExamAllowedUser, User

logger = logging.getLogger(__name__)

ITEMS_PER_PAGE = 10


def _page_bounds(page: int, limit: int) -> tuple[int, int]:
    page = page if page and page > 0 else 1
    limit = limit if limit and limit > 0 else ITEMS_PER_PAGE
    return page, limit


def _user_summary(user: User) -> dict:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "role": user.role,
        "is_active": user.is_active,
        "is_blocked": user.is_blocked,
    }


def list_users(session: Session, page: int = 1, limit: int = ITEMS_PER_PAGE) -> dict:
    page, limit = _page_bounds(page, limit)
    total = session.exec(select(func.count()).select_from(User)).one()
    users = session.exec(
        select(User).order_by(User.id).offset((page - 1) * limit).limit(limit)
    ).all()
    return {
        "users": [_user_summary(u) for u in users],
        "total_users": total,
        "page": page,
        "total_pages": math.ceil(total / limit),
    }


def list_exam_results(session: Session, page: int = 1, limit: int = ITEMS_PER_PAGE) -> dict:
    page, limit = _page_bounds(page, limit)
    total = session.exec(select(func.count()).select_from(Exam)).one()
    rows = session.exec(
        select(Exam, User)
        .join(User, Exam.user_id == User.id)
        .order_by(Exam.start_time.desc(), Exam.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()
    return {
        "exams": [
            {
                "id": exam.id,
                "user": {"id": user.id, "name": user.name, "email": user.email},
                "status": exam.status,
                "start_time": exam.start_time,
                "end_time": exam.end_time,
                "score": exam.score if exam.status == STATUS_COMPLETED else None,
            }
            for exam, user in rows
        ],
        "total_exams": total,
        "page": page,
        "total_pages": math.ceil(total / limit),
    }


def exam_statistics(session: Session) -> dict:
    """Aggregate score statistics over completed exams.

    Raises:
        NotFoundError: If no exam has been completed yet
    """
    count, avg_score, max_score, min_score = session.exec(
        select(
            func.count(Exam.id),
            func.avg(Exam.score),
            func.max(Exam.score),
            func.min(Exam.score),
        ).where(Exam.status == STATUS_COMPLETED)
    ).one()
    if not count:
        raise NotFoundError("No statistics available")
    return {
        "total_exams": count,
        "avg_score": round(avg_score, 2),
        "max_score": max_score,
        "min_score": min_score,
    }


def delete_user(session: Session, user_id: int) -> None:
    """Delete a user that has no exams.

    Raises:
        NotFoundError: If the user does not exist
        InvalidStateError: If any exam belongs to the user
    """
    user = session.get(User, user_id)
    if not user:
        raise NotFoundError(f"User with id={user_id} does not exist")
    if session.exec(select(Exam).where(Exam.user_id == user_id)).first():
        raise InvalidStateError("Cannot delete user with existing exams")

    for link in session.exec(
        select(ExamAllowedUser).where(ExamAllowedUser.user_id == user_id)
    ).all():
        session.delete(link)
    session.delete(user)
    session.commit()


def set_user_blocked(session: Session, user_id: int, blocked: bool) -> dict:
    """Block or unblock a user; blocked users cannot start exams.

    Raises:
        NotFoundError: If the user does not exist
        InvalidStateError: If the user is an admin
    """
    user = session.get(User, user_id)
    if not user:
        raise NotFoundError(f"User with id={user_id} does not exist")
    if user.role == "admin":
        raise InvalidStateError("Admin accounts cannot be blocked")

    user.is_blocked = blocked
    session.add(user)
    session.commit()
    session.refresh(user)
    logger.info("User %s %s", user_id, "blocked" if blocked else "unblocked")
    return _user_summary(user)
