"""Admin routes for reviewing users and exam results."""

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from exam_portal.database import get_session
from exam_portal.deps import require_role
from exam_portal.models import User
from exam_portal.services import admin_service

router = APIRouter()


@router.get("/users")
def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(admin_service.ITEMS_PER_PAGE, ge=1, le=100),
    session: Session = Depends(get_session),
    current_user: User = Depends(require_role(["admin"])),
):
    return admin_service.list_users(session, page=page, limit=limit)


@router.delete("/users/{user_id}")
def delete_user(
    user_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_role(["admin"])),
):
    admin_service.delete_user(session, user_id)
    return {"success": True, "message": "User deleted successfully"}


@router.get("/exams")
def list_exams(
    page: int = Query(1, ge=1),
    limit: int = Query(admin_service.ITEMS_PER_PAGE, ge=1, le=100),
    session: Session = Depends(get_session),
    current_user: User = Depends(require_role(["admin"])),
):
    return admin_service.list_exam_results(session, page=page, limit=limit)


@router.get("/stats")
def exam_stats(
    session: Session = Depends(get_session),
    current_user: User = Depends(require_role(["admin"])),
):
    return admin_service.exam_statistics(session)


@router.post("/users/{user_id}/block")
def block_user(
    user_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_role(["admin"])),
):
    return admin_service.set_user_blocked(session, user_id, True)


@router.post("/users/{user_id}/unblock")
def unblock_user(
    user_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_role(["admin"])),
):
    return admin_service.set_user_blocked(session, user_id, False)
