"""Shared FastAPI dependencies for database access, authentication and the exam engine."""

from typing import Optional

from fastapi import Depends, HTTPException, Request
from sqlmodel import Session

from exam_portal.database import get_session
from exam_portal.models import User
from exam_portal.services.code_runner import CodeRunnerClient, get_code_runner
from exam_portal.services.scheduler import AutoSubmitScheduler


def get_current_user(
    request: Request, session: Session = Depends(get_session)
) -> Optional[User]:
    """Return the currently logged-in user based on the session cookie, if any."""
    user_id = request.session.get("user_id")
    if not user_id:
        return None

    user = session.get(User, user_id)
    if not user or not user.is_active:
        # Clear any stale session
        request.session.clear()
        return None
    return user


def require_login(current_user: Optional[User] = Depends(get_current_user)) -> User:
    """Ensure that a user is logged in."""
    if current_user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return current_user


def require_role(required_roles: list[str]):
    """Dependency factory that enforces one of the given roles."""

    def wrapper(current_user: User = Depends(require_login)) -> User:
        if current_user.role not in required_roles:
            raise HTTPException(status_code=403, detail="Access denied: Admin privileges required.")
        return current_user

    return wrapper


def get_scheduler(request: Request) -> Optional[AutoSubmitScheduler]:
    """The app-wide auto-submit scheduler, once startup has created it."""
    return getattr(request.app.state, "scheduler", None)


def get_runner() -> CodeRunnerClient:
    return get_code_runner()
