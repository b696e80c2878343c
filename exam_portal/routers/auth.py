"""Session-cookie authentication routes."""

from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from fastapi import status as http_status
from pydantic import BaseModel, Field
from sqlmodel import Session, select

from exam_portal.auth_utils import hash_password, verify_password
from exam_portal.database import get_session
from exam_portal.deps import require_login
from exam_portal.models import User, utcnow

router = APIRouter()

NAME_MIN_LENGTH = 3
PASSWORD_MIN_LENGTH = 5


class RegisterIn(BaseModel):
    name: str = Field(min_length=NAME_MIN_LENGTH, max_length=120)
    email: str = Field(pattern=r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
    password: str = Field(min_length=PASSWORD_MIN_LENGTH, max_length=128)


class LoginIn(BaseModel):
    email: str
    password: str


class UpdateUserIn(BaseModel):
    name: Optional[str] = Field(default=None, min_length=NAME_MIN_LENGTH, max_length=120)
    email: Optional[str] = Field(default=None, pattern=r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
    password: Optional[str] = Field(default=None, min_length=PASSWORD_MIN_LENGTH, max_length=128)


def user_summary(user: User) -> dict:
    return {"id": user.id, "name": user.name, "email": user.email, "role": user.role}


@router.post("/register", status_code=http_status.HTTP_201_CREATED)
def register(payload: RegisterIn = Body(...), session: Session = Depends(get_session)):
    email = payload.email.strip().lower()
    if session.exec(select(User).where(User.email == email)).first():
        raise HTTPException(status_code=400, detail="User already exists")

    user = User(
        name=payload.name.strip(),
        email=email,
        password_hash=hash_password(payload.password),
        role="user",
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return {"message": "User registered successfully", "user": user_summary(user)}


@router.post("/login")
def login(request: Request, payload: LoginIn = Body(...), session: Session = Depends(get_session)):
    email = payload.email.strip().lower()
    user = session.exec(select(User).where(User.email == email)).first()
    if not user or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="Account is disabled")

    user.last_login = utcnow()
    session.add(user)
    session.commit()

    request.session["user_id"] = user.id
    return {"message": "Login successful", "user": user_summary(user)}


@router.post("/logout")
def logout(request: Request):
    request.session.clear()
    return {"message": "Logged out"}


@router.get("/me")
def me(current_user: User = Depends(require_login)):
    return user_summary(current_user)


@router.put("/update-user")
def update_user(
    payload: UpdateUserIn = Body(...),
    session: Session = Depends(get_session),
    current_user: User = Depends(require_login),
):
    if payload.name is None and payload.email is None and payload.password is None:
        raise HTTPException(status_code=400, detail="No fields to update")

    user = session.get(User, current_user.id)
    if payload.email is not None:
        email = payload.email.strip().lower()
        taken = session.exec(select(User).where(User.email == email)).first()
        if taken and taken.id != user.id:
            raise HTTPException(status_code=400, detail="Email is already in use")
        user.email = email
    if payload.name is not None:
        user.name = payload.name.strip()
    if payload.password is not None:
        user.password_hash = hash_password(payload.password)

    session.add(user)
    session.commit()
    session.refresh(user)
    return {"message": "User updated successfully", "user": user_summary(user)}
