"""FastAPI entrypoint for the Exam Portal."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlmodel import Session, select
from starlette.middleware.sessions import SessionMiddleware

from exam_portal.auth_utils import hash_password
from exam_portal.config import settings
from exam_portal.database import create_db_and_tables, engine, new_session
from exam_portal.errors import (
    AuthorizationError,
    ExamError,
    ExamOperationError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from exam_portal.models import User
from exam_portal.routers import admin as admin_router_module
from exam_portal.routers import auth as auth_router_module
from exam_portal.routers import exams as exams_router_module
from exam_portal.routers import questions as questions_router_module
from exam_portal.services.scheduler import AutoSubmitScheduler

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = {
    ValidationError: 400,
    InvalidStateError: 400,
    AuthorizationError: 403,
    NotFoundError: 404,
    ExamOperationError: 503,
}

app = FastAPI(title=settings.APP_NAME)


@app.exception_handler(ExamError)
async def exam_error_handler(request: Request, exc: ExamError):
    """Map domain errors raised by the services to JSON responses."""
    status_code = ERROR_STATUS_CODES.get(type(exc), 400)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": exc.message},
    )


# Session middleware for simple cookie-based authentication
app.add_middleware(SessionMiddleware, secret_key=settings.SESSION_SECRET)

# Routers
app.include_router(auth_router_module.router, prefix="/auth", tags=["auth"])
app.include_router(questions_router_module.router, prefix="/questions", tags=["questions"])
app.include_router(exams_router_module.router, prefix="/exams", tags=["exams"])
app.include_router(admin_router_module.router, prefix="/admin", tags=["admin"])


@app.get("/")
def home():
    return {"message": "API is running!", "name": settings.APP_NAME}


@app.on_event("startup")
def on_startup():
    """Initialize database schema, seed the admin and start auto-submission."""
    create_db_and_tables()
    with Session(engine) as session:
        existing_admin = session.exec(select(User).where(User.role == "admin")).first()
        if not existing_admin:
            admin_user = User(
                name=settings.SEED_ADMIN_NAME,
                email=settings.SEED_ADMIN_EMAIL.lower(),
                password_hash=hash_password(settings.SEED_ADMIN_PASSWORD),
                role="admin",
            )
            session.add(admin_user)
            session.commit()
            logger.info("Seeded default admin user: %s", admin_user.email)

    scheduler = AutoSubmitScheduler(new_session, settings.AUTO_SUBMIT_SWEEP_SECONDS)
    # Exams that expired while the server was down
    scheduler.sweep()
    rearmed = scheduler.rearm_in_progress()
    scheduler.start()
    app.state.scheduler = scheduler
    logger.info("Auto-submit scheduler started (%d deadline(s) re-armed)", rearmed)


@app.on_event("shutdown")
def on_shutdown():
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is not None:
        scheduler.shutdown()
