"""Exam-taking routes: start, answer, record, end."""

from typing import List, Optional

from fastapi import APIRouter, Body, Depends, File, UploadFile
from fastapi import status as http_status
from pydantic import BaseModel, Field
from sqlmodel import Session

from exam_portal.config import settings
from exam_portal.database import get_session
from exam_portal.deps import get_runner, get_scheduler, require_login
from exam_portal.errors import ExamError
from exam_portal.models import User
from exam_portal.services import exam_service
from exam_portal.services.recording_storage import delete_recording, save_recording

router = APIRouter()


class StartExamIn(BaseModel):
    duration: float
    allowed_users: Optional[List[int]] = None


class AnswerIn(BaseModel):
    section: str
    question_number: int
    answer: Optional[str] = Field(default=None, max_length=1000)
    code: Optional[str] = Field(default=None, max_length=50000)
    language: Optional[str] = None


class RecordingRefIn(BaseModel):
    video_url: str


@router.post("/start", status_code=http_status.HTTP_201_CREATED)
def start_exam(
    payload: StartExamIn = Body(...),
    session: Session = Depends(get_session),
    current_user: User = Depends(require_login),
    scheduler=Depends(get_scheduler),
):
    exam = exam_service.start_exam(
        session,
        user_id=current_user.id,
        duration_minutes=payload.duration,
        allowed_users=payload.allowed_users,
        scheduler=scheduler,
    )
    return exam_service.exam_view(session, exam)


@router.get("/mine")
def my_exams(
    session: Session = Depends(get_session),
    current_user: User = Depends(require_login),
):
    return [
        exam_service.exam_view(session, exam)
        for exam in exam_service.list_user_exams(session, current_user.id)
    ]


@router.get("/{exam_id}")
def get_exam(
    exam_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_login),
):
    exam = exam_service.get_exam(session, exam_id, current_user)
    return exam_service.exam_view(session, exam)


@router.get("/{exam_id}/paper")
def get_exam_paper(
    exam_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_login),
):
    return exam_service.get_exam_paper(session, exam_id, current_user)


@router.post("/{exam_id}/answer")
def submit_answer(
    exam_id: int,
    payload: AnswerIn = Body(...),
    session: Session = Depends(get_session),
    current_user: User = Depends(require_login),
    runner=Depends(get_runner),
    scheduler=Depends(get_scheduler),
):
    answer = exam_service.submit_answer(
        session,
        exam_id=exam_id,
        caller_id=current_user.id,
        section=payload.section,
        question_number=payload.question_number,
        answer_text=payload.answer,
        code=payload.code,
        language=payload.language,
        runner=runner,
        scheduler=scheduler,
    )
    # Aggregate counts only; per-test-case outcomes stay private
    return {
        "success": True,
        "is_correct": answer.is_correct,
        "total_test_cases": answer.total_test_cases,
        "test_cases_passed": answer.test_cases_passed,
    }


@router.post("/{exam_id}/recording")
def upload_recording(
    exam_id: int,
    video: UploadFile = File(...),
    session: Session = Depends(get_session),
    current_user: User = Depends(require_login),
    scheduler=Depends(get_scheduler),
):
    exam_service.check_can_modify(session, exam_id, current_user.id, scheduler)
    video_ref = save_recording(
        video.file,
        video.filename,
        video.content_type,
        upload_dir=settings.UPLOAD_DIR,
        max_bytes=settings.MAX_VIDEO_BYTES,
        url_prefix=settings.UPLOAD_URL_PREFIX,
    )
    try:
        exam_service.submit_recording(session, exam_id, current_user.id, video_ref, scheduler)
    except ExamError:
        # The exam ended while the upload was streaming; nothing will reference the file
        delete_recording(video_ref, settings.UPLOAD_DIR, settings.UPLOAD_URL_PREFIX)
        raise
    return {"success": True, "message": "Recording uploaded successfully", "video_recording": video_ref}


@router.post("/{exam_id}/recording-url")
def attach_recording_url(
    exam_id: int,
    payload: RecordingRefIn = Body(...),
    session: Session = Depends(get_session),
    current_user: User = Depends(require_login),
    scheduler=Depends(get_scheduler),
):
    exam = exam_service.submit_recording(
        session, exam_id, current_user.id, payload.video_url, scheduler
    )
    return {"success": True, "video_recording": exam.video_recording}


@router.post("/{exam_id}/end")
def end_exam(
    exam_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_login),
    scheduler=Depends(get_scheduler),
):
    exam = exam_service.end_exam(session, exam_id, current_user.id, scheduler)
    return {
        "success": True,
        "message": "Exam submitted successfully",
        "exam": exam_service.exam_view(session, exam),
    }
