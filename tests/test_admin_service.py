"""Tests for admin listings, statistics and user deletion."""

import pytest
from sqlmodel import select

from exam_portal.errors import AuthorizationError, InvalidStateError, NotFoundError
from exam_portal.models import User
from exam_portal.services import admin_service, exam_service


class TestListings:
    def test_users_paginated(self, session, admin_user, candidate, other_user):
        page = admin_service.list_users(session, page=1, limit=2)
        assert page["total_users"] == 3
        assert page["total_pages"] == 2
        assert [u["email"] for u in page["users"]] == ["admin@example.com", "alice@example.com"]
        assert "password_hash" not in page["users"][0]

        last = admin_service.list_users(session, page=2, limit=2)
        assert [u["email"] for u in last["users"]] == ["bob@example.com"]

    def test_bad_page_falls_back_to_first(self, session, candidate):
        assert admin_service.list_users(session, page=0, limit=-1)["page"] == 1

    def test_exam_results_include_owner(self, session, candidate):
        exam = exam_service.start_exam(session, candidate.id, 30)
        results = admin_service.list_exam_results(session)
        assert results["total_exams"] == 1
        row = results["exams"][0]
        assert row["id"] == exam.id
        assert row["user"]["email"] == "alice@example.com"
        assert row["score"] is None


class TestStatistics:
    def test_no_completed_exams(self, session, candidate):
        exam_service.start_exam(session, candidate.id, 30)
        with pytest.raises(NotFoundError):
            admin_service.exam_statistics(session)

    def test_stats_over_completed_exams(self, session, candidate, other_user, make_choice_question):
        make_choice_question(section="mcqs", number=1, answer="B")
        make_choice_question(section="aptitude", number=1, answer="C")

        first = exam_service.start_exam(session, candidate.id, 30)
        exam_service.submit_answer(session, first.id, candidate.id, "mcqs", 1, answer_text="B")
        exam_service.submit_answer(session, first.id, candidate.id, "aptitude", 1, answer_text="C")
        exam_service.end_exam(session, first.id, candidate.id)

        second = exam_service.start_exam(session, other_user.id, 30)
        exam_service.submit_answer(session, second.id, other_user.id, "mcqs", 1, answer_text="B")
        exam_service.end_exam(session, second.id, other_user.id)

        # Still running; excluded
        exam_service.start_exam(session, candidate.id, 30)

        stats = admin_service.exam_statistics(session)
        assert stats == {"total_exams": 2, "avg_score": 3.0, "max_score": 4, "min_score": 2}


class TestDeleteUser:
    def test_user_without_exams_deleted(self, session, other_user):
        admin_service.delete_user(session, other_user.id)
        assert session.exec(select(User).where(User.id == other_user.id)).first() is None

    def test_user_with_exams_kept(self, session, candidate):
        exam_service.start_exam(session, candidate.id, 30)
        with pytest.raises(InvalidStateError):
            admin_service.delete_user(session, candidate.id)

    def test_unknown_user(self, session):
        with pytest.raises(NotFoundError):
            admin_service.delete_user(session, 4242)


class TestBlockUser:
    def test_block_then_unblock(self, session, candidate):
        assert admin_service.set_user_blocked(session, candidate.id, True)["is_blocked"] is True
        with pytest.raises(AuthorizationError):
            exam_service.start_exam(session, candidate.id, 30)

        assert admin_service.set_user_blocked(session, candidate.id, False)["is_blocked"] is False
        assert exam_service.start_exam(session, candidate.id, 30).user_id == candidate.id

    def test_admin_cannot_be_blocked(self, session, admin_user):
        with pytest.raises(InvalidStateError):
            admin_service.set_user_blocked(session, admin_user.id, True)

    def test_unknown_user(self, session):
        with pytest.raises(NotFoundError):
            admin_service.set_user_blocked(session, 4242, True)
