"""Tests pinning the weighted scoring formula."""

from exam_portal.models import ExamAnswer
from exam_portal.services import scoring
from exam_portal.services.scoring import answer_points, compute_score


def _choice(correct, section="mcqs"):
    return ExamAnswer(exam_id=1, question_id=1, section=section, question_number=1, is_correct=correct)


def _coding(passed, total):
    return ExamAnswer(
        exam_id=1, question_id=2, section="coding", question_number=1,
        is_correct=passed == total, total_test_cases=total, test_cases_passed=passed,
    )


def test_correct_choice_is_worth_two_points():
    assert answer_points(_choice(True)) == 2
    assert answer_points(_choice(True, section="aptitude")) == 2
    assert answer_points(_choice(False)) == 0


def test_coding_partial_credit():
    assert compute_score([_coding(2, 3)]) == 13.33
    assert compute_score([_coding(3, 3)]) == 20
    assert compute_score([_coding(0, 3)]) == 0


def test_coding_with_no_test_cases_scores_zero():
    assert answer_points(_coding(0, 0)) == 0


def test_mixed_exam_total():
    assert compute_score([_choice(True), _coding(2, 3)]) == 15.33


def test_sections_sum_across_answers():
    answers = [
        _choice(True, "mcqs"),
        _choice(True, "aptitude"),
        _choice(False, "ai"),
        _coding(1, 2),
    ]
    assert compute_score(answers) == 14.0


def test_empty_exam_scores_zero():
    assert compute_score([]) == 0


def test_non_finite_total_scores_zero(monkeypatch):
    monkeypatch.setattr(scoring, "answer_points", lambda answer: float("inf"))
    assert scoring.compute_score([_choice(True)]) == 0.0

    monkeypatch.setattr(scoring, "answer_points", lambda answer: float("nan"))
    assert scoring.compute_score([_choice(True), _coding(1, 2)]) == 0.0
