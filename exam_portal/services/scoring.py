"""Final score computation.

Single-choice sections are worth a flat 2 points per correct answer.
Coding answers earn partial credit: (passed / total) * 20.
"""

import math
from typing import Iterable

from exam_portal.models import CHOICE_SECTIONS, CODING_SECTION, ExamAnswer

SECTION_POINTS = {section: 2 for section in CHOICE_SECTIONS}
CODING_POINTS = 20


def answer_points(answer: ExamAnswer) -> float:
    if answer.section == CODING_SECTION:
        if not answer.total_test_cases:
            return 0.0
        return (answer.test_cases_passed / answer.total_test_cases) * CODING_POINTS
    if answer.is_correct:
        return float(SECTION_POINTS.get(answer.section, 0))
    return 0.0


def compute_score(answers: Iterable[ExamAnswer]) -> float:
    total = sum(answer_points(a) for a in answers)
    if not math.isfinite(total):
        return 0.0
    return round(total, 2)
