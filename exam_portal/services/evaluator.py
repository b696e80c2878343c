"""Decide whether a submitted response answers a question correctly."""

import logging
from typing import Optional, Protocol, Sequence

from pydantic import BaseModel

from exam_portal.errors import CodeExecutionError
from exam_portal.models import CODING_SECTION, Question, QuestionTestCase
from exam_portal.services.code_runner import ExecutionResult

logger = logging.getLogger(__name__)


class CodeRunner(Protocol):
    def execute(self, source_code: str, language: str, stdin: str = "") -> ExecutionResult:
        ...


class EvaluationResult(BaseModel):
    is_correct: bool
    total_test_cases: int = 0
    test_cases_passed: int = 0


def _passes(runner: CodeRunner, code: str, language: str, case: QuestionTestCase) -> bool:
    try:
        result = runner.execute(code, language, case.input)
    except CodeExecutionError as exc:
        # Infrastructure failure only costs this test case
        logger.warning("Test case %s could not be executed: %s", case.position, exc)
        return False
    if result.execution_error:
        return False
    return result.stdout.strip() == case.expected_output.strip()


def evaluate_code(
    code: Optional[str],
    language: str,
    test_cases: Sequence[QuestionTestCase],
    runner: CodeRunner,
) -> EvaluationResult:
    """Run ``code`` against every test case, hidden ones included, in order."""
    total = len(test_cases)
    if not code or not code.strip():
        passed = 0
    else:
        passed = sum(1 for case in test_cases if _passes(runner, code, language, case))
    return EvaluationResult(
        is_correct=passed == total,
        total_test_cases=total,
        test_cases_passed=passed,
    )


def evaluate(
    question: Question,
    test_cases: Sequence[QuestionTestCase],
    answer_text: Optional[str],
    code: Optional[str],
    language: str,
    runner: CodeRunner,
) -> EvaluationResult:
    """Judge a response.

    Single-choice sections use exact, case-sensitive string equality with the
    stored answer. Coding sections report pass counts so partial credit can be
    computed upstream.
    """
    if question.section == CODING_SECTION:
        return evaluate_code(code, language, test_cases, runner)
    return EvaluationResult(is_correct=answer_text is not None and answer_text == question.answer)
