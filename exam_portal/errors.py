"""Domain errors raised by the exam services.

The HTTP layer maps each kind to a status code in ``exam_portal.main``.
"""


class ExamError(Exception):
    """Base class for errors raised by the exam core."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ExamError):
    """Malformed input: bad duration, bad video reference, bad question shape."""


class AuthorizationError(ExamError):
    """The caller does not own the exam or lacks the required role."""


class InvalidStateError(ExamError):
    """The exam (or question) is not in a state that allows the operation."""


class NotFoundError(ExamError):
    """Exam, question or user is absent or cannot be resolved."""


class ExamOperationError(ExamError):
    """A persistence failure that survived the retry."""


class CodeExecutionError(Exception):
    """The external code runner could not produce a result.

    Contained by the evaluator; it never reaches callers of the exam core.
    """
