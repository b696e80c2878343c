"""Exam Portal: timed exams, automatic grading and proctoring uploads."""
