"""Exam engine services: question bank, evaluation, scoring and lifecycle."""
