"""Quiz scoring and question-shape validation.

Pure functions: no I/O, no clock.  ``answers`` maps question id to what
the learner submitted, either a string or a list of strings.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from access_engine.core.errors import INVALID_QUESTION, BadRequestError
from access_engine.models.course import (
    MULTIPLE_CHOICE,
    SHORT_ANSWER,
    TRUE_FALSE,
    Quiz,
    QuizQuestion,
)

Answer = str | Sequence[str]

_QUESTION_KINDS = (MULTIPLE_CHOICE, TRUE_FALSE, SHORT_ANSWER)


@dataclass(frozen=True, slots=True)
class GradeResult:
    score: int  # 0-100
    passed: bool
    total_points: int
    earned_points: int
    correct_count: int
    total_questions: int


def percentage(part: int, whole: int) -> int:
    """round(100 * part / whole), half-up, in integer arithmetic; 0 if whole is 0."""
    if whole <= 0:
        return 0
    return (200 * part + whole) // (2 * whole)


def is_correct(correct: str | Sequence[str], submitted: Answer) -> bool:
    correct_is_list = not isinstance(correct, str)
    submitted_is_list = not isinstance(submitted, str)

    if correct_is_list and submitted_is_list:
        # same members, order ignored
        return len(submitted) == len(correct) and all(c in submitted for c in correct)
    if correct_is_list:
        return submitted in correct
    if submitted_is_list:
        return correct in submitted
    return submitted.strip().lower() == correct.strip().lower()


def grade(quiz: Quiz, answers: Mapping[str, Answer]) -> GradeResult:
    total_points = 0
    earned_points = 0
    correct_count = 0

    for question in quiz.questions:
        total_points += question.points
        submitted = answers.get(question.id)
        if submitted is None:
            continue  # unanswered counts as wrong
        if is_correct(question.correct_answer, submitted):
            earned_points += question.points
            correct_count += 1

    score = percentage(earned_points, total_points)
    return GradeResult(
        score=score,
        passed=score >= quiz.passing_score,
        total_points=total_points,
        earned_points=earned_points,
        correct_count=correct_count,
        total_questions=len(quiz.questions),
    )


def validate_questions(questions: Sequence[QuizQuestion]) -> None:
    """Raise BadRequestError(reason="invalid_question") on the first bad question."""
    if not questions:
        raise BadRequestError(
            "Quiz must have at least one question", reason=INVALID_QUESTION
        )

    for n, q in enumerate(questions, start=1):
        if not q.prompt or not q.prompt.strip():
            _invalid(n, "missing prompt")
        if q.kind not in _QUESTION_KINDS:
            _invalid(n, f"unknown question kind {q.kind!r}")
        if isinstance(q.correct_answer, str):
            if not q.correct_answer.strip():
                _invalid(n, "missing correct answer")
        elif not q.correct_answer:
            _invalid(n, "missing correct answer")
        if q.points <= 0:
            _invalid(n, "points must be positive")
        if q.kind == MULTIPLE_CHOICE and len(q.options) < 2:
            _invalid(n, "multiple choice questions need at least 2 options")
        if q.kind == TRUE_FALSE and len(q.options) != 2:
            _invalid(n, "true/false questions need exactly 2 options")


def _invalid(n: int, problem: str) -> None:
    raise BadRequestError(f"Question {n}: {problem}", reason=INVALID_QUESTION)
