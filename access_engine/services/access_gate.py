"""Lock/unlock decisions for lessons and quizzes.

Pure functions over catalog content and an enrollment snapshot.  The
tracker calls them before accepting progress; the outline endpoint uses
the *_states helpers to render the course with lock icons.

Rules:
  - lesson 0 is always open; lesson i opens once lesson i-1 is completed
  - a quiz with no required lessons is open to any enrolled learner;
    otherwise every required lesson must be completed
  - without an enrollment every quiz and every lesson after the first
    is locked
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from uuid import UUID

from access_engine.models.course import Lesson, Quiz
from access_engine.models.enrollment import Enrollment, QuizAttemptHistory


@dataclass(frozen=True, slots=True)
class LessonState:
    lesson_id: UUID
    position: int
    title: str
    locked: bool
    completed: bool


@dataclass(frozen=True, slots=True)
class QuizState:
    quiz_id: UUID
    title: str
    locked: bool
    can_retake: bool
    passed: bool
    best_score: int
    attempts: int
    max_attempts: int | None


def lesson_locked(
    lessons: Sequence[Lesson], progress: Enrollment | None, index: int
) -> bool:
    if index <= 0:
        return False
    if progress is None:
        return True
    previous = progress.lesson(lessons[index - 1].id)
    return previous is None or not previous.completed


def quiz_locked(quiz: Quiz, progress: Enrollment | None) -> bool:
    if progress is None:
        return True
    if not quiz.required_lesson_ids:
        return False
    done = progress.completed_lesson_ids()
    return not all(lesson_id in done for lesson_id in quiz.required_lesson_ids)


def quiz_retake_allowed(quiz: Quiz, history: QuizAttemptHistory | None) -> bool:
    if history is None or not history.attempts:
        return True
    if history.has_passed:
        return False
    return quiz.max_attempts is None or len(history.attempts) < quiz.max_attempts


def lesson_states(
    lessons: Sequence[Lesson], progress: Enrollment | None
) -> list[LessonState]:
    states = []
    for i, lesson in enumerate(lessons):
        entry = progress.lesson(lesson.id) if progress is not None else None
        states.append(
            LessonState(
                lesson_id=lesson.id,
                position=lesson.position,
                title=lesson.title,
                locked=lesson_locked(lessons, progress, i),
                completed=entry is not None and entry.completed,
            )
        )
    return states


def quiz_states(
    quizzes: Sequence[Quiz], progress: Enrollment | None
) -> list[QuizState]:
    states = []
    for quiz in quizzes:
        history = progress.quiz_history(quiz.id) if progress is not None else None
        states.append(
            QuizState(
                quiz_id=quiz.id,
                title=quiz.title,
                locked=quiz_locked(quiz, progress),
                can_retake=quiz_retake_allowed(quiz, history),
                passed=history is not None and history.has_passed,
                best_score=history.best_score if history is not None else 0,
                attempts=len(history.attempts) if history is not None else 0,
                max_attempts=quiz.max_attempts,
            )
        )
    return states
