from __future__ import annotations

import asyncio
import dataclasses
import sys
from dataclasses import dataclass
from pathlib import Path
from uuid import UUID, uuid4

import pytest
from fastapi.testclient import TestClient

from access_engine.api import dependencies
from access_engine.api.dependencies import Repos, new_memory_repos
from access_engine.api.ratelimit import _rate_limiter
from access_engine.main import app
from access_engine.models.course import (
    MULTIPLE_CHOICE,
    CatalogCourse,
    Course,
    Lesson,
    Quiz,
    QuizQuestion,
)
from access_engine.models.organization import OrgMembership
from access_engine.repos.enrollment_repo import InMemoryEnrollmentRepo
from access_engine.repos.license_repo import InMemoryLicenseRepo
from access_engine.services import token_service
from access_engine.services.collaborators import RecordingNotifier, RepoCertificateIssuer
from access_engine.services.completion_cascade import CompletionCascade
from access_engine.services.entitlement_ledger import EntitlementLedger
from access_engine.services.progress_tracker import ProgressTracker
from access_engine.services.task_queue import task_queue

# Ensure repo root is on sys.path so `import access_engine` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# 2026-01-31T00:00:00Z
T0 = 1769817600


@pytest.fixture(autouse=True)
def reset_repos() -> None:
    """Fresh in-memory repositories for every test."""
    dependencies.reset_memory_repos()


@pytest.fixture(autouse=True)
def reset_rate_limiter() -> None:
    """Clear rate limit buckets between tests so limits don't bleed."""
    if hasattr(_rate_limiter, "_buckets"):
        _rate_limiter._buckets.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_task_queue() -> None:
    """Clear task queues between tests."""
    if hasattr(task_queue, "_queues"):
        task_queue._queues.clear()  # type: ignore[union-attr]


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def mint_token(user_id: UUID | None = None, roles: list[str] | None = None) -> str:
    """Create a valid ES256 JWT for testing."""
    return token_service.create_access_token(sub=str(user_id or uuid4()), roles=roles)


def auth(user_id: UUID | None = None, roles: list[str] | None = None) -> dict[str, str]:
    return {"Authorization": f"Bearer {mint_token(user_id, roles)}"}


# ---------------------------------------------------------------------------
# Service-level harness
# ---------------------------------------------------------------------------


class FakeClock:
    """Pinned clock; tests move it with advance()."""

    def __init__(self, now: int = T0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


class CountingIssuer:
    """RepoCertificateIssuer that counts how often it was asked."""

    def __init__(self, issuer: RepoCertificateIssuer) -> None:
        self._issuer = issuer
        self.calls = 0

    async def issue_or_get(self, org_id, user_id, course_id, metadata, completion_date):
        self.calls += 1
        return await self._issuer.issue_or_get(
            org_id, user_id, course_id, metadata, completion_date
        )


class YieldingLicenseRepo(InMemoryLicenseRepo):
    """Suspends after every read so concurrent callers act on stale state.

    ``refused_consumes`` counts seat claims the conditional update turned
    down.
    """

    def __init__(self) -> None:
        super().__init__()
        self.refused_consumes = 0

    async def get(self, license_id):
        license = await super().get(license_id)
        await asyncio.sleep(0)
        return license

    async def try_consume_seats(self, license_id, n):
        consumed = await super().try_consume_seats(license_id, n)
        if consumed is None:
            self.refused_consumes += 1
        return consumed


class YieldingEnrollmentRepo(InMemoryEnrollmentRepo):
    async def get(self, enrollment_id):
        enrollment = await super().get(enrollment_id)
        await asyncio.sleep(0)
        return enrollment


@dataclass
class Engine:
    repos: Repos
    notifier: RecordingNotifier
    issuer: CountingIssuer
    clock: FakeClock
    ledger: EntitlementLedger
    tracker: ProgressTracker


def build_engine(*, max_retries: int = 5, **repo_overrides) -> Engine:
    repos = dataclasses.replace(new_memory_repos(), **repo_overrides)
    clock = FakeClock()
    notifier = RecordingNotifier()
    issuer = CountingIssuer(RepoCertificateIssuer(repos.certificates, clock=clock))
    ledger = EntitlementLedger(
        repos.licenses,
        repos.accesses,
        repos.memberships,
        repos.catalog,
        notifier,
        clock=clock,
    )
    tracker = ProgressTracker(
        repos.enrollments,
        repos.catalog,
        ledger,
        CompletionCascade(issuer, notifier),
        notifier,
        clock=clock,
        max_retries=max_retries,
    )
    return Engine(repos, notifier, issuer, clock, ledger, tracker)


# ---------------------------------------------------------------------------
# Seeding helpers
# ---------------------------------------------------------------------------


@dataclass
class SeededCourse:
    course: Course
    lessons: list[Lesson]
    quizzes: list[Quiz]


def question(qid: str = "q1", answer: str = "b", points: int = 1) -> QuizQuestion:
    return QuizQuestion(
        id=qid,
        prompt=f"Question {qid}",
        kind=MULTIPLE_CHOICE,
        correct_answer=answer,
        points=points,
        options=("a", "b", "c"),
    )


def seed_course(
    repos: Repos,
    *,
    lessons: int = 2,
    quizzes: int = 1,
    status: str = "published",
    catalog_entry: CatalogCourse | None = None,
    is_free: bool = False,
    max_attempts: int | None = None,
    require_lessons: bool = False,
) -> SeededCourse:
    """A course with N lessons and N single-question quizzes (answer "b")."""
    if catalog_entry is not None:
        repos.catalog.add_catalog_entry(catalog_entry)
    course = Course.new(
        title="Intro to Testing",
        status=status,
        catalog_course_id=catalog_entry.id if catalog_entry else None,
        is_free=is_free,
    )
    repos.catalog.add_course(course)

    seeded_lessons = []
    for i in range(lessons):
        lesson = Lesson.new(course_id=course.id, position=i + 1, title=f"Lesson {i + 1}")
        repos.catalog.add_lesson(lesson)
        seeded_lessons.append(lesson)

    seeded_quizzes = []
    for i in range(quizzes):
        quiz = Quiz.new(
            course_id=course.id,
            title=f"Quiz {i + 1}",
            questions=(question(),),
            position=i + 1,
            max_attempts=max_attempts,
            required_lesson_ids=(
                tuple(ls.id for ls in seeded_lessons) if require_lessons else ()
            ),
        )
        repos.catalog.add_quiz(quiz)
        seeded_quizzes.append(quiz)

    return SeededCourse(course, seeded_lessons, seeded_quizzes)


def add_member(repos: Repos, org_id: UUID, user_id: UUID, org_role: str = "learner"):
    membership = OrgMembership(org_id=org_id, user_id=user_id, org_role=org_role)
    repos.memberships.add(membership)  # type: ignore[attr-defined]
    return membership
