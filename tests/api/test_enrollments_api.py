from __future__ import annotations

from uuid import UUID, uuid4

import pytest
from fastapi.testclient import TestClient

from access_engine.api import dependencies
from access_engine.models.course import MULTIPLE_CHOICE, CatalogCourse, Quiz, QuizQuestion
from access_engine.services import token_service
from tests.conftest import SeededCourse, add_member, auth, seed_course


@pytest.fixture
def user_id() -> UUID:
    return uuid4()


@pytest.fixture
def free_course() -> SeededCourse:
    return seed_course(dependencies.memory_repos, lessons=2, quizzes=1, is_free=True)


def _enroll(client: TestClient, user_id: UUID, course: SeededCourse) -> dict:
    resp = client.post(
        "/v1/enrollments",
        json={"course_id": str(course.course.id)},
        headers=auth(user_id),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


def _complete_lesson(client: TestClient, user_id: UUID, enrollment: dict, lesson):
    return client.put(
        f"/v1/enrollments/{enrollment['id']}/lessons/{lesson.id}",
        json={"completed": True, "time_spent_minutes": 7},
        headers=auth(user_id),
    )


# ---- auth ----


def test_enrollments_require_token(client: TestClient) -> None:
    assert client.get("/v1/enrollments/me").status_code == 401


def test_garbage_token_rejected(client: TestClient) -> None:
    resp = client.get(
        "/v1/enrollments/me", headers={"Authorization": "Bearer not-a-jwt"}
    )
    assert resp.status_code == 401


def test_non_uuid_subject_rejected(client: TestClient) -> None:
    token = token_service.create_access_token(sub="alice")
    resp = client.get("/v1/enrollments/me", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401


# ---- lifecycle ----


def test_enroll_and_list(client: TestClient, user_id: UUID, free_course: SeededCourse) -> None:
    enrollment = _enroll(client, user_id, free_course)
    assert enrollment["status"] == "ACTIVE"
    assert enrollment["progress_percentage"] == 0

    mine = client.get("/v1/enrollments/me", headers=auth(user_id)).json()
    assert [e["id"] for e in mine] == [enrollment["id"]]

    one = client.get(f"/v1/enrollments/{enrollment['id']}", headers=auth(user_id))
    assert one.status_code == 200


def test_enroll_twice_is_409(client: TestClient, user_id: UUID, free_course: SeededCourse) -> None:
    _enroll(client, user_id, free_course)
    resp = client.post(
        "/v1/enrollments",
        json={"course_id": str(free_course.course.id)},
        headers=auth(user_id),
    )
    assert resp.status_code == 409


def test_enroll_in_unknown_course_is_404(client: TestClient) -> None:
    resp = client.post(
        "/v1/enrollments", json={"course_id": str(uuid4())}, headers=auth()
    )
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Course not found"


def test_paid_course_without_license(client: TestClient) -> None:
    paid = seed_course(
        dependencies.memory_repos, catalog_entry=CatalogCourse.new(title="Paid")
    )
    resp = client.post(
        "/v1/enrollments", json={"course_id": str(paid.course.id)}, headers=auth()
    )
    assert resp.status_code == 403
    assert resp.json()["reason"] == "no_license"


def test_paid_course_through_org_license(client: TestClient, user_id: UUID) -> None:
    entry = CatalogCourse.new(title="Paid")
    paid = seed_course(dependencies.memory_repos, catalog_entry=entry)
    org_id = uuid4()
    add_member(dependencies.memory_repos, org_id, user_id)
    client.post(
        "/v1/licenses",
        json={"org_id": str(org_id), "catalog_course_id": str(entry.id), "kind": "UNLIMITED"},
        headers=auth(roles=["admin"]),
    )

    _enroll(client, user_id, paid)
    check = client.get(
        f"/v1/orgs/{org_id}/access/check/{entry.id}", headers=auth(user_id)
    )
    assert check.json()["has_access"] is True


def test_other_users_enrollment_is_404(
    client: TestClient, user_id: UUID, free_course: SeededCourse
) -> None:
    enrollment = _enroll(client, user_id, free_course)
    resp = client.get(f"/v1/enrollments/{enrollment['id']}", headers=auth())
    assert resp.status_code == 404


def test_drop_enrollment(client: TestClient, user_id: UUID, free_course: SeededCourse) -> None:
    enrollment = _enroll(client, user_id, free_course)
    resp = client.delete(f"/v1/enrollments/{enrollment['id']}", headers=auth(user_id))
    assert resp.status_code == 200
    assert resp.json()["status"] == "DROPPED"

    again = client.delete(f"/v1/enrollments/{enrollment['id']}", headers=auth(user_id))
    assert again.status_code == 400

    blocked = _complete_lesson(client, user_id, enrollment, free_course.lessons[0])
    assert blocked.status_code == 403
    assert blocked.json()["reason"] == "not_enrolled"


def test_course_roster_is_admin_only(
    client: TestClient, user_id: UUID, free_course: SeededCourse
) -> None:
    _enroll(client, user_id, free_course)
    url = f"/v1/courses/{free_course.course.id}/enrollments"
    assert client.get(url, headers=auth(user_id)).status_code == 403
    roster = client.get(url, headers=auth(roles=["admin"])).json()
    assert [e["user_id"] for e in roster] == [str(user_id)]


# ---- progress ----


def test_locked_lesson_is_403(client: TestClient, user_id: UUID, free_course: SeededCourse) -> None:
    enrollment = _enroll(client, user_id, free_course)
    resp = _complete_lesson(client, user_id, enrollment, free_course.lessons[1])
    assert resp.status_code == 403
    assert resp.json()["reason"] == "lesson_locked"


def test_negative_time_is_422(client: TestClient, user_id: UUID, free_course: SeededCourse) -> None:
    enrollment = _enroll(client, user_id, free_course)
    resp = client.put(
        f"/v1/enrollments/{enrollment['id']}/lessons/{free_course.lessons[0].id}",
        json={"completed": True, "time_spent_minutes": -3},
        headers=auth(user_id),
    )
    assert resp.status_code == 422


def test_full_course_issues_certificate(
    client: TestClient, user_id: UUID, free_course: SeededCourse
) -> None:
    enrollment = _enroll(client, user_id, free_course)

    first = _complete_lesson(client, user_id, enrollment, free_course.lessons[0])
    assert first.json()["enrollment"]["progress_percentage"] == 33
    second = _complete_lesson(client, user_id, enrollment, free_course.lessons[1])
    assert second.json()["enrollment"]["progress_percentage"] == 67

    failed = client.post(
        f"/v1/enrollments/{enrollment['id']}/quizzes/{free_course.quizzes[0].id}/submit",
        json={"answers": {"q1": "a"}},
        headers=auth(user_id),
    )
    assert failed.status_code == 200
    assert failed.json()["passed"] is False
    assert failed.json()["completed_now"] is False

    passed = client.post(
        f"/v1/enrollments/{enrollment['id']}/quizzes/{free_course.quizzes[0].id}/submit",
        json={"answers": {"q1": "B"}},
        headers=auth(user_id),
    )
    body = passed.json()
    assert body["score"] == 100
    assert body["attempt_number"] == 2
    assert body["completed_now"] is True
    assert body["enrollment"]["status"] == "COMPLETED"

    # the background cascade has run by the time TestClient returns
    certificates = dependencies.memory_repos.certificates
    [cert] = certificates._by_id.values()  # type: ignore[attr-defined]
    assert cert.user_id == user_id
    assert cert.metadata.total_time_spent_minutes == 14


def test_multi_answer_submission(client: TestClient, user_id: UUID) -> None:
    course = seed_course(dependencies.memory_repos, lessons=0, quizzes=0, is_free=True)
    quiz = Quiz.new(
        course_id=course.course.id,
        title="Pick two",
        questions=(
            QuizQuestion(
                id="primes",
                prompt="Which are prime?",
                kind=MULTIPLE_CHOICE,
                correct_answer=("2", "3"),
                options=("2", "3", "4"),
            ),
        ),
    )
    dependencies.memory_repos.catalog.add_quiz(quiz)
    enrollment = _enroll(client, user_id, course)

    resp = client.post(
        f"/v1/enrollments/{enrollment['id']}/quizzes/{quiz.id}/submit",
        json={"answers": {"primes": ["3", "2"]}},
        headers=auth(user_id),
    )
    assert resp.status_code == 200
    assert resp.json()["passed"] is True


def test_outline(client: TestClient, user_id: UUID, free_course: SeededCourse) -> None:
    enrollment = _enroll(client, user_id, free_course)
    _complete_lesson(client, user_id, enrollment, free_course.lessons[0])

    outline = client.get(
        f"/v1/enrollments/{enrollment['id']}/outline", headers=auth(user_id)
    ).json()
    assert [ls["completed"] for ls in outline["lessons"]] == [True, False]
    assert [ls["locked"] for ls in outline["lessons"]] == [False, False]
    assert outline["quizzes"][0]["attempts"] == 0
    assert outline["enrollment"]["id"] == enrollment["id"]


# ---- rate limiting ----


def test_quiz_submissions_are_rate_limited(
    client: TestClient, user_id: UUID
) -> None:
    url = f"/v1/enrollments/{uuid4()}/quizzes/{uuid4()}/submit"
    statuses = [
        client.post(url, json={"answers": {}}, headers=auth(user_id)).status_code
        for _ in range(12)
    ]
    assert statuses[:10] == [404] * 10
    assert statuses[10:] == [429, 429]


def test_rate_limited_response_has_retry_after(client: TestClient, user_id: UUID) -> None:
    url = f"/v1/enrollments/{uuid4()}/quizzes/{uuid4()}/submit"
    for _ in range(10):
        client.post(url, json={"answers": {}}, headers=auth(user_id))
    resp = client.post(url, json={"answers": {}}, headers=auth(user_id))
    assert resp.status_code == 429
    assert int(resp.headers["Retry-After"]) >= 1


def test_quiz_limit_does_not_drain_progress_bucket(
    client: TestClient, user_id: UUID, free_course: SeededCourse
) -> None:
    enrollment = _enroll(client, user_id, free_course)
    quiz_url = f"/v1/enrollments/{enrollment['id']}/quizzes/{uuid4()}/submit"
    for _ in range(11):
        client.post(quiz_url, json={"answers": {}}, headers=auth(user_id))

    resp = _complete_lesson(client, user_id, enrollment, free_course.lessons[0])
    assert resp.status_code == 200
