from __future__ import annotations

import dataclasses
from typing import Protocol
from uuid import UUID

from access_engine.models.enrollment import Enrollment


class EnrollmentRepo(Protocol):
    async def get(self, enrollment_id: UUID) -> Enrollment | None: ...
    async def get_by_user_course(
        self, user_id: UUID, course_id: UUID
    ) -> Enrollment | None: ...
    async def add(self, enrollment: Enrollment) -> bool: ...
    async def save_if_version(
        self, enrollment: Enrollment, expected_version: int
    ) -> Enrollment | None: ...
    async def list_by_user(self, user_id: UUID) -> list[Enrollment]: ...
    async def list_by_course(self, course_id: UUID) -> list[Enrollment]: ...


class InMemoryEnrollmentRepo:
    def __init__(self) -> None:
        self._by_id: dict[UUID, Enrollment] = {}

    async def get(self, enrollment_id: UUID) -> Enrollment | None:
        return self._by_id.get(enrollment_id)

    async def get_by_user_course(
        self, user_id: UUID, course_id: UUID
    ) -> Enrollment | None:
        for e in self._by_id.values():
            if e.user_id == user_id and e.course_id == course_id:
                return e
        return None

    async def add(self, enrollment: Enrollment) -> bool:
        """Insert unless the user already has an enrollment for the course."""
        for e in self._by_id.values():
            if e.user_id == enrollment.user_id and e.course_id == enrollment.course_id:
                return False
        self._by_id[enrollment.id] = enrollment
        return True

    async def save_if_version(
        self, enrollment: Enrollment, expected_version: int
    ) -> Enrollment | None:
        """Compare-and-swap on version.  Returns the stored record (with
        version bumped) or None if someone else wrote first."""
        current = self._by_id.get(enrollment.id)
        if current is None or current.version != expected_version:
            return None
        stored = dataclasses.replace(enrollment, version=expected_version + 1)
        self._by_id[enrollment.id] = stored
        return stored

    async def list_by_user(self, user_id: UUID) -> list[Enrollment]:
        found = [e for e in self._by_id.values() if e.user_id == user_id]
        return sorted(found, key=lambda e: e.enrolled_at, reverse=True)

    async def list_by_course(self, course_id: UUID) -> list[Enrollment]:
        found = [e for e in self._by_id.values() if e.course_id == course_id]
        return sorted(found, key=lambda e: e.enrolled_at, reverse=True)
