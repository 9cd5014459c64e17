"""SQLAlchemy table definitions.

These map to the frozen dataclass domain models in access_engine/models/.
Repos convert between rows and domain dataclasses; nothing outside
access_engine/repos/ touches these classes.

Users live in the identity service, so user ids are plain UUID columns
without a foreign key.
"""

from __future__ import annotations

import uuid
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from access_engine.db.engine import Base

# --- Tenancy (owned by the identity service, mirrored for FKs/lookups) ---


class OrganizationRow(Base):
    __tablename__ = "organizations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)


class OrgMembershipRow(Base):
    __tablename__ = "org_memberships"

    org_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("organizations.id"), primary_key=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    org_role: Mapped[str] = mapped_column(
        String(32), nullable=False
    )  # owner|admin|instructor|learner


# --- Catalog (read-only content) ---


class CatalogCourseRow(Base):
    __tablename__ = "catalog_courses"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    is_free: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    purchase_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    enrollment_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class CourseRow(Base):
    __tablename__ = "courses"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    org_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=True
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default="draft"
    )  # draft|published|retired
    catalog_course_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("catalog_courses.id"), nullable=True
    )
    is_free: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class LessonRow(Base):
    __tablename__ = "lessons"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    course_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("courses.id"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class QuizRow(Base):
    __tablename__ = "quizzes"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    course_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("courses.id"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    questions: Mapped[list[dict]] = mapped_column(JSONB, nullable=False, default=list)
    passing_score: Mapped[int] = mapped_column(Integer, nullable=False, default=60)
    max_attempts: Mapped[int | None] = mapped_column(Integer, nullable=True)
    required_lesson_ids: Mapped[list[uuid.UUID]] = mapped_column(
        ARRAY(UUID(as_uuid=True)), nullable=False, default=list
    )


# --- Entitlements ---


class CourseLicenseRow(Base):
    __tablename__ = "course_licenses"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    org_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=False
    )
    catalog_course_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("catalog_courses.id"), nullable=False
    )
    kind: Mapped[str] = mapped_column(
        String(32), nullable=False
    )  # SEAT|UNLIMITED|TIME_LIMITED
    status: Mapped[str] = mapped_column(
        String(32), nullable=False
    )  # PENDING|ACTIVE|EXPIRED|CANCELLED
    seat_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    seats_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    valid_from: Mapped[int] = mapped_column(Integer, nullable=False)
    valid_until: Mapped[int | None] = mapped_column(Integer, nullable=True)
    amount_paid: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=Decimal("0")
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    purchased_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), nullable=True
    )
    purchased_at: Mapped[int] = mapped_column(Integer, nullable=False)
    payment_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_subscription: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    subscription_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    subscription_interval: Mapped[str | None] = mapped_column(
        String(16), nullable=True
    )  # month|year
    next_billing_at: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cancelled_at: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        # At most one PENDING/ACTIVE license per (org, catalog course)
        Index(
            "uq_course_licenses_open",
            "org_id",
            "catalog_course_id",
            unique=True,
            postgresql_where=text("status IN ('PENDING', 'ACTIVE')"),
        ),
        Index("ix_course_licenses_status_valid_until", "status", "valid_until"),
        CheckConstraint("seats_used >= 0", name="ck_course_licenses_seats_used"),
    )


class UserCourseAccessRow(Base):
    __tablename__ = "user_course_access"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    license_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("course_licenses.id"), nullable=False
    )
    org_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=False
    )
    catalog_course_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("catalog_courses.id"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default="ACTIVE"
    )  # ACTIVE|REVOKED|COMPLETED
    progress_percentage: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    assigned_at: Mapped[int] = mapped_column(Integer, nullable=False)
    assigned_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), nullable=True
    )
    revoked_at: Mapped[int | None] = mapped_column(Integer, nullable=True)
    revoked_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), nullable=True
    )
    revocation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        # One live grant per (user, license)
        Index(
            "uq_user_course_access_active",
            "user_id",
            "license_id",
            unique=True,
            postgresql_where=text("status = 'ACTIVE'"),
        ),
        Index("ix_user_course_access_user_course", "user_id", "catalog_course_id"),
    )


# --- Progress ---


class EnrollmentRow(Base):
    __tablename__ = "enrollments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    course_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("courses.id"), nullable=False
    )
    org_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=True
    )
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default="ACTIVE"
    )  # ACTIVE|COMPLETED|DROPPED
    progress_percentage: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    lesson_progress: Mapped[list[dict]] = mapped_column(
        JSONB, nullable=False, default=list
    )
    quiz_attempts: Mapped[list[dict]] = mapped_column(
        JSONB, nullable=False, default=list
    )
    enrolled_at: Mapped[int] = mapped_column(Integer, nullable=False)
    completed_at: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_accessed_at: Mapped[int | None] = mapped_column(Integer, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (UniqueConstraint("user_id", "course_id"),)


# --- Certificates ---


class CertificateRow(Base):
    __tablename__ = "certificates"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    org_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    course_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("courses.id"), nullable=False
    )
    certificate_number: Mapped[str] = mapped_column(
        String(64), unique=True, nullable=False
    )
    completion_date: Mapped[int] = mapped_column(Integer, nullable=False)
    issued_at: Mapped[int] = mapped_column(Integer, nullable=False)
    metadata_json: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    is_revoked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        # One live certificate per (user, course)
        Index(
            "uq_certificates_live",
            "user_id",
            "course_id",
            unique=True,
            postgresql_where=text("is_revoked = false"),
        ),
    )
