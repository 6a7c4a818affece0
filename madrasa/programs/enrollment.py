"""
Enrollment service.

Handles:
- Assigning Mahad students to a batch (withdrawing any other active enrollment)
- Transferring students between batches
- Withdrawing a student from their current batch
- Withdrawing or re-enrolling a whole program profile

Bulk operations run each student in its own transaction so one bad profile
does not roll back the rest; failures are collected and reported.

Usage:
    result = assign_students_to_batch(batch_id, [profile.id, ...])
    if result.failed:
        ...
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from dataclasses import field

from django.db import transaction
from django.utils import timezone

from madrasa.core.exceptions import NotFoundError
from madrasa.programs.constants import EnrollmentStatus
from madrasa.programs.models import Batch
from madrasa.programs.models import Enrollment
from madrasa.programs.models import ProgramProfile

logger = logging.getLogger(__name__)

UPDATABLE_ENROLLMENT_FIELDS = {"status", "reason", "notes", "end_date", "batch_id"}


@dataclass
class BatchAssignmentResult:
    """Outcome of a bulk assign or transfer."""

    assigned_count: int = 0
    failed: list[int] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed


def get_active_enrollment(profile_id: int) -> Enrollment | None:
    return (
        Enrollment.objects.active()
        .filter(program_profile_id=profile_id)
        .select_related("batch")
        .first()
    )


def _withdraw(enrollment: Enrollment, reason: str) -> Enrollment:
    enrollment.status = EnrollmentStatus.WITHDRAWN
    enrollment.end_date = timezone.now()
    enrollment.reason = reason
    enrollment.save(update_fields=["status", "end_date", "reason", "modified"])
    return enrollment


def _get_batch(batch_id: int) -> Batch:
    try:
        return Batch.objects.get(pk=batch_id)
    except Batch.DoesNotExist as exc:
        raise NotFoundError("Batch not found") from exc


def _enroll(profile_id: int, batch: Batch) -> Enrollment:
    return Enrollment.objects.create(
        program_profile_id=profile_id,
        batch=batch,
        status=EnrollmentStatus.ENROLLED,
        start_date=timezone.now(),
    )


def assign_students_to_batch(
    batch_id: int,
    profile_ids: list[int],
) -> BatchAssignmentResult:
    """
    Enroll each profile in the batch.

    Profiles already active in the batch are counted as assigned without
    changes. Any other active enrollment is withdrawn first.
    """
    batch = _get_batch(batch_id)
    result = BatchAssignmentResult()

    for profile_id in profile_ids:
        try:
            with transaction.atomic():
                if not ProgramProfile.objects.filter(pk=profile_id).exists():
                    raise NotFoundError("Student profile not found")

                active = list(
                    Enrollment.objects.active()
                    .select_for_update()
                    .filter(program_profile_id=profile_id),
                )
                if any(e.batch_id == batch.id for e in active):
                    result.assigned_count += 1
                    continue
                for enrollment in active:
                    _withdraw(enrollment, f"Transferred to {batch.name}")
                _enroll(profile_id, batch)
            result.assigned_count += 1
        except Exception:
            logger.exception(
                "Failed to assign profile %s to batch %s",
                profile_id,
                batch.id,
            )
            result.failed.append(profile_id)

    logger.info(
        "Assigned %s of %s students to batch %s",
        result.assigned_count,
        len(profile_ids),
        batch.name,
    )
    return result


def transfer_students_to_batch(
    profile_ids: list[int],
    target_batch_id: int,
) -> BatchAssignmentResult:
    """
    Move students from their current batch to ``target_batch_id``.

    Unlike assignment, a student without an active enrollment is a failure.
    """
    batch = _get_batch(target_batch_id)
    result = BatchAssignmentResult()

    for profile_id in profile_ids:
        try:
            with transaction.atomic():
                current = (
                    Enrollment.objects.active()
                    .select_for_update()
                    .filter(program_profile_id=profile_id)
                    .first()
                )
                if current is None:
                    raise NotFoundError("No active enrollment found")
                _withdraw(current, f"Transferred to {batch.name}")
                _enroll(profile_id, batch)
            result.assigned_count += 1
        except Exception:
            logger.exception(
                "Failed to transfer profile %s to batch %s",
                profile_id,
                batch.id,
            )
            result.failed.append(profile_id)

    return result


def withdraw_student_from_batch(profile_id: int, reason: str = "") -> Enrollment:
    """
    Close the student's active enrollment.

    Raises:
        NotFoundError: If the student has no active enrollment.
    """
    enrollment = get_active_enrollment(profile_id)
    if enrollment is None:
        raise NotFoundError("No active enrollment found for student")

    _withdraw(enrollment, reason or "Withdrawn by admin")
    logger.info("Withdrew profile %s from batch %s", profile_id, enrollment.batch_id)
    return enrollment



def withdraw_program_profile(profile: ProgramProfile, reason: str) -> int:
    """
    Mark the profile WITHDRAWN and close each of its active enrollments.

    Returns the number of enrollments closed. Call inside a transaction.
    """
    profile.status = EnrollmentStatus.WITHDRAWN
    profile.save(update_fields=["status", "modified"])
    active = list(
        Enrollment.objects.active().select_for_update().filter(program_profile=profile),
    )
    for enrollment in active:
        _withdraw(enrollment, reason)
    return len(active)


def reenroll_program_profile(profile: ProgramProfile) -> Enrollment:
    """Return a withdrawn profile to ENROLLED with a fresh, batchless enrollment."""
    profile.status = EnrollmentStatus.ENROLLED
    profile.save(update_fields=["status", "modified"])
    return Enrollment.objects.create(
        program_profile=profile,
        status=EnrollmentStatus.ENROLLED,
        start_date=timezone.now(),
    )


def update_enrollment(enrollment_id: int, **fields) -> Enrollment:
    """Update whitelisted enrollment fields."""
    unknown = set(fields) - UPDATABLE_ENROLLMENT_FIELDS
    if unknown:
        msg = f"Cannot update enrollment fields: {', '.join(sorted(unknown))}"
        raise ValueError(msg)

    try:
        enrollment = Enrollment.objects.get(pk=enrollment_id)
    except Enrollment.DoesNotExist as exc:
        raise NotFoundError("Enrollment not found") from exc

    for name, value in fields.items():
        setattr(enrollment, name, value)
    enrollment.save(update_fields=[*fields, "modified"])
    return enrollment
