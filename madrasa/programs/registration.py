"""
Registration: a person, their program profile and a first enrollment.

Mahad students register themselves. Dugsi registrations are made by a parent
for one or more children, so they also create the parents, the guardian
links and the family's Dugsi billing account.

Each entry point runs in a single ``transaction.atomic()`` block, so a
failure part-way leaves no person, profile or enrollment behind.

Usage:
    profile = register_mahad_student(
        first_name="Amina",
        last_name="Hassan",
        email="amina@example.com",
        phone="612-555-0100",
    )
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from dataclasses import field
from typing import TYPE_CHECKING

from django.db import transaction
from django.utils import timezone

from madrasa.billing import queries as billing_queries
from madrasa.billing.constants import StripeAccountType
from madrasa.core.exceptions import NotFoundError
from madrasa.core.exceptions import ValidationError
from madrasa.people.constants import ContactType
from madrasa.people.models import Person
from madrasa.people.services import add_contact_point
from madrasa.people.services import find_person_by_contact
from madrasa.people.services import has_contact
from madrasa.people.services import link_guardian_to_dependent
from madrasa.people.services import normalize_email
from madrasa.people.services import normalize_phone
from madrasa.people.services import primary_email
from madrasa.people.services import primary_phone
from madrasa.programs.constants import EnrollmentStatus
from madrasa.programs.constants import Program
from madrasa.programs.models import Batch
from madrasa.programs.models import Enrollment
from madrasa.programs.models import ProgramProfile

if TYPE_CHECKING:
    import datetime as dt

logger = logging.getLogger(__name__)

PRIMARY_PAYER_CHOICES = ("parent1", "parent2")
DUPLICATE_FIELD_PHRASES = {
    "email": "email address is",
    "phone": "phone number is",
    "both": "email address and phone number are",
}


class DuplicateRegistrationError(ValidationError):
    """The email or phone already belongs to someone registered in the program."""

    def __init__(self, field_name: str, program: str, existing_person_id: int):
        self.field = field_name
        self.existing_person_id = existing_person_id
        label = Program(program).label
        super().__init__(
            f"This {DUPLICATE_FIELD_PHRASES[field_name]} already registered "
            f"for the {label} program",
            details={"field": field_name, "existingPersonId": existing_person_id},
        )


@dataclass
class GuardianInput:
    first_name: str
    last_name: str
    email: str
    phone: str


@dataclass
class ChildInput:
    first_name: str
    last_name: str
    date_of_birth: dt.date | None = None


@dataclass
class FamilyRegistrationResult:
    family_reference_id: str
    profiles: list[ProgramProfile] = field(default_factory=list)
    guardians: list[Person] = field(default_factory=list)
    billing_account_id: int | None = None


def full_name(first_name: str, last_name: str) -> str:
    return " ".join(part.strip() for part in (first_name, last_name) if part and part.strip())


# =============================================================================
# People
# =============================================================================


def _validated_contacts(email: str | None, phone: str | None) -> tuple[str | None, str | None]:
    normalized_email = normalize_email(email) if email else None
    if email and normalized_email is None:
        raise ValidationError("Invalid email address", details={"field": "email"})
    normalized_phone = normalize_phone(phone) if phone else None
    if phone and normalized_phone is None:
        raise ValidationError("Invalid phone number", details={"field": "phone"})
    return normalized_email, normalized_phone


def create_person_with_contact(
    name: str,
    *,
    email: str | None = None,
    phone: str | None = None,
    date_of_birth: dt.date | None = None,
) -> Person:
    """Create a person with primary email and phone contact points."""
    name = (name or "").strip()
    if not name:
        raise ValidationError("Name is required", details={"field": "name"})
    normalized_email, normalized_phone = _validated_contacts(email, phone)

    with transaction.atomic():
        person = Person.objects.create(name=name, date_of_birth=date_of_birth)
        if normalized_email:
            add_contact_point(person, ContactType.EMAIL, normalized_email, is_primary=True)
        if normalized_phone:
            add_contact_point(person, ContactType.PHONE, normalized_phone, is_primary=True)
    return person


def find_or_create_person_with_contact(
    name: str,
    *,
    email: str | None = None,
    phone: str | None = None,
    date_of_birth: dt.date | None = None,
) -> tuple[Person, bool]:
    """
    Reuse the person owning ``email`` or ``phone``, or create one.

    A reused person gains whichever of the two contacts they were missing.
    Returns ``(person, created)``.
    """
    normalized_email, normalized_phone = _validated_contacts(email, phone)
    person = find_person_by_contact(email=normalized_email, phone=normalized_phone)
    if person is None:
        person = create_person_with_contact(
            name,
            email=normalized_email,
            phone=normalized_phone,
            date_of_birth=date_of_birth,
        )
        return person, True

    if normalized_email and not has_contact(person, ContactType.EMAIL, normalized_email):
        add_contact_point(
            person,
            ContactType.EMAIL,
            normalized_email,
            is_primary=primary_email(person) is None,
        )
    if normalized_phone and not has_contact(person, ContactType.PHONE, normalized_phone):
        add_contact_point(
            person,
            ContactType.PHONE,
            normalized_phone,
            is_primary=primary_phone(person) is None,
        )
    if date_of_birth and person.date_of_birth is None:
        person.date_of_birth = date_of_birth
        person.save(update_fields=["date_of_birth", "modified"])
    return person, False


# =============================================================================
# Profiles
# =============================================================================


def _is_registered(person: Person, program: str) -> bool:
    return (
        ProgramProfile.objects.filter(person=person, program=program)
        .exclude(status=EnrollmentStatus.WITHDRAWN)
        .exists()
    )


def check_duplicate_registration(
    program: str,
    *,
    email: str | None = None,
    phone: str | None = None,
) -> None:
    """
    Raise ``DuplicateRegistrationError`` if the contact belongs to a current student.

    Withdrawn students may register again.
    """
    by_email = find_person_by_contact(email=email) if email else None
    by_phone = find_person_by_contact(phone=phone) if phone else None
    email_taken = by_email is not None and _is_registered(by_email, program)
    phone_taken = by_phone is not None and _is_registered(by_phone, program)

    if email_taken and phone_taken:
        raise DuplicateRegistrationError("both", program, by_email.id)
    if email_taken:
        raise DuplicateRegistrationError("email", program, by_email.id)
    if phone_taken:
        raise DuplicateRegistrationError("phone", program, by_phone.id)


def create_program_profile_with_enrollment(
    person: Person,
    program: str,
    *,
    status: str = EnrollmentStatus.REGISTERED,
    batch_id: int | None = None,
    family_reference_id: str | None = None,
    graduation_status: str | None = None,
    payment_frequency: str | None = None,
    billing_type: str | None = None,
    notes: str = "",
) -> ProgramProfile:
    """
    Create (or reopen) ``person``'s profile in ``program`` with a new enrollment.

    A profile whose enrollments are all closed is reopened rather than
    duplicated.

    Raises:
        ValidationError: If the person already has an active enrollment.
        NotFoundError: If ``batch_id`` does not exist.
    """
    if batch_id is not None and not Batch.objects.filter(pk=batch_id).exists():
        raise NotFoundError("Batch not found")

    values = {
        "status": status,
        "family_reference_id": family_reference_id,
        "graduation_status": graduation_status,
        "payment_frequency": payment_frequency,
        "billing_type": billing_type,
    }
    with transaction.atomic():
        profile = (
            ProgramProfile.objects.select_for_update()
            .filter(person=person, program=program)
            .first()
        )
        if profile is None:
            profile = ProgramProfile.objects.create(person=person, program=program, **values)
        else:
            if Enrollment.objects.active().filter(program_profile=profile).exists():
                label = Program(program).label
                raise ValidationError(
                    f"Person already has an active {label} enrollment "
                    f"(Profile ID: {profile.id}). Withdraw the existing enrollment "
                    "first before re-registering.",
                    details={"profileId": profile.id},
                )
            updates = {
                name: value
                for name, value in values.items()
                if value is not None or name == "status"
            }
            for name, value in updates.items():
                setattr(profile, name, value)
            profile.save(update_fields=[*updates, "modified"])

        Enrollment.objects.create(
            program_profile=profile,
            batch_id=batch_id,
            status=status,
            start_date=timezone.now(),
            notes=notes,
        )

    logger.info("Registered %s in %s (profile %s)", person.name, program, profile.id)
    return profile


# =============================================================================
# Mahad
# =============================================================================


def register_mahad_student(
    *,
    first_name: str,
    last_name: str,
    email: str,
    phone: str,
    date_of_birth: dt.date | None = None,
    graduation_status: str | None = None,
    payment_frequency: str | None = None,
    billing_type: str | None = None,
) -> ProgramProfile:
    """
    Register a Mahad student.

    Raises:
        DuplicateRegistrationError: If the email or phone belongs to a
            current Mahad student.
    """
    with transaction.atomic():
        check_duplicate_registration(Program.MAHAD_PROGRAM, email=email, phone=phone)
        person, _created = find_or_create_person_with_contact(
            full_name(first_name, last_name),
            email=email,
            phone=phone,
            date_of_birth=date_of_birth,
        )
        return create_program_profile_with_enrollment(
            person,
            Program.MAHAD_PROGRAM,
            graduation_status=graduation_status,
            payment_frequency=payment_frequency,
            billing_type=billing_type,
        )


# =============================================================================
# Dugsi
# =============================================================================


def _find_child(child: ChildInput, guardians: list[Person]) -> Person | None:
    candidates = Person.objects.filter(name__iexact=full_name(child.first_name, child.last_name))
    if child.date_of_birth:
        return candidates.filter(date_of_birth=child.date_of_birth).first()
    return candidates.filter(guardian_relationships__guardian__in=guardians).first()


def register_dugsi_family(
    children: list[ChildInput],
    parent1: GuardianInput,
    parent2: GuardianInput | None = None,
    *,
    primary_payer: str = "parent1",
    family_reference_id: str | None = None,
) -> FamilyRegistrationResult:
    """
    Register Dugsi children under one family reference.

    Parents are matched on email or phone before being created. Existing
    children are matched on name and date of birth. The primary payer owns
    the family's Dugsi billing account and is flagged on each guardian link.
    """
    if not children:
        raise ValidationError("At least one child is required")
    if primary_payer not in PRIMARY_PAYER_CHOICES:
        raise ValidationError(f"Invalid primary payer: {primary_payer}")
    if primary_payer == "parent2" and parent2 is None:
        raise ValidationError("Second parent details are required for the primary payer")

    family_id = family_reference_id or str(uuid.uuid4())
    result = FamilyRegistrationResult(family_reference_id=family_id)

    with transaction.atomic():
        for parent in (parent1, parent2):
            if parent is None:
                continue
            guardian, _created = find_or_create_person_with_contact(
                full_name(parent.first_name, parent.last_name),
                email=parent.email,
                phone=parent.phone,
            )
            if guardian in result.guardians:
                raise ValidationError("Both parents have the same contact details")
            result.guardians.append(guardian)

        payer = result.guardians[PRIMARY_PAYER_CHOICES.index(primary_payer)]
        account = billing_queries.upsert_billing_account(payer.id, StripeAccountType.DUGSI)
        result.billing_account_id = account.id

        for child in children:
            person = _find_child(child, result.guardians)
            if person is None:
                person = create_person_with_contact(
                    full_name(child.first_name, child.last_name),
                    date_of_birth=child.date_of_birth,
                )
            elif _is_registered(person, Program.DUGSI_PROGRAM):
                raise ValidationError(
                    f"{person.name} is already registered for the Dugsi program",
                    details={"personId": person.id},
                )
            profile = create_program_profile_with_enrollment(
                person,
                Program.DUGSI_PROGRAM,
                family_reference_id=family_id,
            )
            for guardian in result.guardians:
                link_guardian_to_dependent(
                    guardian,
                    person,
                    is_primary_payer=guardian == payer,
                )
            result.profiles.append(profile)

    logger.info(
        "Registered Dugsi family %s: %s children, payer %s",
        family_id,
        len(result.profiles),
        payer.id,
    )
    return result
