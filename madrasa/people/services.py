"""
Contact lookups and normalization for people.

Billing matching and payment-link delivery both start from a raw email or
phone typed by a parent into a Stripe form, so normalization lives here and
every lookup goes through it.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from django.db.models import Q

from madrasa.people.constants import MAX_PHONE_DIGITS
from madrasa.people.constants import MIN_PHONE_DIGITS
from madrasa.people.constants import ContactType
from madrasa.people.constants import GuardianRole
from madrasa.people.models import ContactPoint
from madrasa.people.models import GuardianRelationship
from madrasa.people.models import Person

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
NON_DIGIT_RE = re.compile(r"\D")

PHONE_TYPES = (ContactType.PHONE, ContactType.WHATSAPP)


def normalize_email(value: str | None) -> str | None:
    """Lower-case and strip an email; ``None`` when it is not a plausible address."""
    if not value:
        return None
    email = value.strip().lower()
    if not EMAIL_RE.match(email):
        return None
    return email


def normalize_phone(value: str | int | None) -> str | None:
    """Reduce a phone number to digits; ``None`` unless 10-15 digits remain."""
    if value is None:
        return None
    digits = NON_DIGIT_RE.sub("", str(value))
    if not MIN_PHONE_DIGITS <= len(digits) <= MAX_PHONE_DIGITS:
        return None
    return digits


def _phone_variants(digits: str) -> set[str]:
    variants = {digits}
    if len(digits) == MIN_PHONE_DIGITS:
        variants.add(f"1{digits}")
    elif len(digits) == MIN_PHONE_DIGITS + 1 and digits.startswith("1"):
        variants.add(digits[1:])
    return variants


def find_person_by_contact(
    email: str | None = None,
    phone: str | int | None = None,
) -> Person | None:
    """
    Find the person owning an active contact point with this email or phone.

    Phones match with or without a leading US country code.
    """
    query = Q()
    normalized_email = normalize_email(email)
    if normalized_email:
        query |= Q(type=ContactType.EMAIL, value=normalized_email)
    normalized_phone = normalize_phone(phone)
    if normalized_phone:
        query |= Q(type__in=PHONE_TYPES, value__in=_phone_variants(normalized_phone))
    if not query:
        return None

    contact = (
        ContactPoint.objects.filter(query, is_active=True)
        .select_related("person")
        .order_by("-is_primary", "created")
        .first()
    )
    return contact.person if contact else None



def has_contact(person: Person, contact_type: str, value: str | None) -> bool:
    """Whether ``person`` already has this email or phone (phones match with or without +1)."""
    if contact_type == ContactType.EMAIL:
        email = normalize_email(value)
        query = Q(type=ContactType.EMAIL, value=email) if email else None
    else:
        phone = normalize_phone(value)
        query = Q(type__in=PHONE_TYPES, value__in=_phone_variants(phone)) if phone else None
    if query is None:
        return False
    return person.contact_points.filter(query, is_active=True).exists()


def _primary_contact_value(person: Person, types: Iterable[str]) -> str | None:
    contact = (
        person.contact_points.filter(type__in=list(types), is_active=True)
        .order_by("-is_primary", "created")
        .first()
    )
    return contact.value if contact else None


def primary_email(person: Person) -> str | None:
    return _primary_contact_value(person, [ContactType.EMAIL])


def primary_phone(person: Person) -> str | None:
    return _primary_contact_value(person, PHONE_TYPES)


def get_primary_payer(dependents: Iterable[Person]) -> Person | None:
    """
    Return the guardian who pays for any of these dependents.

    Prefers a relationship flagged ``is_primary_payer``, then any active guardian.
    """
    relationships = (
        GuardianRelationship.objects.filter(
            dependent__in=list(dependents),
            is_active=True,
        )
        .select_related("guardian")
        .order_by("-is_primary_payer", "created")
    )
    relationship = relationships.first()
    return relationship.guardian if relationship else None


def add_contact_point(
    person: Person,
    contact_type: str,
    value: str,
    *,
    is_primary: bool = False,
) -> ContactPoint:
    """Store a contact point, normalizing the value for its type."""
    if contact_type == ContactType.EMAIL:
        normalized = normalize_email(value)
    elif contact_type in PHONE_TYPES:
        normalized = normalize_phone(value)
    else:
        normalized = value.strip()
    if not normalized:
        msg = f"Invalid {contact_type.lower()} contact value: {value!r}"
        raise ValueError(msg)

    contact, _created = ContactPoint.objects.update_or_create(
        person=person,
        type=contact_type,
        value=normalized,
        defaults={"is_primary": is_primary, "is_active": True},
    )
    return contact


def link_guardian_to_dependent(
    guardian: Person,
    dependent: Person,
    *,
    role: str = GuardianRole.PARENT,
    is_primary_payer: bool = False,
) -> GuardianRelationship:
    """Create or reactivate the guardian relationship between two people."""
    if guardian.pk == dependent.pk:
        msg = "A person cannot be their own guardian"
        raise ValueError(msg)
    relationship, _created = GuardianRelationship.objects.update_or_create(
        guardian=guardian,
        dependent=dependent,
        defaults={
            "role": role,
            "is_active": True,
            "is_primary_payer": is_primary_payer,
        },
    )
    return relationship
