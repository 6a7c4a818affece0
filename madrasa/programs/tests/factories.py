import factory
from django.utils import timezone
from factory.django import DjangoModelFactory

from madrasa.people.tests.factories import PersonFactory
from madrasa.programs.constants import BillingType
from madrasa.programs.constants import EnrollmentStatus
from madrasa.programs.constants import GraduationStatus
from madrasa.programs.constants import PaymentFrequency
from madrasa.programs.constants import Program
from madrasa.programs.models import Batch
from madrasa.programs.models import Enrollment
from madrasa.programs.models import ProgramProfile


class MahadProfileFactory(DjangoModelFactory):
    class Meta:
        model = ProgramProfile

    person = factory.SubFactory(PersonFactory)
    program = Program.MAHAD_PROGRAM
    status = EnrollmentStatus.ENROLLED
    graduation_status = GraduationStatus.NON_GRADUATE
    payment_frequency = PaymentFrequency.MONTHLY
    billing_type = BillingType.FULL_TIME


class DugsiProfileFactory(DjangoModelFactory):
    class Meta:
        model = ProgramProfile

    person = factory.SubFactory(PersonFactory)
    program = Program.DUGSI_PROGRAM
    status = EnrollmentStatus.ENROLLED
    family_reference_id = factory.Sequence(lambda n: f"family-{n}")


class BatchFactory(DjangoModelFactory):
    class Meta:
        model = Batch

    name = factory.Sequence(lambda n: f"Cohort {n}")


class EnrollmentFactory(DjangoModelFactory):
    class Meta:
        model = Enrollment

    program_profile = factory.SubFactory(MahadProfileFactory)
    batch = factory.SubFactory(BatchFactory)
    status = EnrollmentStatus.ENROLLED
    start_date = factory.LazyFunction(timezone.now)
