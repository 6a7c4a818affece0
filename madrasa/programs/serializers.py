from django.core.validators import RegexValidator
from rest_framework import serializers

from madrasa.programs.constants import BillingType
from madrasa.programs.constants import GraduationStatus
from madrasa.programs.constants import PaymentFrequency


class BatchStudentsSerializer(serializers.Serializer):
    profileIds = serializers.ListField(  # noqa: N815
        child=serializers.IntegerField(),
        allow_empty=False,
    )


class WithdrawSerializer(serializers.Serializer):
    profileId = serializers.IntegerField()  # noqa: N815
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class EnrollmentSerializer(serializers.Serializer):
    id = serializers.IntegerField()
    profileId = serializers.IntegerField(source="program_profile_id")  # noqa: N815
    batchId = serializers.IntegerField(source="batch_id", allow_null=True)  # noqa: N815
    status = serializers.CharField()
    reason = serializers.CharField()
    startDate = serializers.DateTimeField(source="start_date")  # noqa: N815
    endDate = serializers.DateTimeField(source="end_date", allow_null=True)  # noqa: N815


NAME_VALIDATORS = [
    RegexValidator(r"[<>]", message="Name cannot contain HTML", inverse_match=True),
]


def name_field(**kwargs):
    return serializers.CharField(max_length=100, validators=NAME_VALIDATORS, **kwargs)


class MahadRegistrationSerializer(serializers.Serializer):
    firstName = name_field()  # noqa: N815
    lastName = name_field()  # noqa: N815
    email = serializers.EmailField()
    phone = serializers.CharField(max_length=32)
    dateOfBirth = serializers.DateField(required=False, allow_null=True)  # noqa: N815
    graduationStatus = serializers.ChoiceField(  # noqa: N815
        choices=GraduationStatus.choices,
        required=False,
        allow_null=True,
    )
    paymentFrequency = serializers.ChoiceField(  # noqa: N815
        choices=PaymentFrequency.choices,
        required=False,
        allow_null=True,
    )
    billingType = serializers.ChoiceField(  # noqa: N815
        choices=BillingType.choices,
        required=False,
        allow_null=True,
    )


class ChildRegistrationSerializer(serializers.Serializer):
    firstName = name_field()  # noqa: N815
    lastName = name_field()  # noqa: N815
    dateOfBirth = serializers.DateField(required=False, allow_null=True)  # noqa: N815


PARENT2_FIELDS = ("parent2FirstName", "parent2LastName", "parent2Email", "parent2Phone")


class DugsiRegistrationSerializer(serializers.Serializer):
    children = ChildRegistrationSerializer(many=True, allow_empty=False, max_length=10)
    parent1FirstName = name_field()  # noqa: N815
    parent1LastName = name_field()  # noqa: N815
    parent1Email = serializers.EmailField()  # noqa: N815
    parent1Phone = serializers.CharField(max_length=32)  # noqa: N815
    parent2FirstName = name_field(required=False, allow_blank=True)  # noqa: N815
    parent2LastName = name_field(required=False, allow_blank=True)  # noqa: N815
    parent2Email = serializers.EmailField(required=False, allow_blank=True)  # noqa: N815
    parent2Phone = serializers.CharField(  # noqa: N815
        max_length=32,
        required=False,
        allow_blank=True,
    )
    primaryPayer = serializers.ChoiceField(  # noqa: N815
        choices=["parent1", "parent2"],
        default="parent1",
    )

    def validate(self, attrs):
        given = [name for name in PARENT2_FIELDS if attrs.get(name)]
        if given and len(given) != len(PARENT2_FIELDS):
            missing = [name for name in PARENT2_FIELDS if name not in given]
            raise serializers.ValidationError(
                {name: "Required when adding a second parent." for name in missing},
            )
        if attrs["primaryPayer"] == "parent2" and not given:
            raise serializers.ValidationError(
                {"primaryPayer": "Add the second parent to make them the primary payer."},
            )
        return attrs


class RegisteredProfileSerializer(serializers.Serializer):
    profileId = serializers.IntegerField(source="id")  # noqa: N815
    personId = serializers.IntegerField(source="person_id")  # noqa: N815
    name = serializers.CharField(source="person.name")
    program = serializers.CharField()
    status = serializers.CharField()
    familyReferenceId = serializers.CharField(  # noqa: N815
        source="family_reference_id",
        allow_null=True,
    )
