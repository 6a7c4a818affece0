from rest_framework import serializers

from madrasa.billing.constants import BillingAdjustment
from madrasa.programs.constants import BillingType
from madrasa.programs.constants import GraduationStatus
from madrasa.programs.constants import PaymentFrequency
from madrasa.programs.constants import Program
from madrasa.programs.constants import WithdrawalReason


class MahadCheckoutSerializer(serializers.Serializer):
    profileId = serializers.IntegerField()  # noqa: N815
    graduationStatus = serializers.ChoiceField(choices=GraduationStatus.choices)  # noqa: N815
    paymentFrequency = serializers.ChoiceField(choices=PaymentFrequency.choices)  # noqa: N815
    billingType = serializers.ChoiceField(  # noqa: N815
        choices=BillingType.choices,
        default=BillingType.FULL_TIME,
    )
    successUrl = serializers.URLField(required=False)  # noqa: N815
    cancelUrl = serializers.URLField(required=False)  # noqa: N815


class DugsiPaymentLinkSerializer(serializers.Serializer):
    overrideAmount = serializers.IntegerField(required=False, allow_null=True)  # noqa: N815
    billingStartDate = serializers.DateField(required=False, allow_null=True)  # noqa: N815
    successUrl = serializers.URLField(required=False)  # noqa: N815
    cancelUrl = serializers.URLField(required=False)  # noqa: N815
    sendWhatsapp = serializers.BooleanField(default=False)  # noqa: N815
    sendEmail = serializers.BooleanField(default=False)  # noqa: N815


class LinkSubscriptionSerializer(serializers.Serializer):
    subscriptionId = serializers.RegexField(r"^sub_\w+$")  # noqa: N815
    profileId = serializers.IntegerField()  # noqa: N815
    program = serializers.ChoiceField(choices=Program.choices)


class StudentSearchSerializer(serializers.Serializer):
    q = serializers.CharField(min_length=2)
    program = serializers.ChoiceField(choices=Program.choices, required=False)


class OrphanedSubscriptionSerializer(serializers.Serializer):
    id = serializers.CharField()
    status = serializers.CharField()
    customerId = serializers.CharField(source="customer_id")  # noqa: N815
    customerEmail = serializers.CharField(source="customer_email", allow_null=True)  # noqa: N815
    customerName = serializers.CharField(source="customer_name", allow_null=True)  # noqa: N815
    amount = serializers.IntegerField()
    created = serializers.DateTimeField(allow_null=True)
    currentPeriodStart = serializers.DateTimeField(  # noqa: N815
        source="current_period_start",
        allow_null=True,
    )
    currentPeriodEnd = serializers.DateTimeField(  # noqa: N815
        source="current_period_end",
        allow_null=True,
    )
    accountType = serializers.CharField(source="account_type")  # noqa: N815
    metadata = serializers.DictField()
    subscriptionCount = serializers.IntegerField(source="subscription_count")  # noqa: N815


class StudentMatchSerializer(serializers.Serializer):
    id = serializers.IntegerField()
    name = serializers.CharField()
    email = serializers.CharField(allow_null=True)
    phone = serializers.CharField(allow_null=True)
    status = serializers.CharField()
    hasSubscription = serializers.BooleanField(source="has_subscription")  # noqa: N815
    program = serializers.CharField()


class BillingAssignmentSerializer(serializers.Serializer):
    id = serializers.IntegerField()
    profileId = serializers.IntegerField(source="program_profile_id")  # noqa: N815
    studentName = serializers.CharField(source="program_profile.person.name")  # noqa: N815
    amount = serializers.IntegerField()
    percentage = serializers.DecimalField(max_digits=5, decimal_places=2, allow_null=True)
    startDate = serializers.DateTimeField(source="start_date")  # noqa: N815
    notes = serializers.CharField()


class WithdrawChildSerializer(serializers.Serializer):
    reason = serializers.ChoiceField(choices=WithdrawalReason.choices)
    reasonNote = serializers.CharField(  # noqa: N815
        max_length=500,
        required=False,
        allow_blank=True,
        default="",
    )
    billingAdjustment = serializers.ChoiceField(  # noqa: N815
        choices=BillingAdjustment.choices,
        default=BillingAdjustment.AUTO_RECALCULATE,
    )
    customAmount = serializers.IntegerField(  # noqa: N815
        min_value=1,
        required=False,
        allow_null=True,
    )

    def validate(self, attrs):
        if (
            attrs["billingAdjustment"] == BillingAdjustment.CUSTOM
            and attrs.get("customAmount") is None
        ):
            raise serializers.ValidationError(
                {"customAmount": "Required for a custom billing adjustment."},
            )
        return attrs


class WithdrawFamilySerializer(serializers.Serializer):
    reason = serializers.ChoiceField(choices=WithdrawalReason.choices)
    reasonNote = serializers.CharField(  # noqa: N815
        max_length=500,
        required=False,
        allow_blank=True,
        default="",
    )
    billingAdjustment = serializers.ChoiceField(  # noqa: N815
        choices=[
            BillingAdjustment.CANCEL_SUBSCRIPTION,
            BillingAdjustment.AUTO_RECALCULATE,
        ],
        default=BillingAdjustment.CANCEL_SUBSCRIPTION,
    )


class ReEnrollSerializer(serializers.Serializer):
    billingAdjustment = serializers.ChoiceField(  # noqa: N815
        choices=[
            BillingAdjustment.AUTO_RECALCULATE,
            BillingAdjustment.KEEP_CURRENT,
            BillingAdjustment.CUSTOM,
        ],
        default=BillingAdjustment.AUTO_RECALCULATE,
    )
    customAmount = serializers.IntegerField(  # noqa: N815
        min_value=1,
        required=False,
        allow_null=True,
    )

    def validate(self, attrs):
        if (
            attrs["billingAdjustment"] == BillingAdjustment.CUSTOM
            and attrs.get("customAmount") is None
        ):
            raise serializers.ValidationError(
                {"customAmount": "Required for a custom billing adjustment."},
            )
        return attrs


class WithdrawPreviewSerializer(serializers.Serializer):
    childName = serializers.CharField(source="child_name")  # noqa: N815
    activeChildrenCount = serializers.IntegerField(source="active_children_count")  # noqa: N815
    currentAmount = serializers.IntegerField(source="current_amount", allow_null=True)  # noqa: N815
    recalculatedAmount = serializers.IntegerField(source="recalculated_amount")  # noqa: N815
    isLastActiveChild = serializers.BooleanField(source="is_last_active_child")  # noqa: N815
    hasActiveSubscription = serializers.BooleanField(  # noqa: N815
        source="has_active_subscription",
    )
    isPaused = serializers.BooleanField(source="is_paused")  # noqa: N815
