"""
Registration (public) and batch enrollment (staff only) API endpoints.

    POST /api/mahad/register
    POST /api/dugsi/register
    POST /api/batches/<batch_id>/assign
    POST /api/batches/<batch_id>/transfer
    POST /api/enrollments/withdraw
"""

import logging

from drf_spectacular.utils import extend_schema
from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.permissions import IsAdminUser
from rest_framework.response import Response
from rest_framework.views import APIView

from madrasa.core.api import error_response
from madrasa.core.api import serializer_error_response
from madrasa.core.api import service_error_response
from madrasa.core.exceptions import MadrasaError
from madrasa.programs import enrollment
from madrasa.programs import registration
from madrasa.programs.serializers import BatchStudentsSerializer
from madrasa.programs.serializers import DugsiRegistrationSerializer
from madrasa.programs.serializers import EnrollmentSerializer
from madrasa.programs.serializers import MahadRegistrationSerializer
from madrasa.programs.serializers import RegisteredProfileSerializer
from madrasa.programs.serializers import WithdrawSerializer

logger = logging.getLogger(__name__)


class BatchStudentsView(APIView):
    """Base for bulk batch operations; subclasses set ``operation``."""

    permission_classes = [IsAdminUser]
    operation = None

    def run(self, batch_id, profile_ids):
        raise NotImplementedError

    @extend_schema(request=BatchStudentsSerializer, tags=["Batches"])
    def post(self, request, batch_id):
        serializer = BatchStudentsSerializer(data=request.data)
        if not serializer.is_valid():
            return serializer_error_response(serializer.errors, request.data)
        profile_ids = serializer.validated_data["profileIds"]

        try:
            result = self.run(batch_id, profile_ids)
        except MadrasaError as exc:
            return service_error_response(exc)

        logger.info(
            "Batch %s %s: %s ok, %s failed",
            batch_id,
            self.operation,
            result.assigned_count,
            len(result.failed),
        )
        return Response(
            {
                "success": result.success,
                "assignedCount": result.assigned_count,
                "failedProfileIds": result.failed,
            },
            status=status.HTTP_200_OK,
        )


class BatchAssignView(BatchStudentsView):
    operation = "assign"

    def run(self, batch_id, profile_ids):
        return enrollment.assign_students_to_batch(batch_id, profile_ids)


class BatchTransferView(BatchStudentsView):
    operation = "transfer"

    def run(self, batch_id, profile_ids):
        return enrollment.transfer_students_to_batch(profile_ids, batch_id)


class WithdrawEnrollmentView(APIView):
    permission_classes = [IsAdminUser]

    @extend_schema(request=WithdrawSerializer, tags=["Batches"])
    def post(self, request):
        serializer = WithdrawSerializer(data=request.data)
        if not serializer.is_valid():
            return serializer_error_response(serializer.errors, request.data)

        try:
            withdrawn = enrollment.withdraw_student_from_batch(
                serializer.validated_data["profileId"],
                serializer.validated_data["reason"],
            )
        except MadrasaError as exc:
            return service_error_response(exc)

        return Response(EnrollmentSerializer(withdrawn).data, status=status.HTTP_200_OK)


class MahadRegistrationView(APIView):
    """Public Mahad sign-up: person, profile and first enrollment in one step."""

    authentication_classes = []
    permission_classes = [AllowAny]

    @extend_schema(request=MahadRegistrationSerializer, tags=["Mahad"])
    def post(self, request):
        serializer = MahadRegistrationSerializer(data=request.data)
        if not serializer.is_valid():
            return serializer_error_response(serializer.errors, request.data)
        data = serializer.validated_data

        try:
            profile = registration.register_mahad_student(
                first_name=data["firstName"],
                last_name=data["lastName"],
                email=data["email"],
                phone=data["phone"],
                date_of_birth=data.get("dateOfBirth"),
                graduation_status=data.get("graduationStatus"),
                payment_frequency=data.get("paymentFrequency"),
                billing_type=data.get("billingType"),
            )
        except registration.DuplicateRegistrationError as exc:
            return error_response(exc.detail, status.HTTP_409_CONFLICT, details=exc.details)
        except MadrasaError as exc:
            return service_error_response(exc)

        return Response(
            RegisteredProfileSerializer(profile).data,
            status=status.HTTP_201_CREATED,
        )


class DugsiRegistrationView(APIView):
    """Public Dugsi sign-up for a family: parents plus one or more children."""

    authentication_classes = []
    permission_classes = [AllowAny]

    @extend_schema(request=DugsiRegistrationSerializer, tags=["Dugsi"])
    def post(self, request):
        serializer = DugsiRegistrationSerializer(data=request.data)
        if not serializer.is_valid():
            return serializer_error_response(serializer.errors, request.data)
        data = serializer.validated_data

        parent2 = None
        if data.get("parent2Email"):
            parent2 = registration.GuardianInput(
                first_name=data["parent2FirstName"],
                last_name=data["parent2LastName"],
                email=data["parent2Email"],
                phone=data["parent2Phone"],
            )
        try:
            result = registration.register_dugsi_family(
                [
                    registration.ChildInput(
                        first_name=child["firstName"],
                        last_name=child["lastName"],
                        date_of_birth=child.get("dateOfBirth"),
                    )
                    for child in data["children"]
                ],
                registration.GuardianInput(
                    first_name=data["parent1FirstName"],
                    last_name=data["parent1LastName"],
                    email=data["parent1Email"],
                    phone=data["parent1Phone"],
                ),
                parent2,
                primary_payer=data["primaryPayer"],
            )
        except MadrasaError as exc:
            return service_error_response(exc)

        return Response(
            {
                "familyReferenceId": result.family_reference_id,
                "billingAccountId": result.billing_account_id,
                "guardianIds": [guardian.id for guardian in result.guardians],
                "profiles": RegisteredProfileSerializer(result.profiles, many=True).data,
            },
            status=status.HTTP_201_CREATED,
        )
