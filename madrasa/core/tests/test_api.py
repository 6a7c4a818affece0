from django.test import SimpleTestCase
from rest_framework import status
from rest_framework.exceptions import ErrorDetail

from madrasa.core.api import error_response
from madrasa.core.api import serializer_error_response
from madrasa.core.api import service_error_response
from madrasa.core.exceptions import MadrasaError
from madrasa.core.exceptions import NotFoundError
from madrasa.core.exceptions import ValidationError


class ServiceErrorResponseTests(SimpleTestCase):
    def test_not_found_maps_to_404(self):
        response = service_error_response(NotFoundError("Student profile not found"))

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data, {"error": "Student profile not found"})

    def test_validation_error_includes_details(self):
        exc = ValidationError("Invalid request", details={"field": ["bad"]})

        response = service_error_response(exc)

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["details"], {"field": ["bad"]})

    def test_generic_service_error_is_400(self):
        response = service_error_response(MadrasaError("nope"))

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertNotIn("details", response.data)

    def test_error_response_custom_status(self):
        response = error_response("boom", status.HTTP_500_INTERNAL_SERVER_ERROR)

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.data, {"error": "boom"})


class SerializerErrorResponseTests(SimpleTestCase):
    def test_missing_required_fields(self):
        errors = {
            "profileId": [ErrorDetail("This field is required.", code="required")],
            "paymentFrequency": [ErrorDetail("Bad choice.", code="invalid_choice")],
        }

        response = serializer_error_response(errors)

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["error"], "Missing required fields")
        self.assertEqual(response.data["details"], {"fields": ["profileId"]})

    def test_invalid_values_report_details(self):
        errors = {
            "graduationStatus": [ErrorDetail("Bad choice.", code="invalid_choice")],
        }

        response = serializer_error_response(errors)

        self.assertEqual(response.data["error"], "Invalid request")
        self.assertEqual(response.data["details"], errors)

    def test_null_and_blank_count_as_missing(self):
        errors = {
            "profileId": [ErrorDetail("This field may not be null.", code="null")],
            "familyId": [ErrorDetail("This field may not be blank.", code="blank")],
        }

        response = serializer_error_response(errors)

        self.assertEqual(response.data["error"], "Missing required fields")
        self.assertEqual(response.data["details"], {"fields": ["profileId", "familyId"]})
