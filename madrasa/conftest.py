import pytest
from rest_framework.test import APIClient

from madrasa.users.models import User
from madrasa.users.tests.factories import StaffUserFactory
from madrasa.users.tests.factories import UserFactory


@pytest.fixture
def user(db) -> User:
    return UserFactory()


@pytest.fixture
def staff_user(db) -> User:
    return StaffUserFactory()


@pytest.fixture
def api_client() -> APIClient:
    return APIClient()


@pytest.fixture
def staff_client(staff_user) -> APIClient:
    client = APIClient()
    client.force_authenticate(user=staff_user)
    return client
