import pytest

from cvforge.users.models import User
from cvforge.users.tests.factories import UserFactory


@pytest.fixture
def user(db) -> User:
    return UserFactory()
