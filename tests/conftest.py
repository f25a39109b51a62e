import pytest

from tests.session_helpers import SleepRecorder


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def user_payload() -> dict:
    return {
        "sub": "u1",
        "name": "Ann",
        "email": "ann@example.com",
        "given_name": "Ann",
        "family_name": "Lee",
        "picture": "https://cdn.example.com/ann.png",
    }
