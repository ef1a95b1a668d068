import itertools

import mongomock
import pytest
from fastapi.testclient import TestClient

from main import app, get_bank, get_optional_bank
from schemas import ActorCreate
from services import BloodBank

_emails = itertools.count(1)


@pytest.fixture
def bank():
    return BloodBank(mongomock.MongoClient()["bloodbank_test"])


@pytest.fixture
def client(bank):
    app.dependency_overrides[get_bank] = lambda: bank
    app.dependency_overrides[get_optional_bank] = lambda: bank
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def register(bank):
    def _register(role, name=None, **fields):
        payload = ActorCreate(
            role=role,
            name=name or f"Test {role}",
            email=f"{role}{next(_emails)}@lifeline.org",
            phone="555-0100",
            **fields,
        )
        return bank.directory.register(payload)
    return _register


@pytest.fixture
def hospital(register):
    return register("hospital", "City Hospital", city="Springfield")


@pytest.fixture
def organization(register):
    return register("organization", "Red Drop Society")


@pytest.fixture
def receiver(register):
    return register("receiver", "Jane Receiver")


@pytest.fixture
def donor(register):
    return register("donor", "John Donor", blood_group="O-")
