import mongomock
import pytest
from fastapi.testclient import TestClient

import database
from main import app


@pytest.fixture
def mongo(monkeypatch):
    mock_db = mongomock.MongoClient()["docushop_test"]
    monkeypatch.setattr(database, "db", mock_db)
    return mock_db


@pytest.fixture
def client(mongo):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def register_payload():
    return {
        "firstname": "A",
        "lastname": "B",
        "username": "ab",
        "email": "a@b.com",
        "phone": "1",
        "password": "pw",
    }
