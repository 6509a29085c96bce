import pytest

import database
from database import Database
from models import User
from utils import new_id

@pytest.fixture
def db(monkeypatch):
    """In-memory database installed as the process-wide one."""
    test_db = Database(":memory:")
    monkeypatch.setattr(database, "_database", test_db)
    yield test_db
    test_db.close()

@pytest.fixture
def make_user(db):
    def _make_user(name, email=None, password="not-a-real-hash"):
        user = User(id=new_id(), name=name, email=email or f"{name.lower()}@example.com", password=password)
        db.add_user(user)
        return user
    return _make_user
