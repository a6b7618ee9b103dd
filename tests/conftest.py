from datetime import date

import pytest

import db


@pytest.fixture
def store(tmp_path, monkeypatch):
    monkeypatch.setattr(db, "DB_FILE", tmp_path / "test.db")
    db.init_db("not-a-real-hash")
    return db


def _add_user(username: str, role: str = "trainer") -> int:
    return db.insert(
        "users",
        {"username": username, "password_hash": "x", "full_name": username.title(), "role": role,
         "created_at": db.now_iso()},
    )["id"]


@pytest.fixture
def trainer_a(store) -> int:
    return _add_user("trainer_a")


@pytest.fixture
def trainer_b(store) -> int:
    return _add_user("trainer_b")


@pytest.fixture
def today() -> date:
    return date(2025, 6, 15)
