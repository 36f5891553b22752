import pytest
from fastapi.testclient import TestClient

import backend.config as config
import backend.main as main
import database.db as db


@pytest.fixture()
def test_db(tmp_path, monkeypatch):
    test_db_path = tmp_path / "attendance_test.db"

    # Point DB to a temp file for isolation.
    monkeypatch.setattr(config, "DB_PATH", test_db_path)
    monkeypatch.setattr(db, "DB_PATH", test_db_path)

    db.create_tables()
    return test_db_path


@pytest.fixture()
def client(test_db):
    with TestClient(main.app) as c:
        yield c


@pytest.fixture()
def teacher(test_db):
    return db.create_profile("teacher@example.edu", "test1234", "Tess Teacher", "teacher")


@pytest.fixture()
def student(test_db):
    return db.create_profile("student@example.edu", "test1234", "Sam Student", "student")


@pytest.fixture()
def other_student(test_db):
    return db.create_profile("other@example.edu", "test1234", "Olive Other", "student")


@pytest.fixture()
def subject(teacher):
    return db.create_subject(
        teacher["id"],
        "Algorithms",
        "CS201",
        schedule="Mon 10:00-12:00",
    )
