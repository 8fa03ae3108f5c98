"""
Test configuration and fixtures
"""
import copy
import os

import pytest

# Set testing environment
os.environ["SECRET_KEY"] = "test-secret-key-for-testing-only"
os.environ.pop("SMTP_HOST", None)
os.environ.pop("LOG_FILE", None)

from unierp import create_app, db


class FakeDB:
    """Stands in for the db query helpers.

    Rules match on a fragment of the whitespace-normalized SQL, first
    registered rule wins. A rule value may be a callable(sql, params).
    """

    def __init__(self):
        self.rules = []
        self.executed = []
        self.next_id = 100
        self.rowcount = 1

    def on(self, fragment, value):
        self.rules.append((fragment, value))
        return self

    def _lookup(self, sql, params, default):
        flat = " ".join(sql.split())
        for fragment, value in self.rules:
            if fragment in flat:
                if callable(value):
                    value = value(flat, tuple(params))
                return copy.deepcopy(value)
        return default

    def fetch_all(self, sql, params=()):
        return self._lookup(sql, params, [])

    def fetch_one(self, sql, params=()):
        row = self._lookup(sql, params, None)
        if isinstance(row, list):
            return row[0] if row else None
        return row

    def execute(self, sql, params=()):
        self.executed.append((" ".join(sql.split()), tuple(params)))
        self.next_id += 1
        return self.next_id, self.rowcount

    def execute_many(self, statements):
        counts = []
        for sql, params in statements:
            self.executed.append((" ".join(sql.split()), tuple(params)))
            counts.append(self.rowcount)
        return counts

    def writes(self, fragment):
        return [(sql, params) for sql, params in self.executed if fragment in sql]


@pytest.fixture
def app(tmp_path):
    app = create_app({
        "TESTING": True,
        "SECRET_KEY": "test",
        "UPLOAD_FOLDER": str(tmp_path / "uploads"),
        "SMTP_HOST": None,
        "SMTP_USER": None,
        "SMTP_PASS": None,
        "LOG_FILE": None,
    })
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def fake_db(monkeypatch):
    fake = FakeDB()
    monkeypatch.setattr(db, "fetch_all", fake.fetch_all)
    monkeypatch.setattr(db, "fetch_one", fake.fetch_one)
    monkeypatch.setattr(db, "execute", fake.execute)
    monkeypatch.setattr(db, "execute_many", fake.execute_many)
    return fake


@pytest.fixture
def login(client):
    """Put a user in the session without going through /api/auth/login."""

    def _login(role="student", user_id=1, student_id=None, username="tester"):
        with client.session_transaction() as sess:
            sess["user_id"] = user_id
            sess["user"] = username
            sess["role"] = role
            if role == "student":
                sess["student_id"] = student_id or 7

    return _login
