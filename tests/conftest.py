import copy
import itertools
import os
import sys
from collections import defaultdict
from datetime import datetime, timezone

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Override env vars for testing
os.environ["SECRET_KEY"] = "test-secret"
os.environ["SUPABASE_URL"] = "https://example.supabase.co"
os.environ["SUPABASE_ANON_KEY"] = "test-anon-key"
os.environ["FLASK_ENV"] = "testing"
os.environ.setdefault("RATELIMIT_STORAGE_URI", "memory://")


sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import pytest
from app import app as flask_app, backend
from app.extensions import limiter
from app.utils.backend_client import AuthError, AuthSession, BackendError, unwrap_procedure_result


# -------------------- IN-MEMORY BACKEND --------------------

class FakeBackend:
    """
    In-memory stand-in for BackendClient.

    Tables are lists of dict rows. Embedded relations are not resolved;
    tests store nested dicts (``student``, ``criteria``...) on the rows
    they need them on. Procedures are registered as plain values or
    callables taking the params dict.
    """

    def __init__(self):
        self.tables = defaultdict(list)
        self.procedures = {}
        self.calls = []
        self.failures = {}
        self.users = {}
        self.revoked_tokens = set()
        self.signed_out = False
        self._ids = itertools.count(1)

    # ---- helpers -------------------------------------------------------

    def fail(self, label, exc=None):
        """Make the operation ``label`` (e.g. ``select profiles``) raise."""
        self.failures[label] = exc or BackendError(f"{label} failed")

    def _check(self, label):
        if label in self.failures:
            raise self.failures[label]

    def seed(self, table, *rows):
        for row in rows:
            self.insert(table, row)
        return self.tables[table]

    @staticmethod
    def _matches(row, filters, in_filter):
        for column, value in (filters or {}).items():
            if row.get(column) != value:
                return False
        if in_filter:
            column, values = in_filter
            if row.get(column) not in list(values):
                return False
        return True

    # ---- tables --------------------------------------------------------

    def select(self, table, columns="*", filters=None, order=None, desc=False, limit=None, in_filter=None):
        self._check(f"select {table}")
        rows = [r for r in self.tables[table] if self._matches(r, filters, in_filter)]
        if order:
            rows.sort(key=lambda r: (r.get(order) is None, r.get(order)), reverse=desc)
        if limit:
            rows = rows[:limit]
        return copy.deepcopy(rows)

    def select_one(self, table, columns="*", filters=None):
        rows = self.select(table, columns=columns, filters=filters, limit=1)
        return rows[0] if rows else None

    def insert(self, table, values):
        self._check(f"insert {table}")
        records = values if isinstance(values, list) else [values]
        inserted = []
        for record in records:
            row = dict(record)
            row.setdefault("id", f"{table}-{next(self._ids)}")
            if table in {"classes", "students", "groups", "criteria", "rewards"}:
                row.setdefault("is_active", True)
            self.tables[table].append(row)
            inserted.append(copy.deepcopy(row))
        return inserted

    def update(self, table, values, filters=None, in_filter=None):
        if not filters and not in_filter:
            raise ValueError("Refusing to update every row of %s" % table)
        self._check(f"update {table}")
        updated = []
        for row in self.tables[table]:
            if self._matches(row, filters, in_filter):
                row.update(values)
                updated.append(copy.deepcopy(row))
        return updated

    def delete(self, table, filters):
        if not filters:
            raise ValueError("Refusing to delete every row of %s" % table)
        self._check(f"delete {table}")
        kept = [r for r in self.tables[table] if not self._matches(r, filters, None)]
        removed = len(self.tables[table]) - len(kept)
        self.tables[table] = kept
        return [{}] * removed

    # ---- remote procedures ---------------------------------------------

    def rpc(self, procedure, params=None):
        self.calls.append((procedure, dict(params or {})))
        self._check(f"rpc {procedure}")
        handler = self.procedures.get(procedure)
        if callable(handler):
            return handler(params or {})
        return copy.deepcopy(handler)

    def call_procedure(self, procedure, params=None):
        return unwrap_procedure_result(procedure, self.rpc(procedure, params))

    def calls_to(self, procedure):
        return [params for name, params in self.calls if name == procedure]

    # ---- auth ----------------------------------------------------------

    def add_user(self, email, password, user_id, full_name=""):
        self.users[email] = {"password": password, "id": user_id, "full_name": full_name}

    def sign_in(self, email, password):
        self._check("sign_in")
        user = self.users.get(email)
        if user is None or user["password"] != password:
            raise AuthError("Invalid login credentials")
        return AuthSession(user["id"], email, f"access-{user['id']}", f"refresh-{user['id']}")

    def sign_up(self, email, password, full_name):
        self._check("sign_up")
        if email in self.users:
            raise AuthError("User already registered")
        user_id = f"user-{next(self._ids)}"
        self.add_user(email, password, user_id, full_name)
        return AuthSession(user_id, email, None, None)

    def restore_session(self, access_token, refresh_token):
        self._check("restore_session")
        if access_token in self.revoked_tokens or not access_token.startswith("access-"):
            raise AuthError("Invalid Refresh Token")
        user_id = access_token[len("access-"):]
        return AuthSession(user_id, None, access_token, refresh_token)

    def sign_out(self):
        self.signed_out = True


# -------------------- FIXTURES --------------------

@pytest.fixture
def app():
    """Provide the Flask app instance for tests."""
    flask_app.config.update(
        TESTING=True,
        WTF_CSRF_ENABLED=False,
        ENV="testing",
        SESSION_COOKIE_SECURE=False,
    )
    limiter.reset()
    yield flask_app


@pytest.fixture
def fake_backend(monkeypatch):
    fake = FakeBackend()
    monkeypatch.setattr(backend, "client_factory", lambda: fake)
    return fake


@pytest.fixture
def client(app, fake_backend):
    return app.test_client()


def sign_in_as(client, user_id, email="user@example.com"):
    """Put a signed-in backend session into the test client's cookie."""
    now = datetime.now(timezone.utc).isoformat()
    with client.session_transaction() as sess:
        sess["user_id"] = user_id
        sess["email"] = email
        sess["access_token"] = f"access-{user_id}"
        sess["refresh_token"] = f"refresh-{user_id}"
        sess["login_time"] = now
        sess["last_activity"] = now


@pytest.fixture
def classroom(fake_backend):
    """A class with three students, criteria, and a reward."""
    fake_backend.seed("classes", {"id": "class-a", "class_name": "6A", "teacher_name": "Ms. Lan", "school_year": "2024"})
    fake_backend.seed(
        "students",
        {"id": "stu-1", "class_id": "class-a", "full_name": "Nguyen An", "gender": "male",
         "total_points": 130, "current_rank": "Hạ sĩ", "current_multiplier": 1.2, "user_id": "student-user"},
        {"id": "stu-2", "class_id": "class-a", "full_name": "Tran Binh", "gender": "female",
         "total_points": 40, "current_rank": "Binh nhì", "current_multiplier": 1.0},
        {"id": "stu-3", "class_id": "class-a", "full_name": "Le Chi", "gender": "female",
         "total_points": 210, "current_rank": "Trung sĩ", "current_multiplier": 1.3},
    )
    fake_backend.seed(
        "criteria",
        {"id": "crit-good", "class_id": "class-a", "name": "Homework", "base_points": 10, "type": "positive", "icon": "📖"},
        {"id": "crit-bad", "class_id": "class-a", "name": "Late", "base_points": 5, "type": "negative", "icon": "⚠️"},
    )
    fake_backend.seed(
        "rewards",
        {"id": "reward-1", "class_id": "class-a", "name": "Sticker", "required_points": 100, "icon": "🎁", "stock": 5},
    )
    return fake_backend


@pytest.fixture
def teacher_client(client, fake_backend):
    fake_backend.seed("profiles", {"id": "teacher-user", "full_name": "Ms. Lan", "role": "teacher", "status": "approved"})
    sign_in_as(client, "teacher-user", "lan@example.com")
    return client


@pytest.fixture
def student_client(client, fake_backend):
    fake_backend.seed("profiles", {"id": "student-user", "full_name": "Nguyen An", "role": "student", "status": "approved"})
    sign_in_as(client, "student-user", "an@example.com")
    return client


@pytest.fixture
def sign_in(client):
    """Sign the test client in as an arbitrary backend user id."""
    def _sign_in(user_id, email="user@example.com"):
        sign_in_as(client, user_id, email)
    return _sign_in
