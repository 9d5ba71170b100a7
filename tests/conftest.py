"""
Shared pytest fixtures for the EDMS request routing test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - roster: Standard unit roster created through the API
"""

import pytest

from edms import create_app
from edms.models import db as _db

UNIT_UIC = "M12345"

ROSTER = [
    {"id": "u-owner", "role": "MEMBER", "unit_uic": UNIT_UIC, "company": "Alpha",
     "platoon": "1st Platoon", "rank": "LCpl", "first_name": "Jane", "last_name": "Doe",
     "email": "jane.doe@example.mil"},
    {"id": "u-plt", "role": "PLATOON_REVIEWER", "unit_uic": UNIT_UIC, "company": "Alpha",
     "platoon": "1st Platoon", "rank": "SSgt", "first_name": "Sam", "last_name": "Ortiz"},
    {"id": "u-co", "role": "COMPANY_REVIEWER", "unit_uic": UNIT_UIC, "company": "Alpha",
     "platoon": "N/A", "rank": "Capt", "first_name": "Lee", "last_name": "Park"},
    {"id": "u-staff", "role": "MEMBER", "unit_uic": UNIT_UIC, "company": "H&S",
     "is_command_staff": True, "rank": "GySgt", "first_name": "Ana", "last_name": "Reyes"},
    {"id": "u-cmdr", "role": "COMMANDER", "unit_uic": UNIT_UIC, "rank": "LtCol",
     "first_name": "Chris", "last_name": "Nguyen", "mi": "T"},
]


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def roster(client):
    """Create the standard unit roster via the API and return it by id."""
    created = {}
    for entry in ROSTER:
        res = client.post("/api/v1/users", json=entry)
        assert res.status_code == 201, res.get_json()
        created[entry["id"]] = res.get_json()
    return created
