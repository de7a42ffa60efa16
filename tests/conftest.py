"""
Shared pytest fixtures for the orgadmin test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_user / make_role / make_request: directory + request row factories
"""

import pytest

from orgadmin import create_app
from orgadmin.models import db as _db
from orgadmin.models.approval import ApprovalRequest
from orgadmin.models.auth import Role, User, UserRole


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
def make_user():
    """Factory: create an approved, active user (override via kwargs)."""
    counter = {"n": 0}

    def _make(**kw):
        counter["n"] += 1
        user = User(
            email=kw.pop("email", f"user{counter['n']}@example.org"),
            full_name=kw.pop("full_name", f"User {counter['n']}"),
            is_active=kw.pop("is_active", True),
            approval_status=kw.pop("approval_status", "APPROVED"),
            **kw,
        )
        _db.session.add(user)
        _db.session.commit()
        return user

    return _make


@pytest.fixture()
def make_role():
    """Factory: create a role and assign it to the given users."""

    def _make(name, members=()):
        role = Role(name=name, display_name=name.replace("_", " ").title())
        _db.session.add(role)
        _db.session.flush()
        for user in members:
            _db.session.add(UserRole(user_id=user.id, role_id=role.id))
        _db.session.commit()
        return role

    return _make


@pytest.fixture()
def make_request():
    """Factory: create an approval request row against a template."""

    def _make(template_id, requester, status="pending"):
        req = ApprovalRequest(template_id=template_id, requester_id=requester.id, status=status)
        _db.session.add(req)
        _db.session.commit()
        return req

    return _make
