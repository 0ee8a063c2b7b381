"""
Shared pytest fixtures for the Sparks Immersion Planner test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - stores: collaborator bundle backed by the test database
    - make_profile / make_immersion / make_task / make_template: row builders
"""

from datetime import date

import pytest

from sparks import create_app
from sparks.models import db as _db
from sparks.models.immersion import IMMERSION_PLANNING, TASK_SCHEDULED, Immersion, Profile, Task
from sparks.models.template import ChecklistTemplate, TaskTemplateItem
from sparks.services.stores import Stores


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


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
    return app.test_client()


@pytest.fixture()
def stores():
    return Stores()


# ── Row builders ─────────────────────────────────────────────────────────


@pytest.fixture()
def make_profile():
    def _make(name="Ana Souza", email="ana@sparks.test", role="consultor"):
        p = Profile(name=name, email=email, role=role, is_active=True)
        _db.session.add(p)
        _db.session.commit()
        return p
    return _make


@pytest.fixture()
def make_immersion():
    def _make(name="Imersão Liderança", *, start_date=date(2026, 2, 2), end_date=date(2026, 2, 4),
              status=IMMERSION_PLANNING, consultant=None, designer=None, owner=None,
              consultant_name=None, created_at=None):
        im = Immersion(
            immersion_name=name,
            start_date=start_date,
            end_date=end_date,
            status=status,
            consultant_id=consultant.id if consultant else None,
            designer_id=designer.id if designer else None,
            checklist_owner_id=owner.id if owner else None,
            consultant_name=consultant_name,
        )
        if created_at is not None:
            im.created_at = created_at
        _db.session.add(im)
        _db.session.commit()
        return im
    return _make


@pytest.fixture()
def make_task():
    def _make(immersion=None, title="Reservar sala", *, phase="PRE", due_date=None, responsible=None,
              status=TASK_SCHEDULED, done_at=None):
        t = Task(
            immersion_id=immersion.id if immersion else None,
            title=title,
            phase=phase,
            due_date=due_date,
            responsible_id=responsible.id if responsible else None,
            status=status,
            done_at=done_at,
        )
        _db.session.add(t)
        _db.session.commit()
        return t
    return _make


@pytest.fixture()
def make_template():
    def _make(name="Checklist padrão", items=()):
        tpl = ChecklistTemplate(name=name, is_active=True)
        _db.session.add(tpl)
        _db.session.flush()
        for i, item in enumerate(items):
            _db.session.add(TaskTemplateItem(
                template_id=tpl.id,
                phase=item.get("phase", "PRE"),
                title=item["title"],
                due_basis=item.get("due_basis", "start"),
                offset_days=item.get("offset_days", 0),
                sort_order=item.get("sort_order", i),
                responsible_id=item.get("responsible_id"),
            ))
        _db.session.commit()
        return tpl
    return _make
