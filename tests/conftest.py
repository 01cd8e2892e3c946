"""
Shared pytest fixtures for the Directory Hub test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - fake_sheet: in-memory SheetClient wired in with inline write-back
    - directory: directory "d1" owned by OWNER with three rows
    - appoint: factory that appoints a moderator through the service layer
"""

import pytest

from directory_hub import create_app
from directory_hub.integrations.sheets_gateway import SheetClient, SheetClientRegistry
from directory_hub.models import db as _db
from directory_hub.services.sheet_sync import MODE_INLINE, SheetSyncDispatcher

ADMIN = "admin@x.com"
OWNER = "owner@x.com"
MODERATOR = "m@x.com"
OUTSIDER = "nobody@x.com"

COLUMNS = ["Name", "City", "Score"]
ROWS = [
    ["Ann", "Boston", "42"],
    ["Bob", "Chicago", "7"],
    ["Cy", "Denver", "15"],
]


class FakeSheetClient(SheetClient):
    """Records every write; serves ``values`` to fetch_all_rows."""

    def __init__(self, values=None, fail_with=None):
        self.values = values or []
        self.fail_with = fail_with
        self.calls = []

    def _record(self, op, **kwargs):
        self.calls.append((op, kwargs))
        if self.fail_with is not None:
            raise self.fail_with

    def fetch_all_rows(self):
        self._record("fetch_all_rows")
        return [list(r) for r in self.values]

    def append_row(self, values):
        self._record("append_row", values=list(values))

    def update_cell(self, row_index, col_index, value):
        self._record("update_cell", row_index=row_index, col_index=col_index, value=value)

    def delete_row(self, row_index):
        self._record("delete_row", row_index=row_index)


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
        # IDs and emails are reused across tests; stale cached decisions would leak
        app.extensions["permission_cache"].clear()
        app.extensions["sheet_clients"].clear()
        yield
        app.extensions["permission_cache"].clear()
        app.extensions["sheet_clients"].clear()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def fake_sheet(app, monkeypatch):
    """Route every directory to one FakeSheetClient and run write-back inline."""
    fake = FakeSheetClient()
    monkeypatch.setitem(app.extensions, "sheet_clients", SheetClientRegistry(lambda _d: fake))
    monkeypatch.setitem(app.extensions, "sheet_sync", SheetSyncDispatcher(MODE_INLINE))
    return fake


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def admin():
    from directory_hub.services import directory_service

    directory_service.add_admin(ADMIN)
    return ADMIN


@pytest.fixture()
def directory():
    """Directory d1 owned by OWNER, columns Name/City/Score, three rows."""
    from directory_hub.services import directory_service

    directory_service.create_directory("d1", "Community Directory", OWNER)
    directory_service.import_rows("d1", COLUMNS, ROWS)
    return "d1"


@pytest.fixture()
def row_ids(directory):
    from directory_hub.services import directory_service

    return [r["id"] for r in directory_service.list_rows(directory)]


@pytest.fixture()
def appoint(directory):
    """Appoint a moderator in d1 (by OWNER unless told otherwise)."""
    from directory_hub.services.moderator_service import (
        AppointModeratorRequest,
        appoint_moderator,
    )

    def _appoint(email=MODERATOR, row_filter=None, appointer=OWNER, **flags):
        req = AppointModeratorRequest(
            user_email=email,
            directory_id=directory,
            row_filter=row_filter if row_filter is not None else {"scope": "all"},
            **flags,
        )
        return appoint_moderator(appointer, req)

    return _appoint
