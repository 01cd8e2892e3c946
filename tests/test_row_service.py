"""
Row write path tests: direct writes for privileged callers, gating and
queuing for moderators, and the fire-and-forget sheet write-back.
"""

import pytest

from directory_hub.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from directory_hub.integrations.sheets_gateway import SheetSyncError
from directory_hub.models import db
from directory_hub.models.moderation import PendingChange
from directory_hub.services import directory_service
from directory_hub.services.authorization import Role
from directory_hub.services.row_service import (
    RequestContext,
    submit_add_row,
    submit_correction,
    submit_delete_row,
)

OWNER = "owner@x.com"
MOD = "m@x.com"

SCORE_ABOVE_10 = {
    "column": {"type": "single", "value": "Score"},
    "filter": {"type": "numeric_range", "range": {"type": "above", "threshold": 10}},
}


def _ctx(email, directory="d1"):
    return RequestContext.resolve(email, directory)


class TestRequestContext:
    def test_resolves_role(self, directory):
        ctx = _ctx(" Owner@X.com ")
        assert ctx.user_email == OWNER
        assert ctx.role is Role.OWNER
        assert ctx.is_privileged

    def test_anonymous(self, directory):
        ctx = _ctx(None)
        assert ctx.user_email == ""
        assert ctx.role is Role.NONE
        assert not ctx.is_privileged


class TestPrivilegedWrites:
    def test_owner_correction_applies_directly(self, directory, row_ids, fake_sheet):
        outcome = submit_correction(_ctx(OWNER), row_ids[1], "City", "Chi-town")
        assert outcome.applied is True
        assert outcome.to_dict()["pending"] is False
        assert directory_service.get_row(directory, row_ids[1]).values[1] == "Chi-town"
        assert fake_sheet.calls == [
            ("update_cell", {"row_index": 1, "col_index": 1, "value": "Chi-town"}),
        ]

    def test_correction_by_column_index(self, directory, row_ids):
        submit_correction(_ctx(OWNER), row_ids[0], 2, "43")
        assert directory_service.get_row(directory, row_ids[0]).values[2] == "43"

    def test_add_row(self, directory, fake_sheet):
        outcome = submit_add_row(_ctx(OWNER), ["Dee", "Erie", "11"])
        assert outcome.applied is True
        assert directory_service.get_row(directory, outcome.row_id).values == ["Dee", "Erie", "11"]
        assert fake_sheet.calls == [("append_row", {"values": ["Dee", "Erie", "11"]})]

    def test_delete_row_reports_position_before_delete(self, directory, row_ids, fake_sheet):
        submit_delete_row(_ctx(OWNER), row_ids[1])
        assert directory_service.count_rows(directory) == 2
        assert fake_sheet.calls == [("delete_row", {"row_index": 1})]

    def test_cell_is_sanitized(self, directory, row_ids):
        submit_correction(_ctx(OWNER), row_ids[0], "Name", "  An\x00n  ")
        assert directory_service.get_row(directory, row_ids[0]).values[0] == "Ann"

    def test_cell_too_long(self, app, directory, row_ids):
        with pytest.raises(ValidationError):
            submit_correction(_ctx(OWNER), row_ids[0], "Name", "x" * 1001)

    def test_unknown_row(self, directory):
        with pytest.raises(NotFoundError):
            submit_correction(_ctx(OWNER), 4242, "City", "x")

    def test_sheet_failure_does_not_undo_local_write(self, directory, row_ids, fake_sheet):
        fake_sheet.fail_with = SheetSyncError("update", "HTTP 503")
        outcome = submit_correction(_ctx(OWNER), row_ids[0], "City", "Salem")
        assert outcome.applied is True
        assert directory_service.get_row(directory, row_ids[0]).values[1] == "Salem"


class TestModeratorWrites:
    def test_direct_when_no_approval_required(self, appoint, directory, row_ids):
        appoint(requires_approval=False)
        outcome = submit_correction(_ctx(MOD), row_ids[0], "City", "Salem")
        assert outcome.applied is True
        assert db.session.query(PendingChange).count() == 0

    def test_queued_when_approval_required(self, appoint, directory, row_ids):
        appoint(requires_approval=True)
        outcome = submit_delete_row(_ctx(MOD), row_ids[0], "duplicate")
        assert outcome.applied is False
        assert outcome.pending_change_id is not None
        assert directory_service.count_rows(directory) == 3

    def test_add_row_queued(self, appoint, directory):
        appoint(requires_approval=True)
        outcome = submit_add_row(_ctx(MOD), ["Dee", "Erie", "11"])
        assert outcome.applied is False
        assert directory_service.count_rows(directory) == 3
        change = db.session.get(PendingChange, outcome.pending_change_id)
        assert change.change_type == "add"

    def test_out_of_scope_row_denied(self, appoint, directory, row_ids):
        appoint(row_filter=[SCORE_ABOVE_10], requires_approval=False)
        with pytest.raises(AuthorizationError):
            submit_correction(_ctx(MOD), row_ids[1], "City", "x")
        submit_correction(_ctx(MOD), row_ids[0], "City", "x")

    def test_out_of_scope_new_row_denied(self, appoint, directory):
        appoint(row_filter=[SCORE_ABOVE_10], requires_approval=False)
        with pytest.raises(AuthorizationError):
            submit_add_row(_ctx(MOD), ["Dee", "Erie", "3"])

    def test_can_edit_required(self, appoint, directory, row_ids):
        appoint(can_edit=False)
        with pytest.raises(AuthorizationError):
            submit_correction(_ctx(MOD), row_ids[0], "City", "x")

    def test_empty_scope_denies_everything(self, appoint, directory, row_ids):
        appoint(row_filter=[], requires_approval=False)
        for row_id in row_ids:
            with pytest.raises(AuthorizationError):
                submit_delete_row(_ctx(MOD), row_id)

    def test_removed_moderator_denied(self, appoint, directory, row_ids):
        from directory_hub.services.moderator_service import remove_moderator

        appoint(requires_approval=False)
        remove_moderator(OWNER, MOD, directory)
        with pytest.raises(AuthorizationError):
            submit_correction(_ctx(MOD), row_ids[0], "City", "x")

    def test_anonymous_denied(self, directory, row_ids):
        with pytest.raises(AuthorizationError):
            submit_correction(_ctx(""), row_ids[0], "City", "x")
