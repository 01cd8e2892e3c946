"""
Authorization resolver tests.

Covers:
    - Role resolution order and the collapsed user type
    - Moderator row scope (deny-by-default, all-rows, controls)
    - Appoint / remove / edit / approve gates per role
    - Inactive moderators keep no rights
"""

import pytest

from directory_hub.core.exceptions import NotFoundError
from directory_hub.services import authorization, moderator_service, pending_change_service
from directory_hub.services.authorization import Role

OWNER = "owner@x.com"
MOD = "m@x.com"


def _score_above(threshold):
    return {
        "column": {"type": "single", "value": "Score"},
        "filter": {"type": "numeric_range", "range": {"type": "above", "threshold": threshold}},
    }


# ═════════════════════════════════════════════════════════════════════════
# ROLES
# ═════════════════════════════════════════════════════════════════════════


class TestRoles:
    def test_owner(self, directory):
        assert authorization.resolve_role(OWNER, directory) is Role.OWNER

    def test_admin_owner_and_moderator_resolves_to_owner_tier(self, appoint, directory):
        from directory_hub.services import directory_service

        triple = "triple@x.com"
        appoint(email=triple)
        assert authorization.get_user_type(triple, directory) is Role.MODERATOR

        directory_service.add_directory_owner(directory, triple)
        assert authorization.is_moderator(triple, directory)
        assert authorization.resolve_role(triple, directory) is Role.OWNER

        directory_service.add_admin(triple)
        assert authorization.is_moderator(triple, directory)
        assert authorization.is_directory_owner(triple, directory)
        assert authorization.resolve_role(triple, directory) is Role.ADMIN
        assert authorization.get_user_type(triple, directory) is Role.OWNER

    def test_moderator(self, appoint, directory):
        appoint()
        assert authorization.resolve_role(MOD, directory) is Role.MODERATOR
        assert authorization.get_user_type("M@X.com", directory) is Role.MODERATOR

    def test_anonymous_and_stranger(self, directory):
        assert authorization.resolve_role("", directory) is Role.NONE
        assert authorization.resolve_role(None, directory) is Role.NONE
        assert authorization.resolve_role("x@y.com", directory) is Role.NONE

    def test_owner_of_other_directory_has_no_role(self, directory):
        from directory_hub.services import directory_service

        directory_service.create_directory("d2", "Other", "else@x.com")
        assert authorization.resolve_role("else@x.com", directory) is Role.NONE

    def test_removed_moderator_has_no_role(self, appoint, directory):
        appoint()
        moderator_service.remove_moderator(OWNER, MOD, directory)
        assert authorization.resolve_role(MOD, directory) is Role.NONE
        assert authorization.get_active_domain(MOD, directory) is None


# ═════════════════════════════════════════════════════════════════════════
# ROW ACCESS
# ═════════════════════════════════════════════════════════════════════════


class TestRowAccess:
    def test_all_rows_scope(self, appoint, directory, row_ids):
        appoint(row_filter={"scope": "all"})
        assert all(authorization.can_access_row(MOD, directory, r) for r in row_ids)
        assert authorization.get_accessible_rows(MOD, directory) == row_ids

    def test_empty_controls_grant_nothing(self, appoint, directory, row_ids):
        appoint(row_filter={"scope": "controls", "controls": []})
        assert not any(authorization.can_access_row(MOD, directory, r) for r in row_ids)
        assert authorization.get_accessible_rows(MOD, directory) == []

    def test_controls_select_rows(self, appoint, directory, row_ids):
        appoint(row_filter={"scope": "controls", "controls": [_score_above(10)]})
        # Ann (42) and Cy (15); Bob (7) is out of scope
        assert authorization.get_accessible_rows(MOD, directory) == [row_ids[0], row_ids[2]]
        assert not authorization.can_access_row(MOD, directory, row_ids[1])

    def test_scope_follows_live_values(self, appoint, directory, row_ids):
        from directory_hub.services import directory_service

        appoint(row_filter=[_score_above(10)])
        row = directory_service.get_row(directory, row_ids[1])
        row.values = ["Bob", "Chicago", "70"]
        assert authorization.can_access_row(MOD, directory, row_ids[1])

    def test_new_row_values(self, appoint, directory):
        appoint(row_filter=[_score_above(10)])
        assert authorization.can_access_values(MOD, directory, ["Dee", "Erie", "11"])
        assert not authorization.can_access_values(MOD, directory, ["Dee", "Erie", "9"])

    def test_missing_row_raises(self, appoint, directory):
        appoint()
        with pytest.raises(NotFoundError):
            authorization.can_access_row(MOD, directory, 9999)

    def test_no_domain_denies(self, directory, row_ids):
        assert not authorization.can_access_row("x@y.com", directory, row_ids[0])
        assert authorization.get_row_scope("x@y.com", directory).denies_all


# ═════════════════════════════════════════════════════════════════════════
# GATES
# ═════════════════════════════════════════════════════════════════════════


class TestGates:
    def test_appoint_gate_by_role(self, appoint, directory):
        appoint(email="approver@x.com", can_approve=True)
        appoint(email="editor@x.com", can_approve=False)
        assert authorization.can_appoint_moderator("a@x.com", Role.ADMIN, directory)
        assert authorization.can_appoint_moderator(OWNER, Role.OWNER, directory)
        assert authorization.can_appoint_moderator("approver@x.com", Role.MODERATOR, directory)
        assert not authorization.can_appoint_moderator("editor@x.com", Role.MODERATOR, directory)
        assert not authorization.can_appoint_moderator("x@y.com", Role.NONE, directory)

    def test_owner_role_is_verified(self, directory):
        assert not authorization.can_appoint_moderator("fake@x.com", Role.OWNER, directory)

    def test_remove_gate_needs_hierarchy_edge(self, appoint, directory):
        appoint(email="lead@x.com", can_approve=True)
        appoint(email="child@x.com", appointer="lead@x.com")
        appoint(email="other@x.com")
        assert authorization.can_remove_moderator(
            "lead@x.com", Role.MODERATOR, "child@x.com", directory
        )
        assert not authorization.can_remove_moderator(
            "lead@x.com", Role.MODERATOR, "other@x.com", directory
        )
        assert authorization.can_remove_moderator(OWNER, Role.OWNER, "other@x.com", directory)

    def test_edit_gate(self, appoint, directory, row_ids):
        appoint(email="viewer@x.com", can_edit=False)
        appoint(email="scoped@x.com", row_filter=[_score_above(10)])
        assert authorization.can_edit_row(OWNER, directory, row_ids[1])
        assert not authorization.can_edit_row("viewer@x.com", directory, row_ids[0])
        assert authorization.can_edit_row("scoped@x.com", directory, row_ids[0])
        assert not authorization.can_edit_row("scoped@x.com", directory, row_ids[1])
        assert not authorization.can_edit_row("x@y.com", directory, row_ids[0])


class TestApproveGate:
    def _change(self, directory, row_id):
        return pending_change_service.submit_edit_change(
            directory, row_id, "City", "Elsewhere", "sub@x.com"
        )

    def test_privileged_reviewers(self, directory, row_ids):
        change = self._change(directory, row_ids[1])
        assert authorization.can_approve_change(OWNER, directory, change["id"])

    def test_moderator_needs_can_approve_and_scope(self, appoint, directory, row_ids):
        appoint(email="rev@x.com", can_approve=True, row_filter=[_score_above(10)])
        appoint(email="noapprove@x.com", can_approve=False)
        in_scope = self._change(directory, row_ids[0])
        out_of_scope = self._change(directory, row_ids[1])
        assert authorization.can_approve_change("rev@x.com", directory, in_scope["id"])
        assert not authorization.can_approve_change("rev@x.com", directory, out_of_scope["id"])
        assert not authorization.can_approve_change("noapprove@x.com", directory, in_scope["id"])

    def test_add_change_judged_on_proposed_values(self, appoint, directory):
        appoint(email="rev@x.com", can_approve=True, row_filter=[_score_above(10)])
        high = pending_change_service.submit_add_change(directory, ["Dee", "Erie", "50"], "s@x.com")
        low = pending_change_service.submit_add_change(directory, ["Eve", "Fargo", "1"], "s@x.com")
        assert authorization.can_approve_change("rev@x.com", directory, high["id"])
        assert not authorization.can_approve_change("rev@x.com", directory, low["id"])

    def test_unknown_change_or_wrong_directory(self, directory, row_ids):
        from directory_hub.services import directory_service

        change = self._change(directory, row_ids[0])
        directory_service.create_directory("d2", "Other", OWNER)
        with pytest.raises(NotFoundError):
            authorization.can_approve_change(OWNER, directory, 424242)
        with pytest.raises(NotFoundError):
            authorization.can_approve_change(OWNER, "d2", change["id"])
