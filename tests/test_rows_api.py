"""
Row and pending-change blueprint API tests.

Flow covered end to end over HTTP:
  moderator correction (202, queued) → owner review (200) → replay (409)
"""

import pytest

OWNER = "owner@x.com"
MOD = "m@x.com"


def _h(email):
    return {"X-User-Email": email}


@pytest.fixture()
def gated(appoint):
    appoint(requires_approval=True, can_approve=False)
    return MOD


class TestBrowse:
    def test_list_rows(self, client, directory, row_ids):
        res = client.get("/api/v1/rows?dir=d1")
        assert res.status_code == 200
        body = res.get_json()
        assert body["columns"] == ["Name", "City", "Score"]
        assert [r["id"] for r in body["rows"]] == row_ids
        assert [r["index"] for r in body["rows"]] == [0, 1, 2]

    def test_list_rows_requires_directory(self, client):
        assert client.get("/api/v1/rows").status_code == 422

    def test_accessible_rows_for_scoped_moderator(self, client, appoint, row_ids):
        appoint(row_filter=[{
            "column": {"type": "single", "value": "Score"},
            "filter": {"type": "numeric_range", "range": {"type": "below", "threshold": 10}},
        }])
        body = client.get("/api/v1/rows/accessible?dir=d1", headers=_h(MOD)).get_json()
        assert body == {"all_rows": False, "row_ids": [row_ids[1]]}

    def test_accessible_rows_for_owner(self, client, directory):
        body = client.get("/api/v1/rows/accessible?dir=d1", headers=_h(OWNER)).get_json()
        assert body["all_rows"] is True


class TestWrites:
    def test_owner_correction_by_legacy_index(self, client, directory, row_ids):
        res = client.post(
            "/api/v1/corrections",
            json={"directory_id": "d1", "row": 1, "column": "City", "value": "Chi"},
            headers=_h(OWNER),
        )
        assert res.status_code == 200
        assert res.get_json()["row_id"] == row_ids[1]

    def test_correction_validation(self, client, directory):
        res = client.post(
            "/api/v1/corrections",
            json={"directory_id": "d1", "row_id": "abc", "column": "City", "value": "x"},
            headers=_h(OWNER),
        )
        assert res.status_code == 422
        res = client.post(
            "/api/v1/corrections",
            json={"directory_id": "d1", "row": 0, "value": "x"},
            headers=_h(OWNER),
        )
        assert res.status_code == 422

    def test_correction_unknown_index(self, client, directory):
        res = client.post(
            "/api/v1/corrections",
            json={"directory_id": "d1", "row": 10, "column": "City", "value": "x"},
            headers=_h(OWNER),
        )
        assert res.status_code == 404

    def test_anonymous_write_forbidden(self, client, directory, row_ids):
        res = client.post(
            "/api/v1/corrections",
            json={"directory_id": "d1", "row_id": row_ids[0], "column": "City", "value": "x"},
        )
        assert res.status_code == 403

    def test_add_and_delete_row(self, client, directory, row_ids):
        res = client.post(
            "/api/v1/rows", json={"directory_id": "d1", "values": ["D", "E", "1"]}, headers=_h(OWNER)
        )
        assert res.status_code == 200
        res = client.delete(f"/api/v1/rows/{row_ids[0]}?dir=d1", headers=_h(OWNER))
        assert res.status_code == 200
        assert len(client.get("/api/v1/rows?dir=d1").get_json()["rows"]) == 3

    def test_moderator_out_of_scope(self, client, appoint, row_ids):
        appoint(row_filter=[], requires_approval=False)
        res = client.delete(f"/api/v1/rows/{row_ids[0]}?dir=d1", headers=_h(MOD))
        assert res.status_code == 403


class TestReviewFlow:
    def test_queue_review_and_replay(self, client, gated, row_ids):
        res = client.post(
            "/api/v1/corrections",
            json={"directory_id": "d1", "row_id": row_ids[0], "column": "City", "value": "NewCity"},
            headers=_h(gated),
        )
        assert res.status_code == 202
        change_id = res.get_json()["pending_change_id"]

        queue = client.get("/api/v1/changes/pending?dir=d1", headers=_h(OWNER)).get_json()["items"]
        assert [c["id"] for c in queue] == [change_id]
        # Submitter without can_approve sees nothing to review
        mod_queue = client.get("/api/v1/changes/pending?dir=d1", headers=_h(gated))
        assert mod_queue.get_json()["items"] == []
        # ...but may read their own submission
        assert client.get(f"/api/v1/changes/{change_id}", headers=_h(gated)).status_code == 200

        res = client.post(
            f"/api/v1/changes/{change_id}/review", json={"action": "reject"}, headers=_h(gated)
        )
        assert res.status_code == 403

        res = client.post(
            f"/api/v1/changes/{change_id}/review", json={"action": "approve"}, headers=_h(OWNER)
        )
        assert res.status_code == 200
        assert res.get_json()["status"] == "approved"
        rows = client.get("/api/v1/rows?dir=d1").get_json()["rows"]
        assert rows[0]["values"] == ["Ann", "NewCity", "42"]

        res = client.post(
            f"/api/v1/changes/{change_id}/review", json={"action": "approve"}, headers=_h(OWNER)
        )
        assert res.status_code == 409

    def test_review_unknown_change(self, client, directory):
        res = client.post("/api/v1/changes/999/review", json={"action": "approve"}, headers=_h(OWNER))
        assert res.status_code == 404

    def test_bad_action(self, client, gated, row_ids):
        res = client.post(
            "/api/v1/rows", json={"directory_id": "d1", "values": ["D", "E", "1"]}, headers=_h(gated)
        )
        change_id = res.get_json()["pending_change_id"]
        res = client.post(
            f"/api/v1/changes/{change_id}/review", json={"action": "maybe"}, headers=_h(OWNER)
        )
        assert res.status_code == 422

    def test_history_is_owner_only(self, client, gated):
        assert client.get("/api/v1/changes?dir=d1", headers=_h(OWNER)).status_code == 200
        assert client.get("/api/v1/changes?dir=d1", headers=_h(gated)).status_code == 403
