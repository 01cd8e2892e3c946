"""
Google Sheets gateway tests: request shapes, retry/backoff, token refresh,
registry double-checked creation and the write-back dispatcher.

The HTTP session is a MagicMock; ``time.sleep`` is patched out.
"""

import threading
from unittest.mock import MagicMock, patch

import pytest
import requests

from directory_hub.integrations.sheets_gateway import (
    GoogleSheetsClient,
    SheetClientRegistry,
    SheetNotConnectedError,
    SheetSyncError,
    build_google_client,
    column_index_to_letter,
    extract_spreadsheet_id,
)
from directory_hub.services.sheet_sync import (
    MODE_INLINE,
    MODE_OFF,
    OP_UPDATE_CELL,
    SheetSyncDispatcher,
)

BASE = "https://sheets.test/v4/spreadsheets"


def _resp(status=200, payload=None):
    resp = MagicMock()
    resp.status_code = status
    resp.ok = 200 <= status < 300
    resp.content = b"{}" if payload is not None else b""
    resp.json.return_value = payload if payload is not None else {}
    resp.text = "error body"
    return resp


def _client(session, token=None, **kwargs):
    return GoogleSheetsClient(
        "sheet123",
        token or {"access_token": "tok", "refresh_token": "ref"},
        api_base=BASE,
        session=session,
        **kwargs,
    )


class TestHelpers:
    def test_extract_spreadsheet_id(self):
        url = "https://docs.google.com/spreadsheets/d/1AbC-_9/edit#gid=0"
        assert extract_spreadsheet_id(url) == "1AbC-_9"
        assert extract_spreadsheet_id("https://example.com") is None
        assert extract_spreadsheet_id("") is None

    @pytest.mark.parametrize("index,letter", [(0, "A"), (25, "Z"), (26, "AA"), (27, "AB"), (701, "ZZ")])
    def test_column_letters(self, index, letter):
        assert column_index_to_letter(index) == letter


class TestRequests:
    def test_fetch_all_rows_stringifies(self):
        session = MagicMock()
        session.request.return_value = _resp(payload={"values": [["Name", "Score"], ["Ann", 42]]})
        rows = _client(session).fetch_all_rows()
        assert rows == [["Name", "Score"], ["Ann", "42"]]
        method, url = session.request.call_args.args
        assert method == "GET"
        assert url == f"{BASE}/sheet123/values/A%3AZZ"
        assert session.request.call_args.kwargs["headers"]["Authorization"] == "Bearer tok"

    def test_update_cell_addresses_data_row(self):
        session = MagicMock()
        session.request.return_value = _resp(payload={})
        _client(session).update_cell(0, 2, "NewCity")
        method, url = session.request.call_args.args
        assert method == "PUT"
        assert url.endswith("/values/C2")
        assert session.request.call_args.kwargs["json"] == {"values": [["NewCity"]]}

    def test_append_row(self):
        session = MagicMock()
        session.request.return_value = _resp(payload={})
        _client(session).append_row(["a", "b"])
        method, url = session.request.call_args.args
        assert method == "POST"
        assert url.endswith("/values/A%3AZ:append")
        kwargs = session.request.call_args.kwargs
        assert kwargs["params"]["insertDataOption"] == "INSERT_ROWS"
        assert kwargs["json"] == {"values": [["a", "b"]]}

    def test_delete_row_skips_header(self):
        session = MagicMock()
        session.request.return_value = _resp(payload={})
        _client(session, sheet_gid=7).delete_row(4)
        body = session.request.call_args.kwargs["json"]
        rng = body["requests"][0]["deleteDimension"]["range"]
        assert rng == {"sheetId": 7, "dimension": "ROWS", "startIndex": 5, "endIndex": 6}


class TestRetry:
    @patch("directory_hub.integrations.sheets_gateway.time.sleep")
    def test_retries_server_errors_with_backoff(self, sleep):
        session = MagicMock()
        session.request.side_effect = [_resp(503), _resp(500), _resp(payload={"values": []})]
        assert _client(session).fetch_all_rows() == []
        assert session.request.call_count == 3
        assert [c.args[0] for c in sleep.call_args_list] == [1, 4]

    @patch("directory_hub.integrations.sheets_gateway.time.sleep")
    def test_gives_up_after_bounded_retries(self, sleep):
        session = MagicMock()
        session.request.return_value = _resp(503)
        with pytest.raises(SheetSyncError) as exc:
            _client(session).fetch_all_rows()
        assert exc.value.status_code == 503
        assert session.request.call_count == 3

    @patch("directory_hub.integrations.sheets_gateway.time.sleep")
    def test_client_error_is_final(self, sleep):
        session = MagicMock()
        session.request.return_value = _resp(404)
        with pytest.raises(SheetSyncError):
            _client(session).fetch_all_rows()
        assert session.request.call_count == 1
        sleep.assert_not_called()

    @patch("directory_hub.integrations.sheets_gateway.time.sleep")
    def test_timeouts_are_retried(self, sleep):
        session = MagicMock()
        session.request.side_effect = [requests.Timeout(), _resp(payload={"values": [["A"]]})]
        assert _client(session).fetch_all_rows() == [["A"]]


class TestTokenRefresh:
    def test_401_refreshes_once_and_retries(self):
        session = MagicMock()
        session.request.side_effect = [_resp(401), _resp(payload={"values": []})]
        session.post.return_value = _resp(payload={"access_token": "fresh", "expires_in": 3600})
        persisted = []
        _client(session, on_token_refresh=persisted.append).fetch_all_rows()
        assert session.post.call_count == 1
        assert session.request.call_args.kwargs["headers"]["Authorization"] == "Bearer fresh"
        assert persisted[0]["access_token"] == "fresh"

    def test_expired_token_refreshed_before_call(self):
        session = MagicMock()
        session.request.return_value = _resp(payload={})
        session.post.return_value = _resp(payload={"access_token": "fresh"})
        token = {"access_token": "old", "refresh_token": "r", "expiry": "2000-01-01T00:00:00Z"}
        _client(session, token=token).update_cell(0, 0, "x")
        assert session.post.call_count == 1
        assert session.request.call_args.kwargs["headers"]["Authorization"] == "Bearer fresh"

    def test_refresh_without_refresh_token_fails(self):
        session = MagicMock()
        token = {"access_token": "old", "expiry": "2000-01-01T00:00:00Z"}
        with pytest.raises(SheetSyncError):
            _client(session, token=token).fetch_all_rows()
        session.request.assert_not_called()

    def test_concurrent_401s_share_one_refresh(self):
        workers = 6
        stale_sent = threading.Barrier(workers)
        session = MagicMock()
        session.post.return_value = _resp(payload={"access_token": "fresh"})

        def request(method, url, **kwargs):
            if kwargs["headers"]["Authorization"] == "Bearer tok":
                # every worker sends with the old token before any refresh happens
                stale_sent.wait(timeout=5)
                return _resp(401)
            return _resp(payload={"values": [["A"]]})

        session.request.side_effect = request
        client = _client(session)
        results, errors = [], []

        def worker():
            try:
                results.append(client.fetch_all_rows())
            except Exception as exc:  # surfaced through the assertion below
                errors.append(exc)

        threads = [threading.Thread(target=worker) for _ in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)
        assert errors == []
        assert results == [[["A"]]] * workers
        assert session.post.call_count == 1

    def test_token_replaced_by_another_thread_is_reused(self):
        session = MagicMock()
        session.post.return_value = _resp(payload={"access_token": "fresh"})
        client = _client(session)
        client._refresh_rejected("tok")
        client._refresh_rejected("tok")
        assert session.post.call_count == 1
        assert client._access_token() == "fresh"


class TestRegistry:
    def test_one_client_per_directory(self):
        built = []

        def factory(directory_id):
            built.append(directory_id)
            return object()

        registry = SheetClientRegistry(factory)
        first = registry.get_client("d1")
        assert registry.get_client("d1") is first
        assert built == ["d1"]
        registry.evict("d1")
        assert registry.get_client("d1") is not first

    def test_concurrent_first_lookups_build_once(self):
        calls = []
        gate = threading.Barrier(8)

        def factory(directory_id):
            calls.append(directory_id)
            return object()

        registry = SheetClientRegistry(factory)
        results = []

        def worker():
            gate.wait()
            results.append(registry.get_client("d1"))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(calls) == 1
        assert all(r is results[0] for r in results)

    def test_factory_failure_not_cached(self):
        attempts = []

        def factory(directory_id):
            attempts.append(directory_id)
            if len(attempts) == 1:
                raise SheetNotConnectedError(directory_id)
            return object()

        registry = SheetClientRegistry(factory)
        with pytest.raises(SheetNotConnectedError):
            registry.get_client("d1")
        assert registry.get_client("d1") is not None

    def test_build_requires_connection(self, directory):
        with pytest.raises(SheetNotConnectedError):
            build_google_client(directory)


class TestDispatcher:
    def test_off_mode_skips(self, fake_sheet):
        SheetSyncDispatcher(MODE_OFF).dispatch("d1", OP_UPDATE_CELL, row_index=0, col_index=0, value="x")
        assert fake_sheet.calls == []

    def test_inline_mode_runs(self, fake_sheet):
        SheetSyncDispatcher(MODE_INLINE).dispatch(
            "d1", OP_UPDATE_CELL, row_index=0, col_index=1, value="x"
        )
        assert fake_sheet.calls == [("update_cell", {"row_index": 0, "col_index": 1, "value": "x"})]

    def test_thread_mode_runs_off_request(self, fake_sheet):
        thread = SheetSyncDispatcher("thread").dispatch("d1", "delete_row", row_index=3)
        thread.join(timeout=5)
        assert fake_sheet.calls == [("delete_row", {"row_index": 3})]

    def test_unexpected_errors_are_swallowed(self, fake_sheet):
        fake_sheet.fail_with = RuntimeError("boom")
        SheetSyncDispatcher(MODE_INLINE).dispatch("d1", "append_row", values=["a"])

    def test_unknown_operation_rejected(self):
        with pytest.raises(ValueError):
            SheetSyncDispatcher(MODE_INLINE).dispatch("d1", "drop_table")

    def test_unknown_mode_rejected(self):
        with pytest.raises(ValueError):
            SheetSyncDispatcher("sometimes")
