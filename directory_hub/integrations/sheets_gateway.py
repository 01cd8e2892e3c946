"""Google Sheets gateway: the backing-spreadsheet collaborator of a directory.

Architecture:
  SheetClient is the abstract capability the rest of the app consumes:
    fetch_all_rows / append_row / update_cell / delete_row
  GoogleSheetsClient implements it over the Sheets v4 REST API with
  ``requests``.  All outbound calls go through ``_call``, which enforces:
  auth injection → retry with backoff → typed failure.

  SheetClientRegistry hands out one client per directory (lookup-or-create
  under double-checked locking) and is stored on the app as
  ``app.extensions["sheet_clients"]``.  Tests install a registry whose
  factory returns a fake client.

Provider constants:
  timeout    = 30 s
  retry_max  = 2     (max retry attempts after initial failure, never unbounded)
  backoff    = [1, 4] seconds

Row addressing:
  Sheet row 1 is the header.  Directory row index ``i`` (zero-based) lives
  on sheet row ``i + 2``; DeleteDimension uses zero-based ``i + 1``.
"""

from __future__ import annotations

import json
import logging
import re
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import quote

import requests
from flask import current_app

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 30
_RETRY_MAX = 2
_RETRY_BACKOFF_SECONDS = [1, 4]

_SPREADSHEET_ID_RE = re.compile(r"/spreadsheets/d/([a-zA-Z0-9-_]+)")

APPEND_RANGE = "A:Z"


class SheetSyncError(Exception):
    """Raised when a spreadsheet call fails after all retries."""

    def __init__(self, operation: str, detail: str = "", status_code: int | None = None):
        self.operation = operation
        self.status_code = status_code
        msg = f"sheet {operation} failed"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class SheetNotConnectedError(SheetSyncError):
    """The directory has no backing spreadsheet or no stored credential."""

    def __init__(self, directory_id: str):
        self.directory_id = directory_id
        super().__init__("connect", f"directory {directory_id!r} has no connected sheet")


# ── Helpers ───────────────────────────────────────────────────────────────────


def extract_spreadsheet_id(url: str) -> str | None:
    """Pull the spreadsheet ID out of a Google Sheets URL, or None."""
    match = _SPREADSHEET_ID_RE.search(url or "")
    return match.group(1) if match else None


def column_index_to_letter(index: int) -> str:
    """0 → "A", 25 → "Z", 26 → "AA"."""
    letters = []
    while index >= 0:
        letters.append(chr(ord("A") + index % 26))
        index = index // 26 - 1
    return "".join(reversed(letters))


def _cell(value: Any) -> str:
    return "" if value is None else str(value)


# ── Abstract capability ──────────────────────────────────────────────────────


class SheetClient(ABC):
    """Everything the directory core needs from a backing spreadsheet."""

    @abstractmethod
    def fetch_all_rows(self) -> list[list[str]]:
        """Return every row including the header row, cells as strings."""

    @abstractmethod
    def append_row(self, values: list[str]) -> None:
        ...

    @abstractmethod
    def update_cell(self, row_index: int, col_index: int, value: str) -> None:
        """Overwrite one cell; ``row_index`` is the zero-based data-row index."""

    @abstractmethod
    def delete_row(self, row_index: int) -> None:
        """Remove one data row; ``row_index`` is the zero-based data-row index."""


# ── Google implementation ────────────────────────────────────────────────────


class GoogleSheetsClient(SheetClient):
    """Sheets v4 REST client authenticated with a stored OAuth token.

    ``token`` is the decoded token dict (``access_token``, optional
    ``refresh_token`` and ISO ``expiry``).  An expired token is refreshed
    before the call; a 401 forces one refresh and an immediate retry.
    ``on_token_refresh`` receives the new token dict so the caller can
    persist it.

    One instance is shared by every write-back thread of its directory, so
    token state is read and refreshed under ``_token_lock``.  A thread that
    hits 401 with a token another thread already replaced reuses the new
    token instead of refreshing again.
    """

    def __init__(
        self,
        spreadsheet_id: str,
        token: dict,
        *,
        api_base: str = "https://sheets.googleapis.com/v4/spreadsheets",
        sheet_range: str = "A:ZZ",
        sheet_gid: int = 0,
        token_url: str = "https://oauth2.googleapis.com/token",
        client_id: str | None = None,
        client_secret: str | None = None,
        session: requests.Session | None = None,
        timeout: int = _DEFAULT_TIMEOUT,
        on_token_refresh: Callable[[dict], None] | None = None,
    ) -> None:
        self.spreadsheet_id = spreadsheet_id
        self._token = dict(token)
        self.api_base = api_base.rstrip("/")
        self.sheet_range = sheet_range
        self.sheet_gid = sheet_gid
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.session = session or requests.Session()
        self.timeout = timeout
        self._on_token_refresh = on_token_refresh
        self._token_lock = threading.Lock()

    # ── Auth ──────────────────────────────────────────────────────────────────

    def _token_expired(self) -> bool:
        expiry = self._token.get("expiry")
        if not expiry:
            return False
        try:
            expires_at = datetime.fromisoformat(expiry.replace("Z", "+00:00"))
        except ValueError:
            return False
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return datetime.now(timezone.utc) >= expires_at - timedelta(seconds=60)

    def _access_token(self) -> str:
        """Current access token, refreshed first when it is about to expire."""
        with self._token_lock:
            if self._token_expired():
                self._refresh_token()
            access_token = self._token.get("access_token")
        if not access_token:
            raise SheetSyncError("auth", "token has no access_token")
        return access_token

    def _refresh_rejected(self, rejected_token: str) -> None:
        """Refresh after a 401 unless another thread already replaced *rejected_token*."""
        with self._token_lock:
            if self._token.get("access_token") == rejected_token:
                self._refresh_token()

    def _refresh_token(self) -> None:
        # Caller holds _token_lock
        refresh_token = self._token.get("refresh_token")
        if not refresh_token:
            raise SheetSyncError("refresh", "no refresh token available")
        resp = self.session.post(
            self.token_url,
            data={
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self.client_id or "",
                "client_secret": self.client_secret or "",
            },
            timeout=20,
        )
        if not resp.ok:
            raise SheetSyncError("refresh", f"HTTP {resp.status_code}", resp.status_code)
        payload = resp.json()
        self._token["access_token"] = payload["access_token"]
        expires_in = int(payload.get("expires_in", 3600))
        self._token["expiry"] = (
            datetime.now(timezone.utc) + timedelta(seconds=expires_in)
        ).isoformat()
        logger.info("Sheet token refreshed spreadsheet_id=%s", self.spreadsheet_id)
        if self._on_token_refresh is not None:
            self._on_token_refresh(dict(self._token))

    @staticmethod
    def _auth_headers(access_token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    # ── Internal HTTP dispatch ────────────────────────────────────────────────

    def _url(self, suffix: str) -> str:
        return f"{self.api_base}/{self.spreadsheet_id}{suffix}"

    def _call(
        self,
        operation: str,
        method: str,
        url: str,
        *,
        params: dict | None = None,
        json_body: dict | None = None,
    ) -> dict:
        """Execute an authenticated request with bounded retry.

          1. Build auth headers (refreshing an expired token).
          2. Execute; on 2xx → return the decoded body.
          3. On 401 → refresh the token once and retry immediately.
          4. On 4xx other than 401/429 → fail without retrying.
          5. Otherwise sleep and retry up to _RETRY_MAX times.

        Raises:
            SheetSyncError: once retries are exhausted or the failure is final.
        """
        token_refreshed = False
        last_error = "unknown error"
        last_status: int | None = None

        attempt = 0
        while attempt <= _RETRY_MAX:
            try:
                access_token = self._access_token()
                kwargs: dict[str, Any] = {
                    "headers": self._auth_headers(access_token),
                    "timeout": self.timeout,
                }
                if params:
                    kwargs["params"] = params
                if json_body is not None:
                    kwargs["json"] = json_body

                resp = self.session.request(method, url, **kwargs)
                last_status = resp.status_code

                if resp.status_code == 401 and not token_refreshed:
                    token_refreshed = True
                    logger.info(
                        "Sheets 401, refreshing token and retrying spreadsheet_id=%s",
                        self.spreadsheet_id,
                    )
                    self._refresh_rejected(access_token)
                    continue

                if resp.ok:
                    try:
                        return resp.json() if resp.content else {}
                    except ValueError:
                        return {}

                last_error = f"HTTP {resp.status_code}: {resp.text[:500]}"
                if 400 <= resp.status_code < 500 and resp.status_code != 429:
                    raise SheetSyncError(operation, last_error, resp.status_code)
                logger.warning(
                    "Sheets %s failed attempt=%d/%d status=%d spreadsheet_id=%s",
                    operation, attempt + 1, _RETRY_MAX + 1, resp.status_code, self.spreadsheet_id,
                )

            except requests.Timeout:
                last_error = f"request timed out after {self.timeout}s"
                logger.warning(
                    "Sheets %s timed out attempt=%d/%d spreadsheet_id=%s",
                    operation, attempt + 1, _RETRY_MAX + 1, self.spreadsheet_id,
                )

            except requests.RequestException as exc:
                last_error = str(exc)[:500]
                logger.warning(
                    "Sheets %s network error attempt=%d/%d spreadsheet_id=%s error=%s",
                    operation, attempt + 1, _RETRY_MAX + 1, self.spreadsheet_id, last_error,
                )

            if attempt < _RETRY_MAX:
                sleep_s = _RETRY_BACKOFF_SECONDS[min(attempt, len(_RETRY_BACKOFF_SECONDS) - 1)]
                time.sleep(sleep_s)
            attempt += 1

        raise SheetSyncError(operation, last_error, last_status)

    # ── Public operations ─────────────────────────────────────────────────────

    def fetch_all_rows(self) -> list[list[str]]:
        data = self._call(
            "fetch", "GET", self._url(f"/values/{quote(self.sheet_range, safe='')}")
        )
        return [[_cell(v) for v in row] for row in data.get("values", [])]

    def append_row(self, values: list[str]) -> None:
        self._call(
            "append",
            "POST",
            self._url(f"/values/{quote(APPEND_RANGE, safe='')}:append"),
            params={"valueInputOption": "USER_ENTERED", "insertDataOption": "INSERT_ROWS"},
            json_body={"values": [list(values)]},
        )

    def update_cell(self, row_index: int, col_index: int, value: str) -> None:
        cell_range = f"{column_index_to_letter(col_index)}{row_index + 2}"
        self._call(
            "update",
            "PUT",
            self._url(f"/values/{quote(cell_range, safe='')}"),
            params={"valueInputOption": "USER_ENTERED"},
            json_body={"values": [[value]]},
        )

    def delete_row(self, row_index: int) -> None:
        start = row_index + 1
        self._call(
            "delete",
            "POST",
            self._url(":batchUpdate"),
            json_body={
                "requests": [
                    {
                        "deleteDimension": {
                            "range": {
                                "sheetId": self.sheet_gid,
                                "dimension": "ROWS",
                                "startIndex": start,
                                "endIndex": start + 1,
                            }
                        }
                    }
                ]
            },
        )


# ── Registry ──────────────────────────────────────────────────────────────────


class SheetClientRegistry:
    """Per-directory SheetClient lookup-or-create.

    The fast path reads the map without the lock; a miss takes the lock
    and re-checks before calling the factory, so concurrent first requests
    for one directory build exactly one client.  Factory failures are not
    cached.
    """

    def __init__(self, factory: Callable[[str], SheetClient]):
        self._factory = factory
        self._clients: dict[str, SheetClient] = {}
        self._lock = threading.Lock()

    def get_client(self, directory_id: str) -> SheetClient:
        client = self._clients.get(directory_id)
        if client is not None:
            return client
        with self._lock:
            client = self._clients.get(directory_id)
            if client is None:
                client = self._factory(directory_id)
                self._clients[directory_id] = client
                logger.debug("Sheet client created directory_id=%s", directory_id)
            return client

    def evict(self, directory_id: str) -> None:
        with self._lock:
            self._clients.pop(directory_id, None)

    def clear(self) -> None:
        with self._lock:
            self._clients.clear()

    def __contains__(self, directory_id: str) -> bool:
        return directory_id in self._clients


def build_google_client(directory_id: str) -> GoogleSheetsClient:
    """Factory used in production: reads the stored connection and decrypts its token.

    Must run inside an app context.
    """
    from directory_hub.models import db
    from directory_hub.models.directory import SheetConnection
    from directory_hub.utils.crypto import decrypt_secret, encrypt_secret

    conn = db.session.get(SheetConnection, directory_id)
    if conn is None or not conn.encrypted_token:
        raise SheetNotConnectedError(directory_id)

    token = json.loads(decrypt_secret(conn.encrypted_token))
    cfg = current_app.config

    def _persist(new_token: dict) -> None:
        stored = db.session.get(SheetConnection, directory_id)
        if stored is None:
            return
        stored.encrypted_token = encrypt_secret(json.dumps(new_token))
        db.session.commit()

    return GoogleSheetsClient(
        conn.spreadsheet_id,
        token,
        api_base=cfg.get("SHEETS_API_BASE", "https://sheets.googleapis.com/v4/spreadsheets"),
        sheet_range=cfg.get("SHEET_RANGE", "A:ZZ"),
        sheet_gid=conn.sheet_gid or 0,
        token_url=cfg.get("GOOGLE_TOKEN_URL", "https://oauth2.googleapis.com/token"),
        client_id=cfg.get("GOOGLE_CLIENT_ID"),
        client_secret=cfg.get("GOOGLE_CLIENT_SECRET"),
        on_token_refresh=_persist,
    )


def init_sheet_clients(app, factory: Callable[[str], SheetClient] | None = None) -> SheetClientRegistry:
    registry = SheetClientRegistry(factory or build_google_client)
    app.extensions["sheet_clients"] = registry
    return registry


def get_sheet_registry() -> SheetClientRegistry:
    return current_app.extensions["sheet_clients"]
