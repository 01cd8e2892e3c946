"""
Sheet write-back dispatcher: fire-and-forget spreadsheet sync.

After a row write commits locally, the change is pushed to the backing
spreadsheet.  The triggering request never waits for it and a failure
never touches the committed local state: it is logged and dropped.
There is no retry queue beyond the gateway's own bounded retry.

Modes (``SHEET_SYNC_MODE``):
  thread: daemon thread with its own app context (default)
  inline: run in the request thread, still swallowing failures
  off:    log and skip (tests)
"""

import logging
import threading

from flask import current_app

from directory_hub.integrations.sheets_gateway import SheetSyncError, get_sheet_registry

logger = logging.getLogger(__name__)

MODE_THREAD = "thread"
MODE_INLINE = "inline"
MODE_OFF = "off"

OP_UPDATE_CELL = "update_cell"
OP_APPEND_ROW = "append_row"
OP_DELETE_ROW = "delete_row"
OPERATIONS = frozenset({OP_UPDATE_CELL, OP_APPEND_ROW, OP_DELETE_ROW})


class SheetSyncDispatcher:
    """Runs SheetClient write-backs outside the request's transaction."""

    def __init__(self, mode: str = MODE_THREAD):
        if mode not in (MODE_THREAD, MODE_INLINE, MODE_OFF):
            raise ValueError(f"unknown sheet sync mode: {mode!r}")
        self.mode = mode

    def dispatch(self, directory_id: str, op: str, **kwargs) -> threading.Thread | None:
        """Schedule ``SheetClient.<op>(**kwargs)`` for *directory_id*.

        Returns the started thread in ``thread`` mode, otherwise None.
        """
        if op not in OPERATIONS:
            raise ValueError(f"unknown sheet operation: {op!r}")
        if self.mode == MODE_OFF:
            logger.debug("Sheet sync off, skipping %s directory_id=%s", op, directory_id)
            return None

        app = current_app._get_current_object()
        if self.mode == MODE_INLINE:
            self._run(app, directory_id, op, kwargs)
            return None

        t = threading.Thread(
            target=self._run,
            args=(app, directory_id, op, kwargs),
            name=f"sheet-sync-{directory_id}",
            daemon=True,
        )
        t.start()
        return t

    @staticmethod
    def _run(app, directory_id: str, op: str, kwargs: dict) -> None:
        with app.app_context():
            try:
                client = get_sheet_registry().get_client(directory_id)
                getattr(client, op)(**kwargs)
                logger.info("Sheet sync ok op=%s directory_id=%s", op, directory_id)
            except SheetSyncError as exc:
                logger.warning(
                    "Sheet sync failed op=%s directory_id=%s: %s", op, directory_id, exc
                )
            except Exception:
                logger.exception("Sheet sync crashed op=%s directory_id=%s", op, directory_id)


def init_sheet_sync(app, dispatcher: SheetSyncDispatcher | None = None) -> SheetSyncDispatcher:
    dispatcher = dispatcher or SheetSyncDispatcher(app.config.get("SHEET_SYNC_MODE", MODE_THREAD))
    app.extensions["sheet_sync"] = dispatcher
    return dispatcher


def get_sheet_dispatcher() -> SheetSyncDispatcher:
    return current_app.extensions["sheet_sync"]
