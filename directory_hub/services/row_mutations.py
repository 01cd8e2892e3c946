"""
Row mutations shared by direct writes and change approval.

These helpers stage changes on the session and never commit: the caller
owns the transaction.  Each returns the SheetWrite to push to the backing
spreadsheet once that transaction has committed.  The sheet row index is
captured before the mutation (a deleted row has no position afterwards).
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from directory_hub.models import db
from directory_hub.models.directory import DirectoryRow
from directory_hub.services import directory_service
from directory_hub.services.sheet_sync import (
    OP_APPEND_ROW,
    OP_DELETE_ROW,
    OP_UPDATE_CELL,
    get_sheet_dispatcher,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SheetWrite:
    op: str
    kwargs: dict = field(default_factory=dict)


def apply_edit(directory_id: str, row_id: int, column_index: int, value: str) -> SheetWrite:
    row = directory_service.get_row(directory_id, row_id)
    values = row.values
    if column_index >= len(values):
        values.extend([""] * (column_index + 1 - len(values)))
    values[column_index] = value
    row.values = values
    position = directory_service.row_position(directory_id, row_id)
    logger.debug(
        "Row edited directory_id=%s row_id=%s column=%d", directory_id, row_id, column_index
    )
    return SheetWrite(
        OP_UPDATE_CELL, {"row_index": position, "col_index": column_index, "value": value}
    )


def apply_add(directory_id: str, values: Sequence[str]) -> tuple[DirectoryRow, SheetWrite]:
    row = DirectoryRow(directory_id=directory_id)
    row.values = list(values)
    db.session.add(row)
    db.session.flush()
    logger.debug("Row added directory_id=%s row_id=%s", directory_id, row.id)
    return row, SheetWrite(OP_APPEND_ROW, {"values": list(values)})


def apply_delete(directory_id: str, row_id: int) -> SheetWrite:
    row = directory_service.get_row(directory_id, row_id)
    position = directory_service.row_position(directory_id, row_id)
    db.session.delete(row)
    logger.debug("Row deleted directory_id=%s row_id=%s", directory_id, row_id)
    return SheetWrite(OP_DELETE_ROW, {"row_index": position})


def dispatch_sheet_write(directory_id: str, write: SheetWrite | None) -> None:
    """Hand a committed change to the write-back dispatcher."""
    if write is None:
        return
    get_sheet_dispatcher().dispatch(directory_id, write.op, **write.kwargs)
