"""
Row filter evaluator: declarative moderator row-access policies.

A moderator's access to rows is described by a list of Controls.  Each
Control pairs a column selector with a filter; a row is accessible when
ANY Control matches it (logical OR).  Broader policies are therefore
expressed as additional Controls, never as one compound filter.

Column selectors:
    SingleColumn("Score")              → exactly one value ("" if absent)
    ColumnRange("Q1", "Q4")            → every column in the span, inclusive

Filters:
    NumericRange(Above(40))            → any parseable value > 40
    NumericRange(Below(10))            → any parseable value < 10
    NumericRange(Between(1, 5))        → any parseable value in [1, 5]
    Categories(["Food"]) / Locations(["Boston"])
                                       → case-insensitive, trimmed equality
    Tags(["green"])                    → as Categories, after comma-splitting

Evaluation is pure and tolerant: missing columns read as "" and cells
that are not numbers never match a numeric filter.  Only malformed
*filter definitions* are errors, and those are rejected up front by
``parse_*`` (shape) and ``validate_filters`` (invariants + schema).

The JSON wire format is the one stored in ``moderator_domains``:

    {"column": {"type": "single", "value": "Score"},
     "filter": {"type": "numeric_range", "id": 1,
                "range": {"type": "above", "threshold": 40}}}
"""

from __future__ import annotations

import json
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Union

from directory_hub.core.exceptions import ValidationError

RANGE_MODE_POSITIONAL = "positional"
RANGE_MODE_LEXICAL = "lexical"
RANGE_MODES = frozenset({RANGE_MODE_POSITIONAL, RANGE_MODE_LEXICAL})


# ── Column selectors ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class SingleColumn:
    name: str

    def is_valid(self) -> bool:
        return bool(self.name)

    def to_dict(self) -> dict:
        return {"type": "single", "value": self.name}


@dataclass(frozen=True)
class ColumnRange:
    start: str
    end: str

    def is_valid(self) -> bool:
        return bool(self.start) and bool(self.end) and self.start != self.end

    def to_dict(self) -> dict:
        return {"type": "range", "start": self.start, "end": self.end}


ColumnID = Union[SingleColumn, ColumnRange]


# ── Numeric ranges ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Above:
    threshold: float

    def is_valid(self) -> bool:
        return math.isfinite(self.threshold)

    def contains(self, number: float) -> bool:
        return number > self.threshold

    def to_dict(self) -> dict:
        return {"type": "above", "threshold": self.threshold}


@dataclass(frozen=True)
class Below:
    threshold: float

    def is_valid(self) -> bool:
        return math.isfinite(self.threshold)

    def contains(self, number: float) -> bool:
        return number < self.threshold

    def to_dict(self) -> dict:
        return {"type": "below", "threshold": self.threshold}


@dataclass(frozen=True)
class Between:
    minimum: float
    maximum: float

    def is_valid(self) -> bool:
        return (
            math.isfinite(self.minimum)
            and math.isfinite(self.maximum)
            and self.minimum < self.maximum
        )

    def contains(self, number: float) -> bool:
        return self.minimum <= number <= self.maximum

    def to_dict(self) -> dict:
        return {"type": "between", "min": self.minimum, "max": self.maximum}


RangeFilter = Union[Above, Below, Between]


# ── Filters ───────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class NumericRange:
    range: RangeFilter
    id: int = 0

    def is_valid(self) -> bool:
        return self.range.is_valid()

    def to_dict(self) -> dict:
        return {"type": "numeric_range", "range": self.range.to_dict(), "id": self.id}


@dataclass(frozen=True)
class Locations:
    values: tuple[str, ...]

    def is_valid(self) -> bool:
        return len(self.values) > 0

    def to_dict(self) -> dict:
        return {"type": "locations", "values": list(self.values)}


@dataclass(frozen=True)
class Categories:
    values: tuple[str, ...]

    def is_valid(self) -> bool:
        return len(self.values) > 0

    def to_dict(self) -> dict:
        return {"type": "categories", "values": list(self.values)}


@dataclass(frozen=True)
class Tags:
    values: tuple[str, ...]

    def is_valid(self) -> bool:
        return len(self.values) > 0

    def to_dict(self) -> dict:
        return {"type": "tags", "values": list(self.values)}


Filter = Union[NumericRange, Locations, Categories, Tags]


@dataclass(frozen=True)
class Control:
    column: ColumnID
    filter: Filter

    def to_dict(self) -> dict:
        return {"column": self.column.to_dict(), "filter": self.filter.to_dict()}


@dataclass(frozen=True)
class RowScope:
    """Full row-access policy of one moderator domain.

    ``all_rows=True`` grants every row.  Otherwise access is decided by
    ``controls``; an empty control list grants nothing.
    """

    all_rows: bool = False
    controls: tuple[Control, ...] = field(default_factory=tuple)

    @classmethod
    def everything(cls) -> RowScope:
        return cls(all_rows=True)

    @property
    def denies_all(self) -> bool:
        return not self.all_rows and not self.controls

    def allows(self, row: Mapping[str, str], range_mode: str = RANGE_MODE_LEXICAL) -> bool:
        if self.all_rows:
            return True
        return matches(self.controls, row, range_mode)

    def to_dict(self) -> dict:
        if self.all_rows:
            return {"scope": "all"}
        return {"scope": "controls", "controls": [c.to_dict() for c in self.controls]}

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


# ── Parsing (wire format → variants) ──────────────────────────────────────────


def _require_mapping(raw, what: str) -> Mapping:
    if not isinstance(raw, Mapping):
        raise ValidationError(f"{what} must be an object")
    return raw


def _number(raw, what: str) -> float:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise ValidationError(f"{what} must be a number")
    return float(raw)


def _string_values(raw, what: str) -> tuple[str, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, Sequence) or isinstance(raw, str):
        raise ValidationError(f"{what} must be a list of strings")
    if not all(isinstance(v, str) for v in raw):
        raise ValidationError(f"{what} must be a list of strings")
    return tuple(raw)


def parse_column_id(raw) -> ColumnID:
    raw = _require_mapping(raw, "column")
    match raw.get("type"):
        case "single":
            return SingleColumn(str(raw.get("value") or ""))
        case "range":
            return ColumnRange(str(raw.get("start") or ""), str(raw.get("end") or ""))
        case other:
            raise ValidationError(f"unsupported column type: {other!r}")


def parse_range_filter(raw) -> RangeFilter:
    raw = _require_mapping(raw, "range")
    match raw.get("type"):
        case "above":
            return Above(_number(raw.get("threshold", 0), "threshold"))
        case "below":
            return Below(_number(raw.get("threshold", 0), "threshold"))
        case "between":
            return Between(_number(raw.get("min", 0), "min"), _number(raw.get("max", 0), "max"))
        case other:
            raise ValidationError(f"unsupported range type: {other!r}")


def parse_filter(raw) -> Filter:
    raw = _require_mapping(raw, "filter")
    match raw.get("type"):
        case "numeric_range":
            if raw.get("range") is None:
                raise ValidationError("numeric_range filter requires a range")
            range_id = raw.get("id", 0) or 0
            if isinstance(range_id, bool) or not isinstance(range_id, int):
                raise ValidationError("numeric_range id must be an integer")
            return NumericRange(parse_range_filter(raw["range"]), range_id)
        case "locations":
            return Locations(_string_values(raw.get("values"), "locations values"))
        case "categories":
            return Categories(_string_values(raw.get("values"), "categories values"))
        case "tags":
            return Tags(_string_values(raw.get("values"), "tags values"))
        case other:
            raise ValidationError(f"unsupported filter type: {other!r}")


def parse_control(raw) -> Control:
    raw = _require_mapping(raw, "control")
    return Control(parse_column_id(raw.get("column")), parse_filter(raw.get("filter")))


def parse_controls(raw) -> tuple[Control, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, Sequence) or isinstance(raw, (str, bytes)):
        raise ValidationError("controls must be a list")
    return tuple(parse_control(item) for item in raw)


def parse_row_scope(raw) -> RowScope:
    """Parse a stored or submitted row-access specification.

    Accepts the JSON text stored in ``moderator_domains.row_filter_json``,
    an already-decoded object, a bare list of controls, or the shorthands
    ``"all"`` / ``"*"``.  Empty input means "no rows".
    """
    if raw is None or raw == "":
        return RowScope()
    if isinstance(raw, (str, bytes)):
        text = raw.decode() if isinstance(raw, bytes) else raw
        if text.strip() in ("all", "*"):
            return RowScope.everything()
        try:
            raw = json.loads(text)
        except ValueError as exc:
            raise ValidationError("row filter is not valid JSON") from exc
    if isinstance(raw, str):
        return parse_row_scope(raw)
    if isinstance(raw, Mapping):
        scope = raw.get("scope")
        if scope == "all":
            return RowScope.everything()
        if scope in (None, "controls"):
            return RowScope(controls=parse_controls(raw.get("controls")))
        raise ValidationError(f"unsupported row scope: {scope!r}")
    return RowScope(controls=parse_controls(raw))


# ── Evaluation ────────────────────────────────────────────────────────────────


def resolve_column(
    column: ColumnID,
    row: Mapping[str, str],
    range_mode: str = RANGE_MODE_LEXICAL,
) -> list[str]:
    """Return the cell value(s) a column selector refers to in *row*.

    *row* maps column name → cell value in schema order.  A single column
    that is absent resolves to ``[""]``.  Ranges resolve either by inclusive
    lexical comparison of column names (default) or, opt-in, by schema
    position, where an unknown endpoint yields no values.
    """
    match column:
        case SingleColumn(name=name):
            return [row.get(name, "")]
        case ColumnRange(start=start, end=end) if range_mode == RANGE_MODE_LEXICAL:
            return [value for name, value in row.items() if start <= name <= end]
        case ColumnRange(start=start, end=end):
            names = list(row.keys())
            if start not in names or end not in names:
                return []
            lo, hi = names.index(start), names.index(end)
            if lo > hi:
                lo, hi = hi, lo
            return [row[name] for name in names[lo:hi + 1]]
    raise ValidationError(f"unsupported column selector: {column!r}")


def _parse_number(value: str) -> float | None:
    text = (value or "").strip()
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def _matches_any_string(wanted: Sequence[str], actual: Sequence[str]) -> bool:
    targets = {w.strip().casefold() for w in wanted}
    return any(a.strip().casefold() in targets for a in actual)


def filter_matches(flt: Filter, values: Sequence[str]) -> bool:
    match flt:
        case NumericRange(range=rng):
            for value in values:
                number = _parse_number(value)
                if number is not None and rng.contains(number):
                    return True
            return False
        case Locations(values=wanted) | Categories(values=wanted):
            return _matches_any_string(wanted, values)
        case Tags(values=wanted):
            fragments = [part for value in values for part in value.split(",")]
            return _matches_any_string(wanted, fragments)
    raise ValidationError(f"unsupported filter: {flt!r}")


def control_matches(
    control: Control,
    row: Mapping[str, str],
    range_mode: str = RANGE_MODE_LEXICAL,
) -> bool:
    return filter_matches(control.filter, resolve_column(control.column, row, range_mode))


def matches(
    controls: Sequence[Control],
    row: Mapping[str, str],
    range_mode: str = RANGE_MODE_LEXICAL,
) -> bool:
    """True iff at least one control matches *row*; an empty list never matches."""
    return any(control_matches(c, row, range_mode) for c in controls)


def materialize_row(column_names: Sequence[str], values: Sequence[str]) -> dict[str, str]:
    """Zip a stored value list with the column schema (missing cells read as "")."""
    return {
        name: (values[i] if i < len(values) else "")
        for i, name in enumerate(column_names)
    }


# ── Validation (appointment time only) ────────────────────────────────────────


def validate_filters(controls: Sequence[Control], column_names: Sequence[str]) -> None:
    """Check each control against its own invariants and the live column schema.

    Raises:
        ValidationError: naming the first offending control by index.
    """
    known = set(column_names)
    for i, control in enumerate(controls):
        column = control.column
        if not column.is_valid():
            raise ValidationError(f"control {i} has invalid column ID", details={"index": i})
        match column:
            case SingleColumn(name=name) if name not in known:
                raise ValidationError(
                    f"control {i} references non-existent column: {name}",
                    details={"index": i, "column": name},
                )
            case ColumnRange(start=start, end=end) if start not in known or end not in known:
                raise ValidationError(
                    f"control {i} references non-existent columns in range: {start}-{end}",
                    details={"index": i, "start": start, "end": end},
                )
        if not control.filter.is_valid():
            raise ValidationError(f"control {i} has invalid filter", details={"index": i})
