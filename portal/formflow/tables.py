import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

from .models import Field, FieldType, TableShape

log = logging.getLogger(__name__)


@dataclass
class TableValue:
    rows: int
    cols: int
    cells: List[List[str]] = field(default_factory=list)
    column_widths: Optional[List[float]] = None
    column_headers: Optional[List[str]] = None

    def to_json(self) -> str:
        payload: dict = {"rows": self.rows, "cols": self.cols, "cells": self.cells}
        if self.column_widths is not None:
            payload["columnWidths"] = self.column_widths
        if self.column_headers is not None:
            payload["columnHeaders"] = self.column_headers
        return json.dumps(payload, ensure_ascii=False)


@dataclass(frozen=True)
class TableCell:
    row: int  # -1 for the header row
    col: int
    left: float
    top: float
    width: float
    height: float
    text: str


@dataclass
class TableLayout:
    rows: int
    cols: int
    row_height: float
    column_widths: List[float]
    header: List[TableCell]
    body: List[List[TableCell]]

    @property
    def has_header(self) -> bool:
        return bool(self.header)


def _positive_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int) and value > 0:
        return value
    if isinstance(value, float) and value.is_integer() and value > 0:
        return int(value)
    return None


def _clean_cells(raw: Any) -> List[List[str]]:
    if not isinstance(raw, list):
        return []
    out = []
    for row in raw:
        if isinstance(row, list):
            out.append(["" if c is None else str(c) for c in row])
        else:
            out.append([])
    return out


def _clean_widths(raw: Any) -> Optional[List[float]]:
    if not isinstance(raw, list):
        return None
    try:
        widths = [float(w) for w in raw]
    except (TypeError, ValueError):
        widths = None
    if widths is None or not all(math.isfinite(w) for w in widths):
        log.warning("ignoring unusable column widths %.60r", raw)
        return None
    return widths


def decode_table_value(raw: Optional[str]) -> Optional[TableValue]:
    """Parse a table field value; ``None`` when it is not a usable table."""
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        log.debug("table value is not JSON: %.40r", raw)
        return None
    if not isinstance(data, dict):
        return None
    rows = _positive_int(data.get("rows"))
    cols = _positive_int(data.get("cols"))
    if rows is None or cols is None:
        return None
    headers = data.get("columnHeaders")
    return TableValue(
        rows=rows,
        cols=cols,
        cells=_clean_cells(data.get("cells")),
        column_widths=_clean_widths(data.get("columnWidths")),
        column_headers=["" if h is None else str(h) for h in headers] if isinstance(headers, list) else None,
    )


def encode_table_value(value: TableValue) -> str:
    return value.to_json()


def empty_table_value(shape: TableShape) -> TableValue:
    return TableValue(
        rows=shape.rows,
        cols=shape.cols,
        cells=[["" for _ in range(shape.cols)] for _ in range(shape.rows)],
        column_widths=shape.column_widths,
    )


def cell_text(cells: Optional[Sequence[Sequence[Any]]], row: int, col: int) -> str:
    if not cells or row < 0 or col < 0 or row >= len(cells):
        return ""
    line = cells[row]
    if not isinstance(line, (list, tuple)) or col >= len(line):
        return ""
    raw = line[col]
    return "" if raw is None else str(raw).strip()


def resolve_cell_text(value: Optional[TableValue], shape: Optional[TableShape], row: int, col: int) -> str:
    text = cell_text(value.cells if value else None, row, col)
    if text:
        return text
    return cell_text(shape.cells if shape else None, row, col)


def has_header_row(headers: Optional[Sequence[str]]) -> bool:
    return bool(headers) and any(h for h in headers)


def column_widths(cols: int, fractions: Optional[Sequence[float]], total_width: float) -> List[float]:
    """Split ``total_width`` into ``cols`` columns.

    Fractions are honoured when there is one non-negative entry per column;
    they are divided by their sum so the columns always add up to the total.
    Anything else falls back to equal columns.
    """
    if fractions and len(fractions) == cols and all(f >= 0 for f in fractions):
        weight = sum(fractions)
        if weight > 0:
            return [total_width * f / weight for f in fractions]
    log.debug("using equal column widths for %d columns", cols)
    return [total_width / cols] * cols


def table_value_for(f: Field) -> Optional[TableValue]:
    """The grid to draw for a field, or ``None`` when it renders as text.

    A non-empty value that does not decode means the field renders as text,
    even for table-typed fields.
    """
    is_table = f.type == FieldType.TABLE or f.table_shape is not None
    if f.value:
        decoded = decode_table_value(f.value)
        if decoded is not None and (is_table or decoded.cells):
            return decoded
        if is_table:
            log.warning("field %s has a malformed table value, rendering as text", f.id)
        return None
    if is_table and f.table_shape is not None:
        return empty_table_value(f.table_shape)
    return None


def layout_table(f: Field, width: float, height: float, value: Optional[TableValue] = None) -> TableLayout:
    """Geometry of a table field drawn into a ``width`` x ``height`` box.

    Positions are relative to the field's top-left corner.
    """
    if value is None:
        value = table_value_for(f)
    shape = f.table_shape
    if value is None and shape is None:
        raise ValueError(f"field {f.id} has no table structure")
    rows = shape.rows if shape else value.rows
    cols = shape.cols if shape else value.cols
    if value is not None and shape is not None and (value.rows, value.cols) != (shape.rows, shape.cols):
        log.warning(
            "field %s value is %dx%d but template shape is %dx%d; using the template shape",
            f.id, value.rows, value.cols, shape.rows, shape.cols,
        )

    fractions = (value.column_widths if value else None) or (shape.column_widths if shape else None)
    headers = (value.column_headers if value else None) or (shape.column_headers if shape else None)
    with_header = has_header_row(headers)

    row_height = height / (rows + 1) if with_header else height / rows
    widths = column_widths(cols, fractions, width)
    lefts = []
    offset = 0.0
    for w in widths:
        lefts.append(offset)
        offset += w

    header: List[TableCell] = []
    if with_header:
        for c in range(cols):
            text = headers[c] if c < len(headers) and headers[c] else str(c + 1)
            header.append(TableCell(-1, c, lefts[c], 0.0, widths[c], row_height, text))

    top0 = row_height if with_header else 0.0
    body = []
    for r in range(rows):
        body.append([
            TableCell(r, c, lefts[c], top0 + r * row_height, widths[c], row_height,
                      resolve_cell_text(value, shape, r, c))
            for c in range(cols)
        ])
    return TableLayout(rows, cols, row_height, widths, header, body)


def set_cell(value: TableValue, row: int, col: int, text: str) -> TableValue:
    if not (0 <= row < value.rows and 0 <= col < value.cols):
        raise IndexError(f"cell ({row}, {col}) is outside a {value.rows}x{value.cols} table")
    cells = [list(line) for line in value.cells]
    while len(cells) <= row:
        cells.append([])
    line = cells[row]
    while len(line) < value.cols:
        line.append("")
    line[col] = text
    return TableValue(value.rows, value.cols, cells, value.column_widths, value.column_headers)
