"""Spreadsheet and delimited-text parsing into rows and typed column descriptors."""

import csv
import datetime
import io
import logging
import os
import re
from typing import Any, List, Optional, Tuple

import pandas as pd
from openpyxl import load_workbook
from openpyxl.utils import get_column_letter

from .models import (
    ROW_ID_KEY,
    ColumnDescriptor,
    ColumnType,
    ParsedTable,
    Row,
    generate_row_id,
)
from .utils.exceptions import ParseError

logger = logging.getLogger(__name__)

DEFAULT_TYPE_SAMPLE_SIZE = 50

EXCEL_EXTENSIONS = {"xlsx", "xlsm"}
LEGACY_EXCEL_EXTENSIONS = {"xls"}
DELIMITED_EXTENSIONS = {"csv", "tsv", "txt"}

_NON_NUMERIC_CHARS = re.compile(r"[^0-9.\-]")
_LETTERS = re.compile(r"[^\W\d_]")
_FILENAME_SHAPE = re.compile(r"^[^\s/\\]+\.[A-Za-z][A-Za-z0-9]{1,4}$")

TEXT_SHAPE_FILENAME = "filename"
TEXT_SHAPE_CODE = "code"
TEXT_SHAPE_PLAIN = "plain"


def is_empty_value(value: Any) -> bool:
    """Check if a cell value counts as empty."""
    if value is None:
        return True
    if isinstance(value, float) and value != value:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


def _is_real_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _strip_to_number(text: str) -> Optional[float]:
    cleaned = _NON_NUMERIC_CHARS.sub("", text)
    if not cleaned:
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


def looks_numeric(value: Any) -> bool:
    """True for real numbers and for numeric text such as ``"1,200"`` or ``"$5"``.

    Text with letters is never numeric, so codes like ``A100`` stay strings.
    """
    if _is_real_number(value):
        return True
    if not isinstance(value, str):
        return False
    text = value.strip()
    if not text or _LETTERS.search(text):
        return False
    return _strip_to_number(text) is not None


def text_shape(text: str) -> str:
    """Coarse shape of a text cell: a filename, a letter/digit code or plain text."""
    value = text.strip()
    if _FILENAME_SHAPE.match(value):
        return TEXT_SHAPE_FILENAME
    if re.search(r"\d", value) and _LETTERS.search(value):
        return TEXT_SHAPE_CODE
    return TEXT_SHAPE_PLAIN


def coerce_value(value: Any, column_type: ColumnType) -> Any:
    """Apply the column's type to a raw cell value.

    Number columns turn text into floats (unparsable text becomes ``0.0``).
    Empty cells stay ``None``. String columns are left untouched.
    """
    if value is None or column_type is not ColumnType.NUMBER:
        return value
    if isinstance(value, str):
        parsed = _strip_to_number(value)
        return parsed if parsed is not None else 0.0
    return value


def infer_column_type(values: List[Any]) -> ColumnType:
    """Number when every non-empty sampled value is numeric."""
    for value in values:
        if is_empty_value(value):
            continue
        if not looks_numeric(value):
            return ColumnType.STRING
    return ColumnType.NUMBER


class TableParser:
    """Reads the first sheet of a tabular file into a :class:`ParsedTable`."""

    def __init__(self, type_sample_size: int = DEFAULT_TYPE_SAMPLE_SIZE) -> None:
        if type_sample_size < 1:
            raise ValueError("type_sample_size must be at least 1")
        self.type_sample_size = type_sample_size

    def parse(self, content: bytes, filename: str = "upload.xlsx") -> ParsedTable:
        """Parse raw file bytes; the filename only selects the reader."""
        if not content:
            raise ParseError("Could not read file: the file is empty")

        extension = os.path.splitext(filename)[1].lower().lstrip(".")
        sheet_name, grid = self._read_grid(content, extension)
        grid = self._trim_grid(grid)
        if not grid:
            raise ParseError("Could not read file: Excel file is empty")

        has_header = self._detect_header(grid)
        if has_header:
            columns, data_rows = self._columns_from_header(grid)
        else:
            columns, data_rows = self._positional_columns(grid)

        columns = self._infer_types(columns, data_rows)
        rows = self._build_rows(columns, data_rows)

        logger.info(
            f"Parsed {len(rows)} rows and {len(columns)} columns from {filename} "
            f"(header detected: {has_header})"
        )
        return ParsedTable(
            rows=rows, columns=columns, has_header=has_header, sheet_name=sheet_name
        )

    def _read_grid(
        self, content: bytes, extension: str
    ) -> Tuple[Optional[str], List[List[Any]]]:
        if extension in EXCEL_EXTENSIONS:
            return self._read_workbook(content)
        if extension in LEGACY_EXCEL_EXTENSIONS:
            return self._read_legacy_workbook(content)
        if extension in DELIMITED_EXTENSIONS:
            return None, self._read_delimited(content, extension)

        # Unknown extension: try the workbook reader before falling back to text
        try:
            return self._read_workbook(content)
        except ParseError:
            logger.debug("Input is not a workbook, trying delimited text")
            return None, self._read_delimited(content, extension)

    def _read_workbook(self, content: bytes) -> Tuple[Optional[str], List[List[Any]]]:
        try:
            workbook = load_workbook(io.BytesIO(content), data_only=True, read_only=True)
        except Exception as e:
            raise ParseError(f"Could not read file: invalid Excel file format: {e}")

        try:
            if not workbook.sheetnames:
                raise ParseError("Could not read file: workbook has no sheets")
            sheet = workbook[workbook.sheetnames[0]]
            grid = [list(row) for row in sheet.iter_rows(values_only=True)]
            return sheet.title, grid
        finally:
            workbook.close()

    def _read_legacy_workbook(
        self, content: bytes
    ) -> Tuple[Optional[str], List[List[Any]]]:
        try:
            sheets = pd.read_excel(
                io.BytesIO(content), sheet_name=0, header=None, dtype=object
            )
        except Exception as e:
            raise ParseError(f"Could not read file: invalid Excel file format: {e}")
        return None, self._frame_to_grid(sheets)

    def _sniff_separator(self, content: bytes, extension: str) -> str:
        if extension == "tsv":
            return "\t"
        sample = content[:4096].decode("utf-8-sig", errors="ignore")
        try:
            return csv.Sniffer().sniff(sample, delimiters=",;\t|").delimiter
        except csv.Error:
            # Single-column files have nothing to sniff
            return ","

    def _read_delimited(self, content: bytes, extension: str = "csv") -> List[List[Any]]:
        try:
            frame = pd.read_csv(
                io.BytesIO(content),
                header=None,
                dtype=object,
                sep=self._sniff_separator(content, extension),
                skip_blank_lines=False,
                keep_default_na=False,
                encoding="utf-8-sig",
            )
        except pd.errors.EmptyDataError:
            raise ParseError("Could not read file: the file is empty")
        except Exception as e:
            raise ParseError(f"Could not read file: invalid delimited text: {e}")
        return self._frame_to_grid(frame)

    def _frame_to_grid(self, frame: pd.DataFrame) -> List[List[Any]]:
        grid = []
        for record in frame.itertuples(index=False, name=None):
            grid.append([None if is_empty_value(v) else v for v in record])
        return grid

    def _trim_grid(self, grid: List[List[Any]]) -> List[List[Any]]:
        """Drop leading/trailing empty rows and trailing empty columns."""
        rows = [
            [None if is_empty_value(v) else v for v in row] for row in grid
        ]
        while rows and all(v is None for v in rows[0]):
            rows.pop(0)
        while rows and all(v is None for v in rows[-1]):
            rows.pop()
        if not rows:
            return []

        width = 0
        for row in rows:
            for idx, value in enumerate(row):
                if value is not None:
                    width = max(width, idx + 1)
        return [(row + [None] * width)[:width] for row in rows]

    def _detect_header(self, grid: List[List[Any]]) -> bool:
        """Decide whether the first row holds column labels.

        Any numeric, date or boolean cell makes the first row data. A row of
        plain text is a header unless every cell has the same distinctive
        shape (filename or code) as the values below it.
        """
        first = grid[0]
        non_empty = [(idx, v) for idx, v in enumerate(first) if v is not None]
        if not non_empty:
            return False
        for _, value in non_empty:
            if not isinstance(value, str):
                return False
            if looks_numeric(value):
                return False

        sample = grid[1 : self.type_sample_size + 1]
        for idx, value in non_empty:
            shape = text_shape(value)
            if shape == TEXT_SHAPE_PLAIN:
                return True
            below = [row[idx] for row in sample if row[idx] is not None]
            if not below or any(
                not isinstance(v, str) or text_shape(v) != shape for v in below
            ):
                return True
        return False

    def _columns_from_header(
        self, grid: List[List[Any]]
    ) -> Tuple[List[ColumnDescriptor], List[List[Any]]]:
        columns = []
        used_keys = set()
        for idx, raw in enumerate(grid[0]):
            label = str(raw).strip() if raw is not None else ""
            if not label:
                label = f"Column {get_column_letter(idx + 1)}"

            # Duplicate labels get _1, _2, ... like most sheet readers do
            key = label
            suffix = 0
            while key in used_keys:
                suffix += 1
                key = f"{label}_{suffix}"
            used_keys.add(key)
            columns.append(ColumnDescriptor(key=key, label=label))
        return columns, grid[1:]

    def _positional_columns(
        self, grid: List[List[Any]]
    ) -> Tuple[List[ColumnDescriptor], List[List[Any]]]:
        columns = []
        for idx in range(len(grid[0])):
            letter = get_column_letter(idx + 1)
            columns.append(ColumnDescriptor(key=letter, label=f"Column {letter}"))
        return columns, grid

    def _infer_types(
        self, columns: List[ColumnDescriptor], data_rows: List[List[Any]]
    ) -> List[ColumnDescriptor]:
        sample = data_rows[: self.type_sample_size]
        typed = []
        for idx, col in enumerate(columns):
            column_type = infer_column_type([row[idx] for row in sample])
            typed.append(ColumnDescriptor(key=col.key, label=col.label, type=column_type))
            logger.debug(f"Column '{col.key}' inferred as {column_type.value}")
        return typed

    def _build_rows(
        self, columns: List[ColumnDescriptor], data_rows: List[List[Any]]
    ) -> List[Row]:
        rows = []
        for raw in data_rows:
            row: Row = {}
            for idx, col in enumerate(columns):
                row[col.key] = coerce_value(raw[idx], col.type)
            if is_empty_value(row.get(ROW_ID_KEY)):
                row[ROW_ID_KEY] = generate_row_id()
            rows.append(row)
        return rows


def parse_table(
    content: bytes,
    filename: str = "upload.xlsx",
    type_sample_size: int = DEFAULT_TYPE_SAMPLE_SIZE,
) -> ParsedTable:
    """Convenience wrapper around :class:`TableParser`."""
    return TableParser(type_sample_size=type_sample_size).parse(content, filename)


def stringify_cell(value: Any) -> str:
    """String form of a cell value as used for lookups.

    Whole floats drop their ``.0`` so ``100.0`` reads as ``"100"``.
    """
    if value is None:
        return ""
    if isinstance(value, float):
        if value != value:
            return ""
        if value.is_integer():
            return str(int(value))
    if isinstance(value, datetime.datetime) and value.time() == datetime.time():
        return value.date().isoformat()
    if isinstance(value, (datetime.date, datetime.time)):
        return value.isoformat()
    return str(value)
