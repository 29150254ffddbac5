"""Tests for the merged workbook emitter."""

import io
from datetime import date
from unittest.mock import patch

import pytest
from openpyxl import Workbook, load_workbook

from image_mapper.archive_indexer import index_archive
from image_mapper.models import ColumnDescriptor, ColumnType, ImageEntry, MatchIndex
from image_mapper.table_parser import parse_table
from image_mapper.utils.exceptions import EmitError
from image_mapper.workbook_emitter import (
    WorkbookEmitter,
    build_output_filename,
    emit_workbook,
)


def reload(result):
    return load_workbook(io.BytesIO(result.getvalue())).active


def image_anchors(sheet):
    return {(img.anchor._from.row, img.anchor._from.col) for img in sheet._images}


def single_image_index(name: str, data: bytes) -> MatchIndex:
    entry = ImageEntry(filename=name, path=name, data=data)
    return MatchIndex(exact={name: entry}, image_count=1)


class TestWorkbookEmitter:
    """Test cases for WorkbookEmitter."""

    def test_scenario_layout(self, sku_workbook, sku_archive):
        table = parse_table(sku_workbook, "skus.xlsx")
        index = index_archive(sku_archive)

        result = emit_workbook(table.rows, table.columns, "sku", index)
        assert result.row_count == 3
        assert result.embedded_count == 2
        assert result.failed_rows == []

        sheet = reload(result)
        assert sheet.title == "Matched Images"
        assert sheet.max_row == 4
        assert [sheet.cell(row=1, column=c).value for c in (1, 2, 3)] == [
            "#",
            "sku",
            "Image",
        ]
        assert [sheet.cell(row=r, column=1).value for r in (2, 3, 4)] == [1, 2, 3]
        assert [sheet.cell(row=r, column=2).value for r in (2, 3, 4)] == [
            "A100",
            "a-100",
            "ZZZ",
        ]

        # zero-based (row, col): sheet rows 2 and 3, third column
        assert image_anchors(sheet) == {(1, 2), (2, 2)}

    def test_row_heights_follow_thumbnails(self, sku_workbook, sku_archive):
        table = parse_table(sku_workbook, "skus.xlsx")
        sheet = reload(
            emit_workbook(table.rows, table.columns, "sku", index_archive(sku_archive))
        )

        expected = 80 / 1.33
        assert sheet.row_dimensions[2].height == pytest.approx(expected, rel=1e-3)
        assert sheet.row_dimensions[3].height == pytest.approx(expected, rel=1e-3)
        assert sheet.row_dimensions[4].height is None

    def test_header_styling_and_widths(self, sku_workbook, sku_archive):
        table = parse_table(sku_workbook, "skus.xlsx")
        sheet = reload(
            emit_workbook(table.rows, table.columns, "sku", index_archive(sku_archive))
        )

        assert sheet["A1"].font.bold
        assert sheet.column_dimensions["A"].width == 5
        assert sheet.column_dimensions["B"].width == 25
        assert sheet.column_dimensions["C"].width == 15

    def test_empty_index_embeds_nothing(self, sku_workbook):
        table = parse_table(sku_workbook, "skus.xlsx")
        result = emit_workbook(table.rows, table.columns, "sku", MatchIndex.empty())

        sheet = reload(result)
        assert result.embedded_count == 0
        assert sheet._images == []
        assert all(sheet.row_dimensions[r].height is None for r in (2, 3, 4))
        assert sheet.max_row == 4

    def test_wide_image_keeps_aspect_ratio(self, image_bytes):
        index = single_image_index("wide.png", image_bytes(size=(200, 100)))
        columns = [ColumnDescriptor("file", "File")]
        result = emit_workbook([{"file": "wide.png"}], columns, "file", index)

        sheet = reload(result)
        assert sheet.row_dimensions[2].height == pytest.approx(40 / 1.33, rel=1e-3)

    def test_small_image_respects_minimum_row_height(self, image_bytes):
        index = single_image_index("strip.png", image_bytes(size=(400, 10)))
        columns = [ColumnDescriptor("file", "File")]
        result = emit_workbook([{"file": "strip.png"}], columns, "file", index)

        assert reload(result).row_dimensions[2].height == pytest.approx(15)

    def test_unsupported_format_is_converted(self, image_bytes):
        index = single_image_index("scan.png", image_bytes(fmt="BMP"))
        emitter = WorkbookEmitter()
        result = emitter.emit(
            [{"file": "scan.png"}], [ColumnDescriptor("file", "File")], "file", index
        )

        assert result.embedded_count == 1
        assert any("Converted" in item["details"] for item in emitter.emit_log)
        assert len(reload(result)._images) == 1

    def test_corrupt_image_leaves_row_unmatched(self, image_bytes):
        good = ImageEntry("good.png", "good.png", image_bytes())
        bad = ImageEntry("bad.png", "bad.png", b"not an image")
        index = MatchIndex(exact={"good.png": good, "bad.png": bad}, image_count=2)
        columns = [ColumnDescriptor("file", "File")]
        rows = [{"file": "bad.png"}, {"file": "good.png"}]

        emitter = WorkbookEmitter()
        result = emitter.emit(rows, columns, "file", index)

        assert result.failed_rows == [1]
        assert result.embedded_count == 1
        assert any(item["status"] == "WARNING" for item in emitter.emit_log)

        sheet = reload(result)
        assert image_anchors(sheet) == {(2, 2)}
        assert sheet.row_dimensions[2].height is None

    def test_number_columns_are_coerced(self):
        columns = [
            ColumnDescriptor("sku", "SKU"),
            ColumnDescriptor("price", "Price", ColumnType.NUMBER),
        ]
        rows = [{"sku": "A1", "price": "$1,200"}, {"sku": "A2", "price": None}]
        sheet = reload(emit_workbook(rows, columns, "sku", MatchIndex.empty()))

        assert sheet["C2"].value == 1200
        assert sheet["C3"].value is None
        assert sheet["D1"].value == "Image"

    def test_control_characters_are_cleaned_not_fatal(self):
        table = parse_table(b"sku,note\nA100,bell\x07here\nB200,fine\n", "notes.csv")
        emitter = WorkbookEmitter()
        result = emitter.emit(table.rows, table.columns, "sku", MatchIndex.empty())

        sheet = reload(result)
        assert result.row_count == 2
        assert sheet["C2"].value == "bellhere"
        assert sheet["C3"].value == "fine"
        warnings = [item for item in emitter.emit_log if item["status"] == "WARNING"]
        assert [item["cell"] for item in warnings] == ["C2"]

    def test_custom_labels(self):
        emitter = WorkbookEmitter(image_column_label="Photo", sheet_title="Output")
        result = emitter.emit(
            [{"sku": "A1"}], [ColumnDescriptor("sku", "SKU")], "sku", MatchIndex.empty()
        )
        sheet = reload(result)
        assert sheet.title == "Output"
        assert sheet["C1"].value == "Photo"

    def test_save_failure_raises(self):
        with patch.object(Workbook, "save", side_effect=OSError("disk full")):
            with pytest.raises(EmitError) as exc_info:
                emit_workbook(
                    [{"sku": "A1"}], [ColumnDescriptor("sku", "SKU")], "sku", MatchIndex()
                )
        assert exc_info.value.error_code == "EMIT_ERROR"


class TestOutputFilename:
    def test_dated_filename(self):
        assert build_output_filename(on_date=date(2026, 10, 19)) == (
            "Matched_Images_2026-10-19.xlsx"
        )

    def test_custom_base(self):
        assert build_output_filename("stock", date(2025, 1, 2)) == "stock_2025-01-02.xlsx"
