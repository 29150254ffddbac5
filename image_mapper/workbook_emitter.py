"""Merged workbook generation: original rows plus one embedded image per matched row."""

import io
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from openpyxl import Workbook
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.drawing.image import Image as ExcelImage
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.utils.exceptions import IllegalCharacterError
from openpyxl.worksheet.worksheet import Worksheet
from PIL import Image as PILImage

from .matcher import resolve_image
from .models import ColumnDescriptor, ImageEntry, MatchIndex, Row
from .table_parser import coerce_value
from .utils.exceptions import EmitError

logger = logging.getLogger(__name__)

DEFAULT_SHEET_TITLE = "Matched Images"
DEFAULT_IMAGE_COLUMN_LABEL = "Image"
DEFAULT_BASE_FILENAME = "Matched_Images"
DEFAULT_THUMBNAIL_PX = 80

INDEX_COLUMN_WIDTH = 5
DATA_COLUMN_WIDTH = 25
IMAGE_COLUMN_WIDTH = 15
HEADER_FILL_COLOR = "FFF3F4F6"
DEFAULT_ROW_HEIGHT_POINTS = 15
PIXELS_PER_POINT = 1.33

# Formats openpyxl stores verbatim; anything else is re-encoded as PNG
NATIVE_FORMATS = {"PNG", "JPEG", "GIF"}


def build_output_filename(
    base_name: str = DEFAULT_BASE_FILENAME, on_date: Optional[date] = None
) -> str:
    """``<base>_<YYYY-MM-DD>.xlsx``"""
    stamp = (on_date or datetime.now().date()).isoformat()
    return f"{base_name}_{stamp}.xlsx"


@dataclass
class EmitResult:
    """Output stream plus counters describing what was written."""

    stream: io.BytesIO
    row_count: int
    embedded_count: int
    failed_rows: List[int] = field(default_factory=list)

    def getvalue(self) -> bytes:
        return self.stream.getvalue()


class WorkbookEmitter:
    """Writes rows and their matched images into a new xlsx workbook."""

    def __init__(
        self,
        thumbnail_px: int = DEFAULT_THUMBNAIL_PX,
        image_column_label: str = DEFAULT_IMAGE_COLUMN_LABEL,
        sheet_title: str = DEFAULT_SHEET_TITLE,
    ) -> None:
        self.thumbnail_px = thumbnail_px
        self.image_column_label = image_column_label
        self.sheet_title = sheet_title
        self.emit_log: List[Dict[str, Any]] = []

    def emit(
        self,
        rows: Sequence[Row],
        columns: Sequence[ColumnDescriptor],
        match_column: str,
        index: MatchIndex,
    ) -> EmitResult:
        """Build the merged workbook and return it as an in-memory stream."""
        self.emit_log = []
        try:
            workbook = Workbook()
            sheet = workbook.active
            sheet.title = self.sheet_title
        except Exception as e:
            self._log_error(f"Could not create output workbook: {e}")
            raise EmitError(f"Failed to create output workbook: {e}")

        self._log_info(
            f"Emitting {len(rows)} rows matched on column '{match_column}'"
        )
        image_col = len(columns) + 2
        self._write_header(sheet, columns, image_col)

        embedded = 0
        failed_rows = []
        for position, row in enumerate(rows, start=1):
            sheet_row = position + 1
            self._write_row(sheet, sheet_row, position, row, columns)

            entry = resolve_image(row.get(match_column), index)
            if entry is None:
                continue
            if self._insert_image(sheet, sheet_row, image_col, entry):
                embedded += 1
            else:
                failed_rows.append(position)

        stream = self._save(workbook)
        self._log_info(
            f"Workbook emitted: {len(rows)} rows, {embedded} images, "
            f"{len(failed_rows)} failed embeddings"
        )
        return EmitResult(
            stream=stream,
            row_count=len(rows),
            embedded_count=embedded,
            failed_rows=failed_rows,
        )

    def _write_header(
        self, sheet: Worksheet, columns: Sequence[ColumnDescriptor], image_col: int
    ) -> None:
        labels = ["#"] + [col.label for col in columns] + [self.image_column_label]
        widths = (
            [INDEX_COLUMN_WIDTH]
            + [DATA_COLUMN_WIDTH] * len(columns)
            + [IMAGE_COLUMN_WIDTH]
        )
        header_font = Font(bold=True)
        header_fill = PatternFill(fill_type="solid", fgColor=HEADER_FILL_COLOR)

        for col_idx, (label, width) in enumerate(zip(labels, widths), start=1):
            cell = sheet.cell(row=1, column=col_idx, value=label)
            cell.font = header_font
            cell.fill = header_fill
            sheet.column_dimensions[get_column_letter(col_idx)].width = width

    def _write_row(
        self,
        sheet: Worksheet,
        sheet_row: int,
        position: int,
        row: Row,
        columns: Sequence[ColumnDescriptor],
    ) -> None:
        sheet.cell(row=sheet_row, column=1, value=position)
        for col_idx, col in enumerate(columns, start=2):
            value = coerce_value(row.get(col.key), col.type)
            cell = sheet.cell(row=sheet_row, column=col_idx)
            try:
                cell.value = value
            except (IllegalCharacterError, ValueError, TypeError):
                # Control characters cannot be stored in a worksheet
                cell.value = ILLEGAL_CHARACTERS_RE.sub("", str(value))
                self._log_warning(
                    f"Could not write {type(value).__name__} value as is, saved as cleaned text",
                    cell=cell.coordinate,
                )

    def _insert_image(
        self, sheet: Worksheet, sheet_row: int, col: int, entry: ImageEntry
    ) -> bool:
        """Embed one image at (row, col); a failure leaves the row unmatched."""
        cell_address = f"{get_column_letter(col)}{sheet_row}"
        try:
            image_stream, original_size = self._prepare_image(entry)
            excel_img = ExcelImage(image_stream)

            width_px, height_px = self._fit_thumbnail(original_size)
            excel_img.width = width_px
            excel_img.height = height_px
            excel_img.anchor = cell_address
            sheet.add_image(excel_img)

            sheet[cell_address].alignment = Alignment(
                vertical="center", horizontal="center"
            )
            self._adjust_row_height(sheet, sheet_row, height_px)

            self._log_success(
                f"Inserted image '{entry.path}' at {cell_address} "
                f"(original: {original_size[0]}x{original_size[1]}, "
                f"resized: {width_px}x{height_px}px)",
                cell=cell_address,
            )
            return True
        except Exception as e:
            self._log_warning(
                f"Image '{entry.path}' could not be embedded, row left unmatched: {e}",
                cell=cell_address,
            )
            return False

    def _prepare_image(self, entry: ImageEntry) -> Tuple[io.BytesIO, Tuple[int, int]]:
        """Decode the image once; re-encode as PNG if openpyxl cannot store it."""
        with PILImage.open(io.BytesIO(entry.data)) as pil_img:
            pil_img.load()
            size = pil_img.size
            if pil_img.format in NATIVE_FORMATS:
                return io.BytesIO(entry.data), size

            converted = io.BytesIO()
            if pil_img.mode not in ("RGB", "RGBA", "L", "LA", "P"):
                pil_img = pil_img.convert("RGBA")
            pil_img.save(converted, format="PNG")
            converted.seek(0)
            self._log_info(f"Converted {entry.path} to PNG for embedding")
            return converted, size

    def _fit_thumbnail(self, size: Tuple[int, int]) -> Tuple[int, int]:
        """Scale to fit the thumbnail box while keeping the aspect ratio."""
        width, height = size
        if width <= 0 or height <= 0:
            return self.thumbnail_px, self.thumbnail_px
        scale = min(self.thumbnail_px / width, self.thumbnail_px / height)
        return max(1, round(width * scale)), max(1, round(height * scale))

    def _adjust_row_height(
        self, sheet: Worksheet, row: int, image_height_pixels: float
    ) -> None:
        """Adjust row height to accommodate image."""
        required_height_points = max(
            DEFAULT_ROW_HEIGHT_POINTS, image_height_pixels / PIXELS_PER_POINT
        )
        current_height = sheet.row_dimensions[row].height
        if current_height is None or required_height_points > current_height:
            sheet.row_dimensions[row].height = required_height_points

    def _save(self, workbook: Workbook) -> io.BytesIO:
        stream = io.BytesIO()
        try:
            workbook.save(stream)
        except Exception as e:
            self._log_error(f"Saving workbook failed: {e}")
            raise EmitError(f"Failed to write output workbook: {e}")
        finally:
            workbook.close()
        stream.seek(0)
        return stream

    def _log_info(self, message: str) -> None:
        self.emit_log.append(
            {
                "timestamp": datetime.now().isoformat(),
                "status": "INFO",
                "details": message,
            }
        )
        logger.info(message)

    def _log_success(self, message: str, cell: str = "") -> None:
        self.emit_log.append(
            {
                "timestamp": datetime.now().isoformat(),
                "status": "SUCCESS",
                "cell": cell,
                "details": message,
            }
        )
        logger.debug(message)

    def _log_warning(self, message: str, cell: str = "") -> None:
        self.emit_log.append(
            {
                "timestamp": datetime.now().isoformat(),
                "status": "WARNING",
                "cell": cell,
                "details": message,
            }
        )
        logger.warning(message)

    def _log_error(self, message: str, cell: str = "") -> None:
        self.emit_log.append(
            {
                "timestamp": datetime.now().isoformat(),
                "status": "ERROR",
                "cell": cell,
                "details": message,
            }
        )
        logger.error(message)


def emit_workbook(
    rows: Sequence[Row],
    columns: Sequence[ColumnDescriptor],
    match_column: str,
    index: MatchIndex,
    thumbnail_px: int = DEFAULT_THUMBNAIL_PX,
) -> EmitResult:
    """Convenience wrapper around :class:`WorkbookEmitter`."""
    return WorkbookEmitter(thumbnail_px=thumbnail_px).emit(
        rows, columns, match_column, index
    )
