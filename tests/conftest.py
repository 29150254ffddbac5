"""Shared fixtures for building workbooks, images and archives in memory."""

import io
import zipfile
from typing import Any, Dict, List, Tuple

import pytest
from openpyxl import Workbook
from PIL import Image as PILImage


def make_image_bytes(
    size: Tuple[int, int] = (40, 40),
    color: Tuple[int, int, int] = (200, 30, 30),
    fmt: str = "PNG",
) -> bytes:
    buffer = io.BytesIO()
    PILImage.new("RGB", size, color).save(buffer, format=fmt)
    return buffer.getvalue()


def make_zip_bytes(entries: Dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
        for name, data in entries.items():
            archive.writestr(name, data)
    return buffer.getvalue()


def make_xlsx_bytes(grid: List[List[Any]], title: str = "Sheet1") -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = title
    for row in grid:
        sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    workbook.close()
    return buffer.getvalue()


@pytest.fixture
def image_bytes():
    return make_image_bytes


@pytest.fixture
def zip_bytes():
    return make_zip_bytes


@pytest.fixture
def xlsx_bytes():
    return make_xlsx_bytes


@pytest.fixture
def sku_workbook():
    """Three-row table used by the end-to-end scenario."""
    return make_xlsx_bytes([["sku"], ["A100"], ["a-100"], ["ZZZ"]])


@pytest.fixture
def sku_archive():
    return make_zip_bytes({"A100.png": make_image_bytes()})
