"""Data structures shared by the parsing, indexing, matching and emitting stages."""

import os
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

Row = Dict[str, Any]

ROW_ID_KEY = "id"

_CONTENT_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
}


def generate_row_id() -> str:
    """Random opaque identifier for rows that arrive without one."""
    return uuid.uuid4().hex[:9]


class ColumnType(Enum):
    """Inferred data type of a table column."""

    STRING = "string"
    NUMBER = "number"


@dataclass(frozen=True)
class ColumnDescriptor:
    """A table column: unique key, display label and inferred type."""

    key: str
    label: str
    type: ColumnType = ColumnType.STRING

    def to_dict(self) -> Dict[str, Any]:
        return {"key": self.key, "label": self.label, "type": self.type.value}


@dataclass
class ParsedTable:
    """Output of the tabular parser."""

    rows: List[Row]
    columns: List[ColumnDescriptor]
    has_header: bool = True
    sheet_name: Optional[str] = None

    def column(self, key: str) -> Optional[ColumnDescriptor]:
        for col in self.columns:
            if col.key == key:
                return col
        return None


@dataclass(frozen=True)
class ImageEntry:
    """Raw bytes of one archive image plus where it came from."""

    filename: str
    path: str
    data: bytes = field(repr=False)

    @property
    def extension(self) -> str:
        return os.path.splitext(self.filename)[1].lower().lstrip(".")

    @property
    def content_type(self) -> str:
        return _CONTENT_TYPES.get(self.extension, "application/octet-stream")

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class MatchIndex:
    """Three lookup tiers over the images of one archive.

    ``exact`` is keyed by the literal filename, ``normalized`` and ``fuzzy``
    by the derived keys. When two images share a key in a tier, the one that
    appears later in the archive wins.
    """

    exact: Dict[str, ImageEntry] = field(default_factory=dict)
    normalized: Dict[str, ImageEntry] = field(default_factory=dict)
    fuzzy: Dict[str, ImageEntry] = field(default_factory=dict)
    image_count: int = 0

    @classmethod
    def empty(cls) -> "MatchIndex":
        return cls()

    def find_by_path(self, path: str) -> Optional[ImageEntry]:
        """Look up a reachable image by its path inside the archive."""
        for tier in (self.exact, self.normalized, self.fuzzy):
            for entry in tier.values():
                if entry.path == path:
                    return entry
        return None


@dataclass(frozen=True)
class ColumnMatch:
    """Result of scoring the table columns against a match index."""

    column: str
    match_count: int


@dataclass(frozen=True)
class MatchStatistics:
    """Read-only counters exposed to the UI."""

    total_images: int = 0
    matched_rows: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"total_images": self.total_images, "matched_rows": self.matched_rows}
