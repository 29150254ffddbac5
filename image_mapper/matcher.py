"""Row-to-image resolution and automatic detection of the matching column."""

import logging
from typing import Any, Dict, List, Optional, Sequence

from .models import ColumnDescriptor, ColumnMatch, ImageEntry, MatchIndex, Row
from .table_parser import stringify_cell
from .utils.filename_keys import exact_key, fuzzy_key, normalized_key

logger = logging.getLogger(__name__)

DEFAULT_PREVIEW_ROWS = 50


def resolve_image(value: Any, index: MatchIndex) -> Optional[ImageEntry]:
    """Find the image for one cell value.

    Tiers are tried in a fixed order and the first hit wins:
    exact trimmed value, then normalized key, then fuzzy key.
    """
    text = stringify_cell(value).strip()
    if not text:
        return None

    entry = index.exact.get(exact_key(text))
    if entry is not None:
        return entry

    entry = index.normalized.get(normalized_key(text))
    if entry is not None:
        return entry

    fuzzy = fuzzy_key(text)
    if fuzzy:
        return index.fuzzy.get(fuzzy)
    return None


def count_matches(rows: Sequence[Row], column_key: str, index: MatchIndex) -> int:
    """Number of rows whose value in ``column_key`` resolves to an image."""
    return sum(1 for row in rows if resolve_image(row.get(column_key), index) is not None)


def score_columns(
    rows: Sequence[Row], columns: Sequence[ColumnDescriptor], index: MatchIndex
) -> List[ColumnMatch]:
    """Match counts for every column, in declared column order."""
    return [ColumnMatch(col.key, count_matches(rows, col.key, index)) for col in columns]


def find_best_match_column(
    rows: Sequence[Row], columns: Sequence[ColumnDescriptor], index: MatchIndex
) -> ColumnMatch:
    """Pick the column with the most resolving rows.

    Ties go to the earlier column. With no matches at all the first column is
    returned with a count of 0.
    """
    if not columns:
        return ColumnMatch("", 0)

    best = ColumnMatch(columns[0].key, 0)
    if index.image_count == 0:
        return best

    for score in score_columns(rows, columns, index):
        if score.match_count > best.match_count:
            best = score

    logger.info(f"Best match column: '{best.column}' with {best.match_count} matches")
    return best


def build_preview(
    rows: Sequence[Row],
    columns: Sequence[ColumnDescriptor],
    match_column: str,
    index: MatchIndex,
    limit: int = DEFAULT_PREVIEW_ROWS,
) -> List[Dict[str, Any]]:
    """First ``limit`` rows with the name of the image each one resolves to."""
    preview = []
    for position, row in enumerate(rows[:limit], start=1):
        entry = resolve_image(row.get(match_column), index)
        preview.append(
            {
                "index": position,
                "values": {col.key: row.get(col.key) for col in columns},
                "match_value": stringify_cell(row.get(match_column)).strip(),
                "image": entry.path if entry else None,
            }
        )
    return preview
