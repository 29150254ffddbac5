"""Matching sessions: pipeline execution, match column selection and reset.

A session owns the parsed table and the match index of one upload pair. Work
is tagged with the session's generation when it starts; results that come
back after a reset or a newer upload are dropped instead of attached.
"""

import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .archive_indexer import ArchiveIndexer
from .matcher import build_preview, count_matches, find_best_match_column
from .models import MatchIndex, MatchStatistics, ParsedTable
from .table_parser import TableParser
from .utils.exceptions import SessionNotFoundError, ValidationError

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """Parsed table and match index of one upload pair."""

    table: ParsedTable
    index: MatchIndex


def run_pipeline(
    table_content: bytes,
    table_filename: str,
    archive_content: bytes,
    parser: Optional[TableParser] = None,
    indexer: Optional[ArchiveIndexer] = None,
) -> PipelineResult:
    """Parse the table and index the archive concurrently.

    The two stages share no state. A parse failure is reported ahead of an
    archive failure.
    """
    parser = parser or TableParser()
    indexer = indexer or ArchiveIndexer()

    with ThreadPoolExecutor(max_workers=2) as executor:
        table_future = executor.submit(parser.parse, table_content, table_filename)
        index_future = executor.submit(indexer.build_index, archive_content)
        table = table_future.result()
        index = index_future.result()

    return PipelineResult(table=table, index=index)


@dataclass
class MatchSession:
    """State of one matching session."""

    id: str
    table: ParsedTable
    index: MatchIndex
    match_column: str
    statistics: MatchStatistics
    table_filename: str = ""
    generation: int = 0
    created_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def set_match_column(self, column_key: str) -> MatchStatistics:
        """Switch the matching column; only the preview counts are recomputed."""
        if self.table.column(column_key) is None:
            raise ValidationError(f"Unknown column '{column_key}'")
        self.match_column = column_key
        self.statistics = MatchStatistics(
            total_images=self.index.image_count,
            matched_rows=count_matches(self.table.rows, column_key, self.index),
        )
        logger.info(
            f"Session {self.id}: match column set to '{column_key}' "
            f"({self.statistics.matched_rows} matched rows)"
        )
        return self.statistics

    def preview(self, limit: int) -> List[Dict[str, Any]]:
        return build_preview(
            self.table.rows, self.table.columns, self.match_column, self.index, limit
        )

    def summary(self, preview_rows: int) -> Dict[str, Any]:
        return {
            "session_id": self.id,
            "table_filename": self.table_filename,
            "columns": [col.to_dict() for col in self.table.columns],
            "has_header": self.table.has_header,
            "row_count": len(self.table.rows),
            "match_column": self.match_column,
            "statistics": self.statistics.to_dict(),
            "preview": self.preview(preview_rows),
            "created_at": self.created_at,
        }


class SessionStore:
    """In-memory registry of matching sessions."""

    def __init__(
        self,
        parser: Optional[TableParser] = None,
        indexer: Optional[ArchiveIndexer] = None,
    ) -> None:
        self.parser = parser or TableParser()
        self.indexer = indexer or ArchiveIndexer()
        self._sessions: Dict[str, MatchSession] = {}
        self._generations: Dict[str, int] = {}
        self._lock = threading.RLock()

    def generate_session_id(self) -> str:
        timestamp = int(time.time() * 1000)
        return f"session_{timestamp}_{uuid.uuid4().hex[:8]}"

    def open_session(self) -> str:
        """Reserve a session id before any work starts."""
        with self._lock:
            session_id = self.generate_session_id()
            self._generations[session_id] = 0
            logger.info(f"Opened session {session_id}")
            return session_id

    def begin_update(self, session_id: str) -> int:
        """Start a new round of work; earlier in-flight results become stale."""
        with self._lock:
            if session_id not in self._generations:
                raise SessionNotFoundError(f"Session '{session_id}' not found")
            self._generations[session_id] += 1
            return self._generations[session_id]

    def attach(
        self,
        session_id: str,
        generation: int,
        result: PipelineResult,
        table_filename: str = "",
    ) -> Optional[MatchSession]:
        """Store a pipeline result unless the session was reset or superseded."""
        best = find_best_match_column(
            result.table.rows, result.table.columns, result.index
        )
        session = MatchSession(
            id=session_id,
            table=result.table,
            index=result.index,
            match_column=best.column,
            statistics=MatchStatistics(
                total_images=result.index.image_count, matched_rows=best.match_count
            ),
            table_filename=table_filename,
            generation=generation,
        )

        with self._lock:
            if self._generations.get(session_id) != generation:
                logger.info(
                    f"Discarding stale result for session {session_id} "
                    f"(generation {generation})"
                )
                return None
            self._sessions[session_id] = session
        return session

    def create_session(
        self, table_content: bytes, table_filename: str, archive_content: bytes
    ) -> MatchSession:
        """Run the full pipeline for a new upload pair."""
        session_id = self.open_session()
        generation = self.begin_update(session_id)
        try:
            result = run_pipeline(
                table_content, table_filename, archive_content, self.parser, self.indexer
            )
        except Exception:
            self.reset(session_id)
            raise

        session = self.attach(session_id, generation, result, table_filename)
        if session is None:
            raise SessionNotFoundError(f"Session '{session_id}' was reset")
        return session

    def replace_archive(self, session_id: str, archive_content: bytes) -> MatchSession:
        """Index a new archive for an existing table; the old index is dropped."""
        current = self.get(session_id)
        generation = self.begin_update(session_id)
        index = self.indexer.build_index(archive_content)

        session = self.attach(
            session_id,
            generation,
            PipelineResult(table=current.table, index=index),
            current.table_filename,
        )
        if session is None:
            raise SessionNotFoundError(f"Session '{session_id}' was reset")
        return session

    def get(self, session_id: str) -> MatchSession:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session '{session_id}' not found")
        return session

    def reset(self, session_id: str) -> bool:
        """Drop a session and everything it holds."""
        with self._lock:
            known = self._generations.pop(session_id, None) is not None
            self._sessions.pop(session_id, None)
        if known:
            logger.info(f"Reset session {session_id}")
        return known

    def count(self) -> int:
        with self._lock:
            return len(self._sessions)
