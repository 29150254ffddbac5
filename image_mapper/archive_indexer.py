"""Zip archive indexing into the exact / normalized / fuzzy lookup tiers."""

import io
import logging
import posixpath
import zipfile
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional

from .models import ImageEntry, MatchIndex
from .utils.exceptions import ArchiveError
from .utils.filename_keys import IMAGE_EXTENSIONS, exact_key, fuzzy_key, normalized_key

logger = logging.getLogger(__name__)

SYSTEM_FOLDERS = {"__MACOSX"}
DEFAULT_MAX_WORKERS = 8


def is_indexable_entry(info: zipfile.ZipInfo) -> bool:
    """Directory, platform junk and hidden entries are skipped; only
    known image extensions qualify."""
    if info.is_dir():
        return False
    path = info.filename.replace("\\", "/")
    parts = [part for part in path.split("/") if part]
    if not parts:
        return False
    if any(part in SYSTEM_FOLDERS for part in parts[:-1]):
        return False
    basename = parts[-1]
    if basename.startswith("."):
        return False
    extension = posixpath.splitext(basename)[1].lower().lstrip(".")
    return extension in IMAGE_EXTENSIONS


class ArchiveIndexer:
    """Builds a :class:`MatchIndex` from the image entries of a zip archive."""

    def __init__(self, max_workers: int = DEFAULT_MAX_WORKERS) -> None:
        self.max_workers = max(1, max_workers)

    def build_index(self, content: bytes) -> MatchIndex:
        """Index every qualifying image in the archive."""
        try:
            archive = zipfile.ZipFile(io.BytesIO(content))
        except (zipfile.BadZipFile, zipfile.LargeZipFile, ValueError) as e:
            raise ArchiveError(f"Could not read archive: {e}")

        with archive:
            candidates = [info for info in archive.infolist() if is_indexable_entry(info)]
            skipped = len(archive.infolist()) - len(candidates)
            logger.info(
                f"Archive contains {len(candidates)} image entries ({skipped} skipped)"
            )
            entries = self._read_entries(archive, candidates)

        index = MatchIndex()
        for entry in entries:
            self._insert(index, entry)

        logger.info(
            f"Indexed {index.image_count} images: {len(index.exact)} exact, "
            f"{len(index.normalized)} normalized, {len(index.fuzzy)} fuzzy keys"
        )
        return index

    def _read_entries(
        self, archive: zipfile.ZipFile, candidates: List[zipfile.ZipInfo]
    ) -> List[ImageEntry]:
        if not candidates:
            return []

        def read(info: zipfile.ZipInfo) -> ImageEntry:
            return self._read_entry(archive, info)

        # map() yields results in archive order regardless of completion order
        workers = min(self.max_workers, len(candidates))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            return list(executor.map(read, candidates))

    def _read_entry(self, archive: zipfile.ZipFile, info: zipfile.ZipInfo) -> ImageEntry:
        path = info.filename.replace("\\", "/")
        try:
            data = archive.read(info)
        except (zipfile.BadZipFile, RuntimeError, OSError, EOFError) as e:
            raise ArchiveError(f"Could not read archive entry '{path}': {e}")
        except NotImplementedError as e:
            raise ArchiveError(f"Unsupported compression for '{path}': {e}")
        return ImageEntry(filename=path.rstrip("/").split("/")[-1], path=path, data=data)

    def _insert(self, index: MatchIndex, entry: ImageEntry) -> None:
        name = entry.filename
        if name in index.exact:
            logger.warning(f"Duplicate filename '{name}' in archive, later entry wins")
        index.exact[exact_key(name)] = entry

        normalized = normalized_key(name)
        if normalized:
            index.normalized[normalized] = entry

        fuzzy = fuzzy_key(name)
        if fuzzy:
            index.fuzzy[fuzzy] = entry

        index.image_count += 1


def index_archive(content: bytes, max_workers: Optional[int] = None) -> MatchIndex:
    """Convenience wrapper around :class:`ArchiveIndexer`."""
    return ArchiveIndexer(max_workers=max_workers or DEFAULT_MAX_WORKERS).build_index(
        content
    )
