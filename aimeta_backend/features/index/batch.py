"""
Batch indexer: a list of image paths in, ``IndexedImage`` records out.

Three phases keep board naming reproducible while the work stays parallel:

1. read + parse every file on the pool (no resolver access)
2. walk the parsed records in input order and pre-assign board names
3. normalize and build entries on the pool against the now-stable mapping
"""
from __future__ import annotations

import asyncio
import contextvars
import functools
import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable, Optional, TypeVar

from ...config import INDEX_MAX_WORKERS, MAX_FILE_SIZE_BYTES, PROGRESS_EVERY
from ...shared import ErrorCode, classify_file, get_logger, log_structured, log_success, scan_id_var, timer
from ..metadata.board_resolver import BoardResolver
from ..metadata.models import ImageMetadata
from ..metadata.normalizer import collect_board_ids
from ..metadata.service import read_image_metadata
from .entry_builder import IndexedImage, build_indexed_image

logger = get_logger(__name__)

T = TypeVar("T")

ProgressCallback = Callable[[int, int], None]


@dataclass
class ParsedFile:
    path: Path
    metadata: ImageMetadata
    mtime: float


class IndexService:
    """
    Indexes explicit file lists. The board resolver is owned by the service,
    so names stay consistent across every batch run through it.
    """

    def __init__(
        self,
        resolver: Optional[BoardResolver] = None,
        *,
        max_workers: int = INDEX_MAX_WORKERS,
        progress_every: int = PROGRESS_EVERY,
        max_file_size: int = MAX_FILE_SIZE_BYTES,
    ):
        self.resolver = resolver if resolver is not None else BoardResolver()
        self._max_workers = max(1, int(max_workers))
        self._progress_every = max(1, int(progress_every))
        self._max_file_size = int(max_file_size)

    async def index_files(
        self,
        paths: Iterable[str | Path],
        on_progress: Optional[ProgressCallback] = None,
    ) -> list[IndexedImage]:
        """Index ``paths``; unreadable or metadata-less files are skipped."""
        unique = _unique_paths(paths)
        scan_id = uuid.uuid4().hex[:8]
        token = scan_id_var.set(scan_id)
        loop = asyncio.get_running_loop()
        try:
            log_structured(logger, logging.INFO, "Index batch started", files=len(unique))
            with ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="aimeta-index") as pool:
                with timer("parse phase", logger):
                    progress = _Progress(len(unique), self._progress_every, on_progress)
                    parsed = await asyncio.gather(
                        *(progress.track(_in_pool(loop, pool, self._read_one, path)) for path in unique)
                    )
                records = [item for item in parsed if item is not None]

                with timer("board pre-pass", logger):
                    self._preassign_boards(records)

                with timer("entry phase", logger):
                    built = await asyncio.gather(*(_in_pool(loop, pool, self._build_one, rec) for rec in records))
            entries = [entry for entry in built if entry is not None]

            log_structured(
                logger,
                logging.INFO,
                "Index batch finished",
                files=len(unique),
                indexed=len(entries),
                skipped=len(unique) - len(entries),
                boards=len(self.resolver),
            )
            log_success(logger, f"Indexed {len(entries)}/{len(unique)} files")
            return entries
        finally:
            scan_id_var.reset(token)

    def index_files_sync(
        self,
        paths: Iterable[str | Path],
        on_progress: Optional[ProgressCallback] = None,
    ) -> list[IndexedImage]:
        """Blocking variant of ``index_files`` for callers without an event loop."""
        return asyncio.run(self.index_files(paths, on_progress))

    def _read_one(self, path: Path) -> Optional[ParsedFile]:
        try:
            return self._read_file(path)
        except Exception as exc:
            logger.error("Failed to index %s: %s", path, exc)
            return None

    def _read_file(self, path: Path) -> Optional[ParsedFile]:
        result = read_image_metadata(path, max_bytes=self._max_file_size)
        if result.code in (ErrorCode.TOO_LARGE.value, ErrorCode.READ_ERROR.value):
            logger.warning("Skipping %s: %s", path, result.error)
            return None
        if not result.ok or result.data is None:
            logger.debug("No metadata for %s: [%s] %s", path, result.code, result.error)
            return None
        return ParsedFile(path=path, metadata=result.data, mtime=result.meta["mtime"])

    def _preassign_boards(self, records: list[ParsedFile]) -> None:
        board_ids: list[str] = []
        for record in records:
            board_ids.extend(collect_board_ids(record.metadata))
        self.resolver.preassign(board_ids)

    def _build_one(self, record: ParsedFile) -> Optional[IndexedImage]:
        try:
            return build_indexed_image(record.path, record.metadata, mtime=record.mtime, resolver=self.resolver)
        except Exception as exc:
            logger.error("Failed to build index entry for %s: %s", record.path, exc)
            return None


class _Progress:
    """Reports ``(done, total)`` every ``every`` files and once at the end."""

    def __init__(self, total: int, every: int, callback: Optional[ProgressCallback]):
        self.total = total
        self.every = every
        self.callback = callback
        self.done = 0

    async def track(self, awaitable: Awaitable[T]) -> T:
        try:
            return await awaitable
        finally:
            self.done += 1
            if self.done % self.every == 0 or self.done == self.total:
                logger.info("Processed %d/%d files", self.done, self.total)
                if self.callback is not None:
                    self._notify()

    def _notify(self) -> None:
        try:
            self.callback(self.done, self.total)
        except Exception as exc:
            logger.warning("Progress callback failed: %s", exc)


def _in_pool(loop: asyncio.AbstractEventLoop, pool: ThreadPoolExecutor, fn: Callable[..., T], *args: Any) -> Awaitable[T]:
    # run_in_executor does not carry context variables; scan_id must reach worker logs.
    ctx = contextvars.copy_context()
    return loop.run_in_executor(pool, functools.partial(ctx.run, fn, *args))


def _unique_paths(paths: Iterable[str | Path]) -> list[Path]:
    out: list[Path] = []
    seen: set[str] = set()
    for raw in paths:
        path = Path(raw)
        key = str(path)
        if key in seen:
            logger.warning("Duplicate path in batch, keeping first: %s", key)
            continue
        seen.add(key)
        if classify_file(key) == "unknown":
            logger.debug("Skipping non-image file: %s", key)
            continue
        out.append(path)
    return out
