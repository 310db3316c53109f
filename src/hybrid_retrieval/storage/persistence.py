"""
JSON snapshot persistence with atomic replace, backups and auto-save.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError

from ..config import StoreSettings
from ..errors import PersistenceIOError, RetrievalError
from ..models import SNAPSHOT_VERSION, Snapshot, StorageInfo, utcnow
from .store import VectorStore

logger = logging.getLogger(__name__)


class PersistenceManager:
    """Snapshot a `VectorStore` to one JSON file and restore it.

    Mutations are tracked with a generation counter: `mark_dirty()` bumps it
    and `save()` records the generation its snapshot was taken at. The store
    is clean only when no mutation happened after the last successful save.
    """

    def __init__(self, store: VectorStore, settings: StoreSettings) -> None:
        self.store = store
        self.settings = settings
        self.path = Path(settings.storage_path)
        self._generation = 0
        self._saved_generation = 0
        self._last_save: datetime | None = None
        self._save_lock = asyncio.Lock()
        self._auto_save_task: asyncio.Task[None] | None = None

    @property
    def tmp_path(self) -> Path:
        return self.path.with_name(self.path.name + ".tmp")

    def backup_paths(self) -> list[Path]:
        """Backup files newest first: `<path>.bak`, `<path>.bak.1`, ..."""
        base = self.path.name + ".bak"
        return [
            self.path.with_name(base if i == 0 else f"{base}.{i}")
            for i in range(self.settings.backup_count)
        ]

    def mark_dirty(self) -> None:
        self._generation += 1

    @property
    def is_dirty(self) -> bool:
        return self._generation != self._saved_generation

    @property
    def last_save(self) -> datetime | None:
        return self._last_save

    async def save(self) -> Path:
        """Write the store to disk.

        Raises `PersistenceIOError` if the snapshot cannot be written; the
        store then stays dirty and the previous file (or its backup) is kept.
        """
        async with self._save_lock:
            generation = self._generation
            snapshot = await self.store.export_snapshot()
            payload = snapshot.model_dump_json()
            await asyncio.to_thread(self._write_snapshot, payload)
            self._saved_generation = generation
            self._last_save = utcnow()
        logger.debug(
            "Saved %d chunks to %s", len(snapshot.chunks), self.path
        )
        return self.path

    async def load(self) -> bool:
        """Replace the store's contents with the snapshot on disk.

        Returns False when there is no snapshot file yet. Raises
        `PersistenceIOError` for unreadable or malformed files and
        `DimensionMismatch` when the snapshot was written for another
        dimension; in both cases the store is left as it was.
        """
        if not self.path.exists():
            logger.info("No snapshot at %s; starting with an empty store", self.path)
            return False

        try:
            raw = await asyncio.to_thread(self.path.read_bytes)
        except OSError as exc:
            raise PersistenceIOError(str(self.path), f"Failed to read snapshot ({exc})") from exc
        try:
            snapshot = Snapshot.model_validate_json(raw)
        except (ValidationError, ValueError) as exc:
            raise PersistenceIOError(str(self.path), f"Failed to parse snapshot ({exc})") from exc

        if snapshot.version != SNAPSHOT_VERSION:
            logger.warning(
                "Snapshot %s has version %s, expected %s",
                self.path,
                snapshot.version,
                SNAPSHOT_VERSION,
            )
        await self.store.restore_snapshot(snapshot)
        self._saved_generation = self._generation
        self._last_save = snapshot.created_at
        logger.info(
            "Loaded %d chunks from %s", len(snapshot.chunks), self.path
        )
        return True

    def storage_size_bytes(self) -> int:
        try:
            return self.path.stat().st_size
        except OSError:
            return 0

    async def storage_info(self) -> StorageInfo:
        stats = await self.store.get_stats()
        return StorageInfo(
            storage_path=str(self.path),
            last_save=self._last_save,
            is_dirty=self.is_dirty,
            storage_size_bytes=self.storage_size_bytes(),
            total_chunks=stats.total_chunks,
            total_documents=stats.total_documents,
            auto_save_interval=self.settings.auto_save_interval_seconds,
        )

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def _write_snapshot(self, payload: str) -> None:
        tmp_path = self.tmp_path
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._rotate_backups()
            with tmp_path.open("w", encoding="utf-8") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, self.path)
        except OSError as exc:
            with contextlib.suppress(OSError):
                tmp_path.unlink()
            raise PersistenceIOError(str(self.path), f"Failed to write snapshot ({exc})") from exc

    def _rotate_backups(self) -> None:
        """Shift existing backups one slot older and move the current file to `.bak`.

        Failures are logged and skipped; a missing backup never blocks a save.
        """
        backups = self.backup_paths()
        if not backups or not self.path.exists():
            return
        for newer, older in zip(reversed(backups[:-1]), reversed(backups[1:])):
            if newer.exists():
                try:
                    os.replace(newer, older)
                except OSError as exc:
                    logger.warning("Failed to rotate backup %s: %s", newer, exc)
        try:
            os.replace(self.path, backups[0])
        except OSError as exc:
            logger.warning("Failed to create backup %s: %s", backups[0], exc)

    # ------------------------------------------------------------------
    # Auto-save
    # ------------------------------------------------------------------

    @property
    def auto_save_running(self) -> bool:
        return self._auto_save_task is not None and not self._auto_save_task.done()

    def start_auto_save(self) -> None:
        """Start the periodic save task; a zero interval disables it."""
        interval = self.settings.auto_save_interval_seconds
        if interval <= 0 or self.auto_save_running:
            return
        self._auto_save_task = asyncio.create_task(self._auto_save_loop(interval))
        logger.debug("Auto-save every %gs for %s", interval, self.path)

    async def stop_auto_save(self) -> None:
        task, self._auto_save_task = self._auto_save_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _auto_save_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            if not self.is_dirty:
                continue
            try:
                await self.save()
            except RetrievalError:
                logger.exception("Auto-save to %s failed; will retry", self.path)
