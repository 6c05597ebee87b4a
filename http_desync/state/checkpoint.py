"""Periodic persistence of the scan state.

The state file is opened once and kept for the whole run. Every checkpoint
seeks to the start, truncates and writes the full document, so the file is
always a single JSON document and never an append log.
"""

import asyncio
from pathlib import Path
from typing import Optional

import aiofiles

from http_desync.core.exceptions import PersistenceError
from http_desync.state.store import ScanState, load_document
from http_desync.utils.logging import get_logger


logger = get_logger("http_desync.checkpoint")


class Checkpointer:
    """Loads, periodically saves and finally saves a ScanState."""

    def __init__(self, state: ScanState, path: str, interval: float = 60.0):
        self.state = state
        self.path = Path(path)
        self.interval = interval
        self.saves = 0
        self.failures = 0
        self._file = None
        self._lock = asyncio.Lock()

    async def open(self) -> None:
        """Open (creating if needed) the state file and merge its contents.

        Raises:
            PersistenceError: the file cannot be opened or holds an invalid document
        """
        try:
            if not self.path.exists():
                self.path.touch()
            self._file = await aiofiles.open(self.path, "r+", encoding="utf-8")
            text = await self._file.read()
        except OSError as e:
            raise PersistenceError(str(self.path), str(e))

        try:
            document = load_document(text, str(self.path))
        except PersistenceError:
            await self.close()
            raise
        await self.state.merge(document)
        logger.debug(
            "state loaded",
            path=str(self.path),
            baselines=len(document.baselines),
            results=len(document.results),
        )

    async def save(self) -> None:
        """Write the current state over the file contents.

        Raises:
            PersistenceError: the state could not be serialized or written
        """
        if self._file is None:
            raise PersistenceError(str(self.path), "state file is not open")

        async with self._lock:
            try:
                payload = await self.state.serialize()
            except (TypeError, ValueError) as e:
                raise PersistenceError(str(self.path), f"serialize failed: {e}")

            try:
                await self._file.seek(0)
                await self._file.truncate()
                await self._file.write(payload)
                await self._file.flush()
            except OSError as e:
                raise PersistenceError(str(self.path), f"write failed: {e}")

            self.saves += 1

    async def try_save(self) -> Optional[PersistenceError]:
        """Save, logging a failure instead of raising it."""
        try:
            await self.save()
        except PersistenceError as e:
            self.failures += 1
            logger.error("checkpoint failed", error=str(e))
            return e
        return None

    async def run(self) -> None:
        """Checkpoint every ``interval`` seconds until cancelled."""
        while True:
            await asyncio.sleep(self.interval)
            await self.try_save()

    async def close(self) -> None:
        if self._file is not None:
            await self._file.close()
            self._file = None
