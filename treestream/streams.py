"""Content byte-streams for regular files."""

import asyncio
import os
from typing import Optional, Union

from .core.events import EventEmitter


DEFAULT_CHUNK_SIZE = 64 * 1024


class FileReadStream(EventEmitter):
    """Reads a file in chunks, emitting them as ``data`` signals.

    Signals: ``open(fd)``, ``data(chunk)``, ``end()``, ``close()`` on
    success; ``error(OSError)`` then ``close()`` on failure.
    """

    def __init__(self, path: str, chunk_size: int = DEFAULT_CHUNK_SIZE):
        super().__init__()
        self.path = path
        self.chunk_size = chunk_size
        self.bytes_read = 0
        self.fd: Optional[int] = None
        self._flowing = asyncio.Event()
        self._flowing.set()

    @property
    def paused(self) -> bool:
        return not self._flowing.is_set()

    def pause(self) -> None:
        self._flowing.clear()

    def resume(self) -> None:
        self._flowing.set()

    async def run(self) -> None:
        """Read the whole file, delivering each chunk before reading the next."""
        try:
            handle = await asyncio.to_thread(open, self.path, "rb")
        except OSError as e:
            await self.emit("error", e)
            await self.emit("close")
            return

        failure = None
        try:
            self.fd = handle.fileno()
            await self.emit("open", self.fd)
            while True:
                await self._flowing.wait()
                try:
                    chunk = await asyncio.to_thread(handle.read, self.chunk_size)
                except OSError as e:
                    failure = e
                    break
                if not chunk:
                    break
                self.bytes_read += len(chunk)
                await self.emit("data", chunk)
        finally:
            await asyncio.to_thread(handle.close)
            self.fd = None

        if failure is not None:
            await self.emit("error", failure)
        else:
            await self.emit("end")
        await self.emit("close")


class FileWriteStream(EventEmitter):
    """Writes chunks to a file opened (created or truncated) for writing.

    Signals: ``open(fd)`` once the descriptor is live, ``close()`` after
    the data is flushed and the descriptor released.
    """

    def __init__(self, path: str, mode: int = 0o644):
        super().__init__()
        self.path = path
        self.mode = mode
        self.bytes_written = 0
        self._handle = None

    @property
    def fd(self) -> Optional[int]:
        return self._handle.fileno() if self._handle is not None else None

    @property
    def closed(self) -> bool:
        return self._handle is None

    async def open(self) -> None:
        def _open():
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, self.mode)
            return os.fdopen(fd, "wb")

        self._handle = await asyncio.to_thread(_open)
        await self.emit("open", self.fd)

    async def write(self, chunk: Union[bytes, bytearray, memoryview]) -> None:
        await asyncio.to_thread(self._handle.write, chunk)
        self.bytes_written += len(chunk)

    async def close(self) -> None:
        if self._handle is None:
            return
        handle, self._handle = self._handle, None
        await asyncio.to_thread(handle.close)
        await self.emit("close")
