"""Streaming reader for filesystem trees.

A TreeReader resolves one filesystem entry and drives it to its end:
directories spawn a child reader per entry, one at a time, and relay
every descendant upward as an ``entry`` signal; files stream their bytes
as ``data`` signals; symlinks report their target.

Signals emitted by a reader:
    stat(properties)     the node is classified (not emitted if filtered)
    entries(names)       raw directory listing, directories only
    entry(node)          a descendant was classified (bubbles to the root)
    linkpath(target)     symlinks only
    open(fd) / data(chunk) / close()   file content
    end()                the node finished normally (also when filtered)
    error(error, node)   a failure here or in a descendant
"""

import asyncio
import logging
import os
from dataclasses import replace
from enum import Enum
from typing import AsyncIterator, Optional

from . import fs
from .config import Filter, ReaderConfig
from .core.events import EventEmitter
from .core.node import Properties, TreeEntry
from .core.types import FileType, classify
from .exceptions import ContentReadError, MissingPath, ReadDirError, ReadLinkError, StatError
from .streams import FileReadStream


logger = logging.getLogger(__name__)


class ReaderState(Enum):
    PENDING = "pending"
    CLASSIFIED = "classified"
    RECURSING = "recursing"
    STREAMING = "streaming"
    ENDED = "ended"


class TreeReader(TreeEntry, EventEmitter):
    """Reads the filesystem entry at ``path`` and, recursively, its children.

    Args:
        path: Entry to read
        config: Reader options shared with every child reader
        filter: Shortcut for ``config.filter``
        follow_symlinks: Shortcut for ``config.follow_symlinks``
        depth: Distance from the traversal root
        parent: Enclosing reader, if any
        root: Traversal root (defaults to the parent's root, else self)
    """

    def __init__(
        self,
        path: str,
        *,
        config: Optional[ReaderConfig] = None,
        filter: Optional[Filter] = None,
        follow_symlinks: Optional[bool] = None,
        depth: int = 0,
        parent: Optional["TreeReader"] = None,
        root: Optional["TreeReader"] = None,
    ):
        if not path:
            raise MissingPath("reader")
        EventEmitter.__init__(self)
        TreeEntry.__init__(self, path, depth=depth, parent=parent, root=root)

        config = config or ReaderConfig()
        if filter is not None:
            config = replace(config, filter=filter)
        if follow_symlinks is not None:
            config = replace(config, follow_symlinks=follow_symlinks)
        self.config = config

        self.state = ReaderState.PENDING
        self.stat_result: Optional[os.stat_result] = None
        self.error: Optional[Exception] = None
        self.filtered = False
        self._stream: Optional[FileReadStream] = None
        self._started = False

    @property
    def filter(self) -> Optional[Filter]:
        return self.config.filter

    @property
    def link_target(self) -> Optional[str]:
        return self.properties.link_target

    @property
    def ended(self) -> bool:
        return self.state is ReaderState.ENDED

    async def run(self) -> None:
        """Drive this node, and its subtree, to the end.

        Errors are delivered through the ``error`` signal; with no
        listener attached they propagate out of this call.
        """
        if self._started:
            raise RuntimeError(f"{self!r} has already been run")
        self._started = True

        try:
            st = await fs.stat(self.path, self.config.follow_symlinks)
        except OSError as e:
            await self._fail(StatError(self.path, e))
            return

        self.stat_result = st
        self.type = classify(st)
        self.properties = Properties.from_stat(st)

        # A rejected node still ends so the parent's walk can move on.
        if self.filter is not None and not self.filter(self):
            logger.debug("Filtered out %s", self.path)
            self.filtered = True
            await self._end()
            return

        # Resolved before ``stat`` so consumers adding this node already
        # know where the link points.
        if self.type is FileType.SYMBOLIC_LINK:
            try:
                self.properties.link_target = await fs.readlink(self.path)
            except OSError as e:
                await self._fail(ReadLinkError(self.path, e))
                return

        self.state = ReaderState.CLASSIFIED
        await self.emit("stat", self.properties)

        if self.type is FileType.DIRECTORY:
            await self._walk_directory()
        elif self.type is FileType.SYMBOLIC_LINK:
            await self.emit("linkpath", self.properties.link_target)
            await self._end()
        elif self.type is FileType.FILE and self.properties.size:
            await self._stream_content()
        else:
            # Empty files, and devices, FIFOs and sockets whose data is
            # not modelled.
            await self._end()

    async def _walk_directory(self) -> None:
        try:
            names = await fs.listdir(self.path)
        except OSError as e:
            await self._fail(ReadDirError(self.path, e))
            return

        self.state = ReaderState.RECURSING
        await self.emit("entries", names)

        child_config = self.config
        if child_config.follow_symlinks:
            child_config = replace(child_config, follow_symlinks=False)

        # One child at a time: bounded descriptors, deterministic order.
        for name in names:
            child = TreeReader(
                os.path.join(self.path, name),
                config=child_config,
                depth=self.depth + 1,
                parent=self,
                root=self.root,
            )
            child.on("error", self._relay("error"))
            child.on("stat", lambda _props, child=child: self.emit("entry", child))
            child.on("entry", self._relay("entry"))
            await child.run()

        await self._end()

    async def _stream_content(self) -> None:
        stream = self._stream = FileReadStream(self.path, self.config.chunk_size)
        self.state = ReaderState.STREAMING
        self.proxy(stream, "open", "data", "close")
        stream.on("error", lambda e: self._fail(ContentReadError(self.path, e)))
        stream.on("end", self._end)
        try:
            await stream.run()
        finally:
            self._stream = None

        if self.error is None and stream.bytes_read != self.properties.size:
            logger.warning("%s: read %d bytes, stat reported %d",
                           self.path, stream.bytes_read, self.properties.size)

    async def _end(self) -> None:
        self.state = ReaderState.ENDED
        await self.emit("end")

    async def _fail(self, error: Exception) -> None:
        logger.debug("Read failed for %s: %s", self.path, error)
        self.error = error
        self.state = ReaderState.ENDED
        await self.emit("error", error, self)

    def pause(self) -> None:
        """Throttle content delivery. No-op unless file content is streaming."""
        if self._stream is not None:
            self._stream.pause()

    def resume(self) -> None:
        if self._stream is not None:
            self._stream.resume()

    def pipe(self, dest):
        """Feed this node into ``dest``.

        Content goes to ``dest.write`` and the end to ``dest.end``. When
        ``dest`` accepts children, every bubbled ``entry`` is handed to
        ``dest.add``. A failure of this node aborts ``dest``.

        Returns:
            ``dest``, for chaining
        """
        if callable(getattr(dest, "add", None)):
            self.on("entry", dest.add)
        self.on("data", dest.write)
        self.on("end", dest.end)

        abort = getattr(dest, "abort", None)
        if callable(abort):
            async def on_error(error, node):
                if node is self:
                    await abort()
                # Piping alone does not count as handling the failure.
                if self.listener_count("error") == 1:
                    raise error
            self.on("error", on_error)
        return dest

    async def walk(self) -> AsyncIterator["TreeReader"]:
        """Run the traversal, yielding the root and then every descendant.

        The traversal is held right after each node is classified until
        the loop asks for the next one, so listeners attached (or
        ``pipe()`` calls made) in the loop body receive that node's
        content. Nodes come depth-first, directories before their
        contents, siblings in listing order.

        Example:
            >>> async for node in TreeReader('/src').walk():
            ...     print(node.depth, node.relative_path, node.type)
        """
        handoff: asyncio.Queue = asyncio.Queue()
        finished = object()

        async def hand_over(node):
            resumed = asyncio.Event()
            await handoff.put((node, resumed))
            await resumed.wait()

        self.once("stat", lambda _props: hand_over(self))
        self.on("entry", hand_over)
        task = asyncio.ensure_future(self.run())
        task.add_done_callback(lambda _task: handoff.put_nowait((finished, None)))

        try:
            while True:
                node, resumed = await handoff.get()
                if node is finished:
                    break
                try:
                    yield node
                finally:
                    resumed.set()
            await task
        finally:
            if not task.done():
                task.cancel()
