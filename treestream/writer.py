"""Reconciling writer for filesystem trees.

A TreeWriter brings the entry at its path into the wanted shape: it
probes what is there, keeps it when the type already matches, otherwise
clears the path and creates the entry, then reconciles mode, ownership
and timestamps. Writes and child additions that arrive before that work
is finished are queued and replayed in arrival order.

Directory timestamps, and directory modes that would lock the owner out,
are held back until wait() has seen every entry inside created.

Signals emitted by a writer:
    open()               the created resource is live
    ready()              reconciliation finished; queued calls replay next
    entry(target)        a descendant target became ready (bubbles upward)
    close()              file content flushed and closed
    end()                the target was ended
    error(error, target) a failure here or in a descendant
"""

import asyncio
import logging
import os
import stat as stat_module
from collections import deque
from dataclasses import replace
from enum import Enum
from typing import Any, Optional, Union

from . import fs
from .config import WriterConfig
from .core.events import EventEmitter
from .core.node import Properties, TreeEntry
from .core.types import CREATABLE_TYPES, FileType, classify
from .exceptions import (
    AddAfterEnd,
    AddToNonDirectory,
    CannotCreateType,
    ClobberRefused,
    ContentWriteError,
    CreateError,
    MissingLinkTarget,
    MissingPath,
    PipeFromWritable,
    PropertyError,
    ReadLinkError,
    RemoveError,
    SizeMismatch,
    StatError,
    WriteAfterEnd,
)
from .streams import FileWriteStream


logger = logging.getLogger(__name__)


class WriterState(Enum):
    PENDING = "pending"
    READY = "ready"
    ENDED = "ended"
    FAILED = "failed"


def _same_time(wanted: float, current: float) -> bool:
    # Float seconds lose sub-microsecond precision on the round trip.
    return abs(wanted - current) < 1e-6


class TreeWriter(TreeEntry, EventEmitter):
    """Creates or reconciles the filesystem entry at ``path``.

    Args:
        path: Destination of the entry
        type: Wanted FileType; defaults to the existing entry's type,
            else File
        properties: Wanted Properties (or a mapping of them)
        config: Writer options shared with every child target
        clobber: Shortcut for ``config.clobber``
        depth: Distance from the root target
        parent: Enclosing target, if any
        root: Root target (defaults to the parent's root, else self)
        **props: Individual property overrides (mode, uid, gid, atime,
            mtime, size, link_target)
    """

    def __init__(
        self,
        path: str,
        *,
        type: Optional[Union[FileType, str]] = None,
        properties: Optional[Union[Properties, dict]] = None,
        config: Optional[WriterConfig] = None,
        clobber: Optional[bool] = None,
        depth: int = 0,
        parent: Optional["TreeWriter"] = None,
        root: Optional["TreeWriter"] = None,
        **props: Any,
    ):
        if not path:
            raise MissingPath("writer")
        EventEmitter.__init__(self)

        if properties is None:
            properties = Properties()
        elif isinstance(properties, dict):
            properties = Properties.from_mapping(properties)
        if props:
            properties = replace(properties, **props)
        TreeEntry.__init__(self, path, depth=depth, parent=parent, root=root,
                           type=type, properties=properties)

        config = config or WriterConfig()
        if clobber is not None:
            config = replace(config, clobber=clobber)
        self.config = config

        self.state = WriterState.PENDING
        self.error: Optional[Exception] = None
        self.existing: Optional[os.stat_result] = None
        self.children = []
        self._buffer = deque()
        self._ready = False
        self._ended = False
        self._aborted = False
        self._stream: Optional[FileWriteStream] = None
        self._bytes_written = 0
        self._pending_times = None
        self._pending_mode: Optional[int] = None
        self._buffered_bytes = 0
        self._task: Optional[asyncio.Future] = None
        self._settled = asyncio.Event()
        self._finished = asyncio.Event()

    @classmethod
    def open(cls, path: str, **options: Any) -> "TreeWriter":
        """Create a writer and start reconciling it."""
        return cls(path, **options).start()

    @property
    def clobber(self) -> bool:
        return self.config.clobber

    @property
    def size(self) -> Optional[int]:
        return self.properties.size

    @property
    def link_target(self) -> Optional[str]:
        return self.properties.link_target

    @property
    def bytes_written(self) -> int:
        return self._bytes_written

    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def ended(self) -> bool:
        return self._ended

    def start(self) -> "TreeWriter":
        """Schedule reconciliation on the running loop. Idempotent."""
        if self._task is None:
            self._task = asyncio.ensure_future(self._open())
        return self

    async def wait_ready(self) -> bool:
        """Wait until reconciliation settles.

        Returns:
            True if the target became ready, False if it failed
        """
        await self._settled.wait()
        return self._ready and self.state is not WriterState.FAILED

    async def wait(self) -> None:
        """Wait until this target and all of its children are finished.

        A file target finishes when its content is closed, so it must
        have been ended. Once everything below this target is finished,
        the held-back directory times and modes are applied, deepest
        first. Failures nobody listened to are raised here.
        """
        if self._task is None:
            raise RuntimeError(f"{self!r} has not been started")
        await self._wait_tree()
        targets = sorted(self._subtree(), key=lambda t: t.path.count(os.sep), reverse=True)
        for target in targets:
            await target._finish_directory()

    async def _wait_tree(self) -> None:
        await self._task
        if self._stream is not None:
            await self._finished.wait()
        i = 0
        while i < len(self.children):
            await self.children[i]._wait_tree()
            i += 1

    def _subtree(self):
        yield self
        for child in self.children:
            yield from child._subtree()

    # -- reconciliation -------------------------------------------------

    async def _open(self) -> None:
        if self._aborted:
            return
        try:
            current = await fs.probe(self.path, self.config.follow_symlinks)
        except OSError as e:
            await self._fail(StatError(self.path, e))
            return

        current_type = classify(current) if current is not None else None
        wanted = self.type or current_type or FileType.FILE
        self.type = wanted
        self.existing = current

        if wanted not in CREATABLE_TYPES:
            await self._fail(CannotCreateType(self.path, wanted))
            return

        recreate = wanted is not current_type
        if not recreate and wanted is FileType.SYMBOLIC_LINK and self.link_target:
            try:
                recreate = await fs.readlink(self.path) != self.link_target
            except OSError as e:
                await self._fail(ReadLinkError(self.path, e))
                return

        if not recreate:
            if wanted is FileType.FILE:
                await self._create()
            else:
                await self._set_props(current)
            return

        if wanted.is_link and not self.link_target:
            await self._fail(MissingLinkTarget(self.path))
            return

        if current is not None:
            if not self.clobber:
                await self._fail(ClobberRefused(self.path, current_type, wanted))
                return
            logger.debug("Clobbering %s (%s -> %s)", self.path,
                         current_type.value, wanted.value)
            try:
                await fs.remove_tree(self.path)
            except OSError as e:
                await self._fail(RemoveError(self.path, e))
                return

        await self._create()

    async def _create(self) -> None:
        props = self.properties
        if props.mode is None:
            props.mode = (self.config.dir_mode if self.type is FileType.DIRECTORY
                          else self.config.file_mode)

        try:
            await fs.makedirs(self.dirname, self.config.dir_mode)
            if self.type is FileType.DIRECTORY:
                await fs.makedirs(self.path, (props.mode & 0o777) | 0o700)
            elif self.type is FileType.SYMBOLIC_LINK:
                await fs.symlink(self.link_target, self.path)
            elif self.type is FileType.HARD_LINK:
                await fs.link(self.link_target, self.path)
            else:
                stream = FileWriteStream(self.path, props.mode & 0o777)
                self.proxy(stream, "close")
                await stream.open()
                self._stream = stream
        except OSError as e:
            await self._fail(CreateError(self.path, e))
            return

        logger.debug("Created %s %s", self.type.value, self.path)
        await self.emit("open")

        try:
            current = await fs.stat(self.path, self.config.follow_symlinks)
        except OSError as e:
            await self._fail(StatError(self.path, e))
            return
        self.existing = current
        await self._set_props(current)

    async def _set_props(self, current: os.stat_result) -> None:
        """Apply whichever of mode, owner and times differ from ``current``."""
        props = self.properties
        on_link = self.type is FileType.SYMBOLIC_LINK
        on_dir = self.type is FileType.DIRECTORY
        fd = self._stream.fd if self._stream is not None else None
        actions = []

        # Link permissions are not changeable on every platform and are
        # ignored where they are.
        if props.mode is not None and not on_link:
            mode = stat_module.S_IMODE(props.mode)
            if on_dir and mode & 0o700 != 0o700:
                # Entries still have to be created inside; wait() applies it.
                self._pending_mode = mode
                mode |= 0o700
            if mode != stat_module.S_IMODE(current.st_mode):
                actions.append(("chmod", fs.chmod(self.path, mode, fd)))

        if props.uid is not None or props.gid is not None:
            uid = props.uid if props.uid is not None else current.st_uid
            gid = props.gid if props.gid is not None else current.st_gid
            if (uid, gid) != (current.st_uid, current.st_gid):
                actions.append(("chown", fs.chown(self.path, uid, gid, fd,
                                                  follow_symlinks=not on_link)))

        if props.atime is not None or props.mtime is not None:
            if self._stream is not None or on_dir:
                # Writing content, or creating entries inside, would bump
                # mtime again; applied on close or by wait().
                self._pending_times = (props.atime, props.mtime)
            else:
                atime = props.atime if props.atime is not None else current.st_atime_ns / 1e9
                mtime = props.mtime if props.mtime is not None else current.st_mtime_ns / 1e9
                if not (_same_time(atime, current.st_atime_ns / 1e9)
                        and _same_time(mtime, current.st_mtime_ns / 1e9)):
                    actions.append(("utime", fs.utime(self.path, atime, mtime,
                                                      follow_symlinks=not on_link)))

        if actions:
            results = await asyncio.gather(*(coro for _, coro in actions),
                                           return_exceptions=True)
            for (operation, _), result in zip(actions, results):
                if isinstance(result, OSError):
                    await self._fail(PropertyError(self.path, result, operation))
                    return
                if isinstance(result, BaseException):
                    raise result

        await self._become_ready()

    async def _become_ready(self) -> None:
        if self._aborted:
            await self._close_quietly()
            return

        self._ready = True
        if self.state is WriterState.PENDING:
            self.state = WriterState.READY
        logger.debug("Ready: %s", self.path)
        try:
            await self.emit("ready")
            # Anything queued while pending replays before new calls apply.
            while self._buffer:
                op, arg = self._buffer[0]
                if op == "write":
                    await self._write(arg)
                    self._buffered_bytes -= len(arg)
                elif op == "add":
                    await self._add(arg)
                else:
                    await self._end()
                if self._buffer:
                    self._buffer.popleft()
        except BaseException:
            self._drop_buffer()
            raise
        finally:
            self._settled.set()

    # -- public operations ---------------------------------------------

    async def write(self, chunk: Union[bytes, bytearray, memoryview, str]) -> bool:
        """Write content to a File target.

        Content for other types is accepted and ignored, since archive
        producers attach metadata payloads to directories and links.

        Once more than ``config.max_buffered_bytes`` are queued, the call
        waits for the target to settle, holding back the producer.

        Returns:
            True if applied now, False if queued or rejected
        """
        if isinstance(chunk, str):
            chunk = chunk.encode()
        if not isinstance(chunk, (bytes, bytearray, memoryview)):
            raise TypeError(f"can only write str or bytes, not {type(chunk).__name__}")

        self._raise_failure()
        if self._ended:
            await self._report(WriteAfterEnd(self.path))
            return False
        if self.state is WriterState.FAILED:
            return False
        if not self._ready or self._buffer:
            self._buffer.append(("write", chunk))
            self._buffered_bytes += len(chunk)
            # A lone writer nobody started would never settle.
            scheduled = self._task is not None or self.parent is not None
            if scheduled and self._buffered_bytes > self.config.max_buffered_bytes:
                await self._settled.wait()
            return False
        return await self._write(chunk)

    async def _write(self, chunk) -> bool:
        if self.type is not FileType.FILE or self._stream is None:
            return True
        self._bytes_written += len(chunk)
        try:
            await self._stream.write(chunk)
        except OSError as e:
            await self._fail(ContentWriteError(self.path, e))
            return False
        return True

    async def add(self, entry) -> Optional["TreeWriter"]:
        """Materialise ``entry`` beneath this Directory target.

        The destination is the entry's path relative to its traversal
        root, joined onto this target's path; an entry that is its own
        root lands under its basename. Non-directory entries that can
        pipe are piped into the new child. An entry that is, or descends
        from, this target's own path is dropped without error.

        The child is settled before this returns, so a failure an error
        listener escalates (FailFastPolicy) is raised to the caller.

        Returns:
            The child target (settled, or queued until this target is
            ready), or None if the entry was dropped or rejected
        """
        self._raise_failure()
        if self._ended:
            await self._report(AddAfterEnd(self.path))
            return None
        if self.state is WriterState.FAILED:
            return None
        if self._ready and self.type is not FileType.DIRECTORY:
            await self._report(AddToNonDirectory(self.path, self.type))
            return None

        child = self._prepare_child(entry)
        if child is None:
            return None
        if not self._ready or self._buffer:
            self._buffer.append(("add", child))
            return child
        return await self._add(child)

    def _prepare_child(self, entry) -> Optional["TreeWriter"]:
        if any(node.path == self.path for node in entry.ancestors()):
            logger.debug("Refusing to copy %s into itself", entry.path)
            return None

        source_root = getattr(entry, "root", None) or getattr(entry, "parent", None)
        if source_root is None or source_root is entry:
            rel = os.path.basename(entry.path)
        else:
            rel = os.path.relpath(entry.path, source_root.path)
        path = os.path.normpath(os.path.join(self.path, rel))

        source = getattr(entry, "properties", None) or Properties()
        if isinstance(source, dict):
            source = Properties.from_mapping(source)
        inherited = self.config.inherited_fields()
        properties = Properties.from_mapping(
            {k: v for k, v in source.as_dict().items() if k in inherited})

        child = TreeWriter(
            path,
            type=getattr(entry, "type", None),
            properties=properties,
            config=self.config,
            depth=self.depth + 1,
            parent=self,
            root=self.root,
        )
        child.on("ready", lambda: self.emit("entry", child))
        child.on("entry", self._relay("entry"))
        child.on("error", self._relay("error"))

        # Directories are complete once created.
        if child.type is not FileType.DIRECTORY and callable(getattr(entry, "pipe", None)):
            entry.pipe(child)
        return child

    async def _add(self, child: "TreeWriter") -> Optional["TreeWriter"]:
        if self.type is not FileType.DIRECTORY:
            await self._report(AddToNonDirectory(self.path, self.type))
            return None
        self.children.append(child)
        child.start()
        # One child at a time: contents never race their directory's
        # creation, and a failure is known before the next entry arrives.
        if not await child.wait_ready():
            child._raise_failure()
        return child

    async def end(self, chunk=None) -> None:
        """Optionally write a last chunk, then close the target.

        Further writes and adds are reported as errors.
        """
        if chunk:
            await self.write(chunk)
        if self._ended:
            return
        self._ended = True
        if self.state is WriterState.FAILED:
            return
        if not self._ready or self._buffer:
            self._buffer.append(("end", None))
            return
        await self._end()

    async def _end(self) -> None:
        self.state = WriterState.ENDED
        if self._stream is not None:
            await self._close_stream()
            if self.state is WriterState.FAILED:
                return
        await self.emit("end")

    async def _close_stream(self) -> None:
        try:
            try:
                await self._stream.close()
            except OSError as e:
                await self._fail(ContentWriteError(self.path, e))
                return

            if self.size is not None and self._bytes_written != self.size:
                await self._fail(SizeMismatch(self.path, self.size, self._bytes_written))
                return

            try:
                await self._apply_pending_times()
            except OSError as e:
                await self._fail(PropertyError(self.path, e, "utime"))
        finally:
            self._finished.set()

    async def _apply_pending_times(self) -> None:
        if self._pending_times is None:
            return
        atime, mtime = self._pending_times
        self._pending_times = None
        if atime is None or mtime is None:
            current = await fs.stat(self.path, True)
            atime = atime if atime is not None else current.st_atime_ns / 1e9
            mtime = mtime if mtime is not None else current.st_mtime_ns / 1e9
        await fs.utime(self.path, atime, mtime)

    async def _finish_directory(self) -> None:
        """Apply the times and mode held back while entries were created."""
        if self.type is not FileType.DIRECTORY:
            return
        if self.state is WriterState.FAILED or self._aborted:
            return
        operation = "utime"
        try:
            await self._apply_pending_times()
            if self._pending_mode is not None:
                operation = "chmod"
                mode, self._pending_mode = self._pending_mode, None
                await fs.chmod(self.path, mode)
        except OSError as e:
            await self._fail(PropertyError(self.path, e, operation))

    async def abort(self) -> None:
        """Stop this target and its children without further checks.

        Queued operations are discarded and open content is closed as is.
        Filesystem operations already in flight still run to completion.
        """
        self._aborted = True
        self._ended = True
        self._drop_buffer()
        await self._close_quietly()
        self._settled.set()
        self._finished.set()
        for child in list(self.children):
            await child.abort()

    def pipe(self, dest):
        raise PipeFromWritable(self.path)

    # -- failure reporting ---------------------------------------------

    async def _close_quietly(self) -> None:
        if self._stream is not None and not self._stream.closed:
            try:
                await self._stream.close()
            except OSError as e:
                logger.debug("Could not close %s: %s", self.path, e)

    def _drop_buffer(self) -> None:
        # Queued children were never started; settle them so nothing
        # waits on them.
        while self._buffer:
            op, arg = self._buffer.popleft()
            if op == "add":
                arg._abandon()
        self._buffered_bytes = 0

    def _abandon(self) -> None:
        self.state = WriterState.FAILED
        self._drop_buffer()
        self._settled.set()
        self._finished.set()

    def _raise_failure(self) -> None:
        """Re-raise a failure an error listener let escape reconciliation."""
        task = self._task
        if task is not None and task.done() and not task.cancelled():
            error = task.exception()
            if error is not None:
                raise error

    async def _report(self, error: Exception) -> None:
        await self.emit("error", error, self)

    async def _fail(self, error: Exception) -> None:
        logger.debug("Write failed for %s: %s", self.path, error)
        self.error = error
        self.state = WriterState.FAILED
        self._drop_buffer()
        try:
            await self._close_quietly()
            await self.emit("error", error, self)
        finally:
            self._settled.set()
            self._finished.set()
