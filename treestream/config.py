"""Configuration for reading and writing trees.

Options are plain dataclasses. A config given to a root reader or writer
is shared, unchanged, by every child it spawns.
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional

from .streams import DEFAULT_CHUNK_SIZE


# Filter predicate: receives the stat-resolved node, returns False to skip it.
Filter = Callable[[Any], bool]


@dataclass
class ReaderConfig:
    """How a tree is read.

    Attributes:
        follow_symlinks: Use stat() instead of lstat() for the node
            being opened. Children are always lstat()-ed.
        chunk_size: Bytes per ``data`` signal for file content
        filter: Optional predicate; a rejected node and its subtree are
            skipped without error
    """
    follow_symlinks: bool = False
    chunk_size: int = DEFAULT_CHUNK_SIZE
    filter: Optional[Filter] = None

    def __post_init__(self):
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if self.filter is not None and not callable(self.filter):
            raise TypeError("filter must be callable")


@dataclass
class WriterConfig:
    """How a tree is materialised.

    Attributes:
        clobber: Replace an existing entry of a different type. When
            False such a target fails instead.
        umask: Mask applied to the default modes of targets that declare
            no mode. Never read from the process.
        follow_symlinks: Probe existing entries with stat() instead of
            lstat()
        preserve_mode: Copy permission bits from added source nodes
        preserve_owner: Copy uid/gid from added source nodes
        preserve_times: Copy atime/mtime from added source nodes
        max_buffered_bytes: Content a target queues before it is ready;
            past this, write() waits for the target to settle
    """
    clobber: bool = True
    umask: int = 0o022
    follow_symlinks: bool = False
    preserve_mode: bool = True
    preserve_owner: bool = True
    preserve_times: bool = True
    max_buffered_bytes: int = 16 * DEFAULT_CHUNK_SIZE

    def __post_init__(self):
        if not 0 <= self.umask <= 0o777:
            raise ValueError(f"umask out of range: {oct(self.umask)}")
        if self.max_buffered_bytes <= 0:
            raise ValueError("max_buffered_bytes must be positive")

    @property
    def dir_mode(self) -> int:
        return 0o777 & ~self.umask

    @property
    def file_mode(self) -> int:
        return 0o644 & ~self.umask

    def inherited_fields(self):
        """Names of source properties a child target takes over."""
        names = {"size", "link_target"}
        if self.preserve_mode:
            names.add("mode")
        if self.preserve_owner:
            names.update(("uid", "gid"))
        if self.preserve_times:
            names.update(("atime", "mtime"))
        return names
