"""Filesystem entry classification.

Both the reader and the writer describe entries with the same vocabulary,
so the mapping from raw attributes to a type lives here.
"""

import stat as stat_module
from enum import Enum
from typing import Any, Optional


class FileType(Enum):
    """Kinds of filesystem entries, in detection precedence order."""
    DIRECTORY = "Directory"
    FILE = "File"
    SYMBOLIC_LINK = "SymbolicLink"
    HARD_LINK = "HardLink"              # only ever requested, never detected
    BLOCK_DEVICE = "BlockDevice"
    CHARACTER_DEVICE = "CharacterDevice"
    FIFO = "FIFO"
    SOCKET = "Socket"

    @classmethod
    def parse(cls, value: Any) -> "FileType":
        """Coerce a FileType, its value, or its name into a FileType.

        Archive layers commonly spell hard links as ``"Link"``; that
        alias is accepted too.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            if value == "Link":
                return cls.HARD_LINK
            for member in cls:
                if value in (member.value, member.name):
                    return member
        raise ValueError(f"Unknown file type: {value!r}")

    @property
    def is_link(self) -> bool:
        return self in (FileType.SYMBOLIC_LINK, FileType.HARD_LINK)


# Types the writer knows how to bring into existence.
CREATABLE_TYPES = frozenset({
    FileType.DIRECTORY,
    FileType.FILE,
    FileType.SYMBOLIC_LINK,
    FileType.HARD_LINK,
})

# (type, predicate over st_mode); HARD_LINK has no mode bit.
_MODE_CHECKS = (
    (FileType.DIRECTORY, stat_module.S_ISDIR),
    (FileType.FILE, stat_module.S_ISREG),
    (FileType.SYMBOLIC_LINK, stat_module.S_ISLNK),
    (FileType.BLOCK_DEVICE, stat_module.S_ISBLK),
    (FileType.CHARACTER_DEVICE, stat_module.S_ISCHR),
    (FileType.FIFO, stat_module.S_ISFIFO),
    (FileType.SOCKET, stat_module.S_ISSOCK),
)


def _lookup(attrs: Any, name: str) -> Any:
    if isinstance(attrs, dict):
        return attrs.get(name)
    return getattr(attrs, name, None)


def classify(attrs: Any) -> Optional[FileType]:
    """Map raw filesystem attributes to a FileType.

    ``attrs`` may be an ``os.stat_result``, a ``Properties`` record, or a
    plain mapping. An explicit ``type`` short-circuits detection; otherwise
    the mode bits (``st_mode`` or ``mode``) are checked in precedence order.

    Returns:
        The detected FileType, or None when nothing identifies the entry
    """
    if attrs is None:
        return None

    explicit = _lookup(attrs, "type")
    if explicit is not None:
        return FileType.parse(explicit)

    mode = _lookup(attrs, "st_mode")
    if mode is None:
        mode = _lookup(attrs, "mode")
    if not isinstance(mode, int):
        return None

    for file_type, check in _MODE_CHECKS:
        if check(mode):
            return file_type
    return None
