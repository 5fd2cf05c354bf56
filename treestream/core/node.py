"""Tree entry abstraction.

Defines the identity shared by nodes being read and targets being written:
a path, its position in a traversal, and the entry's properties.
"""

import os
import stat as stat_module
from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any, Dict, Optional, Union

from .types import FileType


TimeValue = Union[int, float, datetime]


def to_timestamp(value: Optional[TimeValue]) -> Optional[float]:
    """Normalise a time value to epoch seconds."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.timestamp()
    return float(value)


def to_mode(value: Optional[Union[int, str]]) -> Optional[int]:
    """Normalise a permission mode; strings are read as octal."""
    if value is None:
        return None
    if isinstance(value, str):
        return int(value, 8)
    return int(value)


@dataclass
class Properties:
    """Metadata of a filesystem entry.

    Every field is optional: None means "not known" on the read side and
    "leave as is" on the write side.
    """
    mode: Optional[int] = None
    uid: Optional[int] = None
    gid: Optional[int] = None
    atime: Optional[float] = None
    mtime: Optional[float] = None
    size: Optional[int] = None
    link_target: Optional[str] = None

    def __post_init__(self):
        self.mode = to_mode(self.mode)
        self.atime = to_timestamp(self.atime)
        self.mtime = to_timestamp(self.mtime)

    @classmethod
    def from_stat(cls, st: os.stat_result, link_target: Optional[str] = None) -> "Properties":
        return cls(
            mode=stat_module.S_IMODE(st.st_mode),
            uid=st.st_uid,
            gid=st.st_gid,
            atime=st.st_atime_ns / 1e9,
            mtime=st.st_mtime_ns / 1e9,
            size=st.st_size,
            link_target=link_target,
        )

    @classmethod
    def from_mapping(cls, values: Dict[str, Any]) -> "Properties":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in values.items() if k in known})

    def as_dict(self) -> Dict[str, Any]:
        """Fields that are set, by name."""
        return {f.name: getattr(self, f.name) for f in fields(self)
                if getattr(self, f.name) is not None}


class TreeEntry:
    """A single filesystem entry tracked through a traversal.

    ``parent`` and ``root`` are plain back-references: children point at
    their ancestors, never the other way round through these attributes.
    The root of a traversal is its own ``root``.
    """

    def __init__(
        self,
        path: str,
        *,
        depth: int = 0,
        parent: Optional["TreeEntry"] = None,
        root: Optional["TreeEntry"] = None,
        type: Optional[FileType] = None,
        properties: Optional[Properties] = None,
    ):
        self.path = os.path.abspath(os.fspath(path))
        self.basename = os.path.basename(self.path)
        self.dirname = os.path.dirname(self.path)
        self.depth = depth
        self.parent = parent
        if root is None and parent is not None:
            root = parent.root
        self.root = root if root is not None else self
        self.type = FileType.parse(type) if type is not None else None
        self.properties = properties if properties is not None else Properties()

    @property
    def is_root(self) -> bool:
        return self.root is self

    @property
    def relative_path(self) -> str:
        """Path relative to the traversal root ('.' for the root itself)."""
        return os.path.relpath(self.path, self.root.path)

    def ancestors(self):
        """Yield this entry, then each enclosing entry up to the root."""
        entry = self
        while entry is not None:
            yield entry
            entry = entry.parent

    def __repr__(self) -> str:
        kind = self.type.value if self.type else "?"
        return f"{self.__class__.__name__}({self.path!r}, {kind})"
