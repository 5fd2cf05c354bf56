"""treestream - stream filesystem trees out of one place and into another.

A TreeReader walks a tree and emits one typed node at a time, each with
its content stream or link target. A TreeWriter accepts those nodes and
creates or reconciles the matching entries elsewhere, preserving type,
content, permissions, ownership and timestamps.

    from treestream import copy_tree
    await copy_tree('/src', '/dst')

Or compose the two halves yourself:

    reader = TreeReader('/src', filter=pattern_filter(exclude=['*.pyc']))
    writer = TreeWriter.open('/dst', type=FileType.DIRECTORY)
    reader.pipe(writer)
    await reader.run()
    await writer.wait()
"""

__version__ = "0.1.0"

from .core import (
    CREATABLE_TYPES,
    EventEmitter,
    FileType,
    Properties,
    TreeEntry,
    classify,
)
from .config import ReaderConfig, WriterConfig
from .reader import ReaderState, TreeReader
from .writer import TreeWriter, WriterState
from .filters import all_of, max_depth_filter, pattern_filter, type_filter
from .error_policies import (
    CollectErrorsPolicy,
    ContinueOnErrorsPolicy,
    ErrorPolicy,
    FailFastPolicy,
    ThresholdPolicy,
    attach_policy,
)
from .exceptions import (
    AddAfterEnd,
    AddToNonDirectory,
    CannotCreateType,
    ClobberRefused,
    ContentReadError,
    ContentWriteError,
    CreateError,
    FilesystemError,
    MissingLinkTarget,
    MissingPath,
    PipeFromWritable,
    PropertyError,
    ReadDirError,
    ReadLinkError,
    RemoveError,
    SizeMismatch,
    StatError,
    TreeStreamError,
    WriteAfterEnd,
)
from .api import TransferResult, copy_tree, list_tree, walk_tree

__all__ = [
    "__version__",
    # Core
    "FileType",
    "CREATABLE_TYPES",
    "classify",
    "TreeEntry",
    "Properties",
    "EventEmitter",
    # Configuration
    "ReaderConfig",
    "WriterConfig",
    # Reader / writer
    "TreeReader",
    "ReaderState",
    "TreeWriter",
    "WriterState",
    # Filters
    "pattern_filter",
    "max_depth_filter",
    "type_filter",
    "all_of",
    # Error policies
    "ErrorPolicy",
    "FailFastPolicy",
    "ContinueOnErrorsPolicy",
    "CollectErrorsPolicy",
    "ThresholdPolicy",
    "attach_policy",
    # Exceptions
    "TreeStreamError",
    "MissingPath",
    "FilesystemError",
    "StatError",
    "ReadDirError",
    "ReadLinkError",
    "ContentReadError",
    "ContentWriteError",
    "CreateError",
    "RemoveError",
    "PropertyError",
    "MissingLinkTarget",
    "CannotCreateType",
    "ClobberRefused",
    "SizeMismatch",
    "WriteAfterEnd",
    "AddAfterEnd",
    "AddToNonDirectory",
    "PipeFromWritable",
    # High-level API
    "TransferResult",
    "walk_tree",
    "list_tree",
    "copy_tree",
]
