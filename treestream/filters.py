"""Ready-made filter predicates for TreeReader.

A filter sees the node after it has been stat-ed, so ``type``,
``properties`` and ``depth`` are available. Rejecting a directory prunes
its whole subtree. The traversal root is filtered like any other node.
"""

import fnmatch
from typing import Iterable, Optional

from .config import Filter
from .core.types import FileType


def pattern_filter(
    include: Optional[Iterable[str]] = None,
    exclude: Optional[Iterable[str]] = None,
    include_hidden: bool = True,
) -> Filter:
    """Filter nodes by glob patterns on their relative path or basename.

    The root always passes. Exclusion takes precedence over inclusion, and
    include patterns only apply to non-directories so that matching files
    in subdirectories stay reachable.

    Args:
        include: Glob patterns a file must match (any of)
        exclude: Glob patterns that reject a node (any of)
        include_hidden: Whether dot-entries are kept
    """
    include = list(include or [])
    exclude = list(exclude or [])

    def matches(node, patterns):
        rel = node.relative_path
        return any(fnmatch.fnmatch(rel, p) or fnmatch.fnmatch(node.basename, p)
                   for p in patterns)

    def check(node) -> bool:
        if node.is_root:
            return True
        if not include_hidden and node.basename.startswith('.'):
            return False
        if matches(node, exclude):
            return False
        if include and node.type is not FileType.DIRECTORY:
            return matches(node, include)
        return True

    return check


def max_depth_filter(max_depth: int) -> Filter:
    """Keep nodes no deeper than ``max_depth`` (the root is depth 0)."""
    def check(node) -> bool:
        return node.depth <= max_depth
    return check


def type_filter(*types: FileType) -> Filter:
    """Keep the root, directories, and nodes of the given types."""
    wanted = {FileType.parse(t) for t in types}

    def check(node) -> bool:
        return node.is_root or node.type is FileType.DIRECTORY or node.type in wanted
    return check


def all_of(*filters: Filter) -> Filter:
    """Combine filters; a node must pass every one."""
    def check(node) -> bool:
        return all(f(node) for f in filters)
    return check
