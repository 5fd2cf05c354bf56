"""High-level async API for treestream.

Simple functions that wire a TreeReader to a TreeWriter for the common
cases: walking a tree, listing it, and copying it somewhere else.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import AsyncIterator, List, Optional

from .config import Filter, ReaderConfig, WriterConfig
from .core.node import Properties
from .error_policies import CollectErrorsPolicy, ErrorPolicy, FailFastPolicy, attach_policy
from .reader import TreeReader
from .writer import TreeWriter


logger = logging.getLogger(__name__)


@dataclass
class TransferResult:
    """Outcome of a copy_tree call."""
    entries_read: int = 0
    entries_written: int = 0
    bytes_written: int = 0
    errors: List[dict] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


async def walk_tree(
    root: str,
    filter: Optional[Filter] = None,
    follow_symlinks: bool = False,
    config: Optional[ReaderConfig] = None,
) -> AsyncIterator[TreeReader]:
    """Walk a filesystem tree depth-first.

    Args:
        root: Path to start from
        filter: Optional predicate; rejected nodes and their subtrees
            are skipped
        follow_symlinks: Dereference ``root`` if it is a symlink
        config: Reader options (``filter``/``follow_symlinks`` override it)

    Yields:
        The root reader, then a reader per descendant, directories before
        their contents
    """
    reader = TreeReader(root, config=config, filter=filter, follow_symlinks=follow_symlinks)
    async for node in reader.walk():
        yield node


async def list_tree(
    root: str,
    filter: Optional[Filter] = None,
    follow_symlinks: bool = False,
) -> List[str]:
    """Collect the paths of a tree relative to ``root`` ('.' for the root).

    Example:
        >>> await list_tree('/src')
        ['.', 'a', 'a/b.txt', 'c.txt']
    """
    return [node.relative_path
            async for node in walk_tree(root, filter=filter, follow_symlinks=follow_symlinks)]


async def copy_tree(
    source: str,
    destination: str,
    filter: Optional[Filter] = None,
    follow_symlinks: bool = False,
    clobber: Optional[bool] = None,
    policy: Optional[ErrorPolicy] = None,
    reader_config: Optional[ReaderConfig] = None,
    writer_config: Optional[WriterConfig] = None,
) -> TransferResult:
    """Reproduce the tree at ``source`` at ``destination``.

    Types, content, link targets, and (per ``writer_config``) mode,
    ownership and timestamps are carried over. Existing entries at the
    destination are reconciled in place or replaced.

    Args:
        source: Tree to read
        destination: Where the source root is materialised
        filter: Optional predicate pruning the source tree
        follow_symlinks: Dereference ``source`` if it is a symlink
        clobber: Shortcut for ``writer_config.clobber``
        policy: What to do on failure (defaults to FailFastPolicy)
        reader_config: Reader options
        writer_config: Writer options

    Returns:
        TransferResult with counts and the errors the policy recorded

    Raises:
        Whatever the policy raises; FailFastPolicy re-raises the first
        failure after aborting the destination
    """
    writer_config = writer_config or WriterConfig()
    if clobber is not None:
        writer_config = replace(writer_config, clobber=clobber)
    policy = policy or FailFastPolicy()

    reader = TreeReader(source, config=reader_config, filter=filter,
                        follow_symlinks=follow_symlinks)
    attach_policy(reader, policy)

    result = TransferResult()
    writers: List[TreeWriter] = []
    targets: List[TreeWriter] = []

    def count_read(*_args):
        result.entries_read += 1

    def on_root_stat(_props):
        inherited = writer_config.inherited_fields()
        properties = Properties.from_mapping(
            {k: v for k, v in reader.properties.as_dict().items() if k in inherited})
        writer = TreeWriter(destination, type=reader.type, properties=properties,
                            config=writer_config)
        attach_policy(writer, policy)
        writer.on("ready", lambda: targets.append(writer))
        writer.on("entry", targets.append)
        writer.start()
        reader.pipe(writer)
        writers.append(writer)

    reader.once("stat", count_read)
    reader.on("entry", count_read)
    reader.once("stat", on_root_stat)

    try:
        await reader.run()
        for writer in writers:
            await writer.wait()
    except BaseException:
        for writer in writers:
            await writer.abort()
        raise

    result.entries_written = len(targets)
    result.bytes_written = sum(target.bytes_written for target in targets)
    if isinstance(policy, CollectErrorsPolicy):
        result.errors = list(policy.errors)
    logger.debug("Copied %s -> %s: %d/%d entries, %d bytes", source, destination,
                 result.entries_written, result.entries_read, result.bytes_written)
    return result
