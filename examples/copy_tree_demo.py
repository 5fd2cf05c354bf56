#!/usr/bin/env python3
"""
Copy a tree with treestream.

This example demonstrates:
- copy_tree with a collecting error policy
- Watching individual signals on a hand-wired reader and writer

Usage:
    python copy_tree_demo.py SOURCE DESTINATION
"""

import asyncio
import logging
import sys
from pathlib import Path

# Add parent directory to path for development
sys.path.insert(0, str(Path(__file__).parent.parent))

from treestream import (
    ContinueOnErrorsPolicy,
    FileType,
    TreeReader,
    TreeWriter,
    attach_policy,
    copy_tree,
)


async def copy_with_summary(source, destination):
    """One call; failures are logged and skipped."""
    result = await copy_tree(source, destination, policy=ContinueOnErrorsPolicy())

    print(f"  Entries read:    {result.entries_read:,}")
    print(f"  Entries written: {result.entries_written:,}")
    print(f"  Bytes written:   {result.bytes_written:,}")
    if not result.ok:
        print(f"  Skipped {len(result.errors)} entries:")
        for record in result.errors[:5]:
            print(f"    {record['path']}: {record['error_message']}")


async def copy_with_progress(source, destination):
    """The same copy, wired by hand to report each created target."""
    reader = TreeReader(source)
    writer = TreeWriter.open(destination, type=FileType.DIRECTORY)

    policy = ContinueOnErrorsPolicy()
    attach_policy(reader, policy)
    attach_policy(writer, policy)
    writer.on("entry", lambda target: print(f"  + {target.type.value:<12} {target.path}"))

    reader.pipe(writer)
    await reader.run()
    await writer.wait()


async def main():
    if len(sys.argv) < 3:
        print(__doc__)
        return 1
    source, destination = sys.argv[1], sys.argv[2]

    print(f"Copying {source} -> {destination}")
    print("-" * 50)
    await copy_with_summary(source, destination)

    print(f"\nCopying again, target by target:")
    print("-" * 50)
    await copy_with_progress(source, destination)
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
    print("treestream - Copy Tree Example")
    print("=" * 50)
    sys.exit(asyncio.run(main()))
