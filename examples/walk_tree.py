#!/usr/bin/env python3
"""
Basic traversal example for treestream.

This example demonstrates:
- Walking a tree one classified node at a time
- Pruning with a pattern filter
- Reading file metadata from each node
"""

import asyncio
import sys
from pathlib import Path

# Add parent directory to path for development
sys.path.insert(0, str(Path(__file__).parent.parent))

from treestream import FileType, pattern_filter, walk_tree


async def main():
    """Summarise a tree without reading file content."""
    root_path = sys.argv[1] if len(sys.argv) > 1 else str(Path.cwd())

    print(f"Traversing: {root_path}")
    print("-" * 50)

    counts = {}
    total_size = 0
    large_files = []

    skip = pattern_filter(exclude=[".git", "__pycache__", "*.pyc"])
    async for node in walk_tree(root_path, filter=skip):
        counts[node.type] = counts.get(node.type, 0) + 1
        if node.type is FileType.FILE:
            size = node.properties.size or 0
            total_size += size
            if size > 1_000_000:
                large_files.append((node.relative_path, size))

    print(f"\nTraversal Summary:")
    for file_type, count in sorted(counts.items(), key=lambda item: item[0].value):
        print(f"  {file_type.value}: {count:,}")
    print(f"  Total Size: {total_size / 1024 / 1024:.1f} MB")

    if large_files:
        print(f"\nLarge Files (>1MB):")
        large_files.sort(key=lambda x: x[1], reverse=True)
        for path, size in large_files[:5]:
            print(f"  {size / 1024 / 1024:.1f} MB: {path}")


if __name__ == "__main__":
    print("treestream - Tree Walk Example")
    print("=" * 50)
    asyncio.run(main())
