"""Async access to the filesystem.

Each call runs the blocking syscall in a worker thread so a suspended
node never stalls the event loop. Failures surface as the raw ``OSError``;
callers wrap them with the operation that failed.
"""

import asyncio
import errno
import os
import shutil
import stat as stat_module
from typing import List, Optional


async def stat(path: str, follow_symlinks: bool = False) -> os.stat_result:
    """stat() when following links, lstat() otherwise."""
    return await asyncio.to_thread(os.stat, path, follow_symlinks=follow_symlinks)


async def probe(path: str, follow_symlinks: bool = False) -> Optional[os.stat_result]:
    """Stat an entry that may legitimately be absent.

    Returns:
        Stat result, or None if nothing exists at ``path``
    """
    try:
        return await stat(path, follow_symlinks)
    except OSError as e:
        if e.errno in (errno.ENOENT, errno.ENOTDIR):
            return None
        raise


async def listdir(path: str) -> List[str]:
    return await asyncio.to_thread(os.listdir, path)


async def readlink(path: str) -> str:
    return await asyncio.to_thread(os.readlink, path)


async def makedirs(path: str, mode: int = 0o777) -> None:
    """Create ``path`` and any missing parents; existing directories are fine."""
    await asyncio.to_thread(os.makedirs, path, mode, True)


def _remove_tree(path: str) -> None:
    try:
        st = os.lstat(path)
    except FileNotFoundError:
        return
    if stat_module.S_ISDIR(st.st_mode):
        shutil.rmtree(path)
    else:
        os.unlink(path)


async def remove_tree(path: str) -> None:
    """Delete whatever occupies ``path``, recursively for directories."""
    await asyncio.to_thread(_remove_tree, path)


async def symlink(target: str, path: str) -> None:
    await asyncio.to_thread(os.symlink, target, path)


async def link(target: str, path: str) -> None:
    await asyncio.to_thread(os.link, target, path)


async def chmod(path: str, mode: int, fd: Optional[int] = None) -> None:
    if fd is not None:
        await asyncio.to_thread(os.fchmod, fd, mode)
    else:
        await asyncio.to_thread(os.chmod, path, mode)


async def chown(path: str, uid: int, gid: int, fd: Optional[int] = None,
                follow_symlinks: bool = True) -> None:
    if fd is not None:
        await asyncio.to_thread(os.fchown, fd, uid, gid)
    elif follow_symlinks:
        await asyncio.to_thread(os.chown, path, uid, gid)
    else:
        await asyncio.to_thread(os.lchown, path, uid, gid)


async def utime(path: str, atime: float, mtime: float, follow_symlinks: bool = True) -> None:
    times_ns = (int(round(atime * 1e9)), int(round(mtime * 1e9)))
    if not follow_symlinks and os.utime not in os.supports_follow_symlinks:
        # No way to touch the link itself on this platform.
        return
    await asyncio.to_thread(os.utime, path, ns=times_ns, follow_symlinks=follow_symlinks)
