"""Exceptions raised or signalled by treestream."""

from typing import Optional


class TreeStreamError(Exception):
    """Base class for all treestream errors."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class MissingPath(TreeStreamError, ValueError):
    """A reader or writer was created without a path."""

    def __init__(self, role: str = "entry"):
        super().__init__(f"A path is required to open a {role}")


class FilesystemError(TreeStreamError):
    """A filesystem operation failed.

    The originating ``OSError`` is chained as ``__cause__``.
    """
    operation = "fs"

    def __init__(self, path: str, error: OSError, operation: Optional[str] = None):
        if operation is not None:
            self.operation = operation
        super().__init__(f"{self.operation} failed for {path!r}: {error.strerror or error}", path)
        self.errno = error.errno
        self.__cause__ = error


class StatError(FilesystemError):
    operation = "stat"


class ReadDirError(FilesystemError):
    operation = "readdir"


class ReadLinkError(FilesystemError):
    operation = "readlink"


class ContentReadError(FilesystemError):
    operation = "read"


class ContentWriteError(FilesystemError):
    operation = "write"


class RemoveError(FilesystemError):
    operation = "remove"


class CreateError(FilesystemError):
    operation = "create"


class PropertyError(FilesystemError):
    """chmod, chown or utime failed; ``operation`` names which."""
    operation = "setprops"


class MissingLinkTarget(TreeStreamError):
    def __init__(self, path: str):
        super().__init__(f"Cannot create link without a link target: {path!r}", path)


class CannotCreateType(TreeStreamError):
    def __init__(self, path: str, file_type):
        name = getattr(file_type, "value", file_type)
        super().__init__(f"Cannot create filetype {name}: {path!r}", path)
        self.file_type = file_type


class ClobberRefused(TreeStreamError):
    """An existing entry of another type occupies the path and clobber is off."""

    def __init__(self, path: str, existing, wanted):
        super().__init__(
            f"Refusing to replace {existing.value} with {wanted.value} at {path!r}", path)
        self.existing = existing
        self.wanted = wanted


class SizeMismatch(TreeStreamError):
    def __init__(self, path: str, expected: int, actual: int):
        super().__init__(
            f"Wrong byte count for {path!r}\nExpected: {expected}\nActual:   {actual}", path)
        self.expected = expected
        self.actual = actual


class WriteAfterEnd(TreeStreamError):
    def __init__(self, path: str):
        super().__init__(f"write after end: {path!r}", path)


class AddAfterEnd(TreeStreamError):
    def __init__(self, path: str):
        super().__init__(f"add after end: {path!r}", path)


class AddToNonDirectory(TreeStreamError):
    def __init__(self, path: str, file_type):
        name = getattr(file_type, "value", file_type)
        super().__init__(f"Can't add to non-Directory type {name}: {path!r}", path)


class PipeFromWritable(TreeStreamError):
    def __init__(self, path: str):
        super().__init__(f"Can't pipe from writable target: {path!r}", path)
