"""Binary resolution exceptions."""

from __future__ import annotations

from enum import Enum

__all__ = [
    "FileType",
    "FindBinaryError",
    "SearchPathCanonicalize",
    "SearchPathMetadata",
    "OpenReadDir",
    "ReadDirEntry",
    "BinaryPathCanonicalize",
    "BinaryPathMeta",
    "InvalidFileType",
    "NotExecutable",
    "PathUnset",
]


class FileType(str, Enum):
    """Kind of filesystem object found at a candidate path."""

    FILE = "file"
    SYMLINK = "symlink"
    DIRECTORY = "directory"
    BLOCK_DEVICE = "block_device"
    CHAR_DEVICE = "char_device"
    FIFO = "fifo"
    SOCKET = "socket"
    OTHER = "other"


class FindBinaryError(Exception):
    """Base class for resolution failures."""
    pass


class _SearchPathError(FindBinaryError):
    action = "process"

    def __init__(self, search_path: str, inner_error: BaseException) -> None:
        self.search_path = search_path
        self.inner_error = inner_error
        super().__init__(f"Failed to {self.action} search path '{search_path}': {inner_error}")


class SearchPathCanonicalize(_SearchPathError):
    action = "canonicalize"


class SearchPathMetadata(_SearchPathError):
    action = "get metadata for"


class OpenReadDir(FindBinaryError):
    def __init__(self, search_path: str, inner_error: BaseException) -> None:
        self.search_path = search_path
        self.inner_error = inner_error
        super().__init__(f"Failed to open directory '{search_path}': {inner_error}")


class ReadDirEntry(FindBinaryError):
    def __init__(self, search_path: str, inner_error: BaseException) -> None:
        self.search_path = search_path
        self.inner_error = inner_error
        super().__init__(f"Failed to read directory entry in '{search_path}': {inner_error}")


class BinaryPathCanonicalize(FindBinaryError):
    def __init__(self, binary_path: str, inner_error: BaseException) -> None:
        self.binary_path = binary_path
        self.inner_error = inner_error
        super().__init__(f"Failed to canonicalize binary path '{binary_path}': {inner_error}")


class BinaryPathMeta(FindBinaryError):
    def __init__(self, binary_path: str, inner_error: BaseException) -> None:
        self.binary_path = binary_path
        self.inner_error = inner_error
        super().__init__(f"Failed to get metadata for binary path '{binary_path}': {inner_error}")


class InvalidFileType(FindBinaryError):
    """Candidate exists but is not a regular file.

    Attributes:
        binary_path: Canonical candidate path
        actual: What was found
        expected: Always FileType.FILE
    """

    def __init__(self, binary_path: str, actual: FileType, expected: FileType = FileType.FILE) -> None:
        self.binary_path = binary_path
        self.actual = actual
        self.expected = expected
        super().__init__(
            f"Invalid file type for binary '{binary_path}': "
            f"expected {expected.value}, found {actual.value}"
        )


class NotExecutable(FindBinaryError):
    """Candidate is a regular file without any executable bit.

    Attributes:
        binary_path: Canonical candidate path
        mode: Octal permission string of the file
        mask: Octal mask that was checked
    """

    def __init__(self, binary_path: str, mode: str, mask: str) -> None:
        self.binary_path = binary_path
        self.mode = mode
        self.mask = mask
        super().__init__(f"Binary '{binary_path}' is not executable (mode: {mode}, mask: {mask})")


class PathUnset(FindBinaryError):
    def __init__(self, inner_error: BaseException | None = None) -> None:
        self.inner_error = inner_error
        detail = f": {inner_error}" if inner_error is not None else ""
        super().__init__(f"Unable to resolve $PATH variable for search paths{detail}")
