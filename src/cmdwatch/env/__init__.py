"""Binary resolution from explicit paths, environment overrides and PATH."""

from __future__ import annotations

from .errors import (
    BinaryPathCanonicalize,
    BinaryPathMeta,
    FileType,
    FindBinaryError,
    InvalidFileType,
    NotExecutable,
    OpenReadDir,
    PathUnset,
    ReadDirEntry,
    SearchPathCanonicalize,
    SearchPathMetadata,
)
from .find import (
    BinaryCandidate,
    SearchOutcome,
    find_binary,
    find_binary_env,
    override_env_key,
    search_binary,
    search_binary_env,
    validate_binary,
)

__all__ = [
    "BinaryCandidate",
    "BinaryPathCanonicalize",
    "BinaryPathMeta",
    "FileType",
    "FindBinaryError",
    "InvalidFileType",
    "NotExecutable",
    "OpenReadDir",
    "PathUnset",
    "ReadDirEntry",
    "SearchOutcome",
    "SearchPathCanonicalize",
    "SearchPathMetadata",
    "find_binary",
    "find_binary_env",
    "override_env_key",
    "search_binary",
    "search_binary_env",
    "validate_binary",
]
