"""Binary resolution.

Resolution order for a logical name such as "ffprobe":

1. A caller-supplied path, validated directly. A valid path wins; an
   invalid one is logged and resolution continues.
2. The environment override CMDWATCH_<NAME>_PATH. A valid path wins; an
   invalid one ends resolution as not found with its validation error on
   the SearchOutcome. PATH is NOT scanned, so a misconfigured override is
   never silently replaced by another binary.
3. A concurrent scan of every PATH directory. The first validated match
   wins and the remaining scans are cancelled.
4. Nothing found: None. Per-directory errors are collected on the
   SearchOutcome and logged together.

A candidate is valid when its canonical path is a regular file with at
least one executable bit set (any regular file on non-POSIX platforms).
"""

from __future__ import annotations

import logging
import os
import re
import stat
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

import anyio
import anyio.to_thread

from ..config import ENV_PREFIX
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

__all__ = [
    "BinaryCandidate",
    "SearchOutcome",
    "classify",
    "validate_binary",
    "scan_path",
    "scan_search_paths",
    "override_env_key",
    "search_binary",
    "find_binary",
    "find_binary_env",
    "search_binary_env",
]

logger = logging.getLogger(__name__)

IS_POSIX = os.name == "posix"

# owner, group or other may execute
EXECUTABLE_MASK = 0o111

_KEY_INVALID_CHARS = re.compile(r"[-.]")


@dataclass(frozen=True)
class BinaryCandidate:
    """A validated binary.

    Attributes:
        path: Canonical path of the binary
        file_type: Always FileType.FILE for a validated candidate
        mode: Permission bits (stat.S_IMODE of st_mode)
    """

    path: Path
    file_type: FileType
    mode: int


@dataclass
class SearchOutcome:
    """Result of scanning a search path.

    Attributes:
        path: Validated binary path, or None if nothing matched
        errors: Per-directory failures observed during the scan, or the
            validation failure of an invalid environment override
    """

    path: Path | None = None
    errors: list[FindBinaryError] = field(default_factory=list)


def classify(mode: int) -> FileType:
    """Map st_mode to a FileType."""
    if stat.S_ISDIR(mode):
        return FileType.DIRECTORY
    if stat.S_ISREG(mode):
        return FileType.FILE
    if stat.S_ISLNK(mode):
        return FileType.SYMLINK
    if stat.S_ISBLK(mode):
        return FileType.BLOCK_DEVICE
    if stat.S_ISCHR(mode):
        return FileType.CHAR_DEVICE
    if stat.S_ISFIFO(mode):
        return FileType.FIFO
    if stat.S_ISSOCK(mode):
        return FileType.SOCKET
    return FileType.OTHER


def override_env_key(name: str, prefix: str = ENV_PREFIX) -> str:
    """Environment variable holding the explicit path for `name`.

    Example:
        >>> override_env_key("ffprobe")
        'CMDWATCH_FFPROBE_PATH'
    """
    return f"{prefix}_{_KEY_INVALID_CHARS.sub('_', name.upper())}_PATH"


async def validate_binary(path: str | os.PathLike[str]) -> BinaryCandidate:
    """Canonicalize and check a candidate binary.

    Raises:
        BinaryPathCanonicalize: Path does not exist (or is a dangling symlink)
        BinaryPathMeta: stat() failed
        InvalidFileType: Not a regular file
        NotExecutable: No executable bit set (POSIX)
    """
    logger.debug(f"Validating binary binary_path={path}")

    try:
        resolved = await anyio.Path(path).resolve(strict=True)
    except (OSError, RuntimeError) as e:
        # RuntimeError: symlink loop on older interpreters
        logger.warning(f"Failed to canonicalize binary path binary_path={path}: {e}")
        raise BinaryPathCanonicalize(str(path), e) from e

    try:
        st = await resolved.stat()
    except OSError as e:
        logger.warning(f"Failed to get metadata for binary path binary_path={resolved}: {e}")
        raise BinaryPathMeta(str(resolved), e) from e

    if not stat.S_ISREG(st.st_mode):
        file_type = classify(st.st_mode)
        logger.warning(
            f"Binary path is not a regular file binary_path={resolved} file_type={file_type.value}"
        )
        raise InvalidFileType(str(resolved), file_type)

    mode = stat.S_IMODE(st.st_mode)
    if IS_POSIX and mode & EXECUTABLE_MASK == 0:
        logger.warning(f"Binary is not executable binary_path={resolved} mode={mode:o}")
        raise NotExecutable(str(resolved), f"{mode:o}", f"{EXECUTABLE_MASK:o}")

    logger.debug(f"Binary validation successful binary_path={resolved}")
    return BinaryCandidate(path=Path(resolved), file_type=FileType.FILE, mode=mode)


def _find_entry(directory: Path, name: str) -> Path | None:
    """Enumerate a directory for an exact name match (runs in a worker thread)."""
    try:
        entries = os.scandir(directory)
    except OSError as e:
        raise OpenReadDir(str(directory), e) from e

    with entries:
        while True:
            try:
                entry = next(entries)
            except StopIteration:
                return None
            except OSError as e:
                raise ReadDirEntry(str(directory), e) from e
            if entry.name == name:
                return Path(entry.path)


async def scan_path(directory: str | os.PathLike[str], name: str) -> Path | None:
    """Look for `name` directly inside one search directory.

    Returns:
        The validated binary path, or None if the directory does not contain
        the name (or is not a directory)

    Raises:
        FindBinaryError: Directory could not be read, or the match failed
            validation
    """
    logger.debug(f"Scanning path for binary search_path={directory} search_name={name}")

    try:
        resolved = await anyio.Path(directory).resolve(strict=True)
    except (OSError, RuntimeError) as e:
        logger.warning(f"Failed to canonicalize search path search_path={directory}: {e}")
        raise SearchPathCanonicalize(str(directory), e) from e

    try:
        st = await resolved.stat()
    except OSError as e:
        logger.warning(f"Failed to get metadata for search path search_path={resolved}: {e}")
        raise SearchPathMetadata(str(resolved), e) from e

    if not stat.S_ISDIR(st.st_mode):
        logger.debug(f"Search path is not a directory, skipping search_path={resolved}")
        return None

    try:
        match = await anyio.to_thread.run_sync(
            _find_entry, Path(resolved), name, abandon_on_cancel=True
        )
    except (OpenReadDir, ReadDirEntry) as e:
        logger.warning(f"Failed to read directory search_path={resolved}: {e}")
        raise

    if match is None:
        logger.debug(f"Binary not found in this path search_path={resolved} search_name={name}")
        return None

    logger.debug(f"Found matching binary, validating binary_path={match}")
    candidate = await validate_binary(match)
    logger.info(f"Successfully found and validated binary binary_path={candidate.path}")
    return candidate.path


async def scan_search_paths(name: str, search_paths: str) -> SearchOutcome:
    """Scan every directory of a PATH-style string concurrently.

    Blank entries are skipped. The first validated match cancels the
    remaining scans; errors of the other directories are kept on the
    outcome.
    """
    directories = [entry for entry in search_paths.split(os.pathsep) if entry.strip()]
    logger.debug(f"Scanning search paths binary_name={name} path_count={len(directories)}")

    outcome = SearchOutcome()

    async def scan(directory: str, scope: anyio.CancelScope) -> None:
        try:
            found = await scan_path(directory, name)
        except FindBinaryError as e:
            outcome.errors.append(e)
            return
        if found is not None and outcome.path is None:
            outcome.path = found
            scope.cancel()

    async with anyio.create_task_group() as tg:
        for directory in directories:
            tg.start_soon(scan, directory, tg.cancel_scope)

    return outcome


async def search_binary(
    name: str,
    search_paths: str,
    given_path: str | os.PathLike[str] | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    env_prefix: str | None = None,
) -> SearchOutcome:
    """Resolve a binary and keep the scan errors.

    Args:
        name: Logical binary name (exact file name in PATH directories)
        search_paths: PATH-style directory list
        given_path: Caller-supplied explicit path
        environ: Environment holding the override variable (default os.environ)
        env_prefix: Override variable prefix (default "CMDWATCH")

    An invalid environment override is reported as not found, with its
    validation error in SearchOutcome.errors.
    """
    logger.info(f"Starting binary search binary_name={name} has_given_path={given_path is not None}")

    if given_path is not None:
        try:
            candidate = await validate_binary(given_path)
        except FindBinaryError as e:
            logger.warning(f"Unable to validate given path binary_name={name} given_path={given_path}: {e}")
        else:
            logger.info(f"Found binary at given path binary_name={name} binary_path={candidate.path}")
            return SearchOutcome(path=candidate.path)

    env = os.environ if environ is None else environ
    env_key = override_env_key(name, env_prefix or ENV_PREFIX)
    override = env.get(env_key, "").strip()
    if override:
        logger.info(f"Found environment variable with explicit path env_key={env_key} env_value={override}")
        try:
            candidate = await validate_binary(override)
        except FindBinaryError as e:
            logger.error(f"Invalid path in {env_key}, not scanning PATH: {e}")
            return SearchOutcome(path=None, errors=[e])
        return SearchOutcome(path=candidate.path)
    logger.debug(f"Environment variable not set env_key={env_key}")

    outcome = await scan_search_paths(name, search_paths)
    if outcome.path is not None:
        logger.info(f"Binary found in search paths binary_name={name} binary_path={outcome.path}")
    elif outcome.errors:
        details = "; ".join(str(e) for e in outcome.errors)
        logger.warning(
            f"Binary not found in any search paths binary_name={name} "
            f"errors={len(outcome.errors)}: {details}"
        )
    else:
        logger.warning(f"Binary not found in any search paths binary_name={name}")
    return outcome


async def find_binary(
    name: str,
    search_paths: str,
    given_path: str | os.PathLike[str] | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    env_prefix: str | None = None,
) -> Path | None:
    """Resolve a binary; see search_binary for the arguments.

    Returns:
        The canonical binary path, or None if not found
    """
    outcome = await search_binary(
        name, search_paths, given_path, environ=environ, env_prefix=env_prefix
    )
    return outcome.path


def _read_path_env() -> str:
    try:
        return os.environ["PATH"]
    except KeyError as e:
        logger.error("Failed to retrieve $PATH environment variable")
        raise PathUnset(e) from e


async def search_binary_env(
    name: str,
    *,
    given_path: str | os.PathLike[str] | None = None,
    env_prefix: str | None = None,
) -> SearchOutcome:
    """search_binary against the process environment.

    Raises:
        PathUnset: PATH is not set
    """
    return await search_binary(
        name, _read_path_env(), given_path, env_prefix=env_prefix
    )


async def find_binary_env(
    name: str,
    *,
    given_path: str | os.PathLike[str] | None = None,
    env_prefix: str | None = None,
) -> Path | None:
    """find_binary against the process environment (PATH and overrides)."""
    outcome = await search_binary_env(name, given_path=given_path, env_prefix=env_prefix)
    return outcome.path
