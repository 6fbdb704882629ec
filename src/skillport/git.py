from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from .errors import GitCloneError, SkillsError, UnsupportedOperationError
from .source_parser import ParsedSource

logger = logging.getLogger(__name__)

CLONE_TIMEOUT_S = 60.0
TEMP_DIR_PREFIX = "skillport-"

_AUTH_MARKERS = (
    "authentication failed",
    "could not read username",
    "permission denied",
    "repository not found",
    "terminal prompts disabled",
)

__all__ = [
    "GitCloneError",
    "cleanup_temp_dir",
    "clone_repo",
    "cloned_repo",
    "create_temp_dir",
    "scoped_temp_dir",
]


def create_temp_dir() -> Path:
    return Path(tempfile.mkdtemp(prefix=TEMP_DIR_PREFIX))


def _is_within_temp_root(path: Path) -> bool:
    root = Path(tempfile.gettempdir()).resolve()
    try:
        resolved = path.resolve()
    except OSError:
        return False
    return resolved != root and root in resolved.parents


def cleanup_temp_dir(path: str | Path | None) -> None:
    """Remove a temp directory; a no-op if it is already gone or was never created."""
    if path is None:
        return
    p = Path(path)
    if not p.exists() and not p.is_symlink():
        return
    if not _is_within_temp_root(p):
        raise SkillsError(f"Refusing to remove directory outside the temp root: {p}")
    shutil.rmtree(p, ignore_errors=True)


@contextmanager
def scoped_temp_dir() -> Iterator[Path]:
    """Yield a fresh temp directory that is removed on every exit path."""
    path = create_temp_dir()
    try:
        yield path
    finally:
        cleanup_temp_dir(path)


def _clone_args(source: ParsedSource, dest: Path) -> list[str]:
    args = ["git", "clone", "--depth", "1"]
    if source.ref:
        args.extend(["--branch", source.ref])
    args.extend([source.clone_url, str(dest)])
    return args


def clone_repo(source: ParsedSource, *, timeout_s: float = CLONE_TIMEOUT_S) -> Path:
    """
    Shallow-clone a git source into a new temp directory and return its path.

    The caller owns the returned directory and must pass it to
    `cleanup_temp_dir` (or use `cloned_repo`). On failure the directory is
    removed before GitCloneError propagates.
    """
    if not source.is_git:
        raise UnsupportedOperationError(f"Cannot clone {source.kind.value} source {source.raw!r}.")

    url = source.clone_url
    tmp = create_temp_dir()
    args = _clone_args(source, tmp)
    env = dict(os.environ)
    env["GIT_TERMINAL_PROMPT"] = "0"

    logger.debug("Running %s", " ".join(args))
    try:
        result = subprocess.run(
            args,
            capture_output=True,
            text=True,
            check=False,
            timeout=timeout_s,
            env=env,
        )
    except subprocess.TimeoutExpired as e:
        cleanup_temp_dir(tmp)
        raise GitCloneError(
            f"Timed out after {timeout_s:.0f}s cloning {url}",
            url=url,
            cause=e,
            is_timeout=True,
        ) from e
    except OSError as e:
        cleanup_temp_dir(tmp)
        raise GitCloneError(f"Could not run git to clone {url}: {e}", url=url, cause=e) from e
    except BaseException:
        cleanup_temp_dir(tmp)
        raise

    if result.returncode != 0:
        cleanup_temp_dir(tmp)
        stderr = (result.stderr or result.stdout or "").strip()
        lowered = stderr.lower()
        is_auth = any(marker in lowered for marker in _AUTH_MARKERS)
        message = f"Failed to clone {url}"
        if source.ref:
            message += f" at ref {source.ref!r}"
        if stderr:
            message += f": {stderr}"
        raise GitCloneError(
            message,
            url=url,
            cause=subprocess.CalledProcessError(result.returncode, args, result.stdout, result.stderr),
            is_auth_error=is_auth,
        )

    return tmp


@contextmanager
def cloned_repo(source: ParsedSource, *, timeout_s: float = CLONE_TIMEOUT_S) -> Iterator[Path]:
    repo_dir = clone_repo(source, timeout_s=timeout_s)
    try:
        yield repo_dir
    finally:
        cleanup_temp_dir(repo_dir)
