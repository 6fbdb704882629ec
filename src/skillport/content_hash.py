from __future__ import annotations

import hashlib
from pathlib import Path
from typing import TYPE_CHECKING, Iterator

if TYPE_CHECKING:
    from .skills import Skill

HASH_PREFIX = "sha256:"

# Directory/file names to skip anywhere in the tree, when hashing and copying.
DEFAULT_EXCLUDE_NAMES = {
    ".git",
    ".hg",
    ".svn",
    ".DS_Store",
    "__pycache__",
    ".pytest_cache",
    ".mypy_cache",
    ".ruff_cache",
    ".venv",
    "venv",
    "node_modules",
}


def should_exclude(path: Path, root: Path) -> bool:
    try:
        rel = path.relative_to(root)
    except ValueError:
        return True
    return any(p in DEFAULT_EXCLUDE_NAMES for p in rel.parts)


def iter_skill_files(root: Path) -> Iterator[tuple[str, Path]]:
    """Yield ``(posix relative path, path)`` for regular files, sorted by relative path."""
    files: list[tuple[str, Path]] = []
    for p in root.rglob("*"):
        if should_exclude(p, root):
            continue
        if p.is_symlink():
            continue
        if p.is_file():
            files.append((p.relative_to(root).as_posix(), p))
    files.sort(key=lambda item: item[0])
    yield from files


def compute_content_hash(skill: "Skill | str | Path") -> str:
    """
    Digest every file under a skill folder.

    Files are fed in relative-path order as ``path NUL size NUL bytes`` so the
    result does not depend on enumeration order, timestamps or permissions.
    """
    root = Path(skill) if isinstance(skill, (str, Path)) else Path(skill.source_path)
    root = root.expanduser().resolve()
    digest = hashlib.sha256()
    for rel, path in iter_skill_files(root):
        data = path.read_bytes()
        digest.update(rel.encode("utf-8"))
        digest.update(b"\0")
        digest.update(str(len(data)).encode("ascii"))
        digest.update(b"\0")
        digest.update(data)
    return HASH_PREFIX + digest.hexdigest()
