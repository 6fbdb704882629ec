from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import frontmatter

from .config import SkillsConfig, load_config_sync
from .content_hash import DEFAULT_EXCLUDE_NAMES
from .errors import InvalidSourceError, SkillParseError
from .paths import sanitize_name

logger = logging.getLogger(__name__)

SKILL_FILENAME = "SKILL.md"
MAX_SEARCH_DEPTH = 5

# Conventional skill roots inside a repository, checked before a full walk.
PRIORITY_SEARCH_DIRS = (
    "skills",
    "skills/.curated",
    "skills/.experimental",
    "skills/.system",
    ".agents/skills",
    ".claude/skills",
    ".codex/skills",
    ".cursor/skills",
    ".github/skills",
)


@dataclass(frozen=True)
class Skill:
    name: str
    display_name: str
    description: str
    source_path: str  # directory holding SKILL.md
    relative_path: str = ""  # source_path relative to the discovery root
    agents_supported: tuple[str, ...] | None = None
    internal: bool = False
    raw_frontmatter: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)


def _metadata_value(meta: dict[str, Any], key: str) -> Any:
    if key in meta:
        return meta[key]
    nested = meta.get("metadata")
    if isinstance(nested, dict):
        return nested.get(key)
    return None


def _agents_list(value: Any) -> tuple[str, ...] | None:
    if isinstance(value, str):
        items = [v.strip() for v in value.split(",")]
    elif isinstance(value, list):
        items = [v.strip() for v in value if isinstance(v, str)]
    else:
        return None
    items = [v for v in items if v]
    return tuple(items) or None


def parse_skill_md(content: str, source_path: str | Path | None = None) -> Skill:
    """Parse a SKILL.md document; raises SkillParseError when it is unusable."""
    path_str = str(source_path) if source_path is not None else None
    try:
        post = frontmatter.loads(content)
    except Exception as e:  # noqa: BLE001 - yaml raises a wide range of errors
        raise SkillParseError(f"Invalid YAML front matter: {e}", path=path_str) from e

    meta = post.metadata
    if not isinstance(meta, dict) or not meta:
        raise SkillParseError("Missing front matter", path=path_str)

    raw_name = meta.get("name")
    if not isinstance(raw_name, str) or not raw_name.strip():
        raise SkillParseError("Front matter field 'name' is required", path=path_str)
    description = meta.get("description")
    if description is not None and not isinstance(description, str):
        raise SkillParseError("Front matter field 'description' must be a string", path=path_str)

    skill_dir = Path(path_str).parent if path_str else Path(".")
    return Skill(
        name=sanitize_name(raw_name),
        display_name=raw_name.strip(),
        description=(description or "").strip(),
        source_path=str(skill_dir),
        agents_supported=_agents_list(_metadata_value(meta, "agents")),
        internal=_metadata_value(meta, "internal") is True,
        raw_frontmatter=dict(meta),
    )


def get_skill_display_name(skill: Skill) -> str:
    return skill.display_name or skill.name


def should_install_internal_skills(config: SkillsConfig | None = None) -> bool:
    cfg = config if config is not None else load_config_sync()
    return cfg.install_internal_skills


def filter_skills(
    skills: list[Skill],
    *,
    names: list[str] | None = None,
    agent: str | None = None,
    include_internal: bool = False,
) -> list[Skill]:
    wanted = {n.strip().lower() for n in names or [] if n.strip()}
    out: list[Skill] = []
    for skill in skills:
        if skill.internal and not include_internal:
            continue
        if agent and skill.agents_supported is not None and agent not in skill.agents_supported:
            continue
        if wanted and not ({skill.name.lower(), skill.display_name.lower()} & wanted):
            continue
        out.append(skill)
    return out


def _load_skill(skill_md: Path, root: Path, errors: list[SkillParseError] | None) -> Skill | None:
    try:
        skill = parse_skill_md(skill_md.read_text(encoding="utf-8"), skill_md)
    except (OSError, UnicodeDecodeError) as e:
        err = SkillParseError(f"Could not read file: {e}", path=str(skill_md))
    except SkillParseError as e:
        err = e
    else:
        rel = skill_md.parent.relative_to(root).as_posix()
        return replace(skill, relative_path="" if rel == "." else rel)
    logger.warning("Skipping skill: %s", err)
    if errors is not None:
        errors.append(err)
    return None


def _walk_skill_files(root: Path, max_depth: int) -> list[Path]:
    found: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root):
        current = Path(dirpath)
        depth = len(current.relative_to(root).parts)
        dirnames[:] = sorted(d for d in dirnames if d not in DEFAULT_EXCLUDE_NAMES)
        if depth >= max_depth:
            dirnames[:] = []
        if SKILL_FILENAME in filenames:
            found.append(current / SKILL_FILENAME)
    return found


def _priority_skill_files(root: Path) -> list[Path]:
    found: list[Path] = []
    for rel in PRIORITY_SEARCH_DIRS:
        base = root / rel
        if not base.is_dir():
            continue
        for child in sorted(base.iterdir()):
            candidate = child / SKILL_FILENAME
            if child.is_dir() and candidate.is_file():
                found.append(candidate)
    return found


def discover_skills(
    root_path: str | Path,
    *,
    subpath: str | None = None,
    include_internal: bool | None = None,
    full_depth: bool = False,
    config: SkillsConfig | None = None,
    errors: list[SkillParseError] | None = None,
) -> list[Skill]:
    """
    Find and parse every SKILL.md under ``root_path`` (or its ``subpath``).

    A SKILL.md at the search root is returned on its own unless ``full_depth``.
    Otherwise the conventional skill directories are scanned first, with a
    bounded recursive walk as fallback. Malformed files are logged, appended
    to ``errors`` and skipped.
    """
    root = Path(root_path).expanduser().resolve()
    search_root = (root / subpath).resolve() if subpath else root
    if search_root != root and root not in search_root.parents:
        raise InvalidSourceError(f"Subpath {subpath!r} escapes the source root {root}")
    if not search_root.is_dir():
        return []

    if include_internal is None:
        include_internal = should_install_internal_skills(config)

    root_skill = search_root / SKILL_FILENAME
    if root_skill.is_file() and not full_depth:
        candidates = [root_skill]
    else:
        candidates = _priority_skill_files(search_root)
        if root_skill.is_file():
            candidates.insert(0, root_skill)
        if not candidates or full_depth:
            candidates = list(dict.fromkeys(candidates + _walk_skill_files(search_root, MAX_SEARCH_DEPTH)))

    skills: list[Skill] = []
    seen: set[str] = set()
    for skill_md in candidates:
        skill = _load_skill(skill_md, root, errors)
        if skill is None:
            continue
        if skill.name in seen:
            logger.warning("Duplicate skill name %r at %s; keeping the first", skill.name, skill.source_path)
            continue
        seen.add(skill.name)
        skills.append(skill)

    return filter_skills(skills, include_internal=include_internal)
