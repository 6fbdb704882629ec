"""
Persistent record of installed skills plus cross-run UI memory.

The lock document is an immutable value: helpers take a `SkillLockFile` and
return a new one, and nothing reaches disk until `write_skill_lock` is called
with the whole document. Concurrent writers race last-writer-wins, so callers
running installs in parallel should funnel every write through one owner.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .client import fetch_skill_folder_hash
from .config import SkillsConfig
from .content_hash import compute_content_hash
from .errors import InvalidSourceError
from .paths import AGENTS_DIR, sanitize_name
from .source_parser import ParsedSource, parse_source

logger = logging.getLogger(__name__)

LOCK_FILENAME = ".skill-lock.json"
CURRENT_LOCK_VERSION = 1

__all__ = [
    "CURRENT_LOCK_VERSION",
    "SkillLockEntry",
    "SkillLockFile",
    "add_skill_to_lock",
    "compute_content_hash",
    "dismiss_prompt",
    "fetch_skill_folder_hash",
    "get_all_locked_skills",
    "get_last_selected_agents",
    "get_skill_from_lock",
    "get_skill_lock_path",
    "get_skills_by_source",
    "is_prompt_dismissed",
    "read_skill_lock",
    "remove_skill_from_lock",
    "save_selected_agents",
    "utc_now",
    "write_skill_lock",
]

_ENTRY_KEYS = {"name", "source", "contentHash", "agents", "installedAt", "updatedAt", "folderHash"}
_DOC_KEYS = {"version", "skills", "dismissedPrompts", "lastSelectedAgents"}


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True)
class SkillLockEntry:
    name: str
    source: dict[str, Any]
    content_hash: str
    agents: tuple[str, ...] = ()
    installed_at: str = ""
    updated_at: str | None = None
    folder_hash: str | None = None
    extra: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def parsed_source(self) -> ParsedSource | None:
        try:
            return ParsedSource.from_dict(self.source)
        except InvalidSourceError:
            return None

    def with_agent(self, agent: str) -> "SkillLockEntry":
        if agent in self.agents:
            return self
        return replace(self, agents=(*self.agents, agent))

    def to_json(self) -> dict[str, Any]:
        data: dict[str, Any] = dict(self.extra)
        data.update(
            {
                "name": self.name,
                "source": dict(self.source),
                "contentHash": self.content_hash,
                "agents": list(self.agents),
                "installedAt": self.installed_at,
            }
        )
        if self.updated_at:
            data["updatedAt"] = self.updated_at
        if self.folder_hash:
            data["folderHash"] = self.folder_hash
        return data


@dataclass(frozen=True)
class SkillLockFile:
    version: int = CURRENT_LOCK_VERSION
    skills: dict[str, SkillLockEntry] = field(default_factory=dict)
    dismissed_prompts: tuple[str, ...] = ()
    last_selected_agents: tuple[str, ...] = ()
    extra: dict[str, Any] = field(default_factory=dict, compare=False)
    # Skill entries that failed to parse, written back verbatim.
    unparsed_skills: dict[str, Any] = field(default_factory=dict, compare=False)

    def to_json(self) -> dict[str, Any]:
        skills: dict[str, Any] = {k: v for k, v in self.unparsed_skills.items() if k not in self.skills}
        skills.update((name, entry.to_json()) for name, entry in self.skills.items())
        data: dict[str, Any] = dict(self.extra)
        data.update(
            {
                "version": self.version,
                "skills": {name: skills[name] for name in sorted(skills)},
                "dismissedPrompts": list(self.dismissed_prompts),
                "lastSelectedAgents": list(self.last_selected_agents),
            }
        )
        return data


def get_skill_lock_path(config: SkillsConfig | None = None) -> Path:
    if config is not None and config.lock_path:
        return Path(config.lock_path).expanduser()
    return Path.home() / AGENTS_DIR / LOCK_FILENAME


def _str_list(value: Any) -> tuple[str, ...]:
    if isinstance(value, dict):
        # Older documents stored prompts as {"promptId": true}.
        value = [k for k, v in value.items() if v]
    if not isinstance(value, list):
        return ()
    return tuple(dict.fromkeys(v for v in value if isinstance(v, str) and v))


def _parse_entry(name: str, raw: Any) -> SkillLockEntry | None:
    if not isinstance(raw, dict):
        return None
    content_hash = raw.get("contentHash")
    if not isinstance(content_hash, str) or not content_hash:
        return None

    source = raw.get("source")
    if isinstance(source, str):
        try:
            source = parse_source(source).to_dict()
        except InvalidSourceError:
            source = {"raw": source}
    if not isinstance(source, dict):
        return None

    installed_at = raw.get("installedAt")
    updated_at = raw.get("updatedAt")
    folder_hash = raw.get("folderHash")
    return SkillLockEntry(
        name=name,
        source=source,
        content_hash=content_hash,
        agents=_str_list(raw.get("agents")),
        installed_at=installed_at if isinstance(installed_at, str) else "",
        updated_at=updated_at if isinstance(updated_at, str) else None,
        folder_hash=folder_hash if isinstance(folder_hash, str) else None,
        extra={k: v for k, v in raw.items() if k not in _ENTRY_KEYS},
    )


def _parse_document(raw: Any, *, path: Path) -> SkillLockFile:
    if not isinstance(raw, dict):
        logger.warning("Ignoring lock file %s: top-level value is not an object", path)
        return SkillLockFile()

    version = raw.get("version")
    if not isinstance(version, int):
        version = CURRENT_LOCK_VERSION
    elif version > CURRENT_LOCK_VERSION:
        logger.warning(
            "Lock file %s has version %s (newer than %s); reading known fields only",
            path,
            version,
            CURRENT_LOCK_VERSION,
        )

    skills: dict[str, SkillLockEntry] = {}
    unparsed: dict[str, Any] = {}
    raw_skills = raw.get("skills")
    if isinstance(raw_skills, dict):
        for name, item in raw_skills.items():
            if not isinstance(name, str):
                continue
            entry = _parse_entry(name, item)
            if entry is None:
                logger.warning("Skipping malformed lock entry %r in %s; it is kept as-is on write", name, path)
                unparsed[name] = item
                continue
            skills[name] = entry

    return SkillLockFile(
        version=max(version, CURRENT_LOCK_VERSION),
        skills=skills,
        dismissed_prompts=_str_list(raw.get("dismissedPrompts")),
        last_selected_agents=_str_list(raw.get("lastSelectedAgents")),
        extra={k: v for k, v in raw.items() if k not in _DOC_KEYS},
        unparsed_skills=unparsed,
    )


def read_skill_lock(path: str | Path | None = None) -> SkillLockFile:
    """Load the lock document; a missing or corrupt file reads as empty."""
    lock_path = Path(path).expanduser() if path is not None else get_skill_lock_path()
    if not lock_path.exists():
        return SkillLockFile()
    try:
        raw = json.loads(lock_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning("Ignoring corrupt lock file %s: %s", lock_path, e)
        return SkillLockFile()
    return _parse_document(raw, path=lock_path)


def write_skill_lock(lock: SkillLockFile, path: str | Path | None = None) -> Path:
    lock_path = Path(path).expanduser() if path is not None else get_skill_lock_path()
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    tmp = lock_path.with_suffix(lock_path.suffix + ".tmp")
    tmp.write_text(json.dumps(lock.to_json(), indent=2) + "\n", encoding="utf-8")
    tmp.replace(lock_path)
    return lock_path


def add_skill_to_lock(lock: SkillLockFile, entry: SkillLockEntry) -> SkillLockFile:
    existing = lock.skills.get(entry.name)
    if existing is not None and not entry.extra and existing.extra:
        entry = replace(entry, extra=dict(existing.extra))
    skills = dict(lock.skills)
    skills[entry.name] = entry
    return replace(lock, skills=skills)


def remove_skill_from_lock(lock: SkillLockFile, name: str) -> SkillLockFile:
    key = name if name in lock.skills or name in lock.unparsed_skills else sanitize_name(name)
    if key not in lock.skills and key not in lock.unparsed_skills:
        return lock
    skills = {k: v for k, v in lock.skills.items() if k != key}
    unparsed = {k: v for k, v in lock.unparsed_skills.items() if k != key}
    return replace(lock, skills=skills, unparsed_skills=unparsed)


def get_skill_from_lock(lock: SkillLockFile, name: str) -> SkillLockEntry | None:
    entry = lock.skills.get(name)
    if entry is None:
        entry = lock.skills.get(sanitize_name(name))
    return entry


def get_all_locked_skills(lock: SkillLockFile) -> dict[str, SkillLockEntry]:
    return dict(lock.skills)


def get_skills_by_source(lock: SkillLockFile, source: ParsedSource | str) -> list[SkillLockEntry]:
    wanted = parse_source(source) if isinstance(source, str) else source
    out: list[SkillLockEntry] = []
    for name in sorted(lock.skills):
        entry = lock.skills[name]
        parsed = entry.parsed_source
        if parsed is None or parsed.identity != wanted.identity:
            continue
        # shorthand and full URL of the same repo are one source
        if parsed.kind is wanted.kind or (parsed.is_git and wanted.is_git):
            out.append(entry)
    return out


def is_prompt_dismissed(lock: SkillLockFile, prompt_id: str) -> bool:
    return prompt_id in lock.dismissed_prompts


def dismiss_prompt(lock: SkillLockFile, prompt_id: str) -> SkillLockFile:
    if prompt_id in lock.dismissed_prompts:
        return lock
    return replace(lock, dismissed_prompts=(*lock.dismissed_prompts, prompt_id))


def get_last_selected_agents(lock: SkillLockFile) -> tuple[str, ...]:
    return lock.last_selected_agents


def save_selected_agents(lock: SkillLockFile, agents: list[str] | tuple[str, ...]) -> SkillLockFile:
    return replace(lock, last_selected_agents=tuple(dict.fromkeys(a for a in agents if a)))
