from __future__ import annotations

import re
from pathlib import Path

from .agents import get_agent_config

AGENTS_DIR = ".agents"
SKILLS_SUBDIR = "skills"
MAX_NAME_LENGTH = 255
FALLBACK_NAME = "unnamed-skill"

_DISALLOWED_RE = re.compile(r"[^a-z0-9._]+")


def sanitize_name(name: str) -> str:
    """
    Normalize a skill name into a directory name that is safe for every agent.

    Lower-cases, replaces each run of characters outside ``[a-z0-9._]`` with a
    single ``-`` and trims leading/trailing dots and dashes, so
    ``"My Cool Skill!! v2"`` becomes ``"my-cool-skill-v2"``. Never raises and
    is idempotent.
    """
    value = name if isinstance(name, str) else str(name)
    value = _DISALLOWED_RE.sub("-", value.lower())
    value = value.strip(".-")[:MAX_NAME_LENGTH].strip(".-")
    return value or FALLBACK_NAME


def _base_dir(*, global_install: bool, cwd: str | Path | None) -> Path:
    if global_install:
        return Path.home()
    return Path(cwd) if cwd is not None else Path.cwd()


def get_canonical_skills_dir(*, global_install: bool = False, cwd: str | Path | None = None) -> Path:
    return _base_dir(global_install=global_install, cwd=cwd) / AGENTS_DIR / SKILLS_SUBDIR


def get_canonical_path(
    skill_name: str,
    *,
    global_install: bool = False,
    cwd: str | Path | None = None,
) -> Path:
    return get_canonical_skills_dir(global_install=global_install, cwd=cwd) / sanitize_name(skill_name)


def get_agent_skills_dir(
    agent: str,
    *,
    global_install: bool = False,
    cwd: str | Path | None = None,
) -> Path:
    cfg = get_agent_config(agent)
    rel = cfg.global_skills_dir if global_install else cfg.skills_dir
    return _base_dir(global_install=global_install, cwd=cwd) / rel


def get_install_path(
    skill_name: str,
    agent: str,
    *,
    global_install: bool = False,
    cwd: str | Path | None = None,
) -> Path:
    return get_agent_skills_dir(agent, global_install=global_install, cwd=cwd) / sanitize_name(skill_name)
