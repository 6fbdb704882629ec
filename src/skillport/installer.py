from __future__ import annotations

import logging
import os
import shutil
import tempfile
from contextlib import nullcontext
from dataclasses import dataclass, replace
from pathlib import Path
from typing import ContextManager, Literal, Protocol

from .agents import detect_installed_agents, get_agent_config
from .client import HostingClient
from .config import SkillsConfig, load_config
from .content_hash import DEFAULT_EXCLUDE_NAMES, compute_content_hash
from .errors import FilesystemError, InvalidSourceError, NetworkError, SkillsError
from .git import cloned_repo
from .paths import (
    get_canonical_path,
    get_canonical_skills_dir,
    get_install_path,
    sanitize_name,
)
from .remote import downloaded_source
from .skill_lock import (
    SkillLockEntry,
    SkillLockFile,
    add_skill_to_lock,
    get_skill_lock_path,
    read_skill_lock,
    utc_now,
    write_skill_lock,
)
from .skills import Skill, discover_skills, filter_skills
from .source_parser import GIT_KINDS, ParsedSource, SourceKind, parse_source

logger = logging.getLogger(__name__)

InstallMode = Literal["symlink", "copy", "git"]
InstallAction = Literal["installed", "updated", "skipped"]
INSTALL_MODES = ("symlink", "copy", "git")
# Modes that name the expected source kind; files are copied.
_SOURCE_KIND_MODES = {"git": GIT_KINDS}

__all__ = [
    "InstallMode",
    "InstallResult",
    "InstalledSkill",
    "SkillInstaller",
    "decide_install_action",
    "get_canonical_path",
    "get_canonical_skills_dir",
    "get_install_path",
    "install_mintlify_skill_for_agent",
    "install_remote_skill_for_agent",
    "install_skill_for_agent",
    "install_well_known_skill_for_agent",
    "is_skill_installed",
    "list_installed_skills",
    "sanitize_name",
]


@dataclass(frozen=True)
class InstallResult:
    skill_name: str
    agent: str
    action: InstallAction
    path: Path
    canonical_path: Path | None = None


@dataclass(frozen=True)
class InstalledSkill:
    name: str
    agent: str
    source: ParsedSource | None
    content_hash: str
    installed_at: str
    updated_at: str | None = None


class SourceFetcher(Protocol):
    def materialize(self, source: ParsedSource) -> ContextManager[Path]:
        ...


class HostingLookup(Protocol):
    def is_repo_private(self, owner: str, repo: str) -> bool:
        ...

    def fetch_skill_folder_hash(self, source: ParsedSource, skill_path: str | None = None) -> str | None:
        ...


class DefaultFetcher:
    """Clones git sources, downloads remote ones, reads local paths in place."""

    def __init__(self, client: HostingClient) -> None:
        self._client = client

    def materialize(self, source: ParsedSource) -> ContextManager[Path]:
        if source.is_git:
            return cloned_repo(source)
        if source.kind is SourceKind.LOCAL:
            path = Path(source.local_path or source.raw)
            if not path.is_dir():
                raise InvalidSourceError(f"Local source is not a directory: {path}")
            return nullcontext(path)
        return downloaded_source(source, client=self._client)


def decide_install_action(
    entry: SkillLockEntry | None,
    content_hash: str,
    agent: str,
    *,
    force_update: bool = False,
) -> InstallAction:
    if entry is None:
        return "installed"
    if force_update:
        return "updated"
    if entry.content_hash != content_hash:
        return "updated"
    if agent not in entry.agents:
        return "installed"
    return "skipped"


def _ignore_excluded(directory: str, names: list[str]) -> set[str]:
    return {n for n in names if n in DEFAULT_EXCLUDE_NAMES or os.path.islink(os.path.join(directory, n))}


def _replace_directory(src: Path, dest: Path) -> None:
    """Copy ``src`` to ``dest``, swapping out any previous copy only once the new one is complete."""
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        stage_root = Path(tempfile.mkdtemp(prefix=f".{dest.name}.stage-", dir=dest.parent))
    except OSError as e:
        raise FilesystemError(f"Could not prepare {dest.parent}: {e}", path=str(dest)) from e

    backup = dest.with_name(dest.name + ".skillport-backup")
    try:
        staged = stage_root / "skill"
        shutil.copytree(src, staged, ignore=_ignore_excluded)

        if backup.exists() or backup.is_symlink():
            _remove_path(backup)
        had_existing = dest.exists() or dest.is_symlink()
        if had_existing:
            dest.rename(backup)

        try:
            staged.rename(dest)
        except OSError:
            if dest.exists() or dest.is_symlink():
                _remove_path(dest)
            if had_existing and (backup.exists() or backup.is_symlink()):
                backup.rename(dest)
            raise
    except (OSError, shutil.Error) as e:
        raise FilesystemError(f"Could not copy skill into {dest}: {e}", path=str(dest)) from e
    finally:
        if backup.exists() or backup.is_symlink():
            _remove_path(backup)
        shutil.rmtree(stage_root, ignore_errors=True)


def _remove_path(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    else:
        shutil.rmtree(path)


def _link_directory(target: Path, link: Path) -> bool:
    try:
        link.parent.mkdir(parents=True, exist_ok=True)
        if link.is_symlink() or link.exists():
            _remove_path(link)
        rel_target = os.path.relpath(target, link.parent)
        os.symlink(rel_target, link, target_is_directory=True)
    except OSError as e:
        logger.info("Could not link %s -> %s (%s); copying instead", link, target, e)
        return False
    return True


class SkillInstaller:
    """
    Resolve a source, fetch it, and install its skills into agent directories.

    Each call runs resolve -> fetch -> discover -> hash -> compare with lock ->
    copy -> one lock write. Fetched content lives in a temp dir that is
    removed on every exit path.
    """

    def __init__(
        self,
        *,
        config: SkillsConfig | None = None,
        fetcher: SourceFetcher | None = None,
        client: HostingLookup | None = None,
        lock_path: str | Path | None = None,
        cwd: str | Path | None = None,
        global_install: bool = False,
    ) -> None:
        self.config = config if config is not None else load_config()
        self._owned_client: HostingClient | None = None
        if client is None or fetcher is None:
            self._owned_client = HostingClient.from_config(self.config)
        self.client: HostingLookup = client if client is not None else self._owned_client  # type: ignore[assignment]
        self.fetcher: SourceFetcher = fetcher if fetcher is not None else DefaultFetcher(self._owned_client)  # type: ignore[arg-type]
        self.lock_path = Path(lock_path).expanduser() if lock_path is not None else get_skill_lock_path(self.config)
        self.cwd = Path(cwd) if cwd is not None else Path.cwd()
        self.global_install = global_install

    def close(self) -> None:
        if self._owned_client is not None:
            self._owned_client.close()

    def __enter__(self) -> "SkillInstaller":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def read_lock(self) -> SkillLockFile:
        return read_skill_lock(self.lock_path)

    def list_installed_skills(self, agent: str) -> list[InstalledSkill]:
        return list_installed_skills(agent, lock=self.read_lock())

    def is_skill_installed(self, agent: str, name: str) -> bool:
        return is_skill_installed(agent, name, lock=self.read_lock())

    def install_skill_for_agent(
        self,
        source: str | ParsedSource,
        agent: str | None = None,
        mode: InstallMode = "copy",
        *,
        skill_names: list[str] | None = None,
    ) -> list[InstallResult]:
        parsed = source if isinstance(source, ParsedSource) else parse_source(source)
        return self._install(parsed, agent, mode, skill_names=skill_names)

    def install_mintlify_skill_for_agent(
        self,
        source: str | ParsedSource,
        agent: str | None = None,
        mode: InstallMode = "copy",
    ) -> list[InstallResult]:
        return self._install(_expect_kind(source, SourceKind.DOC_SITE), agent, mode)

    def install_remote_skill_for_agent(
        self,
        source: str | ParsedSource,
        agent: str | None = None,
        mode: InstallMode = "copy",
        *,
        skill_names: list[str] | None = None,
    ) -> list[InstallResult]:
        return self._install(_expect_kind(source, SourceKind.REMOTE_BUNDLE), agent, mode, skill_names=skill_names)

    def install_well_known_skill_for_agent(
        self,
        source: str | ParsedSource,
        agent: str | None = None,
        mode: InstallMode = "copy",
        *,
        skill_names: list[str] | None = None,
    ) -> list[InstallResult]:
        return self._install(_expect_kind(source, SourceKind.WELL_KNOWN), agent, mode, skill_names=skill_names)

    def _target_agents(self, agent: str | None) -> list[str]:
        if agent is not None:
            agents = [agent]
        elif self.config.default_agents:
            agents = list(self.config.default_agents)
        else:
            agents = detect_installed_agents()
        if not agents:
            raise SkillsError("No target agent given and none configured or detected.")
        for name in agents:
            get_agent_config(name)
        return agents

    def _force_update(self, source: ParsedSource) -> bool:
        """True when the private-repo policy says to skip the hash comparison."""
        if not self.config.private_repo.always_update or not source.is_git:
            return False
        if not source.is_github or not source.owner or not source.repo:
            logger.info("Visibility of %s is not checkable; treating it as private", source.identity)
            return True
        try:
            private = self.client.is_repo_private(source.owner, source.repo)
        except NetworkError as e:
            logger.warning("Could not check whether %s is private (%s); treating it as private", source.identity, e)
            return True
        if private:
            logger.info("%s is private and always_update is on; re-copying regardless of content hash", source.identity)
        return private

    def _folder_hash(self, source: ParsedSource, skill: Skill) -> str | None:
        if not source.is_github:
            return None
        try:
            return self.client.fetch_skill_folder_hash(source, skill.relative_path or None)
        except NetworkError as e:
            logger.debug("Folder hash lookup for %s failed: %s", skill.name, e)
            return None

    def _place(self, skill: Skill, agent: str, mode: InstallMode) -> tuple[Path, Path | None]:
        src = Path(skill.source_path)
        install_path = get_install_path(skill.name, agent, global_install=self.global_install, cwd=self.cwd)
        if mode == "copy":
            _replace_directory(src, install_path)
            return install_path, None

        canonical = get_canonical_path(skill.name, global_install=self.global_install, cwd=self.cwd)
        _replace_directory(src, canonical)
        if install_path != canonical and not _link_directory(canonical, install_path):
            _replace_directory(src, install_path)
        return install_path, canonical

    def _install(
        self,
        source: ParsedSource,
        agent: str | None,
        mode: InstallMode,
        *,
        skill_names: list[str] | None = None,
    ) -> list[InstallResult]:
        if mode not in INSTALL_MODES:
            raise SkillsError(f"Unknown install mode {mode!r}. Expected one of: {', '.join(INSTALL_MODES)}")
        if mode in _SOURCE_KIND_MODES:
            if source.kind not in _SOURCE_KIND_MODES[mode]:
                raise InvalidSourceError(f"Install mode {mode!r} needs a {mode} source, got {source.kind.value}: {source.raw!r}")
            mode = "copy"
        agents = self._target_agents(agent)

        with self.fetcher.materialize(source) as root:
            skills = discover_skills(root, subpath=source.subpath, config=self.config)
            if skill_names:
                skills = filter_skills(skills, names=skill_names, include_internal=True)
                if not skills:
                    raise SkillsError(f"No skills named {', '.join(skill_names)} found in {source.raw}")
            if not skills:
                raise SkillsError(f"No skills found in {source.raw}")

            force_update = self._force_update(source)
            lock = self.read_lock()
            results: list[InstallResult] = []
            changed = False
            try:
                for skill in skills:
                    content_hash = compute_content_hash(skill)
                    for target in agents:
                        if not filter_skills([skill], agent=target, include_internal=True):
                            logger.info("Skill %s does not support agent %s; skipping", skill.name, target)
                            continue
                        result, lock = self._install_one(source, skill, content_hash, target, mode, lock, force_update)
                        results.append(result)
                        changed = changed or result.action != "skipped"
            finally:
                if changed:
                    write_skill_lock(lock, self.lock_path)
        return results

    def _install_one(
        self,
        source: ParsedSource,
        skill: Skill,
        content_hash: str,
        agent: str,
        mode: InstallMode,
        lock: SkillLockFile,
        force_update: bool,
    ) -> tuple[InstallResult, SkillLockFile]:
        entry = lock.skills.get(skill.name)
        action = decide_install_action(entry, content_hash, agent, force_update=force_update)
        if action == "skipped":
            logger.info("Skill %s is up to date for %s", skill.name, agent)
            path = get_install_path(skill.name, agent, global_install=self.global_install, cwd=self.cwd)
            return InstallResult(skill.name, agent, action, path), lock

        folder_hash = self._folder_hash(source, skill)
        path, canonical = self._place(skill, agent, mode)
        now = utc_now()

        if entry is None:
            new_entry = SkillLockEntry(
                name=skill.name,
                source=source.to_dict(),
                content_hash=content_hash,
                agents=(agent,),
                installed_at=now,
                folder_hash=folder_hash,
            )
        elif entry.content_hash != content_hash:
            # The shared hash moves forward; copies held by other agents are now stale
            # and are dropped from the set so their next install re-copies.
            stale = [a for a in entry.agents if a != agent]
            if stale:
                logger.info("Skill %s changed; marking %s for re-install", skill.name, ", ".join(stale))
            new_entry = replace(
                entry,
                source=source.to_dict(),
                content_hash=content_hash,
                agents=(agent,),
                updated_at=now,
                folder_hash=folder_hash or entry.folder_hash,
            )
        else:
            new_entry = replace(
                entry.with_agent(agent),
                source=source.to_dict(),
                updated_at=now if action == "updated" else entry.updated_at,
                folder_hash=folder_hash or entry.folder_hash,
            )

        logger.info("Skill %s %s for %s at %s", skill.name, action, agent, path)
        return InstallResult(skill.name, agent, action, path, canonical), add_skill_to_lock(lock, new_entry)


def _expect_kind(source: str | ParsedSource, kind: SourceKind) -> ParsedSource:
    parsed = source if isinstance(source, ParsedSource) else parse_source(source)
    if parsed.kind is not kind:
        raise InvalidSourceError(f"Expected a {kind.value} source, got {parsed.kind.value}: {parsed.raw!r}")
    return parsed


def list_installed_skills(
    agent: str,
    *,
    lock: SkillLockFile | None = None,
    lock_path: str | Path | None = None,
) -> list[InstalledSkill]:
    doc = lock if lock is not None else read_skill_lock(lock_path)
    out: list[InstalledSkill] = []
    for name in sorted(doc.skills):
        entry = doc.skills[name]
        if agent not in entry.agents:
            continue
        out.append(
            InstalledSkill(
                name=entry.name,
                agent=agent,
                source=entry.parsed_source,
                content_hash=entry.content_hash,
                installed_at=entry.installed_at,
                updated_at=entry.updated_at,
            )
        )
    return out


def is_skill_installed(
    agent: str,
    name: str,
    *,
    lock: SkillLockFile | None = None,
    lock_path: str | Path | None = None,
) -> bool:
    doc = lock if lock is not None else read_skill_lock(lock_path)
    entry = doc.skills.get(name) or doc.skills.get(sanitize_name(name))
    return entry is not None and agent in entry.agents


def install_skill_for_agent(
    source: str | ParsedSource,
    agent: str | None = None,
    mode: InstallMode = "copy",
    **kwargs,
) -> list[InstallResult]:
    skill_names = kwargs.pop("skill_names", None)
    with SkillInstaller(**kwargs) as installer:
        return installer.install_skill_for_agent(source, agent, mode, skill_names=skill_names)


def install_mintlify_skill_for_agent(
    source: str | ParsedSource,
    agent: str | None = None,
    mode: InstallMode = "copy",
    **kwargs,
) -> list[InstallResult]:
    with SkillInstaller(**kwargs) as installer:
        return installer.install_mintlify_skill_for_agent(source, agent, mode)


def install_remote_skill_for_agent(
    source: str | ParsedSource,
    agent: str | None = None,
    mode: InstallMode = "copy",
    **kwargs,
) -> list[InstallResult]:
    skill_names = kwargs.pop("skill_names", None)
    with SkillInstaller(**kwargs) as installer:
        return installer.install_remote_skill_for_agent(source, agent, mode, skill_names=skill_names)


def install_well_known_skill_for_agent(
    source: str | ParsedSource,
    agent: str | None = None,
    mode: InstallMode = "copy",
    **kwargs,
) -> list[InstallResult]:
    skill_names = kwargs.pop("skill_names", None)
    with SkillInstaller(**kwargs) as installer:
        return installer.install_well_known_skill_for_agent(source, agent, mode, skill_names=skill_names)
