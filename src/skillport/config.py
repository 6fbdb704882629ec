from __future__ import annotations

import json
import logging
import os
import stat
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Any

from platformdirs import user_config_path

logger = logging.getLogger(__name__)

CURRENT_CONFIG_VERSION = 1
DEFAULT_TIMEOUT_S = 30.0
DEFAULT_PLATFORM_URL = "https://add-skill.vercel.sh"

ENV_DISABLE_TELEMETRY = "DISABLE_TELEMETRY"
ENV_DO_NOT_TRACK = "DO_NOT_TRACK"
ENV_PLATFORM_URL = "SKILLS_PLATFORM_URL"
ENV_TELEMETRY_ENDPOINT = "SKILLS_TELEMETRY_ENDPOINT"
ENV_SEARCH_ENDPOINT = "SKILLS_SEARCH_ENDPOINT"
ENV_CHECK_UPDATES_ENDPOINT = "SKILLS_CHECK_UPDATES_ENDPOINT"
ENV_DEFAULT_AGENTS = "SKILLS_DEFAULT_AGENTS"
ENV_PRIVATE_REPO_ALWAYS_UPDATE = "SKILLS_PRIVATE_REPO_ALWAYS_UPDATE"
ENV_CONFIG_PATH = "SKILLS_CONFIG_PATH"
ENV_LOCK_PATH = "SKILLS_LOCK_PATH"
ENV_INSTALL_INTERNAL_SKILLS = "INSTALL_INTERNAL_SKILLS"
ENV_GITHUB_TOKENS = ("GITHUB_TOKEN", "GH_TOKEN")

ENV_VARS = (
    ENV_DISABLE_TELEMETRY,
    ENV_DO_NOT_TRACK,
    ENV_PLATFORM_URL,
    ENV_TELEMETRY_ENDPOINT,
    ENV_SEARCH_ENDPOINT,
    ENV_CHECK_UPDATES_ENDPOINT,
    ENV_DEFAULT_AGENTS,
    ENV_PRIVATE_REPO_ALWAYS_UPDATE,
    ENV_CONFIG_PATH,
    ENV_LOCK_PATH,
    ENV_INSTALL_INTERNAL_SKILLS,
    *ENV_GITHUB_TOKENS,
)


@dataclass(frozen=True)
class RegistryConfig:
    name: str
    url: str
    priority: int = 0  # lower wins


@dataclass(frozen=True)
class PlatformConfig:
    base_url: str = DEFAULT_PLATFORM_URL
    telemetry_endpoint: str = "/t"
    search_endpoint: str = "/search"
    check_updates_endpoint: str = "/check-updates"


@dataclass(frozen=True)
class TelemetryConfig:
    enabled: bool = True


@dataclass(frozen=True)
class PrivateRepoConfig:
    # Re-copy private-repo skills on every install, skipping the hash check.
    always_update: bool = False


@dataclass(frozen=True)
class SkillsConfig:
    version: int = CURRENT_CONFIG_VERSION
    default_agents: tuple[str, ...] = ()
    registries: tuple[RegistryConfig, ...] = ()
    platform: PlatformConfig = field(default_factory=PlatformConfig)
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)
    private_repo: PrivateRepoConfig = field(default_factory=PrivateRepoConfig)
    lock_path: str | None = None
    github_token: str | None = None
    install_internal_skills: bool = False
    timeout_s: float = DEFAULT_TIMEOUT_S


def config_path(path_override: str | Path | None = None) -> Path:
    if path_override is not None:
        return Path(path_override).expanduser()
    if env := os.getenv(ENV_CONFIG_PATH, "").strip():
        return Path(env).expanduser()
    return user_config_path("skillport") / "config.json"


def _parse_env_bool(value: str | None, default: bool) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes")


def _parse_env_list(value: str | None) -> tuple[str, ...]:
    if not value or not value.strip():
        return ()
    return tuple(s.strip() for s in value.split(",") if s.strip())


def _telemetry_disabled_by_env() -> bool:
    return bool(os.getenv(ENV_DISABLE_TELEMETRY) or os.getenv(ENV_DO_NOT_TRACK))


def _env_str(name: str) -> str | None:
    value = os.getenv(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def apply_env_overrides(cfg: SkillsConfig) -> SkillsConfig:
    platform = PlatformConfig(
        base_url=_env_str(ENV_PLATFORM_URL) or cfg.platform.base_url,
        telemetry_endpoint=_env_str(ENV_TELEMETRY_ENDPOINT) or cfg.platform.telemetry_endpoint,
        search_endpoint=_env_str(ENV_SEARCH_ENDPOINT) or cfg.platform.search_endpoint,
        check_updates_endpoint=_env_str(ENV_CHECK_UPDATES_ENDPOINT) or cfg.platform.check_updates_endpoint,
    )
    updates: dict[str, Any] = {"platform": platform}

    if _telemetry_disabled_by_env():
        updates["telemetry"] = TelemetryConfig(enabled=False)

    if os.getenv(ENV_DEFAULT_AGENTS):
        updates["default_agents"] = _parse_env_list(os.getenv(ENV_DEFAULT_AGENTS))

    always_update_env = os.getenv(ENV_PRIVATE_REPO_ALWAYS_UPDATE)
    if always_update_env is not None:
        updates["private_repo"] = PrivateRepoConfig(
            always_update=_parse_env_bool(always_update_env, cfg.private_repo.always_update)
        )

    if lock_path := _env_str(ENV_LOCK_PATH):
        updates["lock_path"] = lock_path

    for name in ENV_GITHUB_TOKENS:
        if token := _env_str(name):
            updates["github_token"] = token
            break

    internal_env = os.getenv(ENV_INSTALL_INTERNAL_SKILLS)
    if internal_env is not None:
        updates["install_internal_skills"] = _parse_env_bool(internal_env, cfg.install_internal_skills)

    return replace(cfg, **updates)


def _section(raw: Any, cls: type, defaults: Any) -> Any:
    if not isinstance(raw, dict):
        return defaults
    allowed = {f for f in cls.__dataclass_fields__}  # type: ignore[attr-defined]
    filtered = {k: v for k, v in raw.items() if k in allowed}
    return replace(defaults, **filtered)


def _registries(raw: Any) -> tuple[RegistryConfig, ...]:
    if not isinstance(raw, list):
        return ()
    out: list[RegistryConfig] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        name = item.get("name")
        url = item.get("url")
        if not isinstance(name, str) or not isinstance(url, str):
            continue
        priority = item.get("priority")
        out.append(RegistryConfig(name=name, url=url, priority=priority if isinstance(priority, int) else 0))
    return tuple(sorted(out, key=lambda r: r.priority))


def _from_dict(raw: dict[str, Any]) -> SkillsConfig:
    defaults = SkillsConfig()
    agents = raw.get("default_agents")
    timeout_s = raw.get("timeout_s")
    return SkillsConfig(
        version=raw["version"],
        default_agents=tuple(a for a in agents if isinstance(a, str)) if isinstance(agents, list) else (),
        registries=_registries(raw.get("registries")),
        platform=_section(raw.get("platform"), PlatformConfig, defaults.platform),
        telemetry=_section(raw.get("telemetry"), TelemetryConfig, defaults.telemetry),
        private_repo=_section(raw.get("private_repo"), PrivateRepoConfig, defaults.private_repo),
        lock_path=raw.get("lock_path") if isinstance(raw.get("lock_path"), str) else None,
        github_token=raw.get("github_token") if isinstance(raw.get("github_token"), str) else None,
        install_internal_skills=bool(raw.get("install_internal_skills", False)),
        timeout_s=float(timeout_s) if isinstance(timeout_s, (int, float)) else DEFAULT_TIMEOUT_S,
    )


def load_config_file(path_override: str | Path | None = None) -> SkillsConfig:
    """Read the config file without env overrides; any defect yields defaults."""
    path = config_path(path_override)
    if not path.exists():
        return SkillsConfig()

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning("Ignoring unreadable config file %s: %s", path, e)
        return SkillsConfig()
    if not isinstance(raw, dict) or not isinstance(raw.get("version"), int):
        logger.warning("Ignoring config file %s: expected an object with a numeric version", path)
        return SkillsConfig()
    return _from_dict(raw)


def load_config(path_override: str | Path | None = None) -> SkillsConfig:
    """Env vars > config file > defaults."""
    return apply_env_overrides(load_config_file(path_override))


def load_config_sync() -> SkillsConfig:
    return apply_env_overrides(SkillsConfig())


def save_config(cfg: SkillsConfig, path_override: str | Path | None = None) -> Path:
    path = config_path(path_override)
    path.parent.mkdir(parents=True, exist_ok=True)

    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(asdict(cfg), indent=2, sort_keys=True) + "\n", encoding="utf-8")
    tmp.replace(path)

    # Best-effort permissions hardening (mainly for tokens).
    try:
        os.chmod(path, stat.S_IRUSR | stat.S_IWUSR)
    except OSError:
        pass

    return path


def update_config(path_override: str | Path | None = None, **updates: Any) -> SkillsConfig:
    current = load_config_file(path_override)
    for section in ("platform", "telemetry", "private_repo"):
        value = updates.get(section)
        if isinstance(value, dict):
            updates[section] = replace(getattr(current, section), **value)
    updated = replace(current, **updates)
    save_config(updated, path_override)
    return apply_env_overrides(updated)


def get_default_config() -> SkillsConfig:
    return SkillsConfig()


def get_platform_url(cfg: SkillsConfig, endpoint: str) -> str:
    if endpoint == "base_url":
        return cfg.platform.base_url
    path = getattr(cfg.platform, endpoint)
    return f"{cfg.platform.base_url}{path}"


def is_telemetry_enabled(path_override: str | Path | None = None) -> bool:
    if _telemetry_disabled_by_env():
        return False
    return load_config(path_override).telemetry.enabled


def get_default_agents(path_override: str | Path | None = None) -> tuple[str, ...]:
    return load_config(path_override).default_agents


def set_default_agents(agents: list[str] | tuple[str, ...], path_override: str | Path | None = None) -> None:
    update_config(path_override, default_agents=tuple(agents))
