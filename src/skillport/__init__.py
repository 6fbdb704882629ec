from ._version import __version__
from .agents import AGENTS, AgentConfig, detect_installed_agents, get_agent_config
from .client import HostingClient
from .config import SkillsConfig, load_config
from .errors import (
    FilesystemError,
    GitCloneError,
    HostingHTTPError,
    InvalidSourceError,
    NetworkError,
    SkillParseError,
    SkillsError,
    UnknownAgentError,
    UnsupportedOperationError,
)
from .git import cleanup_temp_dir, clone_repo, cloned_repo
from .installer import (
    InstalledSkill,
    InstallMode,
    InstallResult,
    SkillInstaller,
    install_mintlify_skill_for_agent,
    install_remote_skill_for_agent,
    install_skill_for_agent,
    install_well_known_skill_for_agent,
    is_skill_installed,
    list_installed_skills,
)
from .paths import (
    AGENTS_DIR,
    SKILLS_SUBDIR,
    get_canonical_path,
    get_canonical_skills_dir,
    get_install_path,
    sanitize_name,
)
from .skill_lock import (
    SkillLockEntry,
    SkillLockFile,
    add_skill_to_lock,
    compute_content_hash,
    dismiss_prompt,
    fetch_skill_folder_hash,
    get_all_locked_skills,
    get_last_selected_agents,
    get_skill_from_lock,
    get_skill_lock_path,
    get_skills_by_source,
    is_prompt_dismissed,
    read_skill_lock,
    remove_skill_from_lock,
    save_selected_agents,
    write_skill_lock,
)
from .skills import Skill, discover_skills, filter_skills, get_skill_display_name, parse_skill_md, should_install_internal_skills
from .source_parser import ParsedSource, SourceKind, get_owner_repo, is_repo_private, parse_owner_repo, parse_source

__all__ = [
    "AGENTS",
    "AGENTS_DIR",
    "AgentConfig",
    "FilesystemError",
    "GitCloneError",
    "HostingClient",
    "HostingHTTPError",
    "InstallMode",
    "InstallResult",
    "InstalledSkill",
    "InvalidSourceError",
    "NetworkError",
    "ParsedSource",
    "SKILLS_SUBDIR",
    "Skill",
    "SkillInstaller",
    "SkillLockEntry",
    "SkillLockFile",
    "SkillParseError",
    "SkillsConfig",
    "SkillsError",
    "SourceKind",
    "UnknownAgentError",
    "UnsupportedOperationError",
    "__version__",
    "add_skill_to_lock",
    "cleanup_temp_dir",
    "clone_repo",
    "cloned_repo",
    "compute_content_hash",
    "detect_installed_agents",
    "discover_skills",
    "dismiss_prompt",
    "fetch_skill_folder_hash",
    "filter_skills",
    "get_agent_config",
    "get_all_locked_skills",
    "get_canonical_path",
    "get_canonical_skills_dir",
    "get_install_path",
    "get_last_selected_agents",
    "get_owner_repo",
    "get_skill_display_name",
    "get_skill_from_lock",
    "get_skill_lock_path",
    "get_skills_by_source",
    "install_mintlify_skill_for_agent",
    "install_remote_skill_for_agent",
    "install_skill_for_agent",
    "install_well_known_skill_for_agent",
    "is_prompt_dismissed",
    "is_repo_private",
    "is_skill_installed",
    "list_installed_skills",
    "load_config",
    "parse_owner_repo",
    "parse_skill_md",
    "parse_source",
    "read_skill_lock",
    "remove_skill_from_lock",
    "sanitize_name",
    "save_selected_agents",
    "should_install_internal_skills",
    "write_skill_lock",
]
