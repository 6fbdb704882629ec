from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .errors import UnknownAgentError


@dataclass(frozen=True)
class AgentConfig:
    name: str
    display_name: str
    skills_dir: str  # relative to the project directory
    global_skills_dir: str  # relative to the home directory
    detect_paths: tuple[str, ...] = ()  # relative to the home directory

    @property
    def install_path_template(self) -> str:
        return f"{{base}}/{self.skills_dir}/{{name}}"

    def detect(self, home: Path | None = None) -> bool:
        base = home if home is not None else Path.home()
        return any((base / p).exists() for p in self.detect_paths)


def _agent(name: str, display_name: str, skills_dir: str, global_skills_dir: str, *detect: str) -> AgentConfig:
    return AgentConfig(
        name=name,
        display_name=display_name,
        skills_dir=skills_dir,
        global_skills_dir=global_skills_dir,
        detect_paths=tuple(detect),
    )


AGENTS: dict[str, AgentConfig] = {
    a.name: a
    for a in (
        _agent("claude-code", "Claude Code", ".claude/skills", ".claude/skills", ".claude"),
        _agent("codex", "Codex", ".codex/skills", ".codex/skills", ".codex"),
        _agent("cursor", "Cursor", ".cursor/skills", ".cursor/skills", ".cursor"),
        _agent("opencode", "OpenCode", ".opencode/skills", ".config/opencode/skills", ".config/opencode"),
        _agent("amp", "Amp", ".agents/skills", ".config/agents/skills", ".config/amp"),
        _agent("github-copilot", "GitHub Copilot", ".github/skills", ".copilot/skills", ".copilot"),
        _agent("gemini-cli", "Gemini CLI", ".gemini/skills", ".gemini/skills", ".gemini"),
        _agent("windsurf", "Windsurf", ".windsurf/skills", ".codeium/windsurf/skills", ".codeium/windsurf"),
        _agent("goose", "Goose", ".goose/skills", ".config/goose/skills", ".config/goose"),
        _agent("cline", "Cline", ".cline/skills", ".cline/skills", ".cline"),
        _agent("roo", "Roo Code", ".roo/skills", ".roo/skills", ".roo"),
    )
}


def get_agent_config(agent: str) -> AgentConfig:
    try:
        return AGENTS[agent]
    except KeyError as e:
        known = ", ".join(sorted(AGENTS))
        raise UnknownAgentError(f"Unknown agent {agent!r}. Known agents: {known}") from e


def detect_installed_agents(home: Path | None = None) -> list[str]:
    return [name for name, cfg in AGENTS.items() if cfg.detect(home)]
