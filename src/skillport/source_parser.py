"""Classify source strings into a closed set of fetchable source kinds."""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

from .errors import InvalidSourceError, UnsupportedOperationError

GITHUB_HOSTS = {"github.com", "www.github.com"}
GITLAB_HOSTS = {"gitlab.com", "www.gitlab.com"}
MINTLIFY_HOST_SUFFIXES = (".mintlify.app", ".mintlify.dev")
MINTLIFY_HOSTS = {"mintlify.com", "www.mintlify.com"}
WELL_KNOWN_PREFIX = "/.well-known/skills"
DOC_SITE_FILENAME = "skill.md"

_SEGMENT = r"[A-Za-z0-9_.-]+"
_SHORTHAND_RE = re.compile(
    rf"^(?P<owner>{_SEGMENT})/(?P<repo>{_SEGMENT})(?:#(?P<ref>[^/#\s]+))?(?:/(?P<subpath>[^\s#]+?))?/?$"
)
_SCP_RE = re.compile(r"^(?P<user>[\w.-]+)@(?P<host>[\w.-]+):(?P<path>[^\s]+)$")


class SourceKind(str, Enum):
    LOCAL = "local"
    GIT_SHORTHAND = "git-shorthand"
    GIT_URL = "git-url"
    DOC_SITE = "doc-site"
    WELL_KNOWN = "well-known"
    REMOTE_BUNDLE = "remote-bundle"


GIT_KINDS = (SourceKind.GIT_SHORTHAND, SourceKind.GIT_URL)


@dataclass(frozen=True)
class ParsedSource:
    kind: SourceKind
    raw: str
    owner: str | None = None
    repo: str | None = None
    ref: str | None = None
    subpath: str | None = None
    url: str | None = None
    host: str | None = None
    local_path: str | None = None

    @property
    def is_git(self) -> bool:
        return self.kind in GIT_KINDS

    @property
    def is_github(self) -> bool:
        return self.is_git and (self.host or "github.com") in GITHUB_HOSTS

    @property
    def clone_url(self) -> str:
        if self.kind is SourceKind.GIT_SHORTHAND:
            return f"https://github.com/{self.owner}/{self.repo}.git"
        if self.kind is SourceKind.GIT_URL and self.url:
            return self.url
        raise UnsupportedOperationError(f"Source {self.raw!r} ({self.kind.value}) cannot be cloned.")

    @property
    def identity(self) -> str:
        """Stable key used to group lock entries by where they came from."""
        if self.is_git:
            return f"{self.owner}/{self.repo}".lower()
        if self.kind is SourceKind.LOCAL:
            return self.local_path or self.raw
        return self.url or self.raw

    def to_dict(self) -> dict[str, Any]:
        data = {k: v for k, v in asdict(self).items() if v is not None}
        data["kind"] = self.kind.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ParsedSource":
        try:
            kind = SourceKind(data["kind"])
        except (KeyError, ValueError) as e:
            raise InvalidSourceError(f"Unknown source kind in {data!r}") from e
        allowed = set(cls.__dataclass_fields__) - {"kind"}  # type: ignore[attr-defined]
        fields = {k: v for k, v in data.items() if k in allowed and isinstance(v, str)}
        fields.setdefault("raw", fields.get("url") or "")
        return cls(kind=kind, **fields)


def _is_local_path(value: str) -> bool:
    if value in (".", ".."):
        return True
    if value.startswith(("./", "../", "~", "/")):
        return True
    if re.match(r"^[A-Za-z]:[\\/]", value):
        return True
    return value.startswith((".\\", "..\\"))


def _strip_git_suffix(repo: str) -> str:
    return repo[: -len(".git")] if repo.endswith(".git") else repo


def _clean_subpath(value: str | None) -> str | None:
    if not value:
        return None
    cleaned = value.strip().strip("/")
    if not cleaned:
        return None
    parts = cleaned.split("/")
    if any(p in ("", ".", "..") for p in parts):
        raise InvalidSourceError(f"Invalid subpath {value!r}")
    return cleaned


def _parse_shorthand(raw: str) -> ParsedSource | None:
    if "://" in raw or raw.startswith(("http:", "https:")):
        return None
    m = _SHORTHAND_RE.match(raw)
    if not m:
        return None
    repo = _strip_git_suffix(m.group("repo"))
    owner = m.group("owner")
    if not repo or owner in (".", "..") or repo in (".", ".."):
        return None
    return ParsedSource(
        kind=SourceKind.GIT_SHORTHAND,
        raw=raw,
        owner=owner,
        repo=repo,
        ref=m.group("ref"),
        subpath=_clean_subpath(m.group("subpath")),
        host="github.com",
    )


def _owner_repo_from_path(path: str) -> tuple[str, str] | None:
    parts = [p for p in path.strip("/").split("/") if p]
    if len(parts) < 2:
        return None
    return parts[-2], _strip_git_suffix(parts[-1])


def _parse_git_url(raw: str) -> ParsedSource | None:
    scp = _SCP_RE.match(raw)
    if scp and "://" not in raw:
        owner_repo = _owner_repo_from_path(scp.group("path"))
        if owner_repo is None:
            raise InvalidSourceError(f"Git URL {raw!r} has no owner/repo path.")
        return ParsedSource(
            kind=SourceKind.GIT_URL,
            raw=raw,
            owner=owner_repo[0],
            repo=owner_repo[1],
            url=raw,
            host=scp.group("host").lower(),
        )

    parts = urlsplit(raw)
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    if scheme not in ("http", "https", "ssh", "git", "git+ssh") or not host:
        return None

    segments = [s for s in parts.path.split("/") if s]

    if host in GITHUB_HOSTS and len(segments) >= 2:
        owner, repo = segments[0], _strip_git_suffix(segments[1])
        ref = None
        subpath = None
        if len(segments) >= 4 and segments[2] in ("tree", "blob"):
            ref = segments[3]
            subpath = "/".join(segments[4:]) or None
        elif len(segments) > 2:
            return None
        return ParsedSource(
            kind=SourceKind.GIT_URL,
            raw=raw,
            owner=owner,
            repo=repo,
            ref=ref,
            subpath=_clean_subpath(subpath),
            url=f"https://github.com/{owner}/{repo}.git",
            host="github.com",
        )

    if host in GITLAB_HOSTS and len(segments) >= 2:
        repo_parts = segments
        ref = None
        subpath = None
        if "-" in segments:
            idx = segments.index("-")
            repo_parts = segments[:idx]
            rest = segments[idx + 1 :]
            if len(rest) >= 2 and rest[0] in ("tree", "blob"):
                ref = rest[1]
                subpath = "/".join(rest[2:]) or None
        if len(repo_parts) < 2:
            return None
        repo_path = "/".join(repo_parts)
        repo_path = _strip_git_suffix(repo_path)
        owner_repo = _owner_repo_from_path(repo_path)
        if owner_repo is None:
            raise InvalidSourceError(f"Git URL {raw!r} has no owner/repo path.")
        return ParsedSource(
            kind=SourceKind.GIT_URL,
            raw=raw,
            owner=owner_repo[0],
            repo=owner_repo[1],
            ref=ref,
            subpath=_clean_subpath(subpath),
            url=f"https://{host}/{repo_path}.git",
            host=host,
        )

    if scheme in ("ssh", "git", "git+ssh") or parts.path.endswith(".git"):
        owner_repo = _owner_repo_from_path(parts.path)
        if owner_repo is None:
            raise InvalidSourceError(f"Git URL {raw!r} has no owner/repo path.")
        ref = parts.fragment or None
        return ParsedSource(
            kind=SourceKind.GIT_URL,
            raw=raw,
            owner=owner_repo[0],
            repo=owner_repo[1],
            ref=ref,
            url=raw.split("#", 1)[0],
            host=host,
        )

    return None


def _is_doc_site(host: str, path: str) -> bool:
    if host in MINTLIFY_HOSTS or host.endswith(MINTLIFY_HOST_SUFFIXES):
        return True
    last = path.rstrip("/").rsplit("/", 1)[-1]
    return last.lower() == DOC_SITE_FILENAME


def parse_source(raw: str) -> ParsedSource:
    """Classify a source string; the first matching shape wins."""
    if not isinstance(raw, str) or not raw.strip():
        raise InvalidSourceError("Source must be a non-empty string.")
    value = raw.strip()

    if _is_local_path(value):
        resolved = Path(value).expanduser().resolve()
        return ParsedSource(kind=SourceKind.LOCAL, raw=value, local_path=str(resolved))

    # "github.com/owner/repo" without a scheme
    if value.split("/", 1)[0].lower() in GITHUB_HOSTS | GITLAB_HOSTS:
        value = "https://" + value

    shorthand = _parse_shorthand(value)
    if shorthand is not None:
        return shorthand

    git = _parse_git_url(value)
    if git is not None:
        return git

    parts = urlsplit(value)
    if parts.scheme.lower() not in ("http", "https") or not parts.hostname:
        raise InvalidSourceError(
            f"Unrecognized source {value!r}. Expected owner/repo[#ref][/path], a git URL, or an http(s) URL."
        )
    host = parts.hostname.lower()

    if _is_doc_site(host, parts.path):
        return ParsedSource(kind=SourceKind.DOC_SITE, raw=value, url=value, host=host)
    if WELL_KNOWN_PREFIX in parts.path:
        return ParsedSource(kind=SourceKind.WELL_KNOWN, raw=value, url=value, host=host)
    return ParsedSource(kind=SourceKind.REMOTE_BUNDLE, raw=value, url=value, host=host)


def get_owner_repo(source: ParsedSource) -> str:
    owner, repo = parse_owner_repo(source)
    return f"{owner}/{repo}"


def parse_owner_repo(source: ParsedSource | str) -> tuple[str, str]:
    if isinstance(source, str):
        source = parse_source(source)
    if not source.is_git or not source.owner or not source.repo:
        raise UnsupportedOperationError(
            f"Source {source.raw!r} ({source.kind.value}) has no owner/repo."
        )
    return source.owner, source.repo


def is_repo_private(owner: str, repo: str, *, client: Any = None) -> bool:
    from .client import is_repo_private as _lookup

    return _lookup(owner, repo, client=client)
