from __future__ import annotations

import io
import json
import logging
import shutil
import zipfile
from contextlib import contextmanager
from pathlib import Path, PurePosixPath
from typing import Any, Iterator
from urllib.parse import urlsplit, urlunsplit

from .client import HostingClient
from .content_hash import DEFAULT_EXCLUDE_NAMES
from .errors import HostingHTTPError, NetworkError, SkillsError, UnsupportedOperationError
from .git import scoped_temp_dir
from .skills import SKILL_FILENAME
from .source_parser import DOC_SITE_FILENAME, WELL_KNOWN_PREFIX, ParsedSource, SourceKind

logger = logging.getLogger(__name__)

WELL_KNOWN_INDEX = "index.json"
_ZIP_MAGIC = b"PK\x03\x04"
_MACOS_METADATA_DIR = "__MACOSX"


def _get(client: HostingClient, url: str) -> bytes:
    try:
        return client.download(url)
    except HostingHTTPError as e:
        raise NetworkError(f"Download of {url} failed with HTTP {e.status_code}") from e


def _safe_relative(name: str) -> PurePosixPath:
    rel = PurePosixPath(name.replace("\\", "/"))
    if name.startswith("/") or rel.is_absolute() or not rel.parts or ".." in rel.parts:
        raise SkillsError(f"Remote bundle contains an invalid path entry: {name!r}")
    return rel


def _bundle_members(zf: zipfile.ZipFile) -> list[tuple[zipfile.ZipInfo, PurePosixPath]]:
    members: list[tuple[zipfile.ZipInfo, PurePosixPath]] = []
    for info in zf.infolist():
        if not info.filename:
            continue
        rel = _safe_relative(info.filename)
        if any(p in DEFAULT_EXCLUDE_NAMES or p == _MACOS_METADATA_DIR for p in rel.parts):
            continue
        members.append((info, rel))
    return members


def _wrapper_dir(members: list[tuple[zipfile.ZipInfo, PurePosixPath]]) -> str | None:
    """Name of the single folder wrapping a bundle whose SKILL.md is not at the root."""
    files = [rel for info, rel in members if not info.is_dir()]
    if not files or any(rel.as_posix() == SKILL_FILENAME for rel in files):
        return None
    tops = {rel.parts[0] for rel in files}
    if len(tops) != 1 or any(len(rel.parts) < 2 for rel in files):
        return None
    top = tops.pop()
    return top if PurePosixPath(top, SKILL_FILENAME) in files else None


def extract_skill_bundle(zip_bytes: bytes, dest: Path) -> Path:
    """
    Unpack a zipped skill bundle into ``dest``.

    Entries that escape ``dest`` are rejected before anything is written.
    VCS and OS metadata are skipped, and a lone top-level folder holding
    SKILL.md is unwrapped so the skill lands at ``dest`` itself.
    """
    dest.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(io.BytesIO(zip_bytes), "r") as zf:
        members = _bundle_members(zf)
        wrapper = _wrapper_dir(members)
        for info, rel in members:
            if wrapper is not None:
                if rel.parts == (wrapper,):
                    continue
                rel = rel.relative_to(wrapper)
            target = dest.joinpath(*rel.parts)
            if info.is_dir():
                target.mkdir(parents=True, exist_ok=True)
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            with zf.open(info, "r") as src, target.open("wb") as out:
                shutil.copyfileobj(src, out)
    return dest


def doc_site_skill_url(source: ParsedSource) -> str:
    url = source.url or source.raw
    parts = urlsplit(url)
    last = parts.path.rstrip("/").rsplit("/", 1)[-1]
    if last.lower() == DOC_SITE_FILENAME:
        return url
    path = parts.path.rstrip("/") + "/" + DOC_SITE_FILENAME
    return urlunsplit((parts.scheme, parts.netloc, path, "", ""))


def download_doc_site_skill(source: ParsedSource, client: HostingClient, dest: Path) -> Path:
    url = doc_site_skill_url(source)
    content = _get(client, url)
    (dest / SKILL_FILENAME).write_bytes(content)
    return dest


def download_remote_bundle(source: ParsedSource, client: HostingClient, dest: Path) -> Path:
    url = source.url or source.raw
    payload = _get(client, url)
    if payload.startswith(_ZIP_MAGIC):
        try:
            extract_skill_bundle(payload, dest)
        except zipfile.BadZipFile as e:
            raise SkillsError(f"Remote bundle at {url} is not a valid zip archive") from e
        return dest
    try:
        payload.decode("utf-8")
    except UnicodeDecodeError as e:
        raise SkillsError(f"Remote bundle at {url} is neither a zip archive nor a SKILL.md document") from e
    (dest / SKILL_FILENAME).write_bytes(payload)
    return dest


def well_known_urls(source: ParsedSource) -> tuple[str, str]:
    """Return ``(skills base URL, index URL)`` for a well-known source."""
    url = source.url or source.raw
    parts = urlsplit(url)
    idx = parts.path.find(WELL_KNOWN_PREFIX)
    base_path = parts.path[: idx + len(WELL_KNOWN_PREFIX)]
    base = urlunsplit((parts.scheme, parts.netloc, base_path, "", ""))
    if parts.path.endswith(".json"):
        return base, urlunsplit((parts.scheme, parts.netloc, parts.path, parts.query, ""))
    return base, f"{base}/{WELL_KNOWN_INDEX}"


def _index_entries(payload: Any) -> list[dict[str, Any]]:
    if isinstance(payload, dict):
        payload = payload.get("skills")
    if not isinstance(payload, list):
        raise SkillsError("Well-known index must contain a 'skills' list")
    return [item for item in payload if isinstance(item, dict)]


def download_well_known_skills(source: ParsedSource, client: HostingClient, dest: Path) -> Path:
    base, index_url = well_known_urls(source)
    try:
        index = json.loads(_get(client, index_url))
    except ValueError as e:
        raise SkillsError(f"Well-known index at {index_url} is not valid JSON") from e

    fetched = 0
    for entry in _index_entries(index):
        name = entry.get("name")
        if not isinstance(name, str) or not name.strip():
            logger.warning("Skipping well-known entry without a name in %s", index_url)
            continue
        skill_rel = _safe_relative(name.strip())
        files = entry.get("files")
        if not isinstance(files, list) or not files:
            files = [SKILL_FILENAME]
        if SKILL_FILENAME not in files:
            files = [SKILL_FILENAME, *files]

        skill_dir = dest / skill_rel
        for file_name in files:
            if not isinstance(file_name, str):
                continue
            rel = _safe_relative(file_name)
            target = skill_dir / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(_get(client, f"{base}/{skill_rel.as_posix()}/{rel.as_posix()}"))
        fetched += 1

    if not fetched:
        raise SkillsError(f"Well-known index at {index_url} lists no skills")
    return dest


@contextmanager
def downloaded_source(source: ParsedSource, *, client: HostingClient) -> Iterator[Path]:
    """Materialize a non-git remote source into a temp dir removed on exit."""
    with scoped_temp_dir() as tmp:
        if source.kind is SourceKind.DOC_SITE:
            download_doc_site_skill(source, client, tmp)
        elif source.kind is SourceKind.WELL_KNOWN:
            download_well_known_skills(source, client, tmp)
        elif source.kind is SourceKind.REMOTE_BUNDLE:
            download_remote_bundle(source, client, tmp)
        else:
            raise UnsupportedOperationError(f"Cannot download {source.kind.value} source {source.raw!r}.")
        yield tmp
