from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from ._version import __version__
from .config import DEFAULT_TIMEOUT_S, SkillsConfig
from .errors import HostingHTTPError, NetworkError
from .source_parser import ParsedSource

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"


class HostingClient:
    """
    Thin httpx wrapper for the git hosting API and remote skill downloads.

    Only read requests are issued. The token, when set, is sent to the hosting
    API origin only, never to arbitrary download URLs.
    """

    def __init__(
        self,
        *,
        api_url: str = GITHUB_API_URL,
        token: str | None = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.token = token
        self.timeout_s = timeout_s
        self._http = httpx.Client(
            timeout=timeout_s,
            follow_redirects=True,
            transport=transport,
            headers={"user-agent": f"skillport/{__version__}"},
        )

    @classmethod
    def from_config(cls, cfg: SkillsConfig) -> "HostingClient":
        return cls(token=cfg.github_token, timeout_s=cfg.timeout_s)

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "HostingClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def request(
        self,
        *,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        auth: bool = True,
    ) -> httpx.Response:
        if path.startswith(("http://", "https://")):
            url = path
        else:
            if not path.startswith("/"):
                path = "/" + path
            url = f"{self.api_url}{path}"

        req_headers = dict(headers or {})
        if auth and self.token and url.startswith(self.api_url + "/"):
            req_headers["Authorization"] = f"Bearer {self.token}"

        try:
            resp = self._http.request(method.upper(), url, params=params, headers=req_headers)
        except httpx.HTTPError as e:
            raise NetworkError(f"Request to {url} failed: {e}") from e

        if resp.status_code >= 400:
            raise HostingHTTPError(resp.status_code, resp.text)
        return resp

    def download(self, url: str) -> bytes:
        return self.request(method="GET", path=url, auth=False).content

    def get_repo(self, owner: str, repo: str) -> dict[str, Any]:
        path = f"/repos/{quote(owner, safe='')}/{quote(repo, safe='')}"
        resp = self.request(method="GET", path=path, headers={"accept": "application/vnd.github+json"})
        try:
            data = resp.json()
        except ValueError as e:
            raise NetworkError(f"Repository lookup for {owner}/{repo} returned a non-JSON body") from e
        return data if isinstance(data, dict) else {}

    def is_repo_private(self, owner: str, repo: str) -> bool:
        try:
            data = self.get_repo(owner, repo)
        except HostingHTTPError as e:
            if e.status_code in (403, 404):
                return True
            logger.warning("Unexpected status %s looking up %s/%s; assuming private", e.status_code, owner, repo)
            return True
        private = data.get("private")
        # Only an explicit false counts as public.
        return private is not False

    def fetch_skill_folder_hash(self, source: ParsedSource, skill_path: str | None = None) -> str | None:
        """Return the hosting provider's tree SHA for the skill folder, or None."""
        if not source.is_github or not source.owner or not source.repo:
            return None
        ref = source.ref or "HEAD"
        path = (
            f"/repos/{quote(source.owner, safe='')}/{quote(source.repo, safe='')}"
            f"/git/trees/{quote(ref, safe='')}"
        )
        try:
            resp = self.request(
                method="GET",
                path=path,
                params={"recursive": "1"},
                headers={"accept": "application/vnd.github+json"},
            )
        except HostingHTTPError as e:
            logger.debug("Tree lookup for %s failed with HTTP %s", source.identity, e.status_code)
            return None

        try:
            data = resp.json()
        except ValueError:
            logger.debug("Tree lookup for %s returned a non-JSON body", source.identity)
            return None
        if not isinstance(data, dict):
            return None
        folder = (skill_path or "").strip("/")
        if not folder:
            sha = data.get("sha")
            return sha if isinstance(sha, str) else None
        for entry in data.get("tree") or []:
            if not isinstance(entry, dict):
                continue
            if entry.get("type") == "tree" and entry.get("path") == folder and isinstance(entry.get("sha"), str):
                return entry["sha"]
        return None


def _with_client(client: HostingClient | None) -> tuple[HostingClient, bool]:
    if client is not None:
        return client, False
    return HostingClient(), True


def is_repo_private(owner: str, repo: str, *, client: HostingClient | None = None) -> bool:
    """
    Ask the hosting API. 403/404 mean "private or nonexistent";
    transport failures raise NetworkError.
    """
    http, owned = _with_client(client)
    try:
        return http.is_repo_private(owner, repo)
    finally:
        if owned:
            http.close()


def fetch_skill_folder_hash(
    source: ParsedSource,
    skill_path: str | None = None,
    *,
    client: HostingClient | None = None,
) -> str | None:
    http, owned = _with_client(client)
    try:
        return http.fetch_skill_folder_hash(source, skill_path)
    finally:
        if owned:
            http.close()
