from __future__ import annotations

from dataclasses import dataclass


class SkillsError(RuntimeError):
    pass


class InvalidSourceError(SkillsError):
    pass


class UnsupportedOperationError(SkillsError):
    pass


class UnknownAgentError(SkillsError):
    pass


class NetworkError(SkillsError):
    pass


@dataclass(frozen=True)
class HostingHTTPError(SkillsError):
    status_code: int
    body: str

    def __str__(self) -> str:  # pragma: no cover
        return f"HTTP {self.status_code}: {self.body}"


class GitCloneError(SkillsError):
    def __init__(
        self,
        message: str,
        *,
        url: str,
        cause: BaseException | None = None,
        is_timeout: bool = False,
        is_auth_error: bool = False,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.cause = cause
        self.is_timeout = is_timeout
        self.is_auth_error = is_auth_error


class SkillParseError(SkillsError):
    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path

    def __str__(self) -> str:
        msg = super().__str__()
        return f"{self.path}: {msg}" if self.path else msg


class FilesystemError(SkillsError):
    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path
