"""
Data model for search results and published index entries.

Field names of the to_dict() forms match the published oxide_plugins.json
format consumed by the frontend.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from .hasher import identity_key, location_key


@dataclass(frozen=True)
class SearchVariant:
    """One named query configuration in the crawl sequence."""
    name: str
    query: str


@dataclass
class CodeSearchItem:
    """A single hit from the code-search API."""
    name: str
    path: str
    html_url: str
    sha: str
    size: int
    repository_full_name: str

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> "CodeSearchItem":
        repo = payload.get("repository") or {}
        return cls(
            name=payload.get("name", ""),
            path=payload["path"],
            html_url=payload.get("html_url", ""),
            sha=payload["sha"],
            size=int(payload.get("size") or 0),
            repository_full_name=repo["full_name"],
        )

    @property
    def key(self) -> str:
        return identity_key(self.repository_full_name, self.path, self.sha)


@dataclass
class SearchPage:
    """One page of code-search results."""
    total_count: int
    incomplete_results: bool
    items: list[CodeSearchItem] = field(default_factory=list)
    raw_count: Optional[int] = None  # hits returned, including ones that failed to parse

    @property
    def returned(self) -> int:
        return self.raw_count if self.raw_count is not None else len(self.items)


@dataclass
class FileContent:
    """Decoded file returned by the contents API."""
    path: str
    sha: str
    size: int
    content: bytes


@dataclass
class FileDescriptor:
    path: str
    html_url: str
    raw_url: str
    sha: str
    size: int


@dataclass
class RepositoryDescriptor:
    """Repository metadata carried by every index entry."""
    full_name: str
    name: str
    html_url: str
    description: Optional[str]
    owner_login: str
    owner_url: str
    default_branch: str
    stargazers_count: int = 0
    forks_count: int = 0
    open_issues_count: int = 0
    created_at: Optional[str] = None

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> "RepositoryDescriptor":
        """Build from a GitHub /repos/{owner}/{repo} response."""
        owner = payload.get("owner") or {}
        return cls(
            full_name=payload["full_name"],
            name=payload.get("name") or payload["full_name"].split("/", 1)[-1],
            html_url=payload.get("html_url") or f"https://github.com/{payload['full_name']}",
            description=payload.get("description"),
            owner_login=owner.get("login", ""),
            owner_url=owner.get("html_url", ""),
            default_branch=payload.get("default_branch") or "main",
            stargazers_count=int(payload.get("stargazers_count") or 0),
            forks_count=int(payload.get("forks_count") or 0),
            open_issues_count=int(payload.get("open_issues_count") or 0),
            created_at=payload.get("created_at"),
        )

    @classmethod
    def placeholder(cls, full_name: str) -> "RepositoryDescriptor":
        """Best-effort metadata for a repository we know only by name."""
        owner, _, name = full_name.partition("/")
        return cls(
            full_name=full_name,
            name=name,
            html_url=f"https://github.com/{full_name}",
            description=None,
            owner_login=owner,
            owner_url=f"https://github.com/{owner}",
            default_branch="main",
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "full_name": self.full_name,
            "name": self.name,
            "html_url": self.html_url,
            "description": self.description,
            "owner_login": self.owner_login,
            "owner_url": self.owner_url,
            "default_branch": self.default_branch,
            "stargazers_count": self.stargazers_count,
            "forks_count": self.forks_count,
            "open_issues_count": self.open_issues_count,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RepositoryDescriptor":
        return cls(
            full_name=data["full_name"],
            name=data.get("name") or data["full_name"].split("/", 1)[-1],
            html_url=data.get("html_url", ""),
            description=data.get("description"),
            owner_login=data.get("owner_login", ""),
            owner_url=data.get("owner_url", ""),
            default_branch=data.get("default_branch") or "main",
            stargazers_count=int(data.get("stargazers_count") or 0),
            forks_count=int(data.get("forks_count") or 0),
            open_issues_count=int(data.get("open_issues_count") or 0),
            created_at=data.get("created_at"),
        )


@dataclass
class IndexedPlugin:
    """One published index entry."""
    plugin_name: str
    plugin_author: str
    language: str
    file: FileDescriptor
    repository: RepositoryDescriptor
    indexed_at: str
    plugin_version: Optional[str] = None
    plugin_description: Optional[str] = None
    plugin_resource_id: Optional[str] = None

    @property
    def identity_key(self) -> str:
        return identity_key(self.repository.full_name, self.file.path, self.file.sha)

    @property
    def location_key(self) -> str:
        return location_key(self.repository.full_name, self.file.path)

    def to_dict(self) -> dict[str, Any]:
        return {
            "plugin_name": self.plugin_name,
            "plugin_author": self.plugin_author,
            "plugin_version": self.plugin_version,
            "plugin_description": self.plugin_description,
            "plugin_resource_id": self.plugin_resource_id,
            "language": self.language,
            "file": {
                "path": self.file.path,
                "html_url": self.file.html_url,
                "raw_url": self.file.raw_url,
                "sha": self.file.sha,
                "size": self.file.size,
            },
            "repository": self.repository.to_dict(),
            "indexed_at": self.indexed_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IndexedPlugin":
        file_data = data["file"]
        return cls(
            plugin_name=data["plugin_name"],
            plugin_author=data.get("plugin_author", ""),
            language=data.get("language", "C#"),
            file=FileDescriptor(
                path=file_data["path"],
                html_url=file_data.get("html_url", ""),
                raw_url=file_data.get("raw_url", ""),
                sha=file_data.get("sha", ""),
                size=int(file_data.get("size") or 0),
            ),
            repository=RepositoryDescriptor.from_dict(data["repository"]),
            indexed_at=data.get("indexed_at", ""),
            plugin_version=data.get("plugin_version"),
            plugin_description=data.get("plugin_description"),
            plugin_resource_id=data.get("plugin_resource_id"),
        )
