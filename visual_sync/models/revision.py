"""Local state records: the checked-out revision, the selected build, status entries."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Literal, Mapping, Optional

_SLUG_RE = re.compile(r"([^/:]+/[^/]+?)(\.git)?$")

StatusValue = Literal["error", "warn", "none"]


def parse_slug(remote_url: str | None) -> str | None:
    """Turn a git remote URL into a lowercased ``owner/repo`` slug."""

    if not remote_url:
        return None
    match = _SLUG_RE.search(remote_url.strip().lower())
    return match.group(1) if match else None


@dataclass(frozen=True, slots=True)
class RevisionContext:
    branch: str
    commit: str
    slug: str | None = None
    committed_at: int = 0
    uncommitted_hash: str | None = None
    user_email_hash: str | None = None

    @property
    def staleness_key(self) -> tuple[str, str | None, int]:
        return (self.branch, self.uncommitted_hash, self.committed_at)

    def is_stale_against(self, other: "RevisionContext") -> bool:
        return self.staleness_key != other.staleness_key

    @classmethod
    def from_env(cls, env: Mapping[str, str]) -> "RevisionContext":
        """Build a context from the GIT_* variables the host injects."""

        committed_at_raw = env.get("GIT_COMMITTED_AT") or "0"
        try:
            committed_at = int(committed_at_raw)
        except ValueError as exc:
            raise ValueError(f"GIT_COMMITTED_AT must be epoch milliseconds, got {committed_at_raw!r}") from exc
        return cls(
            branch=env.get("GIT_BRANCH", ""),
            commit=env.get("GIT_COMMIT", ""),
            slug=env.get("GIT_SLUG") or parse_slug(env.get("GIT_REMOTE_URL")),
            committed_at=committed_at,
            uncommitted_hash=env.get("GIT_UNCOMMITTED_HASH") or None,
            user_email_hash=env.get("GIT_USER_EMAIL_HASH") or None,
        )


@dataclass(frozen=True, slots=True)
class SelectedBuildInfo:
    story_id: str
    build_id: str | None = None


@dataclass(frozen=True, slots=True)
class StatusEntry:
    status: StatusValue
    description: str
    url: str | None = None
    title: str = "Visual Tests"

    def as_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "title": self.title,
            "description": self.description,
            "url": self.url,
        }


StatusUpdate = Dict[str, Optional[StatusEntry]]
