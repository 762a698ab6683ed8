from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Tuple


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(value: datetime) -> str:
    return value.isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class ScanRequest:
    repo_full_name: str
    credential: str
    requester_id: str
    locale: str = "en"

    @property
    def owner(self) -> str:
        return self.repo_full_name.split("/", 1)[0]

    @property
    def repo(self) -> str:
        parts = self.repo_full_name.split("/", 1)
        return parts[1] if len(parts) > 1 else ""


@dataclass(frozen=True)
class TreeEntry:
    path: str
    type: str

    def to_dict(self) -> Dict[str, str]:
        return {"path": self.path, "type": self.type}


@dataclass(frozen=True)
class StageArtifact:
    """Free-text analysis of one file produced by detection or SCA."""

    file_path: str
    analysis: str

    def render(self) -> str:
        return f"File: {self.file_path}\nAnalysis:\n{self.analysis}"


@dataclass
class Issue:
    title: str
    problem: str
    fix: str
    file: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Issue":
        file_path = data.get("file")
        return cls(
            title=str(data.get("title") or "Security issue"),
            problem=str(data.get("problem") or ""),
            fix=str(data.get("fix") or ""),
            file=str(file_path).strip() if file_path else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"title": self.title, "problem": self.problem, "fix": self.fix, "file": self.file}


@dataclass
class ScanResult:
    issues: List[Issue] = field(default_factory=list)
    tree: List[TreeEntry] = field(default_factory=list)
    scan_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "issues": [issue.to_dict() for issue in self.issues],
            "tree": [entry.to_dict() for entry in self.tree],
            "scanId": self.scan_id,
        }


@dataclass
class ScanRecord:
    id: str
    owner_id: str
    repo_name: str
    repo_full_name: str
    repo_url: str
    status: str
    results: Any
    created_at: datetime = field(default_factory=utc_now)
    is_public: bool = False
    share_slug: Optional[str] = None


@dataclass
class MonitoredRepository:
    repo_full_name: str
    owner_id: str
    webhook_id: str
    webhook_secret: str
    credential: str
    active: bool = True
    created_at: datetime = field(default_factory=utc_now)

    def public_view(self) -> Dict[str, Any]:
        """Listing shape; the secret and credential stay server-side."""
        return {
            "repoFullName": self.repo_full_name,
            "webhookId": self.webhook_id,
            "active": self.active,
            "createdAt": isoformat(self.created_at),
        }


@dataclass
class NotificationPreferences:
    owner_id: str
    discord_webhook: Optional[str] = None
    slack_webhook: Optional[str] = None
    notifications_enabled: bool = True
    updated_at: datetime = field(default_factory=utc_now)

    def endpoints(self) -> Iterator[Tuple[str, str]]:
        if self.discord_webhook:
            yield "discord", self.discord_webhook
        if self.slack_webhook:
            yield "slack", self.slack_webhook

    def to_dict(self) -> Dict[str, Any]:
        return {
            "discordWebhook": self.discord_webhook,
            "slackWebhook": self.slack_webhook,
            "notificationsEnabled": self.notifications_enabled,
            "updatedAt": isoformat(self.updated_at),
        }
