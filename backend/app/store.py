from __future__ import annotations

import logging
import secrets
import threading
from dataclasses import replace
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from .models import MonitoredRepository, NotificationPreferences, ScanRecord, utc_now


logger = logging.getLogger(__name__)


SHARE_TOKEN_BYTES = 20


class RecordNotFound(KeyError):
    """Raised when an operation targets a scan record that does not exist."""


def normalize_results(results: Any) -> Dict[str, List[Dict[str, Any]]]:
    """
    Map any historical shape of stored scan results onto {"issues": [...]}.

    Older records kept the list under "results", some kept a bare list,
    and anything unreadable is treated as having no issues.
    """
    if isinstance(results, list):
        issues = results
    elif isinstance(results, dict):
        issues = results.get("issues")
        if issues is None:
            issues = results.get("results")
    else:
        issues = None

    if not isinstance(issues, list):
        return {"issues": []}
    return {"issues": [issue for issue in issues if isinstance(issue, dict)]}


class ScanStore:
    """Append-only scan records with share-link visibility."""

    def __init__(self) -> None:
        self._records: Dict[str, ScanRecord] = {}
        self._lock = threading.Lock()

    def save(self, owner_id: str, repo_full_name: str, results: Dict[str, Any]) -> str:
        repo_name = repo_full_name.split("/", 1)[-1]
        record = ScanRecord(
            id=uuid4().hex,
            owner_id=owner_id,
            repo_name=repo_name,
            repo_full_name=repo_full_name,
            repo_url=f"https://github.com/{repo_full_name}",
            status="completed",
            results=results,
        )
        with self._lock:
            self._records[record.id] = record
        return record.id

    def get(self, record_id: str) -> Optional[ScanRecord]:
        with self._lock:
            record = self._records.get(record_id)
            return replace(record) if record is not None else None

    def list_for_owner(self, owner_id: str) -> List[ScanRecord]:
        """Newest first. Insertion order is creation order."""
        with self._lock:
            records = [replace(r) for r in self._records.values() if r.owner_id == owner_id]
        return records[::-1]

    def latest_for_repo(self, repo_full_name: str) -> Optional[ScanRecord]:
        with self._lock:
            records = [r for r in self._records.values() if r.repo_full_name == repo_full_name]
        return replace(records[-1]) if records else None

    def set_visibility(self, record_id: str, is_public: bool) -> ScanRecord:
        """
        Flip public sharing. Every transition to public mints a fresh slug,
        so links handed out before sharing was turned off stay dead.
        """
        with self._lock:
            record = self._records.get(record_id)
            if record is None:
                raise RecordNotFound(record_id)
            record.is_public = bool(is_public)
            record.share_slug = secrets.token_hex(SHARE_TOKEN_BYTES) if record.is_public else None
            return replace(record)

    def delete(self, record_id: str) -> bool:
        with self._lock:
            return self._records.pop(record_id, None) is not None

    def find_by_share_token(self, token: str) -> Optional[ScanRecord]:
        if not token:
            return None
        with self._lock:
            for record in self._records.values():
                if record.is_public and record.share_slug == token:
                    return replace(record)
        return None


class MonitoredRepoStore:
    """Enrolled repositories, one row per (owner, repository)."""

    def __init__(self) -> None:
        self._repos: Dict[Tuple[str, str], MonitoredRepository] = {}
        self._lock = threading.Lock()

    def upsert(self, record: MonitoredRepository) -> MonitoredRepository:
        key = (record.owner_id, record.repo_full_name)
        with self._lock:
            self._repos[key] = replace(record)
        logger.info("Monitoring %s for owner %s (webhook %s)", record.repo_full_name, record.owner_id, record.webhook_id)
        return record

    def find_active(self, repo_full_name: str) -> Optional[MonitoredRepository]:
        with self._lock:
            candidates = [
                r for r in self._repos.values() if r.repo_full_name == repo_full_name and r.active
            ]
        if not candidates:
            return None
        return replace(max(candidates, key=lambda r: r.created_at))

    def set_active(self, owner_id: str, repo_full_name: str, active: bool) -> MonitoredRepository:
        with self._lock:
            record = self._repos.get((owner_id, repo_full_name))
            if record is None:
                raise RecordNotFound(repo_full_name)
            record.active = bool(active)
            return replace(record)

    def list_for_owner(self, owner_id: str) -> List[MonitoredRepository]:
        with self._lock:
            records = [replace(r) for r in self._repos.values() if r.owner_id == owner_id]
        return sorted(records, key=lambda r: r.created_at, reverse=True)


class PreferencesStore:
    """Notification settings; every save replaces the owner's whole row."""

    def __init__(self) -> None:
        self._prefs: Dict[str, NotificationPreferences] = {}
        self._lock = threading.Lock()

    def upsert(self, prefs: NotificationPreferences) -> NotificationPreferences:
        stored = replace(prefs, updated_at=utc_now())
        with self._lock:
            self._prefs[prefs.owner_id] = stored
        return stored

    def get(self, owner_id: str) -> Optional[NotificationPreferences]:
        with self._lock:
            prefs = self._prefs.get(owner_id)
            return replace(prefs) if prefs is not None else None


scan_store = ScanStore()
monitored_repos = MonitoredRepoStore()
preferences_store = PreferencesStore()
