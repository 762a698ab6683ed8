from __future__ import annotations

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Optional

from backend.integrations.notifications import NotificationDispatcher, build_alert_message

from .models import MonitoredRepository, ScanRequest
from .orchestrator import ScanOrchestrator
from .store import MonitoredRepoStore, PreferencesStore


logger = logging.getLogger(__name__)


SIGNATURE_HEADER = "X-Hub-Signature-256"
SIGNATURE_PREFIX = "sha256="


@dataclass
class WebhookDecision:
    status_code: int
    message: str
    should_scan: bool = False
    repository: Optional[MonitoredRepository] = None

    @property
    def accepted(self) -> bool:
        return self.status_code == 200


def compute_signature(secret: str, body: bytes) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(secret: str, body: bytes, signature: Optional[str]) -> bool:
    if not signature or not secret:
        return False
    expected = compute_signature(secret, body).encode("utf-8")
    return hmac.compare_digest(expected, signature.strip().encode("utf-8"))


def evaluate_push_event(
    body: bytes,
    signature: Optional[str],
    registry: MonitoredRepoStore,
) -> WebhookDecision:
    """
    Decide what to do with one inbound push delivery.

    Rejections carry the status code to answer with. An accepted event on
    the default branch sets `should_scan`; pushes to other branches are
    acknowledged and ignored.
    """
    if not signature:
        return WebhookDecision(401, "No signature")

    try:
        payload = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return WebhookDecision(400, "Invalid payload")
    repository = payload.get("repository") if isinstance(payload, dict) else None
    repo_full_name = repository.get("full_name") if isinstance(repository, dict) else None
    if not repo_full_name:
        return WebhookDecision(400, "Invalid payload")

    record = registry.find_active(repo_full_name)
    if record is None:
        return WebhookDecision(404, "Repository not enrolled or inactive")

    if not verify_signature(record.webhook_secret, body, signature):
        return WebhookDecision(401, "Invalid signature")

    default_branch = repository.get("default_branch")
    if not default_branch or payload.get("ref") != f"refs/heads/{default_branch}":
        logger.info("Ignoring push to %s on %s", repo_full_name, payload.get("ref"))
        return WebhookDecision(200, "Ignored non-default branch", repository=record)

    return WebhookDecision(200, "Scan scheduled", should_scan=True, repository=record)


def run_automated_scan(
    record: MonitoredRepository,
    orchestrator: ScanOrchestrator,
    preferences: PreferencesStore,
    dispatcher: NotificationDispatcher,
    app_url: Optional[str] = None,
) -> None:
    """
    Detached scan triggered by a push. Nobody is waiting on the result, so
    every failure ends here in the log.
    """
    logger.info("[Cyber-Watch] Triggering automated scan for %s", record.repo_full_name)
    try:
        result = orchestrator.run_scan(
            ScanRequest(
                repo_full_name=record.repo_full_name,
                credential=record.credential,
                requester_id=record.owner_id,
            )
        )
    except Exception:
        logger.exception("[Cyber-Watch] Automated scan failed for %s", record.repo_full_name)
        return

    issue_count = len(result.issues)
    logger.info("[Cyber-Watch] Automated scan complete for %s (%d issues)", record.repo_full_name, issue_count)
    if issue_count == 0:
        return

    try:
        owner_prefs = preferences.get(record.owner_id)
        if owner_prefs is None:
            return
        message = build_alert_message(record.repo_full_name, issue_count, app_url)
        dispatcher.notify(owner_prefs, message)
    except Exception:
        logger.exception("[Cyber-Watch] Notification fan-out failed for %s", record.repo_full_name)
