from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests


logger = logging.getLogger(__name__)


DEFAULT_TIMEOUT_SECONDS = 10
BOT_USERNAME = "ShipSafe Cyber-Watch"
BOT_AVATAR_URL = "https://shipface.vercel.app/logo.png"
SUPPORTED_PLATFORMS = ("discord", "slack")


@dataclass(frozen=True)
class NotificationDispatcher:
    """Best-effort, at-most-once delivery of alerts to chat webhooks."""

    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS

    def notify(self, preferences: Any, message: str) -> Dict[str, bool]:
        """
        Deliver `message` to every endpoint configured in `preferences`.

        One endpoint failing never suppresses delivery to the others. The
        returned mapping records which platforms accepted the message.
        """
        if preferences is None or not preferences.notifications_enabled:
            return {}

        outcome: Dict[str, bool] = {}
        for platform, url in preferences.endpoints():
            outcome[platform] = self.send(platform, url, message)
        return outcome

    def send(self, platform: str, url: str, message: str) -> bool:
        payload = build_payload(platform, message)
        if payload is None:
            logger.warning("Unsupported notification platform: %s", platform)
            return False
        try:
            resp = requests.post(url, json=payload, timeout=self.timeout_seconds)
        except requests.RequestException as exc:
            logger.warning("Failed to send %s notification: %s", platform, exc)
            return False
        if resp.status_code >= 400:
            logger.warning("Failed to send %s notification: HTTP %s", platform, resp.status_code)
            return False
        return True


def build_payload(platform: str, message: str) -> Optional[Dict[str, str]]:
    if platform == "discord":
        return {"content": message, "username": BOT_USERNAME, "avatar_url": BOT_AVATAR_URL}
    if platform == "slack":
        return {"text": message}
    return None


def build_alert_message(repo_full_name: str, issue_count: int, app_url: Optional[str]) -> str:
    lines = [
        "🚨 **Cyber-Watch Alert** 🚨",
        "",
        f"Security breach detected in **{repo_full_name}**.",
        f"**{issue_count}** new vulnerabilities found.",
    ]
    if app_url:
        lines.extend(["", f"View full report: {app_url.rstrip('/')}/history"])
    return "\n".join(lines)

