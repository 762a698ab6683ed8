"""
Clients for the external services a scan depends on: GitHub, the
completion service and outbound chat webhooks.
"""

from .completion import CompletionClient, is_fallback_eligible
from .github import GitHubAPIError, GitHubGateway
from .notifications import NotificationDispatcher, build_alert_message

__all__ = [
    "CompletionClient",
    "is_fallback_eligible",
    "GitHubAPIError",
    "GitHubGateway",
    "NotificationDispatcher",
    "build_alert_message",
]
