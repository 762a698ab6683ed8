from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Any, Dict, List
from urllib.parse import quote

import requests


logger = logging.getLogger(__name__)


DEFAULT_API_URL = "https://api.github.com"
DEFAULT_TIMEOUT_SECONDS = 20
BRANCH_CANDIDATES = ("main", "master")
_ENTRY_TYPES = {"blob": "file", "tree": "directory", "commit": "directory"}


class GitHubAPIError(RuntimeError):
    """Raised when GitHub answers with an error status."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


@dataclass(frozen=True)
class GitHubGateway:
    """Read-side access to repository content plus webhook registration."""

    api_url: str = DEFAULT_API_URL
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS

    def list_tree(self, owner: str, repo: str, credential: str) -> List[Dict[str, str]]:
        """
        Return the recursive file listing as [{"path", "type"}, ...].

        Tries `main` first and `master` second. When neither can be listed
        the repository is treated as empty instead of raising.
        """
        for branch in BRANCH_CANDIDATES:
            url = f"{self._repo_url(owner, repo)}/git/trees/{branch}"
            try:
                payload = self._get_json(url, credential, params={"recursive": "1"})
                return _normalize_tree(payload.get("tree") or [])
            except (GitHubAPIError, requests.RequestException, ValueError, AttributeError) as exc:
                logger.info("Tree listing for %s/%s@%s failed: %s", owner, repo, branch, exc)

        logger.warning("No tree available for %s/%s; treating as empty", owner, repo)
        return []

    def get_file_content(self, owner: str, repo: str, path: str, credential: str) -> str:
        """Fetch one file and return its decoded UTF-8 text. No retry."""
        url = f"{self._repo_url(owner, repo)}/contents/{quote(path)}"
        payload = self._get_json(url, credential)
        content = payload.get("content")
        if not isinstance(content, str):
            raise GitHubAPIError(422, f"No file content returned for {path}")
        if payload.get("encoding", "base64") != "base64":
            return content
        return base64.b64decode(content).decode("utf-8", errors="replace")

    def create_push_webhook(
        self,
        owner: str,
        repo: str,
        credential: str,
        callback_url: str,
        secret: str,
    ) -> str:
        """Register a push-event webhook and return its id."""
        url = f"{self._repo_url(owner, repo)}/hooks"
        payload = {
            "name": "web",
            "active": True,
            "events": ["push"],
            "config": {
                "url": callback_url,
                "content_type": "json",
                "secret": secret,
                "insecure_ssl": "0",
            },
        }
        resp = requests.post(
            url,
            headers=_headers(credential, scheme="Bearer"),
            json=payload,
            timeout=self.timeout_seconds,
        )
        if resp.status_code >= 400:
            message = _error_message(resp) or "Could not create webhook. Check repository permissions."
            logger.warning("Webhook creation for %s/%s failed (%s): %s", owner, repo, resp.status_code, message)
            raise GitHubAPIError(resp.status_code, message)
        return str(resp.json()["id"])

    def _repo_url(self, owner: str, repo: str) -> str:
        return f"{self.api_url.rstrip('/')}/repos/{owner}/{repo}"

    def _get_json(self, url: str, credential: str, params: Dict[str, str] | None = None) -> Dict[str, Any]:
        resp = requests.get(
            url,
            headers=_headers(credential),
            params=params,
            timeout=self.timeout_seconds,
        )
        if resp.status_code >= 400:
            raise GitHubAPIError(resp.status_code, _error_message(resp) or f"HTTP {resp.status_code}")
        return resp.json()


def _headers(credential: str, scheme: str = "token") -> Dict[str, str]:
    return {
        "Authorization": f"{scheme} {credential}",
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": "2022-11-28",
    }


def _error_message(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text.strip()
    if isinstance(body, dict):
        return str(body.get("message") or "")
    return ""


def _normalize_tree(entries: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    tree: List[Dict[str, str]] = []
    for entry in entries:
        path = entry.get("path")
        entry_type = _ENTRY_TYPES.get(entry.get("type", ""))
        if not path or entry_type is None:
            continue
        tree.append({"path": path, "type": entry_type})
    return tree
