"""Pytest configuration and fixtures."""

import json
import sys
from pathlib import Path

import pytest

repo_root = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(repo_root))

from backend.app import prompts
from backend.app.config import Settings
from backend.app.orchestrator import ScanOrchestrator
from backend.app.store import MonitoredRepoStore, PreferencesStore, ScanStore
from backend.integrations.github import GitHubAPIError


def ok_text(text):
    return {"ok": True, "data": {"text": text}, "error": None, "status_code": None, "raw": {}}


def ok_json(data):
    return {"ok": True, "data": data, "error": None, "status_code": None, "raw": {}}


def failed(status_code=None, message="boom"):
    return {"ok": False, "data": {}, "error": message, "status_code": status_code, "raw": None}


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=None):
        self.status_code = status_code
        self._payload = payload
        self.text = text if text is not None else json.dumps(payload)

    def json(self):
        if self._payload is None:
            raise ValueError("no json body")
        return self._payload


class FakeGateway:
    """In-memory repository: `files` maps path -> content or an exception to raise."""

    def __init__(self, tree_paths=(), files=None):
        self.tree = [{"path": p, "type": "file"} for p in tree_paths]
        self.files = files or {}
        self.fetched = []
        self.hooks = []
        self.hook_error = None

    def list_tree(self, owner, repo, credential):
        return list(self.tree)

    def get_file_content(self, owner, repo, path, credential):
        self.fetched.append(path)
        value = self.files.get(path)
        if value is None:
            raise GitHubAPIError(404, "Not Found")
        if isinstance(value, Exception):
            raise value
        return value

    def create_push_webhook(self, owner, repo, credential, callback_url, secret):
        if self.hook_error is not None:
            raise self.hook_error
        self.hooks.append(
            {"owner": owner, "repo": repo, "credential": credential, "url": callback_url, "secret": secret}
        )
        return str(1000 + len(self.hooks))


class FakeCompletion:
    """
    Scripted completion service. Answers are routed by the system
    instruction of each call; every call is recorded in `calls`.
    """

    def __init__(self, classification="", detections=None, dependencies=None, explanations=None, patch=None):
        self.classification = classification
        self.detections = detections or {}
        self.dependencies = dependencies or {}
        self.explanations = list(explanations or [ok_json({"issues": []})])
        self.patch = patch
        self.calls = []

    def complete(self, model, system, user, json_mode=False, temperature=None):
        self.calls.append({"model": model, "system": system, "user": user, "json_mode": json_mode})
        if system.startswith(prompts.CLASSIFIER):
            if isinstance(self.classification, dict):
                return self.classification
            return ok_text(self.classification)
        if system == prompts.DETECTOR:
            return self._per_file(self.detections, user)
        if system == prompts.DEPENDENCY_ANALYZER:
            return self._per_file(self.dependencies, user)
        if system.startswith(prompts.EXPLAINER):
            return self.explanations.pop(0)
        if system == prompts.PATCH_GENERATOR:
            return self.patch
        raise AssertionError(f"unexpected instruction: {system[:40]}")

    def calls_for(self, instruction_prefix):
        return [c for c in self.calls if c["system"].startswith(instruction_prefix)]

    @staticmethod
    def _per_file(answers, user):
        file_path = user.split("\n", 1)[0].replace("File: ", "", 1)
        answer = answers.get(file_path, "")
        if isinstance(answer, dict):
            return answer
        return ok_text(answer)


class FailingScanStore(ScanStore):
    def save(self, owner_id, repo_full_name, results):
        raise ConnectionError("store unavailable")


@pytest.fixture
def settings():
    return Settings(
        llm_api_key="test-key",
        app_url="https://shipsafe.test",
        api_tokens="tok-alice=alice,tok-bob=bob",
    )


@pytest.fixture
def scan_store():
    return ScanStore()


@pytest.fixture
def monitored():
    return MonitoredRepoStore()


@pytest.fixture
def preferences():
    return PreferencesStore()


@pytest.fixture
def make_orchestrator(settings, scan_store):
    def _make(gateway, completion, store=None):
        return ScanOrchestrator(gateway, completion, store or scan_store, settings)

    return _make


@pytest.fixture
def hardcoded_secret_repo():
    """Two-file repository where only src/config.js is worth a look."""
    gateway = FakeGateway(
        tree_paths=["src/config.js", "README.md"],
        files={"src/config.js": 'const API_KEY = "sk_live_51234567890abcdef";\n'},
    )
    completion = FakeCompletion(
        classification="PROJECT_TYPE: Express\nRELEVANT_FILES: src/config.js",
        detections={"src/config.js": "- src/config.js: Hardcoded API key in API_KEY"},
        explanations=[
            ok_json(
                {
                    "issues": [
                        {
                            "title": "Hardcoded Secret",
                            "problem": "Anyone with repo access can read the live key.",
                            "fix": "Move the key into an environment variable.",
                            "file": "src/config.js",
                        }
                    ]
                }
            )
        ],
    )
    return gateway, completion
