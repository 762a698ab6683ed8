"""
HTTP-level tests for the FastAPI application.
"""

import sys
from pathlib import Path

import pytest

repo_root = Path(__file__).resolve().parents[3]
sys.path.insert(0, str(repo_root))

from fastapi.testclient import TestClient

from backend.app.auth import TokenAuthenticator
from backend.app.main import Services, create_app
from backend.app.models import MonitoredRepository
from backend.app.orchestrator import ScanOrchestrator
from backend.app.webhooks import compute_signature
from backend.integrations.github import GitHubAPIError
from conftest import FakeCompletion, FakeGateway, failed, ok_json, ok_text


ALICE = {"Authorization": "Bearer tok-alice"}
BOB = {"Authorization": "Bearer tok-bob"}
SECRET = "0123456789abcdef"


class _RecordingDispatcher:
    def __init__(self):
        self.sent = []

    def notify(self, preferences, message):
        self.sent.append((preferences.owner_id, message))
        return {"slack": True}


@pytest.fixture
def services(settings, scan_store, monitored, preferences, hardcoded_secret_repo):
    gateway, completion = hardcoded_secret_repo
    return Services(
        settings=settings,
        gateway=gateway,
        completion=completion,
        orchestrator=ScanOrchestrator(gateway, completion, scan_store, settings),
        scans=scan_store,
        monitored=monitored,
        preferences=preferences,
        dispatcher=_RecordingDispatcher(),
        authenticator=TokenAuthenticator.from_env_value(settings.api_tokens),
    )


@pytest.fixture
def client(services):
    return TestClient(create_app(services))


def _scan(client, headers=ALICE, **overrides):
    body = {"full_name": "acme/webapp", "github_token": "ghp_test", "language": "en"}
    body.update(overrides)
    return client.post("/api/scan", json=body, headers=headers)


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


class TestManualScan:
    def test_requires_requester_credential(self, client):
        assert _scan(client, headers={}).status_code == 401
        response = _scan(client, headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

    def test_requires_access_credential(self, client):
        response = _scan(client, github_token="")
        assert response.status_code == 400
        assert response.json() == {"error": "GitHub token is required"}

    def test_malformed_body_is_bad_request(self, client):
        response = client.post("/api/scan", json={"github_token": "x"}, headers=ALICE)
        assert response.status_code == 400
        assert "error" in response.json()

    def test_returns_scan_result(self, client, scan_store):
        response = _scan(client)

        assert response.status_code == 200
        data = response.json()
        assert [issue["file"] for issue in data["issues"]] == ["src/config.js"]
        assert {entry["path"] for entry in data["tree"]} == {"src/config.js", "README.md"}
        assert scan_store.get(data["scanId"]).owner_id == "alice"

    def test_pipeline_failure_is_500_with_message(self, client, services):
        services.completion.explanations = [failed(500, "upstream exploded")]

        response = _scan(client)

        assert response.status_code == 500
        assert "upstream exploded" in response.json()["error"]

    def test_classifier_outage_is_500_and_not_recorded(self, client, services, scan_store):
        services.completion.classification = failed(503, "upstream down")

        response = _scan(client)

        assert response.status_code == 500
        assert "upstream down" in response.json()["error"]
        assert scan_store.list_for_owner("alice") == []
        assert "SECURE" not in client.get("/api/badge/acme/webapp").text


class TestScanRecords:
    def test_history_and_detail_are_owner_scoped(self, client):
        scan_id = _scan(client).json()["scanId"]

        history = client.get("/api/scans", headers=ALICE).json()["scans"]
        assert [s["id"] for s in history] == [scan_id]
        assert history[0]["issueCount"] == 1

        assert client.get(f"/api/scan/{scan_id}", headers=ALICE).status_code == 200
        assert client.get(f"/api/scan/{scan_id}", headers=BOB).status_code == 404
        assert client.get("/api/scans", headers=BOB).json() == {"scans": []}

    def test_share_toggle_and_public_lookup(self, client):
        scan_id = _scan(client).json()["scanId"]

        shared = client.post(f"/api/scan/{scan_id}/share", json={"isPublic": True}, headers=ALICE).json()
        slug = shared["shareSlug"]
        assert shared["isPublic"] is True
        assert client.get(f"/api/share/{slug}").json()["results"]["issues"][0]["title"] == "Hardcoded Secret"

        hidden = client.post(f"/api/scan/{scan_id}/share", json={"isPublic": False}, headers=ALICE).json()
        assert hidden["shareSlug"] is None
        assert client.get(f"/api/share/{slug}").status_code == 404

        reshared = client.post(f"/api/scan/{scan_id}/share", json={"isPublic": True}, headers=ALICE).json()
        assert reshared["shareSlug"] != slug

    def test_only_owner_can_share(self, client):
        scan_id = _scan(client).json()["scanId"]
        response = client.post(f"/api/scan/{scan_id}/share", json={"isPublic": True}, headers=BOB)
        assert response.status_code == 404

    def test_delete_is_idempotent(self, client):
        scan_id = _scan(client).json()["scanId"]

        assert client.delete(f"/api/scan/{scan_id}", headers=ALICE).json() == {"deleted": True}
        assert client.delete(f"/api/scan/{scan_id}", headers=ALICE).json() == {"deleted": False}


class TestBadge:
    def _label(self, response):
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("image/svg+xml")
        assert response.headers["cache-control"] == "no-cache, no-store, must-revalidate"
        return response.text

    def test_no_data(self, client):
        assert "NO DATA" in self._label(client.get("/api/badge/acme/never-scanned"))

    def test_threat_count_from_latest_scan(self, client):
        _scan(client)
        assert "1 THREATS" in self._label(client.get("/api/badge/acme/webapp"))

    def test_secure_and_malformed(self, client, scan_store):
        scan_store.save("alice", "acme/clean", {"issues": []})
        scan_store.save("alice", "acme/broken", "garbage")

        assert "SECURE" in self._label(client.get("/api/badge/acme/clean"))
        assert "SECURE" in self._label(client.get("/api/badge/acme/broken"))

    def test_store_failure_falls_back_to_no_data(self, client, scan_store, monkeypatch):
        def explode(repo_full_name):
            raise ConnectionError("store down")

        monkeypatch.setattr(scan_store, "latest_for_repo", explode)
        assert "NO DATA" in self._label(client.get("/api/badge/acme/webapp"))


class TestEnrollment:
    def test_enroll_registers_hook_and_repository(self, client, services, monitored):
        response = client.post(
            "/api/cyberwatch/enroll",
            json={"repoFullName": "acme/webapp", "githubToken": "ghp_enroll"},
            headers=ALICE,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        hook = services.gateway.hooks[0]
        assert data["webhookId"] == "1001"
        assert hook["url"] == "https://shipsafe.test/api/webhooks/github"
        assert len(hook["secret"]) == 40

        record = monitored.find_active("acme/webapp")
        assert record.owner_id == "alice"
        assert record.webhook_secret == hook["secret"]
        assert record.credential == "ghp_enroll"

        listed = client.get("/api/cyberwatch/repos", headers=ALICE).json()["repos"]
        assert listed[0]["repoFullName"] == "acme/webapp"
        assert "webhookSecret" not in listed[0]

    def test_provider_error_is_propagated(self, client, services, monitored):
        services.gateway.hook_error = GitHubAPIError(404, "Not Found")

        response = client.post(
            "/api/cyberwatch/enroll",
            json={"repoFullName": "acme/webapp", "githubToken": "ghp_enroll"},
            headers=ALICE,
        )

        assert response.status_code == 404
        assert response.json() == {"error": "GitHub Error: Not Found"}
        assert monitored.find_active("acme/webapp") is None

    def test_public_url_is_required(self, services):
        services.settings = services.settings.__class__(api_tokens=services.settings.api_tokens)
        client = TestClient(create_app(services))

        response = client.post(
            "/api/cyberwatch/enroll",
            json={"repoFullName": "acme/webapp", "githubToken": "ghp_enroll"},
            headers=ALICE,
        )

        assert response.status_code == 500
        assert "SHIPSAFE_APP_URL" in response.json()["error"]

    def test_toggle_active(self, client, monitored):
        client.post(
            "/api/cyberwatch/enroll",
            json={"repoFullName": "acme/webapp", "githubToken": "ghp_enroll"},
            headers=ALICE,
        )

        response = client.post("/api/cyberwatch/repos/acme/webapp/active", json={"active": False}, headers=ALICE)

        assert response.json()["active"] is False
        assert monitored.find_active("acme/webapp") is None
        missing = client.post("/api/cyberwatch/repos/acme/other/active", json={"active": True}, headers=ALICE)
        assert missing.status_code == 404


class TestGitHubWebhook:
    @pytest.fixture(autouse=True)
    def enrolled(self, monitored, preferences, client):
        monitored.upsert(
            MonitoredRepository(
                repo_full_name="acme/webapp",
                owner_id="alice",
                webhook_id="77",
                webhook_secret=SECRET,
                credential="ghp_stored",
            )
        )
        client.post("/api/user/settings", json={"slackWebhook": "https://slack.test/hook"}, headers=ALICE)

    def _deliver(self, client, ref="refs/heads/main", secret=SECRET, signed=True):
        body = (
            '{"ref": "%s", "repository": {"full_name": "acme/webapp", "default_branch": "main"}}' % ref
        ).encode("utf-8")
        headers = {"Content-Type": "application/json"}
        if signed:
            headers["X-Hub-Signature-256"] = compute_signature(secret, body)
        return client.post("/api/webhooks/github", content=body, headers=headers)

    def test_default_branch_push_scans_and_alerts(self, client, services, scan_store):
        response = self._deliver(client)

        assert response.status_code == 200
        assert response.json() == {"received": True}
        assert services.gateway.fetched == ["src/config.js"]
        assert [r.owner_id for r in scan_store.list_for_owner("alice")] == ["alice"]
        owner, message = services.dispatcher.sent[0]
        assert owner == "alice"
        assert "**1** new vulnerabilities" in message

    def test_other_branch_is_acknowledged_only(self, client, services):
        response = self._deliver(client, ref="refs/heads/feature")

        assert response.status_code == 200
        assert services.completion.calls == []
        assert services.dispatcher.sent == []

    def test_signature_failures(self, client, services):
        assert self._deliver(client, signed=False).status_code == 401
        response = self._deliver(client, secret="wrong")
        assert response.status_code == 401
        assert response.json() == {"error": "Invalid signature"}
        assert services.completion.calls == []

    def test_failed_background_scan_still_acknowledged(self, client, services):
        services.completion.explanations = [failed(500, "explainer down")]

        response = self._deliver(client)

        assert response.status_code == 200
        assert services.dispatcher.sent == []


def test_settings_round_trip(client):
    assert client.get("/api/user/settings", headers=ALICE).json()["notificationsEnabled"] is True

    client.post(
        "/api/user/settings",
        json={"discordWebhook": "https://discord.test/hook", "notificationsEnabled": False},
        headers=ALICE,
    )
    stored = client.get("/api/user/settings", headers=ALICE).json()

    assert stored["discordWebhook"] == "https://discord.test/hook"
    assert stored["slackWebhook"] is None
    assert stored["notificationsEnabled"] is False
    assert client.post("/api/user/settings", json={}).status_code == 401


def test_patch_endpoint(client, services):
    services.completion.patch = ok_text("```js\nconst API_KEY = process.env.API_KEY;\n```")

    response = client.post(
        "/api/patch",
        json={"code": 'const API_KEY = "sk_live";', "vulnerability": "Hardcoded secret"},
        headers=ALICE,
    )

    assert response.json() == {"fixed": True, "patch": "const API_KEY = process.env.API_KEY;"}


def test_patch_endpoint_reports_upstream_failure(client, services):
    services.completion.patch = failed(503, "unavailable")

    response = client.post("/api/patch", json={"code": "x", "vulnerability": "y"}, headers=ALICE)

    assert response.status_code == 500
    assert "unavailable" in response.json()["error"]


def test_scan_result_contract_is_json_serializable(client, services):
    services.completion.explanations = [ok_json({"issues": []})]
    data = _scan(client).json()
    assert data["issues"] == []
