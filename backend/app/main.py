from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.responses import Response

from backend.integrations.completion import CompletionClient
from backend.integrations.github import GitHubAPIError, GitHubGateway
from backend.integrations.notifications import NotificationDispatcher

from .auth import TokenAuthenticator
from .badge import badge_for_repo
from .config import Settings, load_settings
from .models import MonitoredRepository, NotificationPreferences, ScanRecord, ScanRequest, isoformat
from .orchestrator import PipelineError, ScanOrchestrator
from .patcher import generate_patch
from .store import (
    MonitoredRepoStore,
    PreferencesStore,
    RecordNotFound,
    ScanStore,
    monitored_repos,
    normalize_results,
    preferences_store,
    scan_store,
)
from .webhooks import SIGNATURE_HEADER, evaluate_push_event, run_automated_scan


logger = logging.getLogger(__name__)


WEBHOOK_SECRET_BYTES = 20
WEBHOOK_PATH = "/api/webhooks/github"


class ApiError(Exception):
    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class ScanTriggerRequest(BaseModel):
    full_name: str
    github_token: Optional[str] = None
    language: str = "en"


class ShareRequest(BaseModel):
    isPublic: bool


class PatchRequest(BaseModel):
    code: str
    vulnerability: str


class EnrollRequest(BaseModel):
    repoFullName: str
    githubToken: str


class ActiveRequest(BaseModel):
    active: bool


class SettingsRequest(BaseModel):
    discordWebhook: Optional[str] = None
    slackWebhook: Optional[str] = None
    notificationsEnabled: bool = True


@dataclass
class Services:
    """Everything the HTTP layer talks to; tests swap in fakes."""

    settings: Settings
    gateway: GitHubGateway
    completion: CompletionClient
    orchestrator: ScanOrchestrator
    scans: ScanStore
    monitored: MonitoredRepoStore
    preferences: PreferencesStore
    dispatcher: NotificationDispatcher
    authenticator: TokenAuthenticator

    @classmethod
    def from_settings(cls, settings: Settings) -> "Services":
        gateway = GitHubGateway(api_url=settings.github_api_url, timeout_seconds=settings.http_timeout_seconds)
        completion = CompletionClient(
            api_key=settings.llm_api_key,
            base_url=settings.llm_base_url,
            timeout_seconds=settings.llm_timeout_seconds,
        )
        return cls(
            settings=settings,
            gateway=gateway,
            completion=completion,
            orchestrator=ScanOrchestrator(gateway, completion, scan_store, settings),
            scans=scan_store,
            monitored=monitored_repos,
            preferences=preferences_store,
            dispatcher=NotificationDispatcher(timeout_seconds=settings.http_timeout_seconds),
            authenticator=TokenAuthenticator.from_env_value(settings.api_tokens),
        )


def create_app(services: Optional[Services] = None) -> FastAPI:
    if services is None:
        services = Services.from_settings(load_settings())
    logging.basicConfig(level=services.settings.log_level)

    app = FastAPI(title="ShipSafe Cyber-Watch API")
    app.state.services = services

    @app.exception_handler(ApiError)
    async def api_error_handler(_: Request, exc: ApiError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": "Invalid request body"})

    def current_user(authorization: Optional[str] = Header(None)) -> str:
        user_id = services.authenticator.authenticate(authorization)
        if user_id is None:
            raise ApiError(401, "Unauthorized")
        return user_id

    def owned_record(scan_id: str, user_id: str) -> ScanRecord:
        record = services.scans.get(scan_id)
        if record is None or record.owner_id != user_id:
            raise ApiError(404, "Scan not found")
        return record

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    @app.post("/api/scan")
    def trigger_scan(req: ScanTriggerRequest, user_id: str = Depends(current_user)) -> dict:
        if not req.github_token:
            raise ApiError(400, "GitHub token is required")
        if "/" not in req.full_name.strip("/"):
            raise ApiError(400, "Repository must be given as owner/name")

        request = ScanRequest(
            repo_full_name=req.full_name.strip("/"),
            credential=req.github_token,
            requester_id=user_id,
            locale=req.language or "en",
        )
        try:
            result = services.orchestrator.run_scan(request)
        except Exception as exc:
            logger.exception("Manual scan error for %s", request.repo_full_name)
            raise ApiError(500, str(exc) or "Scan failed") from exc
        return result.to_dict()

    @app.get("/api/scans")
    def list_scans(user_id: str = Depends(current_user)) -> dict:
        return {"scans": [_record_summary(r) for r in services.scans.list_for_owner(user_id)]}

    @app.get("/api/scan/{scan_id}")
    def get_scan(scan_id: str, user_id: str = Depends(current_user)) -> dict:
        return _record_view(owned_record(scan_id, user_id))

    @app.post("/api/scan/{scan_id}/share")
    def share_scan(scan_id: str, req: ShareRequest, user_id: str = Depends(current_user)) -> dict:
        owned_record(scan_id, user_id)
        try:
            record = services.scans.set_visibility(scan_id, req.isPublic)
        except RecordNotFound:
            raise ApiError(404, "Scan not found")
        logger.info("Scan %s visibility set to public=%s", scan_id, record.is_public)
        return _record_view(record)

    @app.delete("/api/scan/{scan_id}")
    def delete_scan(scan_id: str, user_id: str = Depends(current_user)) -> dict:
        record = services.scans.get(scan_id)
        if record is not None and record.owner_id != user_id:
            raise ApiError(404, "Scan not found")
        return {"deleted": services.scans.delete(scan_id)}

    @app.get("/api/share/{slug}")
    def shared_scan(slug: str) -> dict:
        record = services.scans.find_by_share_token(slug)
        if record is None:
            raise ApiError(404, "Shared scan not found")
        return _record_view(record)

    @app.post("/api/patch")
    def patch_code(req: PatchRequest, user_id: str = Depends(current_user)) -> dict:
        try:
            result = generate_patch(
                services.completion, services.settings.fast_model, req.code, req.vulnerability
            )
        except PipelineError as exc:
            raise ApiError(500, str(exc)) from exc
        return {"fixed": result.fixed, "patch": result.code}

    @app.post("/api/cyberwatch/enroll")
    def enroll(req: EnrollRequest, user_id: str = Depends(current_user)) -> dict:
        app_url = services.settings.app_url
        if not app_url:
            raise ApiError(
                500,
                "Infrastructure Error: Public URL (SHIPSAFE_APP_URL) not configured. "
                "Webhooks cannot be established without a public endpoint.",
            )
        repo_full_name = req.repoFullName.strip("/")
        owner, _, repo = repo_full_name.partition("/")
        if not owner or not repo:
            raise ApiError(400, "Repository must be given as owner/name")

        webhook_secret = secrets.token_hex(WEBHOOK_SECRET_BYTES)
        try:
            webhook_id = services.gateway.create_push_webhook(
                owner, repo, req.githubToken, f"{app_url}{WEBHOOK_PATH}", webhook_secret
            )
        except GitHubAPIError as exc:
            raise ApiError(exc.status_code, f"GitHub Error: {exc.message}") from exc

        # The registry write is the durability point; a failure here leaves
        # the hook just created on GitHub orphaned.
        services.monitored.upsert(
            MonitoredRepository(
                repo_full_name=repo_full_name,
                owner_id=user_id,
                webhook_id=webhook_id,
                webhook_secret=webhook_secret,
                credential=req.githubToken,
            )
        )
        return {
            "success": True,
            "webhookId": webhook_id,
            "message": f"Uplink established. Cyber-Watch is now monitoring {repo_full_name}",
        }

    @app.get("/api/cyberwatch/repos")
    def list_monitored(user_id: str = Depends(current_user)) -> dict:
        return {"repos": [r.public_view() for r in services.monitored.list_for_owner(user_id)]}

    @app.post("/api/cyberwatch/repos/{owner}/{repo}/active")
    def toggle_monitored(owner: str, repo: str, req: ActiveRequest, user_id: str = Depends(current_user)) -> dict:
        try:
            record = services.monitored.set_active(user_id, f"{owner}/{repo}", req.active)
        except RecordNotFound:
            raise ApiError(404, "Repository not enrolled")
        return record.public_view()

    @app.post(WEBHOOK_PATH)
    async def github_webhook(request: Request, background_tasks: BackgroundTasks) -> JSONResponse:
        try:
            body = await request.body()
            decision = evaluate_push_event(body, request.headers.get(SIGNATURE_HEADER), services.monitored)
        except Exception as exc:
            logger.exception("Webhook error")
            return JSONResponse(status_code=500, content={"error": str(exc)})

        if not decision.accepted:
            return JSONResponse(status_code=decision.status_code, content={"error": decision.message})

        if decision.should_scan:
            background_tasks.add_task(
                run_automated_scan,
                decision.repository,
                services.orchestrator,
                services.preferences,
                services.dispatcher,
                services.settings.app_url,
            )
        return JSONResponse(status_code=200, content={"received": True})

    @app.get("/api/user/settings")
    def get_settings(user_id: str = Depends(current_user)) -> dict:
        prefs = services.preferences.get(user_id) or NotificationPreferences(owner_id=user_id)
        return prefs.to_dict()

    @app.post("/api/user/settings")
    def save_settings(req: SettingsRequest, user_id: str = Depends(current_user)) -> dict:
        services.preferences.upsert(
            NotificationPreferences(
                owner_id=user_id,
                discord_webhook=req.discordWebhook or None,
                slack_webhook=req.slackWebhook or None,
                notifications_enabled=req.notificationsEnabled,
            )
        )
        return {"success": True}

    @app.get("/api/badge/{owner}/{repo}")
    def badge(owner: str, repo: str) -> Response:
        svg = badge_for_repo(services.scans, f"{owner}/{repo}")
        return Response(
            content=svg,
            media_type="image/svg+xml",
            headers={"Cache-Control": "no-cache, no-store, must-revalidate"},
        )

    return app


def _record_summary(record: ScanRecord) -> Dict[str, Any]:
    return {
        "id": record.id,
        "repoName": record.repo_name,
        "repoFullName": record.repo_full_name,
        "status": record.status,
        "issueCount": len(normalize_results(record.results)["issues"]),
        "createdAt": isoformat(record.created_at),
        "isPublic": record.is_public,
    }


def _record_view(record: ScanRecord) -> Dict[str, Any]:
    return {
        "id": record.id,
        "repoName": record.repo_name,
        "repoFullName": record.repo_full_name,
        "repoUrl": record.repo_url,
        "status": record.status,
        "results": normalize_results(record.results),
        "createdAt": isoformat(record.created_at),
        "isPublic": record.is_public,
        "shareSlug": record.share_slug,
    }


def run(host: str = "0.0.0.0", port: int = 8000) -> None:
    import uvicorn

    uvicorn.run(app, host=host, port=port)


app = create_app()
