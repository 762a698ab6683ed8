from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from backend.integrations.completion import CompletionClient, is_fallback_eligible
from backend.integrations.github import GitHubGateway

from . import prompts
from .config import Settings
from .models import Issue, ScanRequest, ScanResult, StageArtifact, TreeEntry
from .store import ScanStore


logger = logging.getLogger(__name__)


MAX_DETECTION_FILES = 3
MIN_DEPENDENCY_ANALYSIS_CHARS = 10


class PipelineError(RuntimeError):
    """A stage failed in a way the scan cannot recover from."""


class ScanOrchestrator:
    """
    Runs the five scan stages against one repository:

      1. classify     - pick relevant files from the path listing
      2. detect       - per-file risk notes for the first few relevant files
      3. dependencies - per-manifest SCA notes for every relevant manifest
      4. explain      - validate the notes into structured issues
      5. persist      - store the result for the requester

    Stages run strictly in order. Nothing is shared between scans except
    the injected clients, which hold no per-scan state.
    """

    def __init__(
        self,
        gateway: GitHubGateway,
        completion: CompletionClient,
        scan_store: ScanStore,
        settings: Settings,
    ) -> None:
        self.gateway = gateway
        self.completion = completion
        self.scan_store = scan_store
        self.settings = settings

    def run_scan(self, request: ScanRequest) -> ScanResult:
        tree = [
            TreeEntry(path=entry["path"], type=entry["type"])
            for entry in self.gateway.list_tree(request.owner, request.repo, request.credential)
        ]
        logger.info("Scan %s: %d tree entries", request.repo_full_name, len(tree))

        relevant_files = self._classify(request, tree)
        artifacts = self._detect(request, relevant_files)
        artifacts.extend(self._analyze_dependencies(request, relevant_files))

        raw_risks = "\n".join(artifact.render() for artifact in artifacts)
        issues = self._explain(request, raw_risks, {entry.path for entry in tree})
        logger.info("Scan %s: %d issues after validation", request.repo_full_name, len(issues))

        result = ScanResult(issues=issues, tree=tree)
        result.scan_id = self._persist(request, result)
        return result

    def _classify(self, request: ScanRequest, tree: List[TreeEntry]) -> List[str]:
        file_list = "\n".join(entry.path for entry in tree)
        envelope = self.completion.complete(
            model=self.settings.fast_model,
            system=prompts.classifier_instruction(),
            user=f"File list:\n{file_list}",
        )
        if not envelope.get("ok"):
            raise PipelineError(f"Classification stage failed: {envelope.get('error')}")

        text = envelope["data"].get("text", "")
        relevant = prompts.parse_relevant_files(text)
        logger.info(
            "Scan %s: project type %s, %d relevant files",
            request.repo_full_name,
            prompts.parse_project_type(text) or "unknown",
            len(relevant),
        )
        return relevant

    def _detect(self, request: ScanRequest, relevant_files: List[str]) -> List[StageArtifact]:
        artifacts: List[StageArtifact] = []
        for file_path in relevant_files[:MAX_DETECTION_FILES]:
            analysis = self._analyze_file(request, file_path, prompts.DETECTOR)
            if analysis is not None:
                artifacts.append(StageArtifact(file_path=file_path, analysis=analysis))
        return artifacts

    def _analyze_dependencies(self, request: ScanRequest, relevant_files: List[str]) -> List[StageArtifact]:
        artifacts: List[StageArtifact] = []
        for file_path in relevant_files:
            if not prompts.is_dependency_manifest(file_path):
                continue
            analysis = self._analyze_file(request, file_path, prompts.DEPENDENCY_ANALYZER)
            if analysis is not None and len(analysis) > MIN_DEPENDENCY_ANALYSIS_CHARS:
                artifacts.append(StageArtifact(file_path=file_path, analysis=analysis))
        return artifacts

    def _analyze_file(self, request: ScanRequest, file_path: str, instruction: str) -> Optional[str]:
        """Fetch and analyze one file; a failure only drops this file."""
        try:
            content = self.gateway.get_file_content(request.owner, request.repo, file_path, request.credential)
        except Exception as exc:
            logger.warning("Scan %s: failed to fetch %s: %s", request.repo_full_name, file_path, exc)
            return None

        envelope = self.completion.complete(
            model=self.settings.fast_model,
            system=instruction,
            user=f"File: {file_path}\n\nContent:\n{content}",
        )
        if not envelope.get("ok"):
            logger.warning("Scan %s: failed to analyze %s: %s", request.repo_full_name, file_path, envelope.get("error"))
            return None
        return envelope["data"].get("text") or ""

    def _explain(self, request: ScanRequest, raw_risks: str, known_paths: set) -> List[Issue]:
        system = prompts.explainer_instruction(request.locale)
        user = f"Risks found:\n{raw_risks}"

        envelope = self.completion.complete(
            model=self.settings.primary_model, system=system, user=user, json_mode=True
        )
        if not envelope.get("ok") and is_fallback_eligible(envelope):
            logger.warning(
                "Scan %s: explainer on %s failed (%s), retrying on %s",
                request.repo_full_name,
                self.settings.primary_model,
                envelope.get("status_code"),
                self.settings.fast_model,
            )
            envelope = self.completion.complete(
                model=self.settings.fast_model, system=system, user=user, json_mode=True
            )
        if not envelope.get("ok"):
            raise PipelineError(f"Explanation stage failed: {envelope.get('error')}")

        return _issues_from_payload(envelope["data"], known_paths)

    def _persist(self, request: ScanRequest, result: ScanResult) -> Optional[str]:
        results = {"issues": [issue.to_dict() for issue in result.issues]}
        try:
            return self.scan_store.save(request.requester_id, request.repo_full_name, results)
        except Exception:
            logger.exception("Scan %s: failed to store scan result", request.repo_full_name)
            return None


def _issues_from_payload(payload: Dict[str, Any], known_paths: set) -> List[Issue]:
    raw_issues = payload.get("issues") or []
    if not isinstance(raw_issues, list):
        raise PipelineError("Explanation stage returned a non-list 'issues' field")

    issues: List[Issue] = []
    for item in raw_issues:
        if not isinstance(item, dict):
            continue
        issue = Issue.from_dict(item)
        if issue.file and issue.file not in known_paths:
            # Not localizable against this scan's tree.
            issue.file = None
        issues.append(issue)
    return issues
