from __future__ import annotations

import re
from dataclasses import dataclass

from backend.integrations.completion import CompletionClient

from . import prompts
from .orchestrator import PipelineError


_FENCE_RE = re.compile(r"^```[\w+-]*\s*\n(.*?)\n?```\s*$", re.DOTALL)


@dataclass
class PatchResult:
    fixed: bool
    code: str


def generate_patch(
    completion: CompletionClient,
    model: str,
    code: str,
    vulnerability: str,
) -> PatchResult:
    """
    Ask the completion service for a drop-in replacement of `code` that
    removes `vulnerability`.
    """
    envelope = completion.complete(
        model=model,
        system=prompts.PATCH_GENERATOR,
        user=f"Vulnerability: {vulnerability}\n\nCode Snippet:\n{code}",
    )
    if not envelope.get("ok"):
        raise PipelineError(f"Patch generation failed: {envelope.get('error')}")

    patched = _strip_fences(envelope["data"].get("text") or "")
    if not patched or patched.strip() == prompts.UNABLE_TO_FIX:
        return PatchResult(fixed=False, code=code)
    return PatchResult(fixed=True, code=patched)


def _strip_fences(text: str) -> str:
    stripped = text.strip()
    match = _FENCE_RE.match(stripped)
    if match:
        return match.group(1)
    return stripped
