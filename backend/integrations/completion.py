import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests


logger = logging.getLogger(__name__)


DEFAULT_TIMEOUT_SECONDS = 60
DEFAULT_RETRIES = 0
DEFAULT_BASE_URL = "https://api.groq.com/openai/v1"
FALLBACK_STATUS_CODES = frozenset({400, 429})


@dataclass(frozen=True)
class CompletionClient:
    """
    Process-wide handle on an OpenAI-compatible chat completion service.

    Holds nothing but its credential and transport settings, so a single
    instance is shared by every scan.
    """

    api_key: str
    base_url: str = DEFAULT_BASE_URL
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    retries: int = DEFAULT_RETRIES

    def complete(
        self,
        model: str,
        system: str,
        user: str,
        json_mode: bool = False,
        temperature: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Send one system instruction plus user content and return an envelope:

          {
            "ok": bool,
            "data": dict,          # {"text": ...} or the parsed JSON object
            "error": str | None,
            "status_code": int | None,
            "raw": dict | None,
          }

        Only transport errors and 5xx responses are retried; a 4xx is
        reported immediately so callers can apply their own fallback.
        """
        if not self.api_key:
            return _safe_error("completion API key not set")

        url = f"{self.base_url.rstrip('/')}/chat/completions"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload: Dict[str, Any] = {
            "model": model,
            "messages": _build_messages(system, user),
        }
        if temperature is not None:
            payload["temperature"] = temperature
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        logger.debug("Completion request model=%s json_mode=%s", model, json_mode)

        last_error: Optional[str] = None
        last_status: Optional[int] = None
        for attempt in range(self.retries + 1):
            try:
                response = requests.post(
                    url, headers=headers, json=payload, timeout=self.timeout_seconds
                )
            except requests.RequestException as exc:
                last_error = str(exc)
                last_status = None
                logger.warning("Completion request failed: %s", last_error)
            else:
                if response.status_code >= 400:
                    last_error = f"HTTP {response.status_code}: {response.text}"
                    last_status = response.status_code
                    logger.warning("Completion error model=%s: %s", model, last_error)
                    if response.status_code < 500:
                        break
                else:
                    return _build_success(response, json_mode)

            if attempt < self.retries:
                time.sleep(0.5 * (attempt + 1))

        return _safe_error(last_error or "Unknown error", status_code=last_status)


def is_fallback_eligible(envelope: Dict[str, Any]) -> bool:
    """Rate limits and rejected requests may be retried on a cheaper tier."""
    return envelope.get("status_code") in FALLBACK_STATUS_CODES


def _build_success(response: requests.Response, json_mode: bool) -> Dict[str, Any]:
    try:
        raw = response.json()
    except ValueError:
        return _safe_error("Completion response is not valid JSON")

    content = _extract_content(raw)
    if not json_mode:
        return {"ok": True, "data": {"text": content}, "error": None, "status_code": None, "raw": raw}

    parsed = _parse_json(content)
    if parsed is None:
        return _safe_error("Model response is not valid JSON", raw=raw)
    return {"ok": True, "data": parsed, "error": None, "status_code": None, "raw": raw}


def _build_messages(system: str, user: str) -> List[Dict[str, str]]:
    messages: List[Dict[str, str]] = []
    if system:
        messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": user})
    return messages


def _extract_content(raw: Dict[str, Any]) -> str:
    try:
        return raw["choices"][0]["message"]["content"] or ""
    except (KeyError, IndexError, TypeError):
        return ""


def _parse_json(content: str) -> Optional[Dict[str, Any]]:
    if not content:
        return None
    try:
        parsed = json.loads(content)
    except ValueError:
        return None
    if not isinstance(parsed, dict):
        return None
    return parsed


def _safe_error(
    message: str,
    raw: Optional[Dict[str, Any]] = None,
    status_code: Optional[int] = None,
) -> Dict[str, Any]:
    return {
        "ok": False,
        "data": {},
        "error": message,
        "status_code": status_code,
        "raw": raw,
    }
