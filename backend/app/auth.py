from __future__ import annotations

import hmac
from typing import Dict, Optional


class TokenAuthenticator:
    """
    Maps bearer tokens issued by the session provider to user ids.

    Sessions are issued elsewhere; this only answers "who holds this token".
    """

    def __init__(self, tokens: Optional[Dict[str, str]] = None) -> None:
        self._tokens = dict(tokens or {})

    @classmethod
    def from_env_value(cls, raw: str) -> "TokenAuthenticator":
        """Parse `token=user_id` pairs separated by commas."""
        tokens: Dict[str, str] = {}
        for pair in (raw or "").split(","):
            token, sep, user_id = pair.strip().partition("=")
            if sep and token.strip() and user_id.strip():
                tokens[token.strip()] = user_id.strip()
        return cls(tokens)

    def authenticate(self, authorization: Optional[str]) -> Optional[str]:
        token = _bearer_token(authorization)
        if not token:
            return None
        for known, user_id in self._tokens.items():
            if hmac.compare_digest(known.encode("utf-8"), token.encode("utf-8")):
                return user_id
        return None


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None
