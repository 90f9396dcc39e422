"""Mocked local token handling and the explicit actor passed to writers."""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Optional

from itsdangerous import BadData, URLSafeSerializer

from .config import Settings

VALID_ROLES = {"super_admin", "admin", "manager", "staff"}


@dataclass(frozen=True)
class Actor:
    """Who performs an operation. Roles are recorded, never enforced."""

    username: str
    role: str = "staff"


@dataclass(frozen=True)
class IssuedToken:
    token: str
    issued_at: int
    expires_at: int

    @property
    def expires_in(self) -> int:
        return self.expires_at - self.issued_at


class TokenAuthority:
    """Issues and verifies signed bearer tokens carrying an actor."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._serializer = URLSafeSerializer(settings.token_secret, salt=settings.token_salt)

    def _lifetime(self, requested: Optional[int]) -> int:
        if requested is None or requested <= 0:
            return self.settings.token_default_age
        return min(requested, self.settings.token_max_age)

    def issue(self, actor: Actor, expires_in: Optional[int] = None) -> IssuedToken:
        issued_at = int(time.time())
        expires_at = issued_at + self._lifetime(expires_in)
        payload = {"u": actor.username, "r": actor.role, "iat": issued_at, "exp": expires_at}
        return IssuedToken(
            token=self._serializer.dumps(payload),
            issued_at=issued_at,
            expires_at=expires_at,
        )

    def authenticate(self, token: str) -> Optional[Actor]:
        try:
            payload: Any = self._serializer.loads(token)
        except BadData:
            return None
        if not isinstance(payload, dict):
            return None
        username = payload.get("u")
        exp_value = payload.get("exp")
        if not username or exp_value is None:
            return None
        try:
            expires_at = int(exp_value)
        except (TypeError, ValueError):
            return None
        if time.time() > expires_at:
            return None
        role = payload.get("r")
        if role not in VALID_ROLES:
            role = "staff"
        return Actor(username=str(username), role=role)


def extract_bearer_token(header: Optional[str]) -> Optional[str]:
    if not isinstance(header, str):
        return None
    scheme, _, token_value = header.partition(" ")
    if scheme.lower() == "bearer" and token_value.strip():
        return token_value.strip()
    return None


__all__ = [
    "Actor",
    "IssuedToken",
    "TokenAuthority",
    "VALID_ROLES",
    "extract_bearer_token",
]
