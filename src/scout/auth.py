"""Bearer-token identity provider."""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass

from fastapi import Request

from .config import AuthConfig


@dataclass(frozen=True)
class User:
    id: str
    display_name: str = ""


class TokenIdentityProvider:
    """Resolve ``Authorization: Bearer <token>`` against configured SHA-256 token hashes."""

    def __init__(self, config: AuthConfig) -> None:
        self._users = [(u.token_sha256, User(id=u.id, display_name=u.display_name)) for u in config.users]

    def authenticate(self, request: Request) -> User | None:
        auth = request.headers.get("authorization", "")
        if not auth.startswith("Bearer "):
            return None
        provided = hashlib.sha256(auth[7:].encode()).hexdigest()
        match: User | None = None
        # Compare against every entry so timing does not reveal which one matched
        for token_hash, user in self._users:
            if hmac.compare_digest(provided, token_hash):
                match = user
        return match
