from __future__ import annotations

import logging
import time
from typing import Optional, Protocol

from jose import JWTError, jwt


log = logging.getLogger(__name__)


class IdentityProvider(Protocol):
    def current_subject_key(self) -> Optional[str]:
        """Authenticated user id, or None for a guest."""

    def access_token(self) -> Optional[str]:
        """Bearer token for the progress service, or None for a guest."""


class TokenIdentity:
    """Identity backed by the service's JWT.

    The client can't check the signature (it doesn't hold the secret), so it
    only reads `sub` and `exp`. Once the token expires the viewer is a guest
    again until `set_token` is called with a fresh one.
    """

    def __init__(self, token: Optional[str] = None):
        self._token = token

    def set_token(self, token: Optional[str]) -> None:
        self._token = token

    def clear(self) -> None:
        self._token = None

    def _claims(self) -> Optional[dict]:
        if not self._token:
            return None
        try:
            claims = jwt.get_unverified_claims(self._token)
        except JWTError:
            log.warning("discarding unreadable access token")
            self._token = None
            return None

        try:
            exp = float(claims["exp"]) if claims.get("exp") is not None else None
        except (TypeError, ValueError):
            log.warning("discarding access token with a bad exp claim")
            self._token = None
            return None
        if exp is not None and exp <= time.time():
            log.info("access token expired; continuing as guest")
            return None
        return claims

    def current_subject_key(self) -> Optional[str]:
        claims = self._claims()
        if not claims or not claims.get("sub"):
            return None
        return str(claims["sub"])

    def access_token(self) -> Optional[str]:
        if self.current_subject_key() is None:
            return None
        return self._token
