"""Access token verification for the rewards API."""
from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from uuid import UUID

import jwt
from jwt import ExpiredSignatureError, InvalidTokenError

from rewards_backend.config import get_settings

logger = logging.getLogger(__name__)


class AuthError(RuntimeError):
    """Raised when authentication fails."""


class AuthService:
    """Issues and verifies HS-signed JWT access tokens.

    Login and refresh flows live in the account service; this API only needs
    to trust the ``sub`` claim of a valid token.
    """

    def __init__(self):
        self.settings = get_settings()

    def create_access_token(self, user_id: UUID, expires_minutes: int | None = None) -> tuple[str, int]:
        minutes = expires_minutes if expires_minutes is not None else self.settings.access_token_exp_minutes
        expire = datetime.now(UTC) + timedelta(minutes=minutes)
        payload = {
            "sub": str(user_id),
            "type": "access",
            "exp": int(expire.timestamp()),
        }
        token = jwt.encode(payload, self.settings.secret_key, algorithm=self.settings.jwt_algorithm)
        return token, minutes * 60

    def decode_access_token(self, token: str) -> dict[str, str]:
        try:
            return jwt.decode(
                token,
                self.settings.secret_key,
                algorithms=[self.settings.jwt_algorithm],
            )
        except ExpiredSignatureError as exc:
            raise AuthError("token_expired") from exc
        except InvalidTokenError as exc:
            raise AuthError("invalid_token") from exc
