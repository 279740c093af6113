from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt

from subgate.core.config import Settings
from subgate.core.errors import ConfigurationError, InvalidToken


ALGORITHM = "HS256"


class TokenService:
    """Sign and verify session tokens that carry only an identity reference.

    Role and subscription state are deliberately absent from the claims; every
    request re-derives them from storage, so tokens never hold stale privileges.
    """

    def __init__(self, secret: str | None, *, ttl: timedelta) -> None:
        if not secret or not secret.strip():
            raise ConfigurationError("SESSION_SECRET must be configured")
        self._secret = secret
        self.ttl = ttl

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenService":
        return cls(settings.session_secret, ttl=timedelta(hours=settings.session_ttl_hours))

    def issue(self, identity_id: str, *, now: datetime | None = None) -> str:
        issued_at = now or datetime.now(timezone.utc)
        payload = {
            "sub": identity_id,
            "iat": issued_at,
            "exp": issued_at + self.ttl,
        }
        return jwt.encode(payload, self._secret, algorithm=ALGORITHM)

    def verify(self, token: str | None) -> str:
        if not token:
            raise InvalidToken("Missing token")
        try:
            # Pin the algorithm list so unsigned or asymmetric tokens are rejected.
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                options={"require": ["sub", "exp"]},
            )
        except jwt.ExpiredSignatureError as exc:
            raise InvalidToken("Token expired") from exc
        except jwt.PyJWTError as exc:
            raise InvalidToken("Invalid token") from exc
        identity_id = claims.get("sub")
        if not isinstance(identity_id, str) or not identity_id:
            raise InvalidToken("Invalid token subject")
        return identity_id
