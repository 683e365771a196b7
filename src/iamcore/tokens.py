"""Access token primitives.

Bearer tokens are JWTs (PyJWT). A token identifies the principal (``sub``)
and may carry tenant claims (``company``, ``business_unit``, ``outlet``) that
the gate reconciles with request hints. Permissions are never read from the
token: they are resolved server-side from the catalog on every request.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import jwt

from .config import AuthConfig
from .exceptions import ConfigurationError, Unauthenticated

TENANT_CLAIMS = ("company", "business_unit", "outlet")


@dataclass(frozen=True)
class AccessClaims:
    """Verified contents of a bearer token.

    Attributes:
        user_id: ``sub`` claim.
        issued_at: ``iat`` claim; compared with the user's password change.
        expires_at: ``exp`` claim.
        token_id: ``jti`` claim for audit trails.
        company, business_unit, outlet: optional tenant claims.
    """

    user_id: str
    issued_at: datetime
    expires_at: datetime
    token_id: Optional[str] = None
    company: Optional[str] = None
    business_unit: Optional[str] = None
    outlet: Optional[str] = None

    def tenant_claims(self) -> dict[str, str]:
        return {k: getattr(self, k) for k in TENANT_CLAIMS if getattr(self, k)}

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "AccessClaims":
        return cls(
            user_id=str(payload["sub"]),
            issued_at=datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc),
            expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc),
            token_id=payload.get("jti"),
            company=payload.get("company") or None,
            business_unit=payload.get("business_unit") or None,
            outlet=payload.get("outlet") or None,
        )


class TokenIssuer:
    """Mint and verify access tokens with the configured key and algorithm.

    Example::

        issuer = TokenIssuer(AuthConfig(jwt_secret="s3cret"))
        token = issuer.mint("u1", company="acme", business_unit="BU-1")
        claims = issuer.verify(token)
    """

    def __init__(self, config: AuthConfig) -> None:
        self.config = config

    def _key(self) -> str:
        if not self.config.jwt_secret:
            raise ConfigurationError("JWT secret is not configured")
        return self.config.jwt_secret

    def mint(
        self,
        user_id: str,
        *,
        company: Optional[str] = None,
        business_unit: Optional[str] = None,
        outlet: Optional[str] = None,
        ttl_s: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> str:
        issued = now or datetime.now(timezone.utc)
        ttl = self.config.token_ttl_seconds if ttl_s is None else ttl_s
        payload: dict[str, Any] = {
            "sub": str(user_id),
            "iat": issued,
            "exp": issued + timedelta(seconds=ttl),
            "jti": secrets.token_urlsafe(16),
        }
        for claim, value in (("company", company), ("business_unit", business_unit), ("outlet", outlet)):
            if value:
                payload[claim] = value
        if self.config.issuer:
            payload["iss"] = self.config.issuer
        if self.config.audience:
            payload["aud"] = self.config.audience
        return jwt.encode(payload, self._key(), algorithm=self.config.jwt_algorithm)

    def verify(self, token: str) -> AccessClaims:
        """Decode and validate ``token``.

        Raises:
            Unauthenticated: malformed, badly signed, expired, or wrong iss/aud.
        """
        if not token:
            raise Unauthenticated("Missing bearer token")
        try:
            payload = jwt.decode(
                token,
                self._key(),
                algorithms=[self.config.jwt_algorithm],
                audience=self.config.audience,
                issuer=self.config.issuer,
                leeway=self.config.leeway_seconds,
                options={"require": ["exp", "iat", "sub"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise Unauthenticated("Token expired") from e
        except jwt.InvalidTokenError as e:
            raise Unauthenticated("Invalid token") from e
        return AccessClaims.from_payload(payload)


__all__ = ["AccessClaims", "TokenIssuer", "TENANT_CLAIMS"]
