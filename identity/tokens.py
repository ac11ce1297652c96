"""
identity/tokens.py -- Credential issuance: Session in, signed token out.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry the
       user id (sub), roles, issuer, issue time and expiry. The expiry is the
       Session's expiry, so token and session lapse together.

  Verification returns None on any failure (bad signature, expired, wrong
       issuer, missing claims) -- the HTTP layer treats that as "no session"
       and the use-case layer turns it into SessionMissingError.

  The use-case layer never sees this module. It only produces Sessions; the
       outer layer turns them into tokens.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from jose import JWTError, jwt

from core.config import get_settings
from identity.models import Session

_ALGORITHM = "HS256"


@dataclass(frozen=True)
class Claims:
    """Facts embedded in an issued token."""

    subject: str
    roles: tuple[str, ...]
    expires: datetime
    issued_at: datetime


class TokenIssuer:
    """Sign and verify access tokens.

    Usage:
        issuer = TokenIssuer(secret_key, "identity-service")
        token = issuer.issue(session, now)
        claims = issuer.verify(token)   # Claims or None
    """

    def __init__(self, secret_key: str, issuer: str, algorithm: str = _ALGORITHM) -> None:
        self._secret_key = secret_key
        self._issuer = issuer
        self._algorithm = algorithm

    def issue(self, session: Session, now: datetime | None = None) -> str:
        if session.expires is None:
            raise ValueError("cannot issue a token for a session without expiry")
        issued_at = now or datetime.now(timezone.utc)
        payload = {
            "sub": session.user.id,
            "roles": list(session.user.roles),
            "iss": self._issuer,
            "iat": int(issued_at.timestamp()),
            "exp": int(session.expires.timestamp()),
        }
        return jwt.encode(payload, self._secret_key, algorithm=self._algorithm)

    def verify(self, token: str) -> Claims | None:
        """Decode and verify a token. Returns Claims or None on any failure."""
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
                issuer=self._issuer,
            )
        except JWTError:
            return None
        subject = payload.get("sub")
        roles = payload.get("roles")
        exp = payload.get("exp")
        if not subject or not isinstance(roles, list) or exp is None:
            return None
        return Claims(
            subject=str(subject),
            roles=tuple(str(r) for r in roles),
            expires=datetime.fromtimestamp(int(exp), tz=timezone.utc),
            issued_at=datetime.fromtimestamp(int(payload.get("iat", exp)), tz=timezone.utc),
        )


def get_token_issuer() -> TokenIssuer:
    """Build a TokenIssuer from the Settings singleton."""
    settings = get_settings()
    return TokenIssuer(settings.secret_key, settings.token_issuer)
