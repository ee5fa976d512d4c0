"""Identity provider token verification.

Sessions and sign-in live in the external identity provider. This service
only verifies the bearer JWTs it issues and reads the caller's subject,
organization and role from them.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt

from watchtrack.config import Settings, get_settings

from .schemas import Principal


def decode_identity_token(token: str, settings: Settings | None = None) -> dict[str, Any]:
    """Decode and validate an identity provider token.

    Validates:
    - JWT signature and expiration
    - Issuer and audience, when configured
    - Presence of the subject and organization claims

    Raises:
        JWTError: If the token is invalid, expired or missing claims
    """
    settings = settings or get_settings()

    payload = jwt.decode(
        token,
        settings.auth_secret_key,
        algorithms=[settings.auth_algorithm],
        audience=settings.auth_audience,
        issuer=settings.auth_issuer,
        options={"verify_aud": settings.auth_audience is not None},
    )

    if not payload.get("sub"):
        msg = "Token missing sub claim"
        raise JWTError(msg)

    if not payload.get(settings.auth_org_claim):
        msg = f"Token missing {settings.auth_org_claim} claim"
        raise JWTError(msg)

    return payload


def principal_from_claims(
    payload: dict[str, Any], settings: Settings | None = None
) -> Principal:
    """Build the caller from decoded claims."""
    settings = settings or get_settings()
    return Principal(
        user_id=str(payload["sub"]),
        org_id=str(payload[settings.auth_org_claim]),
        role=str(payload.get("role") or "learner"),
        email=payload.get("email"),
    )


def create_identity_token(
    user_id: str,
    org_id: str,
    role: str = "learner",
    expires_delta: timedelta = timedelta(hours=1),
    settings: Settings | None = None,
) -> str:
    """Mint a token shaped like the identity provider's.

    Only meant for local development and tests; production tokens always
    come from the identity provider.
    """
    settings = settings or get_settings()
    now = datetime.now(UTC)

    claims: dict[str, Any] = {
        "sub": user_id,
        settings.auth_org_claim: org_id,
        "role": role,
        "iat": now,
        "exp": now + expires_delta,
    }
    if settings.auth_issuer:
        claims["iss"] = settings.auth_issuer
    if settings.auth_audience:
        claims["aud"] = settings.auth_audience

    return jwt.encode(claims, settings.auth_secret_key, algorithm=settings.auth_algorithm)
