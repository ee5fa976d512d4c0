"""FastAPI dependencies for authentication.

Provides dependency injection for:
- Current caller extraction from the identity provider JWT
- Admin-only access
- API key check for the jobs endpoint
"""

import secrets
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from jose import JWTError

from watchtrack.config import Settings, get_settings
from watchtrack.core.context import set_principal
from watchtrack.core.logging import get_logger

from .schemas import Principal
from .security import decode_identity_token, principal_from_claims


logger = get_logger(__name__)


def get_token_from_header(request: Request) -> str | None:
    """Extract Bearer token from Authorization header."""
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        return None

    expected_parts = 2
    parts = auth_header.split()
    if len(parts) != expected_parts or parts[0].lower() != "bearer":
        return None

    return parts[1]


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "unauthorized", "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_principal(
    token: Annotated[str | None, Depends(get_token_from_header)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> Principal:
    """Get the authenticated caller from the bearer token.

    Raises:
        HTTPException(401): If the token is missing, invalid or expired
    """
    if not token:
        raise _unauthorized("Missing bearer token")

    try:
        payload = decode_identity_token(token, settings)
    except JWTError as e:
        logger.info("identity_token_rejected", reason=str(e))
        raise _unauthorized("Invalid or expired token") from e

    principal = principal_from_claims(payload, settings)

    # Bind caller to the logging context
    set_principal(principal.user_id, principal.org_id)
    return principal


async def require_admin(
    principal: Annotated[Principal, Depends(get_current_principal)],
) -> Principal:
    """Require an organization admin."""
    if not principal.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "forbidden", "message": "Admin role required"},
        )
    return principal


async def verify_jobs_api_key(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
) -> None:
    """Check X-API-Key against ``jobs_api_key`` when one is configured.

    Without a configured key the jobs endpoint is open, which is how it is
    run behind a private scheduler network.

    Raises:
        HTTPException(401): If the key is missing
        HTTPException(403): If the key is wrong
    """
    if not settings.jobs_api_key:
        return

    api_key = request.headers.get("X-API-Key")
    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "unauthorized", "message": "API key required"},
        )

    if not secrets.compare_digest(api_key, settings.jobs_api_key):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "forbidden", "message": "Invalid API key"},
        )


# ==============================================================================
# Type Aliases for Cleaner Code
# ==============================================================================

CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]
AdminPrincipal = Annotated[Principal, Depends(require_admin)]
JobsApiKey = Depends(verify_jobs_api_key)
