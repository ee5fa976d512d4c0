"""Identity provider token verification and caller dependencies."""

from .dependencies import AdminPrincipal, CurrentPrincipal, JobsApiKey
from .permissions import OrgRole
from .schemas import Principal
from .security import create_identity_token, decode_identity_token


__all__ = [
    "AdminPrincipal",
    "CurrentPrincipal",
    "JobsApiKey",
    "OrgRole",
    "Principal",
    "create_identity_token",
    "decode_identity_token",
]
