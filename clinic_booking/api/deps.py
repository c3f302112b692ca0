"""FastAPI dependency injection utilities."""

from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_booking.core.security import decode_access_token
from clinic_booking.db.session import get_db
from clinic_booking.services.directory import ProviderDirectory, SlotDerivedDirectory
from clinic_booking.services.notifications import LoggingNotificationSink, NotificationSink
from clinic_booking.services.rbac import Permission, Principal, RBACService, Role
from clinic_booking.services.telemedicine import PresenceRegistry, presence_registry

# Security scheme
security = HTTPBearer(auto_error=False)

_default_notifier = LoggingNotificationSink()


async def get_current_token(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> dict | None:
    """Extract and decode the current JWT token.

    Args:
        credentials: Bearer token credentials

    Returns:
        Decoded token payload or None
    """
    if not credentials:
        return None

    payload = decode_access_token(credentials.credentials)
    return payload


async def get_current_principal(
    token: Annotated[dict | None, Depends(get_current_token)],
) -> Principal:
    """Build the caller's principal from the identity token.

    The subject id and role are trusted verbatim.

    Raises:
        HTTPException: If the token is missing, invalid, or carries an unknown role
    """
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return Principal(id=int(token["sub"]), role=Role(token.get("role")))
    except (KeyError, TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token claims",
            headers={"WWW-Authenticate": "Bearer"},
        )


def require_permissions(*permissions: Permission):
    """Create a dependency that requires specific permissions.

    Usage:
        @router.get("/", dependencies=[Depends(require_permissions(Permission.SLOTS_READ))])

    Args:
        permissions: Required permissions (principal must have all)

    Returns:
        Dependency function
    """

    async def permission_checker(
        principal: Annotated[Principal, Depends(get_current_principal)],
    ) -> Principal:
        if not RBACService.has_all_permissions(principal.role, list(permissions)):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return principal

    return permission_checker


async def get_directory(
    session: Annotated[AsyncSession, Depends(get_db)],
) -> ProviderDirectory:
    """Directory collaborator; derived from published slots by default."""
    return SlotDerivedDirectory(session)


async def get_notifier() -> NotificationSink:
    """Notification collaborator; logs by default."""
    return _default_notifier


async def get_presence() -> PresenceRegistry:
    return presence_registry


# Type aliases for cleaner dependency injection
CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]
DbSession = Annotated[AsyncSession, Depends(get_db)]
Directory = Annotated[ProviderDirectory, Depends(get_directory)]
Notifier = Annotated[NotificationSink, Depends(get_notifier)]
Presence = Annotated[PresenceRegistry, Depends(get_presence)]
