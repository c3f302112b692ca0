"""Token utilities for the identity collaborator.

Principals are authenticated upstream; this service only verifies the
signed bearer token and reads the subject id and role from it.
"""

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from clinic_booking.core.config import settings


def create_access_token(
    subject: int | str,
    role: str,
    expires_delta: timedelta | None = None,
    additional_claims: dict | None = None,
) -> str:
    """Create a signed access token for a principal.

    Used by dev tooling and tests; production tokens are minted by the
    identity service with the same secret and claims.

    Args:
        subject: Principal id
        role: Principal role value
        expires_delta: Optional custom expiration time
        additional_claims: Optional additional claims to include

    Returns:
        Encoded JWT token string
    """
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.access_token_expire_minutes)

    now = datetime.now(timezone.utc)
    to_encode = {
        "sub": str(subject),
        "role": role,
        "type": "access",
        "exp": now + expires_delta,
        "iat": now,
    }

    if additional_claims:
        to_encode.update(additional_claims)

    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> dict | None:
    """Decode and validate a JWT access token.

    Args:
        token: The JWT token string

    Returns:
        Decoded token payload or None if invalid
    """
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
        return payload
    except JWTError:
        return None
