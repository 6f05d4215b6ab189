"""Bearer token handling.

Tokens are issued by the platform's auth service; this service only checks
them and resolves the student id from the ``sub`` claim.
"""

from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt

from exam_eval.core.config import settings
from exam_eval.core.exceptions import AuthenticationError

ACCESS_TOKEN_TYPE = "access"


def create_access_token(user_id: int, expires_delta: timedelta | None = None) -> str:
    """Issue an access token (used by tooling and tests)."""
    lifetime = expires_delta or timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
    claims = {
        "sub": str(user_id),
        "type": ACCESS_TOKEN_TYPE,
        "exp": datetime.now(timezone.utc) + lifetime,
    }
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def resolve_user_id(token: str) -> int:
    """
    Validate an access token and return the user id it was issued for.

    Raises:
        AuthenticationError: Expired, tampered, wrong type or missing subject
    """
    try:
        claims = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except ExpiredSignatureError:
        raise AuthenticationError("Token has expired")
    except JWTError:
        raise AuthenticationError("Invalid or expired token")

    if claims.get("type") != ACCESS_TOKEN_TYPE:
        raise AuthenticationError("Not an access token")

    try:
        return int(claims["sub"])
    except (KeyError, TypeError, ValueError):
        raise AuthenticationError("Invalid token payload")
