# ============================================================================
# FILE: app/api/dependencies.py
# Authentication and service dependencies
# ============================================================================
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import Optional
from dataclasses import dataclass
from jose import JWTError, jwt

from app.config.database import get_db
from app.config.settings import Settings, get_settings
from app.services.calendar.calendar_connection_service import CalendarConnectionService

# ============================================================================
# Security Schemes
# ============================================================================

# JWT security for user authentication
jwt_security = HTTPBearer(
    scheme_name="JWT Bearer Token",
    description="Enter your JWT access token"
)


@dataclass
class CurrentUser:
    """Authenticated user of the notes application (owned by the auth service)."""
    id: str
    email: Optional[str] = None


# ============================================================================
# JWT Token Functions
# ============================================================================

def verify_access_token(token: str) -> dict:
    """
    Verify and decode a JWT access token.

    Raises:
        HTTPException: If token is invalid or expired
    """
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM]
        )
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Could not validate credentials: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # Verify token type
    if payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return payload


# ============================================================================
# Dependencies
# ============================================================================

async def get_current_user(
        credentials: HTTPAuthorizationCredentials = Depends(jwt_security)
) -> CurrentUser:
    """
    Dependency to get the current authenticated user from JWT access token.

    Raises:
        HTTPException 401: If token is invalid or carries no subject
    """
    payload = verify_access_token(credentials.credentials)

    user_id: Optional[str] = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return CurrentUser(id=str(user_id), email=payload.get("email"))


def get_calendar_service(
        db: Session = Depends(get_db),
        settings: Settings = Depends(get_settings)
) -> CalendarConnectionService:
    """Per-request calendar service; the mock/real adapter choice comes from settings."""
    return CalendarConnectionService(db, settings=settings)
