"""
API Dependencies Module

FastAPI dependency functions for authentication and the services endpoints
need. Authentication accepts a bearer token (API clients) or the HTTP-only
access_token cookie (browser clients).
"""
from typing import Generator, Optional
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import jwt, JWTError
from pydantic import ValidationError
from sqlmodel import Session, select

from app.core.config import settings
from app.db.session import get_db
from app.models.user import User
from app.schemas.auth import TokenData
from app.services.google_calendar import CalendarService, GoogleCalendarService
from app.services.notifications import NotificationBus, get_notification_bus

# auto_error=False lets us fall back to the cookie
reusable_oauth2 = OAuth2PasswordBearer(
    tokenUrl=f"{settings.API_V1_STR}/auth/login",
    auto_error=False,
)


def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
    token: Optional[str] = Depends(reusable_oauth2)
) -> User:
    """
    Dependency that retrieves and validates the current authenticated user.

    The Authorization header wins; otherwise the access_token cookie
    (stored as "Bearer <token>") is used.

    Raises:
        HTTPException 401: If no token is provided
        HTTPException 403: If the token is invalid or expired
        HTTPException 404: If the user referenced in the token doesn't exist
    """
    if not token:
        token = request.cookies.get("access_token")
        if token and token.startswith("Bearer "):
            token = token.replace("Bearer ", "")

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        payload = jwt.decode(
            token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM]
        )
        token_data = TokenData(email=payload.get("sub"))
    except (JWTError, ValidationError):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Could not validate credentials",
        )

    user = db.exec(select(User).where(User.email == token_data.email)).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def get_current_active_user(
    current_user: User = Depends(get_current_user),
) -> User:
    """Any authenticated user; the hook for future account-status checks."""
    return current_user


def get_calendar_service(db: Session = Depends(get_db)) -> Generator[CalendarService, None, None]:
    """Google Calendar client bound to the request's session."""
    service = GoogleCalendarService(db)
    try:
        yield service
    finally:
        service.close()


def get_bus() -> NotificationBus:
    return get_notification_bus()
