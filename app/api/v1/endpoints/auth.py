"""
Authentication Endpoints Module

Login and logout. Tokens are returned in the body for API clients and set as
an HTTP-only cookie for browser clients.
"""
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlmodel import Session, select

from app.core.config import settings
from app.core.logging import get_logger
from app.core.security import create_access_token, verify_password
from app.db.session import get_db
from app.models.user import User
from app.schemas.auth import Token

router = APIRouter()
logger = get_logger(__name__)


@router.post("/login", response_model=Token)
def login(response: Response, db: Session = Depends(get_db), form_data: OAuth2PasswordRequestForm = Depends()):
    """
    Authenticate a user and issue an access token.

    OAuth2PasswordRequestForm calls the field 'username'; it holds the email.

    Raises:
        HTTPException 401: If credentials are invalid
    """
    user = db.exec(select(User).where(User.email == form_data.username)).first()

    if not user or not verify_password(form_data.password, user.password):
        logger.info("auth.login.rejected", extra={"email": form_data.username})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    access_token_expires = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    access_token = create_access_token(subject=user.email, expires_delta=access_token_expires)

    # httponly keeps the token away from page scripts
    response.set_cookie(
        key="access_token",
        value=f"Bearer {access_token}",
        httponly=True,
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        samesite="lax",
    )
    logger.info("auth.login.succeeded", extra={"user_id": user.id})
    return {"access_token": access_token, "token_type": "bearer"}


@router.get("/logout")
def logout(response: Response):
    """Clear the authentication cookie. API clients simply discard their token."""
    response.delete_cookie("access_token")
    return {"status": "success", "detail": "Logged out"}
