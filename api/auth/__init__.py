"""Authentication and user profile API endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Security, status
from fastapi.responses import JSONResponse, Response
from pydantic import EmailStr, Field

from auth import (
    AuthError, AuthManager, DuplicateUserError, InvalidCredentialsError,
    ProfileValidationError, auth_scheme, get_auth_manager, get_current_user
)
from models import ApiModel, User, UserRole

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api",
    tags=["Authentication"]
)


class RegisterRequest(ApiModel):
    """Request model for registration."""
    username: str = Field(min_length=3)
    email: EmailStr
    password: str = Field(min_length=6)
    full_name: str = Field(min_length=1)
    role: UserRole = UserRole.HOUSEHOLD
    address: Optional[str] = None
    phone: Optional[str] = None


class LoginRequest(ApiModel):
    """Request model for login."""
    username: str
    password: str


class GoogleLoginRequest(ApiModel):
    """Request model for Google sign-in."""
    uid: str = Field(min_length=1)
    email: EmailStr
    display_name: Optional[str] = None
    photo_url: Optional[str] = Field(default=None, alias="photoURL")


class ProfileUpdate(ApiModel):
    """Profile and onboarding fields a user may change."""
    full_name: Optional[str] = None
    email: Optional[EmailStr] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    organization_type: Optional[str] = None
    organization_name: Optional[str] = None
    contact_person_name: Optional[str] = None
    contact_person_position: Optional[str] = None
    contact_person_phone: Optional[str] = None
    contact_person_email: Optional[str] = None
    is_certified: Optional[bool] = None
    certification_details: Optional[str] = None


class BusinessUpdate(ApiModel):
    business_name: Optional[str] = None
    business_type: Optional[str] = None
    business_registration: Optional[str] = None
    business_description: Optional[str] = None
    service_area: Optional[str] = None


class PasswordChange(ApiModel):
    current_password: str = ""
    new_password: str = ""


def _session_response(manager: AuthManager, user: User, token: str, status_code: int = 200) -> JSONResponse:
    response = JSONResponse(status_code=status_code, content=user.to_json())
    response.set_cookie(
        manager.cookie_name,
        token,
        max_age=manager.expiry_days * 24 * 60 * 60,
        httponly=True,
        secure=manager.cookie_secure,
        samesite="lax"
    )
    return response


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(body: RegisterRequest, manager: AuthManager = Depends(get_auth_manager)):
    """Create an account and log it in."""
    try:
        user, token = await manager.register(body.model_dump())
        return _session_response(manager, user, token, status.HTTP_201_CREATED)
    except DuplicateUserError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    except Exception as e:
        logger.error(f"Error registering user: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to register"
        )


@router.post("/login")
async def login(body: LoginRequest, manager: AuthManager = Depends(get_auth_manager)):
    """Verify credentials and start a session."""
    try:
        user, token = await manager.login(body.username, body.password)
        return _session_response(manager, user, token)
    except InvalidCredentialsError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e)
        )
    except Exception as e:
        logger.error(f"Error logging in: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to log in"
        )


@router.post("/login-with-google")
async def login_with_google(body: GoogleLoginRequest, manager: AuthManager = Depends(get_auth_manager)):
    """Log in with a Google account, creating the user on first sign-in."""
    try:
        user, token = await manager.login_with_google(body.uid, body.email, body.display_name)
        return _session_response(manager, user, token)
    except AuthError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    except Exception as e:
        logger.error(f"Error with Google login: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to log in with Google"
        )


@router.post("/logout")
async def logout(
    request: Request,
    credentials=Security(auth_scheme),
    manager: AuthManager = Depends(get_auth_manager)
):
    """Revoke the current session and clear the cookie."""
    token = manager.token_from_request(request, credentials)
    if token:
        await manager.logout(token)
    response = Response(status_code=status.HTTP_200_OK)
    response.delete_cookie(manager.cookie_name)
    return response


@router.get("/user")
async def get_user(user: User = Depends(get_current_user)):
    return user.to_json()


@router.patch("/user")
async def update_user(
    body: ProfileUpdate,
    user: User = Depends(get_current_user),
    manager: AuthManager = Depends(get_auth_manager)
):
    """Update profile and onboarding fields."""
    try:
        updated = await manager.update_profile(user, body.model_dump(exclude_unset=True))
        return updated.to_json()
    except DuplicateUserError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    except Exception as e:
        logger.error(f"Error updating user profile: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update profile"
        )


@router.post("/user/password")
async def change_password(
    body: PasswordChange,
    user: User = Depends(get_current_user),
    manager: AuthManager = Depends(get_auth_manager)
):
    try:
        await manager.change_password(user, body.current_password, body.new_password)
        return {"message": "Password updated successfully"}
    except ProfileValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    except Exception as e:
        logger.error(f"Error updating password: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update password"
        )


@router.post("/onboarding")
async def complete_onboarding(
    body: ProfileUpdate,
    user: User = Depends(get_current_user),
    manager: AuthManager = Depends(get_auth_manager)
):
    """Record role specific onboarding details."""
    try:
        updated = await manager.complete_onboarding(user, body.model_dump(exclude_unset=True))
        return updated.to_json()
    except ProfileValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    except Exception as e:
        logger.error(f"Error completing onboarding: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to complete onboarding"
        )


@router.patch("/user/business")
async def update_business(
    body: BusinessUpdate,
    user: User = Depends(get_current_user),
    manager: AuthManager = Depends(get_auth_manager)
):
    try:
        updated = await manager.update_business(user, body.model_dump(exclude_unset=True))
        return updated.to_json()
    except ProfileValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=str(e)
        )
    except Exception as e:
        logger.error(f"Error updating business profile: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update business profile"
        )


# Export the router
__all__ = ['router']
