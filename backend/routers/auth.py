from fastapi import APIRouter, Depends, HTTPException, status, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
from urllib.parse import urlencode
import logging
import secrets

from config import get_settings
from database import get_db
from identity import IdentityReconciler, MissingIdentityFieldError, UserStore
from services.auth import (
    AuthService,
    LoginRequest,
    RegisterRequest,
    RefreshRequest,
    ForgotPasswordRequest,
    ResetPasswordRequest,
    ChangePasswordRequest,
    Token,
    AuthUser,
)
from services.google_oauth import GoogleOAuthClient, GoogleOAuthError, get_google_client
from services.email_sender import AccountEmailSender, get_email_sender
from middleware.auth import get_current_user_required, get_current_user
from services.audit import log_auth_action, AuditAction

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["Authentication"])

settings = get_settings()

OAUTH_STATE_COOKIE = "oauth_state"
OAUTH_STATE_MAX_AGE = 600  # seconds

RESET_REQUESTED_MESSAGE = "If an account exists for that email, a password reset link has been sent"


def get_identity_reconciler(db: AsyncSession = Depends(get_db)) -> IdentityReconciler:
    return IdentityReconciler(UserStore(db))


# ==================== PUBLIC ENDPOINTS ====================

@router.post("/login", response_model=Token)
async def login(
    login_data: LoginRequest,
    request: Request,
    db: AsyncSession = Depends(get_db)
):
    """
    Authenticate with email and password and return JWT tokens.

    Returns:
    - access_token: JWT for API access (expires in 15 minutes)
    - refresh_token: JWT for rotating the pair (expires in 7 days)
    - user: public profile
    """
    auth_service = AuthService(db)
    token = await auth_service.login(login_data.email, login_data.password)

    if not token:
        log_auth_action(
            action=AuditAction.USER_LOGIN_FAILED,
            user_email=login_data.email,
            request=request,
            success=False,
            error_message="Invalid credentials"
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
            headers={"WWW-Authenticate": "Bearer"}
        )

    log_auth_action(
        action=AuditAction.USER_LOGIN,
        user_id=token.user["id"],
        user_email=token.user["email"],
        details={"role": token.user["role"]},
        request=request
    )
    return token


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    register_data: RegisterRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    mailer: AccountEmailSender = Depends(get_email_sender)
):
    """Create a local customer account (role `user`)."""
    auth_service = AuthService(db)

    try:
        user = await auth_service.register_user(
            email=register_data.email,
            password=register_data.password,
            first_name=register_data.first_name,
            last_name=register_data.last_name,
            phone=register_data.phone,
        )
    except ValueError as e:
        log_auth_action(
            action=AuditAction.USER_REGISTER,
            user_email=register_data.email,
            request=request,
            success=False,
            error_message=str(e)
        )
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )

    log_auth_action(
        action=AuditAction.USER_REGISTER,
        user_id=str(user.id),
        user_email=user.email,
        request=request
    )
    await mailer.send_welcome(user.email, user.first_name)
    return {
        "success": True,
        "message": "Registration successful",
        "user": user.to_dict()
    }


@router.post("/refresh", response_model=Token)
async def refresh_token(
    refresh_data: RefreshRequest,
    request: Request,
    db: AsyncSession = Depends(get_db)
):
    """
    Rotate the token pair.

    The presented refresh token is single use; replaying it after a rotation
    is rejected.
    """
    auth_service = AuthService(db)
    token = await auth_service.refresh_tokens(refresh_data.refresh_token)

    if not token:
        log_auth_action(
            action=AuditAction.TOKEN_REFRESH,
            request=request,
            success=False,
            error_message="Invalid refresh token"
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired refresh token",
            headers={"WWW-Authenticate": "Bearer"}
        )

    log_auth_action(
        action=AuditAction.TOKEN_REFRESH,
        user_id=token.user["id"],
        user_email=token.user["email"],
        request=request
    )
    return token


@router.post("/forgot-password")
async def forgot_password(
    forgot_data: ForgotPasswordRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    mailer: AccountEmailSender = Depends(get_email_sender)
):
    """Email a reset link. The response never reveals whether the email exists."""
    auth_service = AuthService(db)
    user = await auth_service.request_password_reset(forgot_data.email)
    if user:
        await mailer.send_password_reset(user.email, user.reset_token, user.first_name)

    log_auth_action(
        action=AuditAction.USER_PASSWORD_RESET_REQUEST,
        user_email=forgot_data.email,
        details={"issued": user is not None},
        request=request
    )
    return {"success": True, "message": RESET_REQUESTED_MESSAGE}


@router.post("/reset-password")
async def reset_password(
    reset_data: ResetPasswordRequest,
    request: Request,
    db: AsyncSession = Depends(get_db)
):
    auth_service = AuthService(db)
    success = await auth_service.reset_password(reset_data.token, reset_data.new_password)

    if not success:
        log_auth_action(
            action=AuditAction.USER_PASSWORD_RESET,
            request=request,
            success=False,
            error_message="Invalid or expired reset token"
        )
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or expired reset token"
        )

    log_auth_action(action=AuditAction.USER_PASSWORD_RESET, request=request)
    return {"success": True, "message": "Password has been reset"}


@router.get("/verify")
async def verify_token(
    current_user: Optional[AuthUser] = Depends(get_current_user)
):
    """Check a bearer token without failing the request."""
    if not current_user:
        return {"valid": False, "user": None}
    return {"valid": True, "user": current_user.model_dump()}


# ==================== GOOGLE OAUTH ====================

@router.get("/google")
async def google_login(
    google: GoogleOAuthClient = Depends(get_google_client)
):
    """Redirect the browser to Google's consent page."""
    if not google.configured:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Google sign-in is not configured"
        )

    state = secrets.token_urlsafe(24)
    response = RedirectResponse(google.authorization_url(state), status_code=status.HTTP_302_FOUND)
    response.set_cookie(
        OAUTH_STATE_COOKIE,
        state,
        max_age=OAUTH_STATE_MAX_AGE,
        httponly=True,
        samesite="lax",
        secure=settings.is_production,
    )
    return response


def _reject_google_login(request: Request, reason: str, email: Optional[str] = None) -> HTTPException:
    log_auth_action(
        action=AuditAction.GOOGLE_LOGIN_FAILED,
        user_email=email,
        request=request,
        success=False,
        error_message=reason
    )
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=reason
    )


@router.get("/google/callback")
async def google_callback(
    request: Request,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    google: GoogleOAuthClient = Depends(get_google_client),
    reconciler: IdentityReconciler = Depends(get_identity_reconciler),
    db: AsyncSession = Depends(get_db)
):
    """
    Complete Google sign-in.

    The Google identity is mapped onto a single user record (created, linked
    by email, or already linked) and a token pair is issued for it. With
    OAUTH_SUCCESS_REDIRECT set, the tokens go to the frontend in the URL
    fragment; otherwise they are returned as JSON.
    """
    if error:
        raise _reject_google_login(request, f"Google sign-in failed: {error}")

    expected_state = request.cookies.get(OAUTH_STATE_COOKIE)
    if not state or not expected_state or not secrets.compare_digest(state, expected_state):
        raise _reject_google_login(request, "Invalid OAuth state")
    if not code:
        raise _reject_google_login(request, "Missing authorization code")

    try:
        identity = await google.fetch_identity(code)
    except GoogleOAuthError as e:
        logger.warning(f"Google token exchange failed: {e}")
        raise _reject_google_login(request, "Google authentication failed")

    try:
        user = await reconciler.reconcile(identity)
    except MissingIdentityFieldError as e:
        reason = "No email found in Google profile" if e.field == "email" else "Invalid Google profile"
        raise _reject_google_login(request, reason)

    if not user.is_active:
        log_auth_action(
            action=AuditAction.GOOGLE_LOGIN_FAILED,
            user_id=str(user.id),
            user_email=user.email,
            request=request,
            success=False,
            error_message="Account is deactivated"
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is deactivated"
        )

    token = await AuthService(db).issue_tokens(user)
    log_auth_action(
        action=AuditAction.GOOGLE_LOGIN,
        user_id=str(user.id),
        user_email=user.email,
        request=request
    )

    if settings.OAUTH_SUCCESS_REDIRECT:
        fragment = urlencode({
            "access_token": token.access_token,
            "refresh_token": token.refresh_token,
            "token_type": token.token_type,
            "expires_in": token.expires_in,
        })
        response = RedirectResponse(
            f"{settings.OAUTH_SUCCESS_REDIRECT}#{fragment}",
            status_code=status.HTTP_302_FOUND
        )
    else:
        response = JSONResponse(token.model_dump())
    response.delete_cookie(OAUTH_STATE_COOKIE)
    return response


# ==================== AUTHENTICATED ENDPOINTS ====================

async def _profile_or_404(current_user: AuthUser, db: AsyncSession) -> dict:
    profile = await AuthService(db).get_profile(current_user.id)
    if not profile:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )
    return profile


@router.get("/me")
async def get_current_user_info(
    current_user: AuthUser = Depends(get_current_user_required),
    db: AsyncSession = Depends(get_db)
):
    """Current user's profile; requires a valid access token."""
    profile = await _profile_or_404(current_user, db)
    profile["permissions"] = {
        "is_admin": current_user.is_admin(),
        "can_access_admin": current_user.is_admin(),
    }
    return profile


@router.get("/profile")
async def get_profile(
    current_user: AuthUser = Depends(get_current_user_required),
    db: AsyncSession = Depends(get_db)
):
    return await _profile_or_404(current_user, db)


@router.post("/change-password")
async def change_password(
    password_data: ChangePasswordRequest,
    request: Request,
    current_user: AuthUser = Depends(get_current_user_required),
    db: AsyncSession = Depends(get_db)
):
    """
    Change current user's password.

    Requires the current password; outstanding refresh tokens stop working.
    """
    auth_service = AuthService(db)

    success = await auth_service.change_password(
        user_id=current_user.id,
        current_password=password_data.current_password,
        new_password=password_data.new_password
    )

    if not success:
        log_auth_action(
            action=AuditAction.USER_PASSWORD_CHANGE,
            user_id=current_user.id,
            user_email=current_user.email,
            request=request,
            success=False,
            error_message="Current password is incorrect"
        )
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Current password is incorrect"
        )

    log_auth_action(
        action=AuditAction.USER_PASSWORD_CHANGE,
        user_id=current_user.id,
        user_email=current_user.email,
        request=request
    )
    return {"success": True, "message": "Password changed successfully"}


@router.post("/logout")
async def logout(
    request: Request,
    current_user: AuthUser = Depends(get_current_user_required),
    db: AsyncSession = Depends(get_db)
):
    """Revoke the current refresh token. Access tokens expire on their own."""
    await AuthService(db).logout(current_user.id)

    log_auth_action(
        action=AuditAction.USER_LOGOUT,
        user_id=current_user.id,
        user_email=current_user.email,
        request=request
    )
    return {"success": True, "message": "Logged out successfully"}
