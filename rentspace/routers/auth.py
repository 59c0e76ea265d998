from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request, Response, status
from sqlalchemy.orm import Session

from .. import crud, models, schemas
from ..core import security
from ..core.config import settings
from ..core.dependencies import get_current_user, get_lockout_policy, get_session_manager, get_two_factor_manager
from ..core.exceptions import InvalidCredentialsError
from ..database import get_db
from ..services import login as login_service
from ..services import password_reset, verification
from ..services.login import LockoutPolicy
from ..services.sessions import SessionManager, TokenPair, ensure_in_good_standing
from ..services.two_factor import TwoFactorManager
from ..utils import Notifier, get_notifier

router = APIRouter()

ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"


def _cookie_options() -> dict:
    return {
        "httponly": True,
        "secure": settings.is_production,
        "samesite": "strict" if settings.is_production else "lax",
        "path": "/",
    }


def set_access_cookie(response: Response, access_token: str, sessions: SessionManager):
    max_age = int(sessions.access_ttl.total_seconds())
    response.set_cookie(key=ACCESS_COOKIE, value=access_token, max_age=max_age, expires=max_age, **_cookie_options())


def set_auth_cookies(response: Response, pair: TokenPair, sessions: SessionManager):
    set_access_cookie(response, pair.access_token, sessions)
    max_age = int(sessions.refresh_ttl.total_seconds())
    response.set_cookie(key=REFRESH_COOKIE, value=pair.refresh_token, max_age=max_age, expires=max_age,
                        **_cookie_options())


def clear_auth_cookies(response: Response):
    for key in (ACCESS_COOKIE, REFRESH_COOKIE):
        response.delete_cookie(key=key, **_cookie_options())


def ok(data: dict) -> dict:
    return {"success": True, "data": data}


def _start_session(db: Session, request: Request, response: Response, user: models.User,
                   sessions: SessionManager) -> TokenPair:
    pair = sessions.issue(db, user, device_info=request.headers.get("user-agent"))
    set_auth_cookies(response, pair, sessions)
    return pair


def _two_factor_challenge(user: models.User, sessions: SessionManager) -> dict:
    return {
        "twoFactorRequired": True,
        "challengeToken": sessions.create_challenge_token(user),
        "expiresIn": int(sessions.challenge_ttl.total_seconds()),
    }


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register_user(
        user_in: schemas.UserCreate,
        background_tasks: BackgroundTasks,
        db: Session = Depends(get_db),
        notifier: Notifier = Depends(get_notifier),
):
    user = verification.register(db, user_in, background_tasks, notifier)
    return ok({
        "userId": user.id,
        "email": user.email,
        "message": "Registration successful. Please verify your email and phone number.",
        "verificationRequired": {"email": True, "phone": True},
    })


@router.post("/login")
def login(
        data: schemas.LoginRequest,
        request: Request,
        response: Response,
        db: Session = Depends(get_db),
        sessions: SessionManager = Depends(get_session_manager),
        policy: LockoutPolicy = Depends(get_lockout_policy),
):
    user = login_service.authenticate(db, data.identifier, data.password, policy)

    if user.two_factor_enabled:
        return ok(_two_factor_challenge(user, sessions))

    pair = _start_session(db, request, response, user, sessions)
    return ok({"expiresIn": pair.expires_in, "user": schemas.serialize_user(user)})


@router.post("/login/2fa")
def login_second_factor(
        data: schemas.TwoFactorLogin,
        request: Request,
        response: Response,
        db: Session = Depends(get_db),
        sessions: SessionManager = Depends(get_session_manager),
        two_factor: TwoFactorManager = Depends(get_two_factor_manager),
        policy: LockoutPolicy = Depends(get_lockout_policy),
):
    payload = sessions.decode_challenge(data.challenge_token)
    user = login_service.complete_two_factor_login(db, int(payload["sub"]), data.code, two_factor, policy)
    pair = _start_session(db, request, response, user, sessions)
    return ok({"expiresIn": pair.expires_in, "user": schemas.serialize_user(user)})


@router.post("/verify-otp")
def verify_user_otp(
        data: schemas.VerifyOTP,
        request: Request,
        response: Response,
        db: Session = Depends(get_db),
        sessions: SessionManager = Depends(get_session_manager),
):
    user = verification.verify_code(db, data.user_id, data.otp, data.type)
    result = {
        "message": f"{data.type} verified successfully",
        "verified": True,
        "isFullyVerified": user.is_fully_verified,
    }
    ensure_in_good_standing(user)
    if user.two_factor_enabled:
        # Owning a channel is not a substitute for the password and second factor.
        result.update(_two_factor_challenge(user, sessions))
        return ok(result)

    _start_session(db, request, response, user, sessions)
    return ok(result)


@router.post("/resend-otp")
def resend_otp(
        data: schemas.ResendOTP,
        background_tasks: BackgroundTasks,
        db: Session = Depends(get_db),
        notifier: Notifier = Depends(get_notifier),
):
    verification.resend_code(db, data.user_id, data.type, background_tasks, notifier)
    return ok({
        "message": f"OTP sent to {data.type} successfully",
        "expiresIn": settings.OTP_EXPIRE_MINUTES * 60,
    })


@router.post("/refresh")
def refresh_access_token(
        request: Request,
        response: Response,
        data: Optional[schemas.RefreshRequest] = None,
        db: Session = Depends(get_db),
        sessions: SessionManager = Depends(get_session_manager),
):
    token = (data.refresh_token if data else None) or request.cookies.get(REFRESH_COOKIE)
    pair = sessions.refresh(db, token)
    set_auth_cookies(response, pair, sessions)
    return ok({"expiresIn": pair.expires_in})


@router.post("/logout")
def logout(
        request: Request,
        response: Response,
        data: Optional[schemas.RefreshRequest] = None,
        db: Session = Depends(get_db),
        sessions: SessionManager = Depends(get_session_manager),
):
    token = (data.refresh_token if data else None) or request.cookies.get(REFRESH_COOKIE)
    sessions.revoke_token(db, token)
    clear_auth_cookies(response)
    return ok({"message": "Logged out successfully"})


@router.post("/forgot-password")
def forgot_password(
        data: schemas.ForgotPassword,
        db: Session = Depends(get_db),
        notifier: Notifier = Depends(get_notifier),
):
    password_reset.request_reset(db, data.email, notifier)
    return ok({"message": "If an account exists for this email, a password reset link has been sent"})


@router.post("/reset-password")
def reset_password(
        data: schemas.ResetPassword,
        db: Session = Depends(get_db),
        sessions: SessionManager = Depends(get_session_manager),
):
    password_reset.complete_reset(db, data.token, data.new_password, sessions)
    return ok({"message": "Password reset successfully. Please login with your new password."})


@router.post("/change-password")
def change_password(
        data: schemas.ChangePassword,
        response: Response,
        current_user: models.User = Depends(get_current_user),
        db: Session = Depends(get_db),
        sessions: SessionManager = Depends(get_session_manager),
):
    password_reset.change_password(db, current_user, data.current_password, data.new_password)
    set_access_cookie(response, sessions.create_access_token(current_user), sessions)
    return ok({"message": "Password changed successfully"})


@router.get("/me")
def read_users_me(current_user: models.User = Depends(get_current_user)):
    return ok(schemas.serialize_user(current_user))


@router.post("/select-role")
def select_role(
        data: schemas.SelectRole,
        current_user: models.User = Depends(get_current_user),
        db: Session = Depends(get_db),
):
    current_user.role = data.role
    db.commit()
    return ok({"message": "Role updated successfully", "role": data.role})


@router.delete("/delete-account")
def delete_account(
        data: schemas.PasswordConfirm,
        response: Response,
        current_user: models.User = Depends(get_current_user),
        db: Session = Depends(get_db),
):
    if not security.verify_password(data.password, current_user.password):
        raise InvalidCredentialsError("Password is incorrect")
    crud.delete_user(db, current_user)
    clear_auth_cookies(response)
    return ok({"message": "Account deleted successfully"})
