from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from abaops.core import rbac
from abaops.core.deps import get_current_user, log_auth_event
from abaops.core.security import create_access_token, get_password_hash, verify_password
from abaops.db.session import get_db
from abaops.models.user import User
from abaops.schemas.user import LoginResponse, PasswordChange, PermissionsResponse, UserRead
from abaops.services.activity import log_activity, record_login

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/login", response_model=LoginResponse)
def login(
    request: Request,
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db),
) -> LoginResponse:
    email = form_data.username.strip().lower()
    client_ip = request.client.host if request.client else None
    user = db.query(User).filter(User.email == email, User.not_deleted()).first()
    if not user or not verify_password(form_data.password, user.hashed_password):
        log_activity(
            db,
            actor_user_id=None,
            activity_type="LOGIN_FAILED",
            message="Login failed",
            payload={"email": email},
            ip_address=client_ip,
        )
        db.commit()
        log_auth_event("login_failed", request=request, extra={"email": email})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not user.is_active:
        log_auth_event("login_inactive", request=request, extra={"user_id": user.id})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User is inactive")

    record_login(db, user=user, ip_address=client_ip, user_agent=request.headers.get("user-agent"))
    db.commit()
    db.refresh(user)

    token = create_access_token({"sub": str(user.id), "role": user.role.value})
    return LoginResponse(
        access_token=token,
        user=UserRead.model_validate(user),
        permissions=rbac.resolve_permissions(user),
    )


@router.get("/me", response_model=UserRead)
def me(current_user: User = Depends(get_current_user)) -> UserRead:
    return UserRead.model_validate(current_user)


@router.get("/permissions", response_model=PermissionsResponse)
def permissions(current_user: User = Depends(get_current_user)) -> PermissionsResponse:
    return PermissionsResponse(
        role=current_user.role,
        permissions=rbac.resolve_permissions(current_user),
        dashboard=rbac.dashboard_visibility(current_user),
    )


@router.post("/change-password", status_code=status.HTTP_204_NO_CONTENT)
def change_password(
    payload: PasswordChange,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> None:
    if not verify_password(payload.current_password, current_user.hashed_password):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Current password is incorrect")
    if payload.new_password == payload.current_password:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="New password must differ from the current one")
    current_user.hashed_password = get_password_hash(payload.new_password)
    db.add(current_user)
    log_activity(
        db,
        actor_user_id=current_user.id,
        actor=current_user,
        activity_type="PASSWORD_CHANGED",
        message="Password changed",
    )
    db.commit()
    log_auth_event("password_changed", request=request, extra={"user_id": current_user.id})
