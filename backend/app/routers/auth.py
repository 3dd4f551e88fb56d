import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.core.settings import settings
from app.core.security import create_access_token, verify_password
from app.db.session import get_db
from app.deps import client_ip, get_current_user
from app.schemas.auth import ChangePasswordRequest, ChangePasswordResponse, LoginRequest, Token
from app.services.audit import log_event
from app.services.users import get_user_by_email, record_login, set_password

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger("trial_expenses.auth")


@router.post("/login", response_model=Token)
def login(payload: LoginRequest, request: Request, db: Session = Depends(get_db)):
    user = get_user_by_email(db, payload.email)
    if user and not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account disabled")
    if not user or not verify_password(payload.password, user.hashed_password):
        logger.info("Failed login for %s from %s", payload.email.lower(), client_ip(request))
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    record_login(user)
    db.commit()
    token = create_access_token(
        subject=str(user.id),
        secret=settings.secret_key,
        alg=settings.jwt_alg,
        expires_minutes=settings.access_token_expire_minutes,
        extra={"role": user.role.value, "email": user.email},
    )
    return Token(access_token=token, must_change_password=user.must_change_password)


@router.post("/change-password", response_model=ChangePasswordResponse)
def change_password(
    payload: ChangePasswordRequest,
    request: Request,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    if not user.must_change_password:
        if not payload.old_password:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Old password required")
        if not verify_password(payload.old_password, user.hashed_password):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid old password")
    elif payload.old_password and not verify_password(payload.old_password, user.hashed_password):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid old password")

    set_password(user, payload.new_password)
    log_event(
        db,
        actor=user,
        action="user.password_changed",
        entity_type="user",
        entity_id=str(user.id),
        after_data={"status": "success"},
        ip_address=client_ip(request),
    )
    db.commit()
    return ChangePasswordResponse(message="Password updated.")
