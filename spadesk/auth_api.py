from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from .authn import (
    AuthIdentity,
    authenticate_user,
    change_user_password,
    create_access_token,
    create_user,
    get_user,
    list_users,
    record_login_time,
    require_admin,
    require_identity,
    set_user_status,
)
from .config import settings
from .db import get_db
from .errors import NotFoundError
from .schemas import (
    LoginIn,
    LoginOut,
    MessageOut,
    PasswordChangeIn,
    UserMessageOut,
    UserOut,
    UserRegisterIn,
    UserStatusIn,
)

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/register", response_model=UserMessageOut, status_code=status.HTTP_201_CREATED)
def register(
    payload: UserRegisterIn,
    db: Session = Depends(get_db),
    _: AuthIdentity = Depends(require_admin),
):
    user = create_user(
        db,
        first_name=payload.first_name,
        last_name=payload.last_name,
        email=payload.email,
        password=payload.password,
        role=payload.role,
        phone=payload.phone,
        position=payload.position,
    )
    return UserMessageOut(message="User registered successfully", user=UserOut.from_user(user))


@router.post("/login", response_model=LoginOut)
def login(payload: LoginIn, db: Session = Depends(get_db)):
    user = authenticate_user(db, payload.email, payload.password)
    record_login_time(db, user)
    return LoginOut(
        message="Login successful",
        token=create_access_token(user),
        expires_in_seconds=max(1, int(settings.AUTH_ACCESS_TOKEN_HOURS)) * 3600,
        user=UserOut.from_user(user),
    )


@router.get("/me", response_model=UserOut)
def me(
    identity: AuthIdentity = Depends(require_identity),
    db: Session = Depends(get_db),
):
    user = get_user(db, identity.user_id)
    if not user:
        raise NotFoundError("User not found")
    return UserOut.from_user(user)


@router.put("/change-password", response_model=MessageOut)
def change_password(
    payload: PasswordChangeIn,
    identity: AuthIdentity = Depends(require_identity),
    db: Session = Depends(get_db),
):
    change_user_password(
        db,
        user_id=identity.user_id,
        current_password=payload.current_password,
        new_password=payload.new_password,
    )
    return MessageOut(message="Password updated successfully")


@router.get("/users", response_model=List[UserOut])
def users(
    db: Session = Depends(get_db),
    _: AuthIdentity = Depends(require_admin),
):
    return [UserOut.from_user(u) for u in list_users(db)]


@router.patch("/users/{user_id}/status", response_model=UserMessageOut)
def update_user_status(
    user_id: int,
    payload: UserStatusIn,
    db: Session = Depends(get_db),
    _: AuthIdentity = Depends(require_admin),
):
    user = set_user_status(db, user_id, payload.is_active)
    state = "activated" if user.is_active else "deactivated"
    return UserMessageOut(message=f"User {state} successfully", user=UserOut.from_user(user))
