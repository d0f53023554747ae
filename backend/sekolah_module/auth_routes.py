from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .auth_service import change_password, login, user_out
from .database import get_db_session
from .errors import success
from .middleware import get_current_user
from .models import User
from .schemas import LoginRequest, PasswordChangeRequest

router = APIRouter(prefix="/auth", tags=["Auth"])


@router.post("/login")
def sign_in(payload: LoginRequest, db: Session = Depends(get_db_session)):
    return success(login(db, username=payload.username, password=payload.password), "Login berhasil")


@router.get("/me")
def me(db: Session = Depends(get_db_session), current_user: User = Depends(get_current_user)):
    return success(user_out(db, current_user), "Data user berhasil diambil")


@router.put("/password")
def update_password(
    payload: PasswordChangeRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
):
    change_password(db, current_user, old_password=payload.old_password, new_password=payload.new_password)
    return success(message="Password berhasil diubah")
