from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func
from sqlalchemy.orm import Session

from auth import create_access_token, get_current_user, verify_password
from database import get_db
from models import User
from schemas import AccountEnvelope, LoginRequest, TokenResponse, build_account_response

router = APIRouter()


@router.post("/auth/login", response_model=TokenResponse)
def login(login_data: LoginRequest, db: Session = Depends(get_db)):
    email = str(login_data.email).strip().lower()
    user = db.query(User).filter(func.lower(User.email) == email).first()
    if not user or not verify_password(login_data.password, user.hashed_password):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    return TokenResponse(
        access_token=create_access_token(user),
        user=build_account_response(user),
    )


@router.get("/auth/me", response_model=AccountEnvelope)
def me(user: User = Depends(get_current_user)):
    return AccountEnvelope(user=build_account_response(user))
