# certledger/api/v1/auth.py
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from certledger.api.deps import get_current_user, get_db
from certledger.core.security import authenticate
from certledger.core.tokens import create_access_token
from certledger.models.user import User
from certledger.schemas.token import LoginIn, Token, UserOut

router = APIRouter()


def _user_out(user: User) -> UserOut:
    return UserOut(id=user.id, name=user.name, email=user.email,
                   roles=sorted(user.role_names), status=user.status)


def _authenticate(db: Session, email: str, password: str) -> User:
    user = authenticate(db, email, password)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return user


def _token_for(user: User) -> Token:
    roles = sorted(user.role_names)
    return Token(access_token=create_access_token(sub=user.email, roles=roles), user=_user_out(user))


@router.post("/login", response_model=Token)
def login(body: LoginIn, db: Session = Depends(get_db)):
    return _token_for(_authenticate(db, body.email, body.password))


@router.post("/token", response_model=Token)
def login_oauth2_form(form: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
    return _token_for(_authenticate(db, form.username, form.password))


@router.get("/me", response_model=UserOut)
def me(user: User = Depends(get_current_user)):
    return _user_out(user)
