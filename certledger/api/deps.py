# certledger/api/deps.py
from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from certledger import crud
from certledger.core.tokens import decode_access
from certledger.db.session import get_db
from certledger.models.user import User
from certledger.services.lifecycle import CertificateLifecycle

__all__ = ["get_db", "get_bearer_token", "get_current_user", "get_lifecycle", "get_services"]


def get_bearer_token(authorization: str = Header(None, alias="Authorization")) -> str:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization header")
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(status_code=401, detail="Invalid Authorization header")
    return parts[1]


def get_current_user(token: str = Depends(get_bearer_token), db: Session = Depends(get_db)) -> User:
    payload = decode_access(token)
    if not payload:
        raise HTTPException(status_code=401, detail="Invalid token")
    user = crud.user.get_by_email(db, payload["sub"])
    if not user or user.status != "active":
        raise HTTPException(status_code=401, detail="User not found or inactive")
    return user


def get_services(request: Request):
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Services not started")
    return services


def get_lifecycle(services=Depends(get_services)) -> CertificateLifecycle:
    return services.lifecycle
