# certledger/core/rbac.py
from fastapi import Depends, HTTPException, status
from certledger.api.deps import get_current_user

ROLE_ADMIN = "admin"
ROLE_REGISTRAR = "registrar"  # requests and issues
ROLE_APPROVER = "approver"    # decides pending requests

ROLE_NAMES = [ROLE_ADMIN, ROLE_REGISTRAR, ROLE_APPROVER]


def require_roles(*roles: str):
    """Admin passes every check."""
    allowed = set(roles) | {ROLE_ADMIN}

    def dep(user=Depends(get_current_user)):
        if not (user.role_names & allowed):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role")
        return user
    return dep
