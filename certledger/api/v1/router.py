# certledger/api/v1/router.py
from fastapi import APIRouter
from certledger.api.v1 import auth, certificates

api_router = APIRouter()

api_router.include_router(auth.router,                prefix="/auth",         tags=["auth"])
api_router.include_router(certificates.verify_router, prefix="/certificates", tags=["verify"])
api_router.include_router(certificates.router,        prefix="/certificates", tags=["certificates"])
