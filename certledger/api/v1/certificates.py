# certledger/api/v1/certificates.py
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query

from certledger.api.deps import get_current_user, get_lifecycle
from certledger.core.rbac import ROLE_APPROVER, ROLE_REGISTRAR, require_roles
from certledger.models.certificate import CertificateStatus
from certledger.models.user import User
from certledger.schemas import certificate as schemas
from certledger.services.lifecycle import CertificateLifecycle, RequestResult

router = APIRouter()
verify_router = APIRouter()  # public

can_request = require_roles(ROLE_REGISTRAR)
can_decide = require_roles(ROLE_APPROVER)
admin_only = require_roles()


# ---------------------------- public ----------------------------

@verify_router.get("/verify/{proof_hash}", response_model=schemas.Verification)
def verify(proof_hash: str, lifecycle: CertificateLifecycle = Depends(get_lifecycle)):
    return lifecycle.verify(proof_hash)


# ---------------------------- lookups ----------------------------

@router.get("/types", response_model=List[schemas.CertificateType])
def list_types(lifecycle: CertificateLifecycle = Depends(get_lifecycle), _=Depends(get_current_user)):
    return lifecycle.certificate_types()


@router.get("/stats", response_model=schemas.Stats)
def stats(lifecycle: CertificateLifecycle = Depends(get_lifecycle), _=Depends(get_current_user)):
    return lifecycle.stats()


@router.get("/ledger", response_model=schemas.LedgerInfo)
def ledger_info(lifecycle: CertificateLifecycle = Depends(get_lifecycle), _=Depends(admin_only)):
    return lifecycle.ledger_info()


@router.get("/pending", response_model=List[schemas.Certificate])
def list_pending(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    lifecycle: CertificateLifecycle = Depends(get_lifecycle),
    _=Depends(can_decide),
):
    return lifecycle.list_certificates(status=CertificateStatus.pending, limit=limit, offset=offset)


@router.get("/student/{student_id}", response_model=schemas.StudentCertificates)
def student_certificates(
    student_id: int = Path(..., ge=1),
    lifecycle: CertificateLifecycle = Depends(get_lifecycle),
    _=Depends(get_current_user),
):
    return lifecycle.student_certificates(student_id)


@router.get("", response_model=List[schemas.Certificate])
def list_certificates(
    status: Optional[CertificateStatus] = Query(None),
    student_id: Optional[int] = Query(None, ge=1),
    certificate_type_id: Optional[int] = Query(None, ge=1),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    lifecycle: CertificateLifecycle = Depends(get_lifecycle),
    _=Depends(get_current_user),
):
    return lifecycle.list_certificates(status=status, student_id=student_id,
                                       certificate_type_id=certificate_type_id, limit=limit, offset=offset)


@router.get("/{certificate_id}", response_model=schemas.CertificateDetail)
def get_certificate(
    certificate_id: int = Path(..., ge=1),
    lifecycle: CertificateLifecycle = Depends(get_lifecycle),
    _=Depends(get_current_user),
):
    return lifecycle.get_certificate(certificate_id)


# ---------------------------- requests ----------------------------

@router.post("", response_model=RequestResult, status_code=201)
def request_certificate(
    body: schemas.CertificateRequestIn,
    lifecycle: CertificateLifecycle = Depends(get_lifecycle),
    user: User = Depends(can_request),
):
    return lifecycle.request_certificate(body.student_id, body.certificate_type_id, body.achievement_data, user.id)


# ---------------------------- decisions ----------------------------

@router.put("/{certificate_id}/approve", response_model=schemas.Certificate)
def approve(
    certificate_id: int = Path(..., ge=1),
    body: Optional[schemas.ApproveIn] = None,
    lifecycle: CertificateLifecycle = Depends(get_lifecycle),
    user: User = Depends(can_decide),
):
    return lifecycle.approve(certificate_id, user.id, body.comment if body else None)


@router.put("/{certificate_id}/reject", response_model=schemas.Certificate)
def reject(
    body: schemas.RejectIn,
    certificate_id: int = Path(..., ge=1),
    lifecycle: CertificateLifecycle = Depends(get_lifecycle),
    user: User = Depends(can_decide),
):
    return lifecycle.reject(certificate_id, user.id, body.comment)


@router.post("/batch-approve", response_model=List[schemas.BatchItem])
def batch_approve(
    body: schemas.BatchApproveIn,
    lifecycle: CertificateLifecycle = Depends(get_lifecycle),
    user: User = Depends(can_decide),
):
    return lifecycle.batch_approve(body.certificate_ids, user.id, body.comment)


# ---------------------------- ledger ----------------------------

@router.post("/{certificate_id}/issue", response_model=schemas.IssueResult)
def issue(
    certificate_id: int = Path(..., ge=1),
    body: Optional[schemas.IssueIn] = None,
    lifecycle: CertificateLifecycle = Depends(get_lifecycle),
    _=Depends(can_request),
):
    body = body or schemas.IssueIn()
    return lifecycle.issue(certificate_id, body.destination_address, custodial=body.custodial)


@router.post("/{certificate_id}/revoke", response_model=schemas.RevokeResult)
def revoke(
    certificate_id: int = Path(..., ge=1),
    lifecycle: CertificateLifecycle = Depends(get_lifecycle),
    _=Depends(can_request),
):
    return lifecycle.revoke(certificate_id)
