from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field

from certledger.models.approval import ApprovalDecision
from certledger.models.ledger_transaction import LedgerTxKind, LedgerTxStatus
from certledger.services.ledger import ContractInfo, ProofRecord


class CertificateRequestIn(BaseModel):
    student_id: int = Field(ge=1)
    certificate_type_id: int = Field(ge=1)
    achievement_data: Dict[str, Any] = Field(default_factory=dict)


class ApproveIn(BaseModel):
    comment: Optional[str] = None


class RejectIn(BaseModel):
    comment: str


class IssueIn(BaseModel):
    destination_address: Optional[str] = None
    custodial: bool = False


class BatchApproveIn(BaseModel):
    certificate_ids: List[int] = Field(min_length=1)
    comment: Optional[str] = None


class CertificateType(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    name: str
    description: Optional[str] = None
    achievement_schema: Dict[str, Any]
    active: bool


class ApprovalRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    actor_id: int
    decision: ApprovalDecision
    comment: Optional[str] = None
    created_at: datetime


class LedgerTransaction(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    tx_id: str
    kind: LedgerTxKind
    status: LedgerTxStatus
    gas_used: Optional[int] = None
    gas_price: Optional[int] = None
    block_number: Optional[int] = None
    block_hash: Optional[str] = None
    created_at: datetime
    confirmed_at: Optional[datetime] = None


class Certificate(BaseModel):
    id: int
    student_id: int
    student_name: Optional[str] = None
    certificate_type_id: int
    certificate_type: Optional[str] = None
    achievement_data: Dict[str, Any]
    status: str
    proof_hash: Optional[str] = None
    content_id: Optional[str] = None
    content_url: Optional[str] = None
    tx_ref: Optional[str] = None
    created_by: int
    approved_by: Optional[int] = None
    created_at: datetime
    approved_at: Optional[datetime] = None
    issued_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class CertificateDetail(Certificate):
    approval_history: List[ApprovalRecord] = Field(default_factory=list)
    ledger_transactions: List[LedgerTransaction] = Field(default_factory=list)


class IssueResult(BaseModel):
    certificate: Certificate
    proof_hash: str
    content_id: str
    tx_id: Optional[str] = None
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    content_degraded: bool = False
    custodial: bool = False
    already_issued: bool = False
    # finalized from an earlier submission instead of a new ledger write
    recovered: bool = False


class RevokeResult(BaseModel):
    certificate: Certificate
    tx_id: Optional[str] = None
    block_number: Optional[int] = None
    already_revoked: bool = False
    recovered: bool = False


class Verification(BaseModel):
    proof_hash: str
    is_valid: bool
    message: str
    ledger: Optional[ProofRecord] = None
    certificate: Optional[Certificate] = None


class StudentProof(BaseModel):
    proof_hash: str
    is_valid: bool
    ledger: Optional[ProofRecord] = None


class StudentCertificates(BaseModel):
    student_id: int
    database: List[Certificate]
    ledger: List[StudentProof]
    ledger_error: Optional[str] = None


class BatchItem(BaseModel):
    certificate_id: int
    ok: bool
    status: Optional[str] = None
    error: Optional[Dict[str, Any]] = None


class Stats(BaseModel):
    total: int
    pending: int
    approved: int
    rejected: int
    issued: int
    revoked: int


class LedgerInfo(BaseModel):
    contract: ContractInfo
    issuer: str
    balance_ether: str
    network: str
