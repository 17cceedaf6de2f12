# certledger/services/settlement.py
"""
Store writes that apply a ledger outcome to a certificate.

Shared by the lifecycle (right after inclusion) and the reconciler (events and
sweeps), so both paths produce the same rows. Every function runs inside the
caller's transaction and is safe to repeat: settling an already-settled
certificate only re-confirms its transaction row.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from certledger import crud
from certledger.core.errors import InvalidState, NotFound
from certledger.models.certificate import Certificate, CertificateStatus, utcnow
from certledger.models.ledger_transaction import LedgerTransaction, LedgerTxKind, LedgerTxStatus
from certledger.services.ledger import LedgerReceipt
from certledger.services.state_machine import check_transition

logger = logging.getLogger(__name__)


def _fresh(db: Session, certificate_id: int) -> Certificate:
    cert = crud.certificate.get_fresh(db, certificate_id)
    if cert is None:
        raise NotFound(f"Certificate {certificate_id} not found", certificate_id=certificate_id)
    return cert


def confirm_transaction(db: Session, certificate_id: int, kind: LedgerTxKind, receipt: LedgerReceipt,
                        now: Optional[datetime] = None) -> LedgerTransaction:
    return crud.ledger_transaction.upsert(
        db,
        tx_id=receipt.tx_id,
        certificate_id=certificate_id,
        kind=kind,
        status=LedgerTxStatus.confirmed,
        gas_used=receipt.gas_used,
        gas_price=receipt.gas_price,
        block_number=receipt.block_number,
        block_hash=receipt.block_hash,
        confirmed_at=now or utcnow(),
    )


def settle_issue(
    db: Session,
    certificate_id: int,
    *,
    proof_hash: str,
    content_id: str,
    source: str,
    receipt: Optional[LedgerReceipt] = None,
    meta: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> Tuple[Certificate, bool]:
    """Move a certificate to `issued` with its proof. Returns (row, changed)."""
    now = now or utcnow()
    proof_hash = proof_hash.lower()
    cert = _fresh(db, certificate_id)

    if cert.status in (CertificateStatus.issued, CertificateStatus.revoked):
        if (cert.proof_hash or "").lower() != proof_hash:
            raise InvalidState(
                f"Certificate already carries proof {cert.proof_hash}; ledger reports {proof_hash}",
                certificate_id=certificate_id, step="settle_issue",
                details={"stored_proof": cert.proof_hash, "ledger_proof": proof_hash},
            )
        if receipt is not None:
            confirm_transaction(db, certificate_id, LedgerTxKind.issue, receipt, now)
        return cert, False

    check_transition(cert.status, CertificateStatus.issued, certificate_id=certificate_id)
    new_meta = {**(cert.meta or {}), **(meta or {}), "ledger_status": "confirmed", "reconciled_by": source}
    new_meta.pop("pending_content_id", None)
    values: Dict[str, Any] = {
        "proof_hash": proof_hash,
        "content_id": content_id,
        "issued_at": now,
        "meta": new_meta,
    }
    if receipt is not None:
        values["tx_ref"] = receipt.tx_id
    if not crud.certificate.transition(db, certificate_id, expected=cert.status, target=CertificateStatus.issued, **values):
        raise InvalidState("Certificate changed while settling issuance", certificate_id=certificate_id, step="settle_issue")
    if receipt is not None:
        confirm_transaction(db, certificate_id, LedgerTxKind.issue, receipt, now)
    logger.info("certificate %s issued (proof=%s, via %s)", certificate_id, proof_hash, source)
    return _fresh(db, certificate_id), True


def settle_revoke(
    db: Session,
    certificate_id: int,
    *,
    source: str,
    receipt: Optional[LedgerReceipt] = None,
    revoked_at: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> Tuple[Certificate, bool]:
    now = now or utcnow()
    cert = _fresh(db, certificate_id)
    if cert.status is CertificateStatus.revoked:
        if receipt is not None:
            confirm_transaction(db, certificate_id, LedgerTxKind.revoke, receipt, now)
        return cert, False

    check_transition(cert.status, CertificateStatus.revoked, certificate_id=certificate_id)
    values: Dict[str, Any] = {
        "revoked_at": revoked_at or now,
        "meta": {**(cert.meta or {}), "ledger_status": "revoked", "reconciled_by": source},
    }
    if receipt is not None:
        values["tx_ref"] = receipt.tx_id
    if not crud.certificate.transition(db, certificate_id, expected=CertificateStatus.issued, target=CertificateStatus.revoked, **values):
        raise InvalidState("Certificate changed while settling revocation", certificate_id=certificate_id, step="settle_revoke")
    if receipt is not None:
        confirm_transaction(db, certificate_id, LedgerTxKind.revoke, receipt, now)
    logger.info("certificate %s revoked (via %s)", certificate_id, source)
    return _fresh(db, certificate_id), True


def fail_transaction(
    db: Session,
    certificate_id: int,
    *,
    tx_id: str,
    kind: LedgerTxKind,
    reason: str,
    receipt: Optional[LedgerReceipt] = None,
) -> None:
    """Mark a ledger write as failed and release the certificate's reference to it."""
    fields: Dict[str, Any] = {"status": LedgerTxStatus.failed}
    if receipt is not None:
        fields.update(gas_used=receipt.gas_used, gas_price=receipt.gas_price,
                      block_number=receipt.block_number, block_hash=receipt.block_hash)
    crud.ledger_transaction.upsert(db, tx_id=tx_id, certificate_id=certificate_id, kind=kind, **fields)

    expected = CertificateStatus.approved if kind is LedgerTxKind.issue else CertificateStatus.issued
    previous = crud.ledger_transaction.latest_confirmed(db, certificate_id)
    crud.certificate.swap_tx_ref(db, certificate_id, status=expected, current=tx_id,
                                 new=previous.tx_id if previous else None)
    cert = _fresh(db, certificate_id)
    crud.certificate.merge_meta(db, cert, last_ledger_failure={"tx_id": tx_id, "kind": kind.value, "reason": reason})
    logger.warning("ledger %s %s for certificate %s failed: %s", kind.value, tx_id, certificate_id, reason)
