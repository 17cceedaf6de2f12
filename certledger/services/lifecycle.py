# certledger/services/lifecycle.py
"""
Certificate lifecycle: pending -> approved|rejected, approved -> issued,
issued -> revoked.

Approval decisions are single store transactions (status + audit row).
Issuance and revocation span three systems with no shared transaction, so each
runs as a sequence of short store transactions around the ledger call:

    claim (conditional write on tx_ref) -> submit -> record pending tx
    -> wait for inclusion (no session held) -> settle (conditional write)

A retry first resolves whatever an earlier attempt left behind (a pending
transaction, or a proof already on the ledger) before it writes again, which
keeps issuance at most once per certificate. When the pending transaction
cannot be recorded the claim stays in place, so no new submission starts
before it expires, and the call ends in PartialFailure unless the transaction
is included while waiting.
"""
from __future__ import annotations

import logging
import threading
import time
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from certledger import crud
from certledger.core.config import Settings, settings as default_settings
from certledger.core.errors import (
    CertLedgerError,
    ContentStoreError,
    InvalidState,
    LedgerError,
    LedgerRejected,
    LedgerTimeout,
    NotFound,
    PartialFailure,
    ServiceUnavailable,
    ValidationError,
)
from certledger.models.approval import ApprovalDecision
from certledger.models.certificate import Certificate, CertificateStatus as S, utcnow
from certledger.models.ledger_transaction import LedgerTxKind, LedgerTxStatus
from certledger.schemas import certificate as schemas
from certledger.services import settlement
from certledger.services.achievement_schema import describe, validate_achievement
from certledger.services.content_store import ContentStoreGateway, PutResult
from certledger.services.ledger import LedgerGateway, LedgerReceipt, ProofRecord, TxHandle
from certledger.services.state_machine import require_status

logger = logging.getLogger(__name__)

CLAIM_PREFIX = "claim:"


class RequestResult(BaseModel):
    id: int
    status: str
    student_name: str
    certificate_type: str
    created_at: datetime


class _Snapshot(BaseModel):
    """What issue/revoke need from the row, read once up front."""
    id: int
    status: S
    student_id: int
    student_name: str
    student_wallet: Optional[str] = None
    type_name: str
    achievement: Dict[str, Any]
    approved_by: Optional[int] = None
    proof_hash: Optional[str] = None
    content_id: Optional[str] = None
    tx_ref: Optional[str] = None
    meta: Dict[str, Any] = {}
    pending_tx: Optional[str] = None
    has_ledger_rows: bool = False


def new_claim() -> str:
    return f"{CLAIM_PREFIX}{int(time.time())}:{uuid.uuid4().hex[:12]}"


def claim_age(ref: Optional[str]) -> Optional[float]:
    """Seconds since a claim was taken, or None when `ref` is not a claim."""
    if not ref or not ref.startswith(CLAIM_PREFIX):
        return None
    try:
        taken = int(ref[len(CLAIM_PREFIX):].split(":", 1)[0])
    except ValueError:
        return float("inf")
    return time.time() - taken


class CertificateLifecycle:
    record_attempts = 3
    record_backoff = 0.5

    def __init__(
        self,
        sessions: sessionmaker,
        ledger: LedgerGateway,
        content: ContentStoreGateway,
        *,
        config: Settings = default_settings,
    ):
        self._sessions = sessions
        self.ledger = ledger
        self.content = content
        self.config = config

    # ------------------------------ helpers ------------------------------

    def _require_ledger(self) -> None:
        status = self.ledger.status
        if not status.ready:
            raise ServiceUnavailable(f"Ledger unavailable: {status.reason}", step="ledger",
                                     details={"service": status.name, "state": status.state.value})

    @staticmethod
    def _load(db: Session, certificate_id: int) -> Certificate:
        cert = crud.certificate.get_fresh(db, certificate_id)
        if cert is None:
            raise NotFound(f"Certificate {certificate_id} not found", certificate_id=certificate_id)
        return cert

    def _view(self, cert: Certificate) -> schemas.Certificate:
        return schemas.Certificate(
            id=cert.id,
            student_id=cert.student_id,
            student_name=cert.student.name if cert.student else None,
            certificate_type_id=cert.certificate_type_id,
            certificate_type=cert.certificate_type.name if cert.certificate_type else None,
            achievement_data=cert.achievement_data or {},
            status=S(cert.status).value,
            proof_hash=cert.proof_hash,
            content_id=cert.content_id,
            content_url=self.content.public_url(cert.content_id) if cert.content_id else None,
            tx_ref=cert.tx_ref,
            created_by=cert.created_by,
            approved_by=cert.approved_by,
            created_at=cert.created_at,
            approved_at=cert.approved_at,
            issued_at=cert.issued_at,
            revoked_at=cert.revoked_at,
            metadata=cert.meta or {},
        )

    def _snapshot(self, db: Session, cert: Certificate, kind: LedgerTxKind) -> _Snapshot:
        pending = crud.ledger_transaction.latest_pending(db, cert.id, kind)
        return _Snapshot(
            id=cert.id,
            status=cert.status,
            student_id=cert.student_id,
            student_name=cert.student.name,
            student_wallet=cert.student.wallet_address,
            type_name=cert.certificate_type.name,
            achievement=cert.achievement_data or {},
            approved_by=cert.approved_by,
            proof_hash=cert.proof_hash,
            content_id=cert.content_id,
            tx_ref=cert.tx_ref,
            meta=dict(cert.meta or {}),
            pending_tx=pending.tx_id if pending else None,
            has_ledger_rows=bool(crud.ledger_transaction.for_certificate(db, cert.id)),
        )

    def _claim(self, snap: _Snapshot, status: S) -> str:
        """Take the per-certificate submission slot with a conditional write."""
        age = claim_age(snap.tx_ref)
        if age is not None and age < self.config.SUBMISSION_CLAIM_TTL_SECONDS:
            raise InvalidState("Another ledger submission for this certificate is in progress",
                               certificate_id=snap.id, step="claim", details={"claim_age_seconds": int(age)})
        claim = new_claim()
        with self._sessions.begin() as db:
            if not crud.certificate.swap_tx_ref(db, snap.id, status=status, current=snap.tx_ref, new=claim):
                raise InvalidState("Certificate changed before ledger submission", certificate_id=snap.id, step="claim")
            cert = self._load(db, snap.id)
            crud.certificate.merge_meta(db, cert, ledger_attempts=int(cert.meta.get("ledger_attempts", 0)) + 1)
        return claim

    def _release(self, certificate_id: int, status: S, claim: str, restore: Optional[str]) -> None:
        try:
            with self._sessions.begin() as db:
                crud.certificate.swap_tx_ref(db, certificate_id, status=status, current=claim, new=restore)
        except SQLAlchemyError as exc:
            # the claim expires on its own after SUBMISSION_CLAIM_TTL_SECONDS
            logger.error("could not release claim on certificate %s: %s", certificate_id, exc)

    def _record_submission(self, certificate_id: int, status: S, claim: str, handle: TxHandle, **meta: Any) -> bool:
        """Point the certificate at a broadcast transaction and add its pending row.

        Retried a few times. False when the store kept failing: the transaction
        is on the network but nothing in the store refers to it yet.
        """
        for attempt in range(1, self.record_attempts + 1):
            try:
                with self._sessions.begin() as db:
                    crud.certificate.swap_tx_ref(db, certificate_id, status=status, current=claim, new=handle.tx_id)
                    crud.ledger_transaction.upsert(
                        db, tx_id=handle.tx_id, certificate_id=certificate_id, kind=handle.kind,
                        status=LedgerTxStatus.pending, gas_price=handle.gas_price,
                    )
                    if meta:
                        crud.certificate.merge_meta(db, self._load(db, certificate_id), **meta)
                return True
            except SQLAlchemyError as exc:
                logger.error("could not record %s submission %s for certificate %s (attempt %d/%d): %s",
                             handle.kind.value, handle.tx_id, certificate_id, attempt, self.record_attempts, exc)
                if attempt < self.record_attempts:
                    time.sleep(self.record_backoff * attempt)
        return False

    def _resolve_pending(self, certificate_id: int, tx_id: str, kind: LedgerTxKind) -> Optional[LedgerReceipt]:
        """Outcome of an earlier submission: its receipt, or None once it is known to have failed."""
        try:
            receipt = self.ledger.receipt_for(tx_id)
            if receipt is None and self.ledger.is_known(tx_id):
                raise LedgerTimeout(f"Earlier {kind.value} transaction {tx_id} is still pending",
                                    certificate_id=certificate_id, step="resolve_pending", details={"tx_id": tx_id})
        except LedgerError as exc:
            raise exc.with_context(certificate_id=certificate_id, step="resolve_pending")
        if receipt is not None and receipt.success:
            return receipt
        reason = "reverted" if receipt is not None else "dropped from the network"
        with self._sessions.begin() as db:
            settlement.fail_transaction(db, certificate_id, tx_id=tx_id, kind=kind, reason=reason, receipt=receipt)
        return None

    def _persist(self, fn: Callable[[Session], Any], *, certificate_id: int, proof_hash: Optional[str],
                 tx_id: Optional[str], what: str):
        try:
            with self._sessions.begin() as db:
                return fn(db)
        except CertLedgerError:
            raise
        except SQLAlchemyError as exc:
            logger.error("ledger %s for certificate %s is final but the store write failed: %s",
                         what, certificate_id, exc)
            raise PartialFailure(
                f"Ledger {what} confirmed but the record store was not updated; it will be reconciled",
                certificate_id=certificate_id, step="persist", proof_hash=proof_hash, tx_id=tx_id,
            ) from exc

    # ------------------------------ requests ------------------------------

    def request_certificate(self, student_id: int, certificate_type_id: int,
                            achievement_data: Dict[str, Any], actor_id: int) -> RequestResult:
        with self._sessions.begin() as db:
            student = crud.student.get(db, student_id)
            if student is None:
                raise NotFound(f"Student {student_id} not found", details={"student_id": student_id})
            ctype = crud.certificate_type.get_active(db, certificate_type_id)
            if ctype is None:
                raise NotFound(f"Certificate type {certificate_type_id} not found",
                               details={"certificate_type_id": certificate_type_id})

            violations = validate_achievement(achievement_data, ctype.achievement_schema)
            if violations:
                raise ValidationError(f"Invalid achievement data: {describe(violations)}",
                                      violations=[v.model_dump() for v in violations])

            cert = crud.certificate.create(db, {
                "student_id": student.id,
                "certificate_type_id": ctype.id,
                "achievement_data": dict(achievement_data or {}),
                "status": S.pending,
                "created_by": actor_id,
                "meta": {},
            })
            crud.certificate.add_approval(db, certificate_id=cert.id, actor_id=actor_id,
                                          decision=ApprovalDecision.pending,
                                          comment="Request created, awaiting approval")
            result = RequestResult(id=cert.id, status=S.pending.value, student_name=student.name,
                                   certificate_type=ctype.name, created_at=cert.created_at)
        logger.info("certificate %s requested for student %s (%s) by user %s",
                    result.id, student_id, result.certificate_type, actor_id)
        return result

    # ------------------------------ decisions -----------------------------

    def _decide(self, certificate_id: int, actor_id: int, target: S, comment: Optional[str]) -> schemas.Certificate:
        with self._sessions.begin() as db:
            cert = self._load(db, certificate_id)
            require_status(cert.status, S.pending, certificate_id=certificate_id,
                           action="approve" if target is S.approved else "reject")
            values: Dict[str, Any] = {}
            if target is S.approved:
                values = {"approved_by": actor_id, "approved_at": utcnow()}
            if not crud.certificate.transition(db, certificate_id, expected=S.pending, target=target, **values):
                raise InvalidState("Certificate was decided concurrently", certificate_id=certificate_id)
            crud.certificate.add_approval(db, certificate_id=certificate_id, actor_id=actor_id,
                                          decision=ApprovalDecision(target.value), comment=comment)
            out = self._view(self._load(db, certificate_id))
        logger.info("certificate %s %s by user %s", certificate_id, target.value, actor_id)
        return out

    def approve(self, certificate_id: int, actor_id: int, comment: Optional[str] = None) -> schemas.Certificate:
        return self._decide(certificate_id, actor_id, S.approved, comment)

    def reject(self, certificate_id: int, actor_id: int, comment: Optional[str]) -> schemas.Certificate:
        if not comment or not comment.strip():
            raise ValidationError("A rejection must include a comment", certificate_id=certificate_id,
                                  violations=[{"field": "comment", "message": "required field missing: comment"}])
        return self._decide(certificate_id, actor_id, S.rejected, comment.strip())

    def batch_approve(self, certificate_ids: Iterable[int], actor_id: int,
                      comment: Optional[str] = None) -> List[schemas.BatchItem]:
        results = []
        for cid in certificate_ids:
            try:
                cert = self.approve(cid, actor_id, comment)
                results.append(schemas.BatchItem(certificate_id=cid, ok=True, status=cert.status))
            except CertLedgerError as exc:
                results.append(schemas.BatchItem(certificate_id=cid, ok=False, error=exc.to_dict()))
            except SQLAlchemyError as exc:
                logger.error("batch approval of certificate %s failed in the store: %s", cid, exc)
                results.append(schemas.BatchItem(certificate_id=cid, ok=False, error={
                    "code": "STORE_ERROR", "message": "Record store write failed",
                    "details": {"certificate_id": cid},
                }))
        logger.info("batch approval by user %s: %d/%d approved",
                    actor_id, sum(1 for r in results if r.ok), len(results))
        return results

    # ------------------------------ issuance ------------------------------

    def build_metadata(self, snap: _Snapshot, issued_at: str) -> Dict[str, Any]:
        cfg = self.config
        return {
            "name": f"{snap.type_name} certificate - {snap.student_name}",
            "description": f"{snap.type_name} certificate issued to {snap.student_name}",
            "image": cfg.CERTIFICATE_TEMPLATE_URL,
            "certificate": {
                "id": snap.id,
                "type": snap.type_name,
                "student": {"id": snap.student_id, "name": snap.student_name},
                "achievement": snap.achievement,
                "issuer": {"address": self.ledger.address, "name": cfg.CERTIFICATE_ISSUER_NAME},
                "issuedAt": issued_at,
                "blockchain": {"network": cfg.BLOCKCHAIN_NETWORK, "contract": self.ledger.contract_address},
            },
            "version": "1.0",
            "standard": "Certificate-v1",
            "verification_url": f"{cfg.UI_URL.rstrip('/')}/verify/{snap.id}",
        }

    def _destination(self, snap: _Snapshot, destination: Optional[str], custodial: bool) -> str:
        if destination and custodial:
            raise ValidationError("Give a destination address or request custodial issuance, not both",
                                  certificate_id=snap.id)
        if custodial:
            return self.config.CUSTODIAL_ADDRESS
        address = destination or snap.student_wallet
        if not address:
            raise ValidationError("A destination address is required (or request custodial issuance)",
                                  certificate_id=snap.id,
                                  violations=[{"field": "destination_address", "message": "required field missing: destination_address"}])
        if not self.ledger.is_address(address):
            raise ValidationError(f"Invalid destination address: {address}", certificate_id=snap.id,
                                  violations=[{"field": "destination_address", "message": "not a valid address"}])
        return address

    def _issued(self, cert: Certificate, **kw: Any) -> schemas.IssueResult:
        meta = cert.meta or {}
        return schemas.IssueResult(
            certificate=self._view(cert),
            proof_hash=cert.proof_hash,
            content_id=cert.content_id,
            content_degraded=bool(meta.get("content_store_degraded")),
            custodial=bool(meta.get("custodial")),
            **kw,
        )

    def _find_existing_proof(self, snap: _Snapshot) -> Optional[Tuple[str, ProofRecord]]:
        """A valid, unclaimed proof on the ledger that belongs to this certificate."""
        pending_cid = snap.meta.get("pending_content_id")
        for proof_hash in reversed(self.ledger.query_by_student(str(snap.student_id))):
            with self._sessions() as db:
                if crud.certificate.get_by_proof_hash(db, proof_hash) is not None:
                    continue
            valid, record = self.ledger.query_proof(proof_hash)
            if not valid or record is None or record.certificate_type != snap.type_name:
                continue
            if pending_cid and record.content_id == pending_cid:
                return proof_hash, record
            try:
                doc = self.content.get(record.content_id)
            except ContentStoreError:
                continue
            if doc.get("certificate", {}).get("id") == snap.id:
                return proof_hash, record
        return None

    def issue(
        self,
        certificate_id: int,
        destination: Optional[str] = None,
        *,
        custodial: bool = False,
        cancel: Optional[threading.Event] = None,
    ) -> schemas.IssueResult:
        self._require_ledger()
        with self._sessions() as db:
            cert = self._load(db, certificate_id)
            if cert.status is S.issued and cert.proof_hash:
                logger.info("certificate %s already issued; returning stored proof", certificate_id)
                return self._issued(cert, already_issued=True, tx_id=cert.tx_ref)
            require_status(cert.status, S.approved, certificate_id=certificate_id, action="issue")
            snap = self._snapshot(db, cert, LedgerTxKind.issue)
        dest = self._destination(snap, destination, custodial)

        # an earlier attempt may already have landed
        if snap.pending_tx:
            receipt = self._resolve_pending(certificate_id, snap.pending_tx, LedgerTxKind.issue)
            if receipt is not None:
                return self._settle_issue(snap, receipt, fallback_cid=snap.meta.get("pending_content_id"), recovered=True)
            snap = self._reload_snapshot(certificate_id, LedgerTxKind.issue)
        if snap.has_ledger_rows or snap.meta.get("ledger_attempts") or snap.meta.get("pending_content_id"):
            try:
                found = self._find_existing_proof(snap)
            except LedgerError as exc:
                raise exc.with_context(certificate_id=certificate_id, step="ledger_lookup")
            if found is not None:
                proof_hash, record = found
                logger.warning("certificate %s already has proof %s on the ledger; adopting it", certificate_id, proof_hash)
                cert = self._persist(
                    lambda db: settlement.settle_issue(db, certificate_id, proof_hash=proof_hash,
                                                       content_id=record.content_id, source="ledger_lookup")[0],
                    certificate_id=certificate_id, proof_hash=proof_hash, tx_id=None, what="issue",
                )
                return self._issued(cert, recovered=True)

        # (1) metadata document
        issued_at = utcnow().isoformat()
        try:
            put: PutResult = self.content.put(self.build_metadata(snap, issued_at))
        except CertLedgerError as exc:
            raise exc.with_context(certificate_id=certificate_id, step="content_put")
        if put.degraded:
            logger.warning("certificate %s metadata only pinned locally: %s", certificate_id, put.reason)

        # (2) claim + submit
        claim = self._claim(snap, S.approved)
        try:
            handle = self.ledger.submit_issue(dest, str(snap.student_id), snap.type_name, put.content_id)
        except CertLedgerError as exc:
            self._release(certificate_id, S.approved, claim, snap.tx_ref if claim_age(snap.tx_ref) is None else None)
            raise exc.with_context(certificate_id=certificate_id, step="ledger_submit")
        recorded = self._record_submission(
            certificate_id, S.approved, claim, handle,
            pending_content_id=put.content_id,
            content_store_degraded=put.degraded,
            custodial=custodial,
            destination=dest,
        )

        # (3) wait for inclusion
        receipt = self._wait(certificate_id, handle, cancel, recorded=recorded, content_id=put.content_id)

        # (4) + (5)
        return self._settle_issue(snap, receipt, fallback_cid=put.content_id,
                                  meta={"content_store_degraded": put.degraded, "custodial": custodial})

    def _reload_snapshot(self, certificate_id: int, kind: LedgerTxKind) -> _Snapshot:
        with self._sessions() as db:
            return self._snapshot(db, self._load(db, certificate_id), kind)

    def _wait(self, certificate_id: int, handle: TxHandle, cancel: Optional[threading.Event], *,
              recorded: bool = True, content_id: Optional[str] = None) -> LedgerReceipt:
        try:
            return self.ledger.wait_for_inclusion(handle, cancel=cancel)
        except LedgerRejected as exc:
            try:
                with self._sessions.begin() as db:
                    settlement.fail_transaction(db, certificate_id, tx_id=handle.tx_id, kind=handle.kind,
                                                reason=exc.message)
            except SQLAlchemyError as store_exc:
                # a pending row is failed by the sweep; an unrecorded one keeps its claim until it expires
                logger.error("could not mark %s %s failed for certificate %s: %s",
                             handle.kind.value, handle.tx_id, certificate_id, store_exc)
            raise exc.with_context(certificate_id=certificate_id, step="ledger_wait")
        except CertLedgerError as exc:
            if not recorded:
                raise PartialFailure(
                    f"Ledger {handle.kind.value} {handle.tx_id} was broadcast but could not be recorded; "
                    "do not resubmit",
                    certificate_id=certificate_id, step="record_submission", tx_id=handle.tx_id,
                    details={"content_id": content_id, "wait_error": exc.code},
                ) from exc
            # timeout/cancel: the transaction stays pending for retry or the reconciler
            raise exc.with_context(certificate_id=certificate_id, step="ledger_wait")

    def _settle_issue(self, snap: _Snapshot, receipt: LedgerReceipt, *, fallback_cid: Optional[str],
                      meta: Optional[Dict[str, Any]] = None, recovered: bool = False) -> schemas.IssueResult:
        try:
            proof_hash = self.ledger.extract_proof_hash(receipt)
        except LedgerError as exc:
            raise exc.with_context(certificate_id=snap.id, step="ledger_extract")
        content_id = receipt.content_id or fallback_cid
        cert = self._persist(
            lambda db: settlement.settle_issue(db, snap.id, proof_hash=proof_hash, content_id=content_id,
                                               source="lifecycle", receipt=receipt, meta=meta)[0],
            certificate_id=snap.id, proof_hash=proof_hash, tx_id=receipt.tx_id, what="issue",
        )
        return self._issued(cert, tx_id=receipt.tx_id, block_number=receipt.block_number,
                            gas_used=receipt.gas_used, recovered=recovered)

    # ----------------------------- revocation -----------------------------

    def revoke(self, certificate_id: int, *, cancel: Optional[threading.Event] = None) -> schemas.RevokeResult:
        self._require_ledger()
        with self._sessions() as db:
            cert = self._load(db, certificate_id)
            if cert.status is S.revoked:
                return schemas.RevokeResult(certificate=self._view(cert), already_revoked=True, tx_id=cert.tx_ref)
            require_status(cert.status, S.issued, certificate_id=certificate_id, action="revoke")
            snap = self._snapshot(db, cert, LedgerTxKind.revoke)

        if snap.pending_tx:
            receipt = self._resolve_pending(certificate_id, snap.pending_tx, LedgerTxKind.revoke)
            if receipt is not None:
                return self._settle_revoke(certificate_id, receipt, recovered=True)
            snap = self._reload_snapshot(certificate_id, LedgerTxKind.revoke)

        try:
            valid, record = self.ledger.query_proof(snap.proof_hash)
        except LedgerError as exc:
            raise exc.with_context(certificate_id=certificate_id, step="ledger_lookup")
        if record is None:
            raise LedgerError(f"Proof {snap.proof_hash} is not on the ledger", certificate_id=certificate_id,
                              step="ledger_lookup", details={"proof_hash": snap.proof_hash})
        if not valid:
            logger.warning("certificate %s is already revoked on the ledger; settling", certificate_id)
            cert = self._persist(
                lambda db: settlement.settle_revoke(db, certificate_id, source="ledger_lookup")[0],
                certificate_id=certificate_id, proof_hash=snap.proof_hash, tx_id=None, what="revocation",
            )
            return schemas.RevokeResult(certificate=self._view(cert), recovered=True)

        claim = self._claim(snap, S.issued)
        restore = snap.tx_ref if claim_age(snap.tx_ref) is None else None
        try:
            handle = self.ledger.submit_revoke(snap.proof_hash)
        except CertLedgerError as exc:
            self._release(certificate_id, S.issued, claim, restore)
            raise exc.with_context(certificate_id=certificate_id, step="ledger_submit")
        recorded = self._record_submission(certificate_id, S.issued, claim, handle)

        receipt = self._wait(certificate_id, handle, cancel, recorded=recorded)
        return self._settle_revoke(certificate_id, receipt)

    def _settle_revoke(self, certificate_id: int, receipt: LedgerReceipt, recovered: bool = False) -> schemas.RevokeResult:
        cert = self._persist(
            lambda db: settlement.settle_revoke(db, certificate_id, source="lifecycle", receipt=receipt)[0],
            certificate_id=certificate_id, proof_hash=None, tx_id=receipt.tx_id, what="revocation",
        )
        return schemas.RevokeResult(certificate=self._view(cert), tx_id=receipt.tx_id,
                                    block_number=receipt.block_number, recovered=recovered)

    # ------------------------------- reads --------------------------------

    def verify(self, proof_hash: str) -> schemas.Verification:
        self._require_ledger()
        valid, record = self.ledger.query_proof(proof_hash)
        with self._sessions() as db:
            cert = crud.certificate.get_by_proof_hash(db, proof_hash)
            view = self._view(cert) if cert is not None else None
        if not valid:
            message = "Certificate revoked on the ledger" if record is not None else "Certificate not found on the ledger"
            return schemas.Verification(proof_hash=proof_hash, is_valid=False, message=message,
                                        ledger=record, certificate=view)
        return schemas.Verification(proof_hash=proof_hash, is_valid=True, message="Certificate verified",
                                    ledger=record, certificate=view)

    def get_certificate(self, certificate_id: int) -> schemas.CertificateDetail:
        with self._sessions() as db:
            cert = self._load(db, certificate_id)
            return schemas.CertificateDetail(
                **self._view(cert).model_dump(),
                approval_history=[schemas.ApprovalRecord.model_validate(r)
                                  for r in crud.certificate.approval_history(db, certificate_id)],
                ledger_transactions=[schemas.LedgerTransaction.model_validate(t)
                                     for t in crud.ledger_transaction.for_certificate(db, certificate_id)],
            )

    def list_certificates(self, **filters: Any) -> List[schemas.Certificate]:
        with self._sessions() as db:
            return [self._view(c) for c in crud.certificate.list(db, **filters)]

    def certificate_types(self) -> List[schemas.CertificateType]:
        with self._sessions() as db:
            return [schemas.CertificateType.model_validate(t) for t in crud.certificate_type.list_active(db)]

    def stats(self) -> schemas.Stats:
        with self._sessions() as db:
            return schemas.Stats(**crud.certificate.stats(db))

    def ledger_info(self) -> schemas.LedgerInfo:
        self._require_ledger()
        return schemas.LedgerInfo(
            contract=self.ledger.contract_info(),
            issuer=self.ledger.address,
            balance_ether=str(self.ledger.balance()),
            network=self.config.BLOCKCHAIN_NETWORK,
        )

    def student_certificates(self, student_id: int) -> schemas.StudentCertificates:
        with self._sessions() as db:
            if crud.student.get(db, student_id) is None:
                raise NotFound(f"Student {student_id} not found", details={"student_id": student_id})
            rows = [self._view(c) for c in crud.certificate.list(db, student_id=student_id)]
        proofs: List[schemas.StudentProof] = []
        ledger_error = None
        try:
            for proof_hash in self.ledger.query_by_student(str(student_id)):
                valid, record = self.ledger.query_proof(proof_hash)
                proofs.append(schemas.StudentProof(proof_hash=proof_hash, is_valid=valid, ledger=record))
        except (LedgerError, ServiceUnavailable) as exc:
            logger.warning("ledger lookup for student %s failed: %s", student_id, exc)
            ledger_error = exc.message
        return schemas.StudentCertificates(student_id=student_id, database=rows, ledger=proofs, ledger_error=ledger_error)
