from __future__ import annotations

from typing import Any, Dict, List, Optional
from sqlalchemy import select, update, func
from sqlalchemy.orm import Session

from certledger.crud.base import CRUDBase
from certledger.models.certificate import Certificate, CertificateStatus
from certledger.models.approval import ApprovalRecord, ApprovalDecision

_UNSET = object()

class CRUDCertificate(CRUDBase[Certificate]):
    def get_fresh(self, db: Session, id: int) -> Optional[Certificate]:
        return db.get(Certificate, id, populate_existing=True)

    def get_by_proof_hash(self, db: Session, proof_hash: str) -> Optional[Certificate]:
        return db.scalar(select(Certificate).where(Certificate.proof_hash == (proof_hash or "").lower()))

    def list(
        self,
        db: Session,
        *,
        status: CertificateStatus | None = None,
        student_id: int | None = None,
        certificate_type_id: int | None = None,
        created_by: int | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> List[Certificate]:
        stmt = select(Certificate)
        if status is not None:
            stmt = stmt.where(Certificate.status == status)
        if student_id is not None:
            stmt = stmt.where(Certificate.student_id == student_id)
        if certificate_type_id is not None:
            stmt = stmt.where(Certificate.certificate_type_id == certificate_type_id)
        if created_by is not None:
            stmt = stmt.where(Certificate.created_by == created_by)
        stmt = stmt.order_by(Certificate.created_at.desc(), Certificate.id.desc())
        if offset:
            stmt = stmt.offset(offset)
        if limit:
            stmt = stmt.limit(limit)
        return list(db.scalars(stmt).unique())

    def transition(
        self,
        db: Session,
        id: int,
        *,
        expected: CertificateStatus,
        target: CertificateStatus,
        where_tx_ref: Any = _UNSET,
        **values: Any,
    ) -> bool:
        """Compare-and-set status write. False when another writer got there first.

        With `where_tx_ref` given, the row must also still carry that reference.
        """
        stmt = update(Certificate).where(Certificate.id == id, Certificate.status == expected)
        if where_tx_ref is not _UNSET:
            stmt = stmt.where(Certificate.tx_ref.is_(None) if where_tx_ref is None else Certificate.tx_ref == where_tx_ref)
        assignments = {getattr(Certificate, k): v for k, v in values.items()}
        assignments[Certificate.status] = target
        res = db.execute(stmt.values(assignments).execution_options(synchronize_session=False))
        return res.rowcount == 1

    def swap_tx_ref(self, db: Session, id: int, *, status: CertificateStatus, current: Optional[str], new: Optional[str]) -> bool:
        """Conditionally replace tx_ref while the certificate stays in `status`."""
        stmt = update(Certificate).where(Certificate.id == id, Certificate.status == status)
        stmt = stmt.where(Certificate.tx_ref.is_(None) if current is None else Certificate.tx_ref == current)
        res = db.execute(stmt.values(tx_ref=new).execution_options(synchronize_session=False))
        return res.rowcount == 1

    def merge_meta(self, db: Session, cert: Certificate, **facts: Any) -> Dict[str, Any]:
        merged = {**(cert.meta or {}), **facts}
        cert.meta = merged
        db.flush()
        return merged

    # ---------------------------- approvals ----------------------------

    def add_approval(self, db: Session, *, certificate_id: int, actor_id: int,
                     decision: ApprovalDecision, comment: str | None = None) -> ApprovalRecord:
        rec = ApprovalRecord(certificate_id=certificate_id, actor_id=actor_id, decision=decision, comment=comment)
        db.add(rec); db.flush()
        return rec

    def approval_history(self, db: Session, certificate_id: int) -> List[ApprovalRecord]:
        return list(db.scalars(
            select(ApprovalRecord)
            .where(ApprovalRecord.certificate_id == certificate_id)
            .order_by(ApprovalRecord.created_at.desc(), ApprovalRecord.id.desc())
        ))

    def stats(self, db: Session) -> Dict[str, int]:
        rows = db.execute(select(Certificate.status, func.count(Certificate.id)).group_by(Certificate.status)).all()
        out = {s.value: 0 for s in CertificateStatus}
        for status, n in rows:
            out[CertificateStatus(status).value] = n
        out["total"] = sum(out.values())
        return out

certificate = CRUDCertificate(Certificate)
