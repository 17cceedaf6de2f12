# certledger/services/reconciler.py
"""
Converges the record store onto the ledger.

Two inputs feed the same settlement code the lifecycle uses:

* ledger events (CertificateIssued / CertificateRevoked), consumed from
  `LedgerGateway.stream` on a background thread. The last applied block is
  saved in `reconciler_state`, so a restart resumes where the previous run
  stopped instead of at the chain head;
* a periodic sweep over transactions that stayed `pending` longer than
  RECONCILE_PENDING_AGE_SECONDS (lost responses, crashed waits, restarts).

Both are idempotent: transaction rows are upserted by tx id and settling an
already-settled certificate changes nothing.
"""
from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from certledger import crud
from certledger.core.errors import CertLedgerError
from certledger.models.certificate import Certificate, utcnow
from certledger.models.ledger_transaction import LedgerTxKind
from certledger.services import settlement
from certledger.services.ledger import LedgerEvent, LedgerGateway, LedgerReceipt

logger = logging.getLogger(__name__)


class Reconciler:
    def __init__(
        self,
        sessions: sessionmaker,
        ledger: LedgerGateway,
        *,
        pending_age: float = 300,
        interval: float = 60,
        sweep_limit: int = 100,
        start_block: Optional[int] = None,
        backoff_base: float = 1.0,
        backoff_max: float = 60.0,
    ):
        self._sessions = sessions
        self.ledger = ledger
        self.pending_age = pending_age
        self.interval = interval
        self.sweep_limit = sweep_limit
        self.start_block = start_block
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.cursor_name = f"events:{(ledger.contract_address or '').lower()}"
        self.last_block: Optional[int] = None
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []

    # ------------------------------- events -------------------------------

    def _match(self, db, event: LedgerEvent) -> Optional[Certificate]:
        cert = crud.certificate.get_by_proof_hash(db, event.proof_hash)
        if cert is not None:
            return cert
        row = crud.ledger_transaction.get_by_tx_id(db, event.tx_id)
        if row is not None:
            return crud.certificate.get_fresh(db, row.certificate_id)
        return None

    def apply_event(self, event: LedgerEvent) -> bool:
        """Settle the certificate an event refers to. True when the store changed."""
        # events carry no gas data; upsert keeps whatever the receipt path stored
        receipt = LedgerReceipt(
            tx_id=event.tx_id,
            block_number=event.block_number,
            success=True,
            proof_hash=event.proof_hash,
            content_id=event.content_id,
        )
        with self._sessions.begin() as db:
            cert = self._match(db, event)
            if cert is None:
                logger.info("ledger %s event for unknown proof %s (tx %s); ignoring",
                            event.kind.value, event.proof_hash, event.tx_id)
                return False
            if event.kind is LedgerTxKind.issue:
                _, changed = settlement.settle_issue(
                    db, cert.id, proof_hash=event.proof_hash,
                    content_id=event.content_id or cert.content_id or cert.meta.get("pending_content_id"),
                    source="event", receipt=receipt, now=event.timestamp,
                )
            else:
                _, changed = settlement.settle_revoke(
                    db, cert.id, source="event", receipt=receipt, revoked_at=event.timestamp,
                )
        if changed:
            logger.info("reconciled certificate %s from %s event in block %s",
                        cert.id, event.kind.value, event.block_number)
        return changed

    # -------------------------------- sweep --------------------------------

    def sweep(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Resolve transactions left pending past the age threshold."""
        now = now or utcnow()
        cutoff = now - timedelta(seconds=self.pending_age)
        summary = {"checked": 0, "confirmed": 0, "failed": 0, "pending": 0, "errors": 0}
        with self._sessions() as db:
            stale = [(t.tx_id, t.certificate_id, t.kind)
                     for t in crud.ledger_transaction.pending_older_than(db, cutoff, self.sweep_limit)]

        for tx_id, certificate_id, kind in stale:
            summary["checked"] += 1
            try:
                outcome = self._resolve(tx_id, certificate_id, kind)
            except (CertLedgerError, SQLAlchemyError) as exc:
                summary["errors"] += 1
                logger.warning("sweep could not resolve %s %s for certificate %s: %s",
                               kind.value, tx_id, certificate_id, exc)
                continue
            summary[outcome] += 1

        if summary["checked"]:
            logger.info("reconcile sweep: %s", summary)
        return summary

    def _resolve(self, tx_id: str, certificate_id: int, kind: LedgerTxKind) -> str:
        receipt = self.ledger.receipt_for(tx_id)
        if receipt is None:
            if self.ledger.is_known(tx_id):
                return "pending"
            with self._sessions.begin() as db:
                settlement.fail_transaction(db, certificate_id, tx_id=tx_id, kind=kind,
                                            reason="dropped from the network")
            return "failed"
        if not receipt.success:
            with self._sessions.begin() as db:
                settlement.fail_transaction(db, certificate_id, tx_id=tx_id, kind=kind,
                                            reason="reverted", receipt=receipt)
            return "failed"

        with self._sessions.begin() as db:
            if kind is LedgerTxKind.issue:
                cert = crud.certificate.get_fresh(db, certificate_id)
                proof_hash = self.ledger.extract_proof_hash(receipt)
                content_id = receipt.content_id or (cert.meta or {}).get("pending_content_id")
                settlement.settle_issue(db, certificate_id, proof_hash=proof_hash, content_id=content_id,
                                        source="sweep", receipt=receipt)
            else:
                settlement.settle_revoke(db, certificate_id, source="sweep", receipt=receipt)
        return "confirmed"

    # ------------------------------ threads -------------------------------

    def _resume_block(self) -> int:
        """First block to read: the saved cursor (inclusive), else the start block or head."""
        with self._sessions() as db:
            saved = crud.reconciler_state.last_block(db, self.cursor_name)
        if saved is not None:
            self.last_block = saved
            return saved
        start = self.start_block
        if start is None:
            try:
                start = self.ledger.latest_block()
            except CertLedgerError as exc:
                logger.warning("event stream starting from block 0; head lookup failed: %s", exc)
                start = 0
        self._checkpoint(start)
        return start

    def _checkpoint(self, block: int) -> None:
        if block == self.last_block:
            return
        with self._sessions.begin() as db:
            crud.reconciler_state.save_block(db, self.cursor_name, block)
        self.last_block = block

    def _consume(self) -> None:
        failures = 0
        while not self._stop.is_set():
            try:
                start = self._resume_block()
                logger.info("ledger event consumer reading from block %s", start)
                for event in self.ledger.stream(start, self._stop):
                    try:
                        self.apply_event(event)
                    except CertLedgerError as exc:
                        # a conflict with the stored row; the periodic sweep settles pending rows
                        logger.error("could not apply %s event %s: %s", event.kind.value, event.tx_id, exc)
                    self._checkpoint(event.block_number)
                    failures = 0
            except Exception as exc:  # restart from the saved cursor
                failures += 1
                delay = min(self.backoff_max, self.backoff_base * 2 ** (failures - 1))
                logger.exception("ledger event consumer failed (attempt %d), restarting from block %s in %.1fs: %s",
                                 failures, self.last_block, delay, exc)
                self._stop.wait(delay)

    def _sweep_loop(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.sweep()
            except SQLAlchemyError as exc:
                logger.error("reconcile sweep failed: %s", exc)

    def start(self) -> None:
        if self._threads:
            return
        self._stop.clear()
        self._threads = [
            threading.Thread(target=self._consume, name="reconciler-events", daemon=True),
            threading.Thread(target=self._sweep_loop, name="reconciler-sweep", daemon=True),
        ]
        for t in self._threads:
            t.start()
        logger.info("reconciler started (interval=%ss, pending age=%ss)", self.interval, self.pending_age)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        for t in self._threads:
            t.join(timeout)
        self._threads = []
        logger.info("reconciler stopped")

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)
