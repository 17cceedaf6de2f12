"""Shared fixtures: in-memory store, fake ledger, IPFS API behind httpx.MockTransport."""

from __future__ import annotations

import hashlib
import itertools
import json
import os
import tempfile
import threading
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="certledger-test-"))
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("RECONCILER_ENABLED", "false")
os.environ.setdefault("SECRET_KEY", "test-secret")

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import certledger.models  # noqa: F401
from certledger.core.config import Settings
from certledger.core.errors import LedgerRejected, LedgerTimeout, OperationCancelled
from certledger.core.security import hash_password
from certledger.db.base import Base
from certledger.db.init_db import init_db
from certledger.models.certificate_type import CertificateType
from certledger.models.role import Role
from certledger.models.student import Student
from certledger.models.user import User
from certledger.models.ledger_transaction import LedgerTxKind
from certledger.services.content_store import ContentStoreGateway
from certledger.services.ledger import ContractInfo, LedgerEvent, LedgerGateway, LedgerReceipt, ProofRecord, TxHandle
from certledger.services.lifecycle import CertificateLifecycle
from certledger.services.readiness import ServiceStatus

WALLET = "0x" + "ab" * 20
OTHER_WALLET = "0x" + "cd" * 20
CUSTODY = "0x" + "ee" * 20
ISSUER = "0x" + "11" * 20
CONTRACT = "0x" + "22" * 20
PASSWORD = "secret123"


def _hash(*parts: object) -> str:
    return "0x" + hashlib.sha256(":".join(map(str, parts)).encode()).hexdigest()


class FakeLedger:
    """In-memory stand-in for LedgerGateway with manual or automatic mining."""

    extract_proof_hash = staticmethod(LedgerGateway.extract_proof_hash)
    is_address = staticmethod(LedgerGateway.is_address)

    def __init__(self, *, auto_mine: bool = True):
        self.auto_mine = auto_mine
        self.revert_next = False
        self.fail_submit: Optional[Exception] = None
        self.status = ServiceStatus.ok("ledger")
        self.address = ISSUER
        self.contract_address = CONTRACT
        self.submissions: List[Tuple[str, tuple]] = []
        self.pending: Dict[str, tuple] = {}
        self.receipts: Dict[str, LedgerReceipt] = {}
        self.proofs: Dict[str, ProofRecord] = {}
        self.by_student: Dict[str, List[str]] = {}
        self.events: List[LedgerEvent] = []
        self.block = 100
        self._ids = itertools.count(1)

    # submission
    def submit_issue(self, destination, student_id, type_name, content_id) -> TxHandle:
        return self._submit(LedgerTxKind.issue, (destination, str(student_id), type_name, content_id))

    def submit_revoke(self, proof_hash) -> TxHandle:
        return self._submit(LedgerTxKind.revoke, (proof_hash,))

    def _submit(self, kind, args) -> TxHandle:
        if self.fail_submit is not None:
            raise self.fail_submit
        tx_id = _hash("tx", next(self._ids))
        self.pending[tx_id] = (kind, args)
        self.submissions.append((kind.value, args))
        return TxHandle(tx_id=tx_id, kind=kind, gas_limit=120_000, gas_price=2_000_000_000)

    def mine(self, tx_id: Optional[str] = None, *, success: bool = True) -> LedgerReceipt:
        tx_id = tx_id or next(iter(self.pending))
        kind, args = self.pending.pop(tx_id)
        self.block += 1
        now = datetime.now(timezone.utc)
        receipt = LedgerReceipt(tx_id=tx_id, block_number=self.block, block_hash=_hash("block", self.block),
                                gas_used=90_000, gas_price=2_000_000_000, success=success)
        if success and kind is LedgerTxKind.issue:
            destination, student_id, type_name, content_id = args
            proof_hash = _hash("proof", tx_id)
            self.proofs[proof_hash] = ProofRecord(
                id=len(self.proofs) + 1, destination=destination, student_id=student_id,
                certificate_type=type_name, content_id=content_id, issued_at=now,
                issuer=ISSUER, is_valid=True,
            )
            self.by_student.setdefault(student_id, []).append(proof_hash)
            receipt = receipt.model_copy(update={"proof_hash": proof_hash, "content_id": content_id})
            self.events.append(LedgerEvent(kind=kind, proof_hash=proof_hash, student_topic=_hash(student_id),
                                           certificate_type=type_name, content_id=content_id, timestamp=now,
                                           block_number=self.block, tx_id=tx_id, log_index=0))
        elif success:
            (proof_hash,) = args
            self.proofs[proof_hash] = self.proofs[proof_hash].model_copy(update={"is_valid": False})
            receipt = receipt.model_copy(update={"revoked_hashes": [proof_hash]})
            self.events.append(LedgerEvent(kind=kind, proof_hash=proof_hash, student_topic=_hash("student"),
                                           timestamp=now, block_number=self.block, tx_id=tx_id, log_index=0))
        self.receipts[tx_id] = receipt
        return receipt

    def drop(self, tx_id: str) -> None:
        self.pending.pop(tx_id)

    # inclusion
    def receipt_for(self, tx_id):
        return self.receipts.get(tx_id)

    def is_known(self, tx_id):
        return tx_id in self.pending or tx_id in self.receipts

    def wait_for_inclusion(self, handle, timeout=None, cancel=None):
        tx_id = handle.tx_id if isinstance(handle, TxHandle) else handle
        if cancel is not None and cancel.is_set():
            raise OperationCancelled(f"Stopped waiting for {tx_id}", step="ledger_wait")
        if tx_id in self.pending and self.auto_mine:
            success = not self.revert_next
            self.revert_next = False
            self.mine(tx_id, success=success)
        receipt = self.receipts.get(tx_id)
        if receipt is None:
            raise LedgerTimeout(f"Transaction {tx_id} not included", step="ledger_wait")
        if not receipt.success:
            raise LedgerRejected(f"Transaction {tx_id} reverted", step="ledger_wait")
        return receipt

    # reads
    def query_proof(self, proof_hash):
        record = self.proofs.get((proof_hash or "").lower())
        if record is None:
            return False, None
        return record.is_valid, record

    def query_by_student(self, student_id):
        return list(self.by_student.get(str(student_id), []))

    def contract_info(self):
        return ContractInfo(address=CONTRACT, owner=ISSUER, total_certificates=len(self.proofs), chain_id=31337)

    def balance(self):
        return Decimal("1.5")

    def latest_block(self):
        return self.block

    def stream(self, from_block, stop: threading.Event):
        for event in list(self.events):
            if stop.is_set():
                return
            if event.block_number >= from_block:
                yield event
        stop.wait()


class FakeIpfs:
    """Minimal IPFS HTTP API + gateway for httpx.MockTransport."""

    def __init__(self):
        self.docs: Dict[str, dict] = {}
        self.down = False
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.down:
            raise httpx.ConnectError("connection refused", request=request)
        path = request.url.path
        if path == "/api/v0/add":
            raw = request.read()
            doc = json.loads(raw[raw.index(b"{"):raw.rindex(b"}") + 1])
            cid = "bafy" + hashlib.sha256(raw[raw.index(b"{"):raw.rindex(b"}") + 1]).hexdigest()[:40]
            self.docs[cid] = doc
            return httpx.Response(200, json={"Name": "metadata.json", "Hash": cid, "Size": str(len(raw))})
        if path == "/api/v0/cat":
            cid = request.url.params.get("arg")
            if cid not in self.docs:
                return httpx.Response(500, json={"Message": "not found"})
            return httpx.Response(200, content=json.dumps(self.docs[cid]).encode())
        if path == "/api/v0/version":
            return httpx.Response(200, json={"Version": "0.29.0"})
        if path.startswith("/ipfs/"):
            cid = path[len("/ipfs/"):]
            if not cid:
                return httpx.Response(200)
            if cid not in self.docs:
                return httpx.Response(404)
            return httpx.Response(200, json=self.docs[cid])
        return httpx.Response(404)


def _make_settings(**overrides) -> Settings:
    defaults = {"CUSTODIAL_ADDRESS": CUSTODY, "SUBMISSION_CLAIM_TTL_SECONDS": 600,
                "CERTIFICATE_ISSUER_NAME": "Test University", "UI_URL": "http://ui.test"}
    defaults.update(overrides)
    return Settings(**defaults)


@pytest.fixture
def engine():
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def sessions(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def seeded(sessions):
    """Roles, operators, certificate types and two students. Returns their ids."""
    with sessions() as db:
        init_db(db)
        roles = {r.name: r for r in db.query(Role).all()}
        ids = {}
        for name in ("registrar", "approver"):
            u = User(name=name.title(), email=f"{name}@example.org",
                     hashed_password=hash_password(PASSWORD), status="active")
            u.roles.append(roles[name])
            db.add(u); db.flush()
            ids[name] = u.id
        ids["admin"] = db.query(User).filter_by(email="admin@example.org").one().id
        alice = Student(name="Alice Doe", email="alice@example.org", wallet_address=WALLET)
        bob = Student(name="Bob Roe", email="bob@example.org")
        db.add_all([alice, bob]); db.flush()
        ids["alice"], ids["bob"] = alice.id, bob.id
        ids["honor_roll"] = db.query(CertificateType).filter_by(name="honor-roll").one().id
        ids["course"] = db.query(CertificateType).filter_by(name="course-completion").one().id
        db.commit()
    return ids


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def ipfs():
    return FakeIpfs()


@pytest.fixture
def content(ipfs):
    gw = ContentStoreGateway("http://ipfs.test:5001", "http://gateway.test/ipfs/", transport=httpx.MockTransport(ipfs))
    yield gw
    gw.shutdown()


@pytest.fixture
def lifecycle(sessions, ledger, content):
    return CertificateLifecycle(sessions, ledger, content, config=_make_settings())


@pytest.fixture
def make_approved(lifecycle, seeded):
    def _make(student: str = "alice", payload: Optional[dict] = None) -> int:
        req = lifecycle.request_certificate(seeded[student], seeded["honor_roll"],
                                            payload or {"gpa": 3.9}, seeded["registrar"])
        lifecycle.approve(req.id, seeded["approver"])
        return req.id
    return _make
