# certledger/services/ledger.py
"""
Gateway to the certificate registry contract.

Every state-changing call goes through the same path: estimate gas, price it,
check the operating account can pay for it with a safety margin, sign locally
with the configured key and broadcast. Submission returns a `TxHandle`;
inclusion is awaited separately with `wait_for_inclusion` so callers decide
how long they block.

Events are read by polling `eth_getLogs` over block windows. `stream()` never
gives up on connection errors: it backs off and resumes from the first block
it has not finished delivering.
"""
from __future__ import annotations

import logging
import math
import threading
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterator, List, Optional, Tuple

from eth_account import Account
from pydantic import BaseModel
from web3 import Web3
from web3.exceptions import ContractLogicError, TransactionNotFound, Web3Exception
from web3.logs import DISCARD

from certledger.core.config import Settings
from certledger.core.errors import (
    CertLedgerError,
    InsufficientFunds,
    LedgerError,
    LedgerRejected,
    LedgerTimeout,
    OperationCancelled,
    ServiceUnavailable,
    ValidationError,
)
from certledger.models.ledger_transaction import LedgerTxKind
from certledger.services.readiness import ServiceStatus

logger = logging.getLogger(__name__)

NAME = "ledger"

# requests' connection errors are OSErrors; older providers raise ValueError for RPC errors
LEDGER_IO_ERRORS = (Web3Exception, OSError, ValueError)

_CERT_TUPLE = {
    "name": "certificate",
    "type": "tuple",
    "components": [
        {"name": "id", "type": "uint256"},
        {"name": "studentWallet", "type": "address"},
        {"name": "studentId", "type": "string"},
        {"name": "certificateType", "type": "string"},
        {"name": "ipfsHash", "type": "string"},
        {"name": "issuedAt", "type": "uint256"},
        {"name": "issuedBy", "type": "address"},
        {"name": "isValid", "type": "bool"},
    ],
}

CONTRACT_ABI: List[dict] = [
    {
        "type": "function", "name": "issueCertificate", "stateMutability": "nonpayable",
        "inputs": [
            {"name": "_studentWallet", "type": "address"},
            {"name": "_studentId", "type": "string"},
            {"name": "_certificateType", "type": "string"},
            {"name": "_ipfsHash", "type": "string"},
        ],
        "outputs": [{"name": "", "type": "bytes32"}],
    },
    {
        "type": "function", "name": "verifyCertificate", "stateMutability": "view",
        "inputs": [{"name": "_certificateHash", "type": "bytes32"}],
        "outputs": [{"name": "isValid", "type": "bool"}, _CERT_TUPLE],
    },
    {
        "type": "function", "name": "getStudentCertificates", "stateMutability": "view",
        "inputs": [{"name": "_studentId", "type": "string"}],
        "outputs": [{"name": "", "type": "bytes32[]"}],
    },
    {
        "type": "function", "name": "revokeCertificate", "stateMutability": "nonpayable",
        "inputs": [{"name": "_certificateHash", "type": "bytes32"}],
        "outputs": [],
    },
    {
        "type": "function", "name": "getContractInfo", "stateMutability": "view",
        "inputs": [],
        "outputs": [
            {"name": "contractOwner", "type": "address"},
            {"name": "totalCertificates", "type": "uint256"},
        ],
    },
    {
        "type": "event", "name": "CertificateIssued", "anonymous": False,
        "inputs": [
            {"name": "certificateHash", "type": "bytes32", "indexed": True},
            {"name": "studentId", "type": "string", "indexed": True},
            {"name": "certificateType", "type": "string", "indexed": False},
            {"name": "ipfsHash", "type": "string", "indexed": False},
            {"name": "issuedAt", "type": "uint256", "indexed": False},
        ],
    },
    {
        "type": "event", "name": "CertificateRevoked", "anonymous": False,
        "inputs": [
            {"name": "certificateHash", "type": "bytes32", "indexed": True},
            {"name": "studentId", "type": "string", "indexed": True},
            {"name": "revokedAt", "type": "uint256", "indexed": False},
        ],
    },
]


# ------------------------------- types -------------------------------

class TxHandle(BaseModel):
    tx_id: str
    kind: LedgerTxKind
    gas_limit: int
    gas_price: int


class LedgerReceipt(BaseModel):
    tx_id: str
    block_number: int
    block_hash: Optional[str] = None
    gas_used: Optional[int] = None
    gas_price: Optional[int] = None
    success: bool
    proof_hash: Optional[str] = None
    content_id: Optional[str] = None
    revoked_hashes: List[str] = []


class ProofRecord(BaseModel):
    id: int
    destination: str
    student_id: str
    certificate_type: str
    content_id: str
    issued_at: datetime
    issuer: str
    is_valid: bool


class LedgerEvent(BaseModel):
    kind: LedgerTxKind
    proof_hash: str
    # indexed strings only expose their keccak topic
    student_topic: str
    certificate_type: Optional[str] = None
    content_id: Optional[str] = None
    timestamp: datetime
    block_number: int
    tx_id: str
    log_index: int


class ContractInfo(BaseModel):
    address: str
    owner: str
    total_certificates: int
    chain_id: int


def _hex(value: Any) -> str:
    return Web3.to_hex(value)


def _ts(value: int) -> datetime:
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def to_bytes32(proof_hash: str) -> bytes:
    raw = Web3.to_bytes(hexstr=proof_hash)
    if len(raw) != 32:
        raise ValueError(f"proof hash must be 32 bytes, got {len(raw)}")
    return raw


# ------------------------------ gateway ------------------------------

class LedgerGateway:
    def __init__(
        self,
        w3: Web3,
        contract_address: str,
        private_key: str,
        *,
        safety_margin: float = 0.2,
        inclusion_timeout: float = 180.0,
        poll_interval: float = 2.0,
        batch_blocks: int = 500,
        backoff_base: float = 1.0,
        backoff_max: float = 60.0,
    ):
        self.w3 = w3
        self.contract_address = contract_address
        self.account = Account.from_key(private_key) if private_key else None
        self.contract = None
        if contract_address and Web3.is_address(contract_address):
            self.contract = w3.eth.contract(address=Web3.to_checksum_address(contract_address), abi=CONTRACT_ABI)
        self.safety_margin = safety_margin
        self.inclusion_timeout = inclusion_timeout
        self.poll_interval = poll_interval
        self.batch_blocks = batch_blocks
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.status: ServiceStatus = ServiceStatus.unavailable(NAME, "not started")
        self._chain_id: Optional[int] = None
        self._nonce_lock = threading.Lock()

    @classmethod
    def from_settings(cls, s: Settings) -> "LedgerGateway":
        w3 = Web3(Web3.HTTPProvider(s.BLOCKCHAIN_RPC_URL or None, request_kwargs={"timeout": 30}))
        return cls(
            w3,
            s.CERTIFICATE_CONTRACT_ADDRESS,
            s.BLOCKCHAIN_PRIVATE_KEY,
            safety_margin=s.GAS_SAFETY_MARGIN,
            inclusion_timeout=s.LEDGER_INCLUSION_TIMEOUT_SECONDS,
            poll_interval=s.LEDGER_POLL_SECONDS,
            batch_blocks=s.LEDGER_EVENT_BATCH_BLOCKS,
            backoff_base=s.LEDGER_BACKOFF_BASE_SECONDS,
            backoff_max=s.LEDGER_BACKOFF_MAX_SECONDS,
        )

    # ------------------------------ lifecycle ------------------------------

    def startup(self) -> ServiceStatus:
        if self.account is None:
            self.status = ServiceStatus.unavailable(NAME, "BLOCKCHAIN_PRIVATE_KEY not configured")
        elif self.contract is None:
            self.status = ServiceStatus.unavailable(NAME, "CERTIFICATE_CONTRACT_ADDRESS missing or invalid")
        else:
            try:
                if not self.w3.is_connected():
                    self.status = ServiceStatus.unavailable(NAME, "RPC endpoint unreachable")
                elif not self.w3.eth.get_code(self.contract.address):
                    self.status = ServiceStatus.unavailable(NAME, f"no contract deployed at {self.contract.address}")
                else:
                    self._chain_id = self.w3.eth.chain_id
                    self.status = ServiceStatus.ok(NAME)
            except LEDGER_IO_ERRORS as exc:
                self.status = ServiceStatus.unavailable(NAME, f"RPC error: {exc}")
        if self.status.ready:
            logger.info("ledger ready: chain=%s contract=%s account=%s",
                        self._chain_id, self.contract.address, self.account.address)
        else:
            logger.error("ledger unavailable: %s", self.status.reason)
        return self.status

    def shutdown(self) -> None:
        self.status = ServiceStatus.unavailable(NAME, "shut down")

    def _require_ready(self) -> None:
        if not self.status.ready:
            raise ServiceUnavailable(f"Ledger unavailable: {self.status.reason}", step="ledger")

    @property
    def address(self) -> Optional[str]:
        return self.account.address if self.account else None

    @staticmethod
    def is_address(value: Optional[str]) -> bool:
        return bool(value) and Web3.is_address(value)

    # ------------------------------ submission -----------------------------

    def submit_issue(self, destination: str, student_id: str, type_name: str, content_id: str) -> TxHandle:
        self._require_ready()
        if not Web3.is_address(destination):
            raise ValidationError(f"Invalid destination address: {destination}", step="ledger_submit")
        fn = self.contract.functions.issueCertificate(
            Web3.to_checksum_address(destination), str(student_id), type_name, content_id
        )
        return self._submit(fn, LedgerTxKind.issue)

    def submit_revoke(self, proof_hash: str) -> TxHandle:
        self._require_ready()
        try:
            raw = to_bytes32(proof_hash)
        except ValueError as exc:
            raise ValidationError(f"Invalid proof hash: {exc}", step="ledger_submit")
        return self._submit(self.contract.functions.revokeCertificate(raw), LedgerTxKind.revoke)

    def _submit(self, fn, kind: LedgerTxKind) -> TxHandle:
        sender = self.account.address
        try:
            gas = fn.estimate_gas({"from": sender})
        except ContractLogicError as exc:
            raise LedgerRejected(f"Contract rejected {kind.value}: {exc}", step="ledger_estimate")
        except LEDGER_IO_ERRORS as exc:
            raise LedgerError(f"Gas estimation failed: {exc}", step="ledger_estimate")

        try:
            gas_price = self.w3.eth.gas_price
            balance = self.w3.eth.get_balance(sender)
        except LEDGER_IO_ERRORS as exc:
            raise LedgerError(f"Could not price transaction: {exc}", step="ledger_estimate")

        required = math.ceil(gas * gas_price * (1 + self.safety_margin))
        if balance < required:
            raise InsufficientFunds(
                f"Balance {Web3.from_wei(balance, 'ether')} ETH cannot cover "
                f"{Web3.from_wei(required, 'ether')} ETH (gas {gas} @ {gas_price} wei, margin {self.safety_margin:.0%})",
                step="ledger_estimate",
                details={"balance_wei": str(balance), "required_wei": str(required)},
            )

        try:
            with self._nonce_lock:
                if self._chain_id is None:
                    self._chain_id = self.w3.eth.chain_id
                nonce = self.w3.eth.get_transaction_count(sender, "pending")
                tx = fn.build_transaction({
                    "from": sender,
                    "nonce": nonce,
                    "gas": gas,
                    "gasPrice": gas_price,
                    "chainId": self._chain_id,
                })
                signed = self.account.sign_transaction(tx)
                tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except ContractLogicError as exc:
            raise LedgerRejected(f"Contract rejected {kind.value}: {exc}", step="ledger_submit")
        except LEDGER_IO_ERRORS as exc:
            raise LedgerError(f"Transaction submission failed: {exc}", step="ledger_submit")

        handle = TxHandle(tx_id=_hex(tx_hash), kind=kind, gas_limit=gas, gas_price=gas_price)
        logger.info("ledger %s submitted: tx=%s gas=%s price=%s", kind.value, handle.tx_id, gas, gas_price)
        return handle

    # ------------------------------ inclusion ------------------------------

    def receipt_for(self, tx_id: str) -> Optional[LedgerReceipt]:
        """Receipt of `tx_id`, or None while it is not included."""
        try:
            raw = self.w3.eth.get_transaction_receipt(tx_id)
        except TransactionNotFound:
            return None
        except LEDGER_IO_ERRORS as exc:
            raise LedgerError(f"Could not read receipt for {tx_id}: {exc}", step="ledger_receipt")
        return self._to_receipt(raw)

    def is_known(self, tx_id: str) -> bool:
        """Whether the node still knows `tx_id` (mined or in the mempool)."""
        try:
            self.w3.eth.get_transaction(tx_id)
            return True
        except TransactionNotFound:
            return False
        except LEDGER_IO_ERRORS as exc:
            raise LedgerError(f"Could not look up {tx_id}: {exc}", step="ledger_lookup")

    def wait_for_inclusion(
        self,
        handle: TxHandle | str,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> LedgerReceipt:
        tx_id = handle.tx_id if isinstance(handle, TxHandle) else handle
        window = self.inclusion_timeout if timeout is None else timeout
        deadline = time.monotonic() + window
        while True:
            if cancel is not None and cancel.is_set():
                raise OperationCancelled(f"Stopped waiting for {tx_id}; the transaction is still in flight",
                                         step="ledger_wait", details={"tx_id": tx_id})
            try:
                receipt = self.receipt_for(tx_id)
            except LedgerError as exc:
                logger.warning("receipt poll for %s failed: %s", tx_id, exc)
                receipt = None
            if receipt is not None:
                if not receipt.success:
                    raise LedgerRejected(f"Transaction {tx_id} reverted in block {receipt.block_number}",
                                         step="ledger_wait", details={"tx_id": tx_id, "block_number": receipt.block_number})
                logger.info("ledger tx %s included in block %s", tx_id, receipt.block_number)
                return receipt
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise LedgerTimeout(f"Transaction {tx_id} not included within {window:.0f}s",
                                    step="ledger_wait", details={"tx_id": tx_id})
            pause = min(self.poll_interval, remaining)
            if cancel is not None:
                cancel.wait(pause)
            else:
                time.sleep(pause)

    def _to_receipt(self, raw) -> LedgerReceipt:
        success = raw["status"] == 1
        proof_hash = content_id = None
        revoked: List[str] = []
        if success:
            issued = self.contract.events.CertificateIssued().process_receipt(raw, errors=DISCARD)
            if issued:
                proof_hash = _hex(issued[0]["args"]["certificateHash"])
                content_id = issued[0]["args"]["ipfsHash"]
            revoked = [
                _hex(ev["args"]["certificateHash"])
                for ev in self.contract.events.CertificateRevoked().process_receipt(raw, errors=DISCARD)
            ]
        return LedgerReceipt(
            tx_id=_hex(raw["transactionHash"]),
            block_number=raw["blockNumber"],
            block_hash=_hex(raw["blockHash"]),
            gas_used=raw["gasUsed"],
            gas_price=raw.get("effectiveGasPrice"),
            success=success,
            proof_hash=proof_hash,
            content_id=content_id,
            revoked_hashes=revoked,
        )

    @staticmethod
    def extract_proof_hash(receipt: LedgerReceipt) -> str:
        if not receipt.proof_hash:
            raise LedgerError(f"No CertificateIssued event in receipt of {receipt.tx_id}",
                              step="ledger_extract", details={"tx_id": receipt.tx_id})
        return receipt.proof_hash

    # -------------------------------- reads --------------------------------

    def query_proof(self, proof_hash: str) -> Tuple[bool, Optional[ProofRecord]]:
        """(is_valid, on-ledger record). Unknown or malformed hashes give (False, None)."""
        self._require_ready()
        try:
            raw = to_bytes32(proof_hash)
        except ValueError:
            return False, None
        try:
            valid, rec = self.contract.functions.verifyCertificate(raw).call()
        except ContractLogicError:
            return False, None
        except LEDGER_IO_ERRORS as exc:
            raise LedgerError(f"Proof lookup failed: {exc}", step="ledger_query")
        if not rec[0] and not rec[5]:
            return False, None
        return bool(valid), ProofRecord(
            id=rec[0],
            destination=rec[1],
            student_id=rec[2],
            certificate_type=rec[3],
            content_id=rec[4],
            issued_at=_ts(rec[5]),
            issuer=rec[6],
            is_valid=rec[7],
        )

    def query_by_student(self, student_id: str) -> List[str]:
        self._require_ready()
        try:
            hashes = self.contract.functions.getStudentCertificates(str(student_id)).call()
        except LEDGER_IO_ERRORS as exc:
            raise LedgerError(f"Student lookup failed: {exc}", step="ledger_query")
        return [_hex(h) for h in hashes]

    def contract_info(self) -> ContractInfo:
        self._require_ready()
        try:
            owner, total = self.contract.functions.getContractInfo().call()
            chain_id = self._chain_id or self.w3.eth.chain_id
        except LEDGER_IO_ERRORS as exc:
            raise LedgerError(f"Contract info lookup failed: {exc}", step="ledger_query")
        return ContractInfo(address=self.contract.address, owner=owner, total_certificates=total, chain_id=chain_id)

    def balance(self) -> Decimal:
        self._require_ready()
        try:
            wei = self.w3.eth.get_balance(self.account.address)
        except LEDGER_IO_ERRORS as exc:
            raise LedgerError(f"Balance lookup failed: {exc}", step="ledger_query")
        return Decimal(Web3.from_wei(wei, "ether"))

    def latest_block(self) -> int:
        try:
            return self.w3.eth.block_number
        except LEDGER_IO_ERRORS as exc:
            raise LedgerError(f"Block number lookup failed: {exc}", step="ledger_query")

    # -------------------------------- events -------------------------------

    def fetch_events(self, from_block: int, to_block: int) -> List[LedgerEvent]:
        """Issued/revoked events in [from_block, to_block], ordered as mined.

        Logs that cannot be decoded are logged and skipped.
        """
        try:
            issued = self.contract.events.CertificateIssued().get_logs(from_block=from_block, to_block=to_block)
            revoked = self.contract.events.CertificateRevoked().get_logs(from_block=from_block, to_block=to_block)
        except LEDGER_IO_ERRORS as exc:
            raise LedgerError(f"Event fetch {from_block}-{to_block} failed: {exc}", step="ledger_events")
        events = []
        for kind, logs in ((LedgerTxKind.issue, issued), (LedgerTxKind.revoke, revoked)):
            for log in logs:
                try:
                    events.append(self._to_event(kind, log))
                except (KeyError, TypeError, ValueError) as exc:
                    logger.error("skipping undecodable %s log in blocks %d-%d: %r (%s)",
                                 kind.value, from_block, to_block, log, exc)
        events.sort(key=lambda e: (e.block_number, e.log_index))
        return events

    @staticmethod
    def _to_event(kind: LedgerTxKind, log) -> LedgerEvent:
        args = log["args"]
        if kind is LedgerTxKind.issue:
            extra = {"certificate_type": args["certificateType"], "content_id": args["ipfsHash"]}
            ts = args["issuedAt"]
        else:
            extra = {}
            ts = args["revokedAt"]
        return LedgerEvent(
            kind=kind,
            proof_hash=_hex(args["certificateHash"]),
            student_topic=_hex(args["studentId"]),
            timestamp=_ts(ts),
            block_number=log["blockNumber"],
            tx_id=_hex(log["transactionHash"]),
            log_index=log["logIndex"],
            **extra,
        )

    def events(self, from_block: int, to_block: Optional[int] = None) -> Iterator[LedgerEvent]:
        """Events from `from_block` up to `to_block` (default: current head), one window at a time."""
        upper_bound = self.latest_block() if to_block is None else to_block
        cursor = from_block
        while cursor <= upper_bound:
            upper = min(upper_bound, cursor + self.batch_blocks - 1)
            yield from self.fetch_events(cursor, upper)
            cursor = upper + 1

    def stream(self, from_block: int, stop: threading.Event) -> Iterator[LedgerEvent]:
        """Lazy, ordered event sequence starting at `from_block`.

        Runs until `stop` is set. Connection failures are retried with
        exponential backoff and the scan resumes at the first window that was
        not fully delivered, so a restart never skips events (it may repeat a
        window, consumers must be idempotent).
        """
        cursor = from_block
        failures = 0
        while not stop.is_set():
            try:
                head = self.latest_block()
                if cursor > head:
                    stop.wait(self.poll_interval)
                    continue
                upper = min(head, cursor + self.batch_blocks - 1)
                batch = self.fetch_events(cursor, upper)
            except CertLedgerError as exc:
                failures += 1
                delay = min(self.backoff_max, self.backoff_base * 2 ** (failures - 1))
                logger.warning("ledger event stream error (attempt %d), retrying from block %d in %.1fs: %s",
                               failures, cursor, delay, exc)
                stop.wait(delay)
                continue
            failures = 0
            for event in batch:
                if stop.is_set():
                    return
                yield event
            cursor = upper + 1
