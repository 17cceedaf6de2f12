"""Tests for the ledger gateway with a mocked web3 client."""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from web3.exceptions import ContractLogicError, TransactionNotFound

from certledger.core.errors import (
    InsufficientFunds,
    LedgerError,
    LedgerRejected,
    LedgerTimeout,
    OperationCancelled,
    ServiceUnavailable,
    ValidationError,
)
from certledger.models.ledger_transaction import LedgerTxKind
from certledger.services.ledger import LedgerEvent, LedgerGateway, LedgerReceipt, TxHandle
from certledger.services.readiness import ServiceState, ServiceStatus

KEY = "0x" + "4c" * 32
CONTRACT = "0x" + "22" * 20
DEST = "0x" + "ab" * 20
ZERO = "0x" + "00" * 20
TX = b"\x12" * 32
PROOF = "0x" + "ef" * 32


def _make_w3(**eth):
    w3 = MagicMock()
    w3.is_connected.return_value = True
    w3.eth.get_code.return_value = b"\x60\x80"
    w3.eth.chain_id = 11155111
    w3.eth.gas_price = 10
    w3.eth.get_balance.return_value = 10**18
    w3.eth.get_transaction_count.return_value = 7
    w3.eth.send_raw_transaction.return_value = TX
    for k, v in eth.items():
        setattr(w3.eth, k, v)
    return w3


def _make_gateway(w3=None, *, ready: bool = True, **kw) -> LedgerGateway:
    gw = LedgerGateway(w3 or _make_w3(), CONTRACT, KEY, poll_interval=0.01, **kw)
    if ready:
        gw.status = ServiceStatus.ok("ledger")
    return gw


def _prepare_call(gw: LedgerGateway, name: str, gas: int = 100_000):
    fn = getattr(gw.contract.functions, name).return_value
    fn.estimate_gas.return_value = gas
    fn.build_transaction.side_effect = lambda params: {
        "to": CONTRACT, "data": "0x", "value": 0, **params,
    }
    return fn


def _raw_receipt(status: int = 1):
    return {"status": status, "transactionHash": TX, "blockNumber": 42, "blockHash": b"\x34" * 32,
            "gasUsed": 90_000, "effectiveGasPrice": 10}


class TestStartup:
    def test_ready(self):
        gw = _make_gateway(ready=False)
        assert gw.startup().state is ServiceState.ready
        assert gw.address is not None

    def test_missing_key(self):
        gw = LedgerGateway(_make_w3(), CONTRACT, "")
        status = gw.startup()
        assert status.state is ServiceState.down
        assert "BLOCKCHAIN_PRIVATE_KEY" in status.reason

    def test_invalid_contract_address(self):
        gw = LedgerGateway(_make_w3(), "not-an-address", KEY)
        assert gw.startup().state is ServiceState.down

    def test_no_code_at_address(self):
        w3 = _make_w3()
        w3.eth.get_code.return_value = b""
        status = _make_gateway(w3, ready=False).startup()
        assert status.state is ServiceState.down
        assert "no contract" in status.reason

    def test_unready_gateway_refuses_calls(self):
        gw = _make_gateway(ready=False)
        with pytest.raises(ServiceUnavailable):
            gw.submit_issue(DEST, "1", "honor-roll", "bafy")


class TestSubmit:
    def test_submit_issue_signs_and_sends(self):
        gw = _make_gateway()
        fn = _prepare_call(gw, "issueCertificate")
        handle = gw.submit_issue(DEST, "1", "honor-roll", "bafyabc")
        assert handle.tx_id == "0x" + "12" * 32
        assert handle.kind is LedgerTxKind.issue
        assert handle.gas_limit == 100_000
        params = fn.build_transaction.call_args.args[0]
        assert params["nonce"] == 7
        assert params["chainId"] == 11155111
        gw.w3.eth.send_raw_transaction.assert_called_once()

    def test_insufficient_funds_with_margin(self):
        # cost is exactly the balance; the safety margin pushes it over
        w3 = _make_w3()
        w3.eth.get_balance.return_value = 100_000 * 10
        gw = _make_gateway(w3)
        _prepare_call(gw, "issueCertificate")
        with pytest.raises(InsufficientFunds) as exc:
            gw.submit_issue(DEST, "1", "honor-roll", "bafyabc")
        assert exc.value.details["required_wei"] == str(1_200_000)
        w3.eth.send_raw_transaction.assert_not_called()

    def test_estimation_revert_is_rejection(self):
        gw = _make_gateway()
        fn = _prepare_call(gw, "revokeCertificate")
        fn.estimate_gas.side_effect = ContractLogicError("execution reverted: not valid")
        with pytest.raises(LedgerRejected):
            gw.submit_revoke(PROOF)

    def test_connection_error_is_ledger_error(self):
        gw = _make_gateway()
        fn = _prepare_call(gw, "issueCertificate")
        fn.estimate_gas.side_effect = ConnectionError("refused")
        with pytest.raises(LedgerError) as exc:
            gw.submit_issue(DEST, "1", "honor-roll", "bafyabc")
        assert exc.value.step == "ledger_estimate"

    def test_bad_destination(self):
        with pytest.raises(ValidationError):
            _make_gateway().submit_issue("0x1234", "1", "honor-roll", "bafyabc")

    def test_bad_proof_hash(self):
        with pytest.raises(ValidationError):
            _make_gateway().submit_revoke("0xdead")


class TestInclusion:
    def test_timeout(self):
        w3 = _make_w3()
        w3.eth.get_transaction_receipt.side_effect = TransactionNotFound("not found")
        with pytest.raises(LedgerTimeout):
            _make_gateway(w3).wait_for_inclusion("0x" + "12" * 32, timeout=0.05)

    def test_reverted_receipt(self):
        w3 = _make_w3()
        w3.eth.get_transaction_receipt.return_value = _raw_receipt(status=0)
        with pytest.raises(LedgerRejected) as exc:
            _make_gateway(w3).wait_for_inclusion(TxHandle(tx_id="0x" + "12" * 32, kind=LedgerTxKind.issue,
                                                          gas_limit=1, gas_price=1))
        assert exc.value.details["block_number"] == 42

    def test_success_reads_issued_event(self):
        w3 = _make_w3()
        w3.eth.get_transaction_receipt.return_value = _raw_receipt()
        gw = _make_gateway(w3)
        gw.contract.events.CertificateIssued.return_value.process_receipt.return_value = [
            {"args": {"certificateHash": bytes.fromhex("ef" * 32), "ipfsHash": "bafyabc"}}
        ]
        gw.contract.events.CertificateRevoked.return_value.process_receipt.return_value = []
        receipt = gw.wait_for_inclusion("0x" + "12" * 32)
        assert receipt.success and receipt.block_number == 42
        assert receipt.proof_hash == PROOF
        assert receipt.content_id == "bafyabc"
        assert gw.extract_proof_hash(receipt) == PROOF

    def test_cancel(self):
        w3 = _make_w3()
        w3.eth.get_transaction_receipt.side_effect = TransactionNotFound("not found")
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(OperationCancelled):
            _make_gateway(w3).wait_for_inclusion("0x" + "12" * 32, timeout=5, cancel=cancel)

    def test_poll_errors_are_tolerated(self):
        w3 = _make_w3()
        w3.eth.get_transaction_receipt.side_effect = [OSError("reset"), _raw_receipt()]
        gw = _make_gateway(w3)
        gw.contract.events.CertificateIssued.return_value.process_receipt.return_value = []
        gw.contract.events.CertificateRevoked.return_value.process_receipt.return_value = []
        assert gw.wait_for_inclusion("0x" + "12" * 32, timeout=5).block_number == 42

    def test_extract_without_event(self):
        with pytest.raises(LedgerError):
            LedgerGateway.extract_proof_hash(LedgerReceipt(tx_id="0x1", block_number=1, success=True))

    def test_is_known(self):
        w3 = _make_w3()
        w3.eth.get_transaction.side_effect = TransactionNotFound("gone")
        assert _make_gateway(w3).is_known("0x" + "12" * 32) is False


class TestQueries:
    def test_query_proof_valid(self):
        gw = _make_gateway()
        gw.contract.functions.verifyCertificate.return_value.call.return_value = (
            True, (3, DEST, "1", "honor-roll", "bafyabc", 1_700_000_000, CONTRACT, True),
        )
        valid, record = gw.query_proof(PROOF)
        assert valid
        assert record.student_id == "1"
        assert record.content_id == "bafyabc"
        assert record.issued_at == datetime.fromtimestamp(1_700_000_000, tz=timezone.utc)

    def test_query_proof_unknown(self):
        gw = _make_gateway()
        gw.contract.functions.verifyCertificate.return_value.call.return_value = (
            False, (0, ZERO, "", "", "", 0, ZERO, False),
        )
        assert gw.query_proof(PROOF) == (False, None)

    def test_query_proof_malformed(self):
        assert _make_gateway().query_proof("not-a-hash") == (False, None)

    def test_query_proof_revert(self):
        gw = _make_gateway()
        gw.contract.functions.verifyCertificate.return_value.call.side_effect = ContractLogicError("reverted")
        assert gw.query_proof(PROOF) == (False, None)

    def test_query_by_student(self):
        gw = _make_gateway()
        gw.contract.functions.getStudentCertificates.return_value.call.return_value = [bytes.fromhex("ef" * 32)]
        assert gw.query_by_student("1") == [PROOF]

    def test_contract_info_and_balance(self):
        w3 = _make_w3()
        w3.eth.get_balance.return_value = 1_500_000_000_000_000_000
        gw = _make_gateway(w3)
        gw.contract.address = CONTRACT
        gw.contract.functions.getContractInfo.return_value.call.return_value = (DEST, 12)
        info = gw.contract_info()
        assert (info.owner, info.total_certificates, info.chain_id) == (DEST, 12, 11155111)
        assert str(gw.balance()) == "1.5"


def _event(block: int) -> LedgerEvent:
    return LedgerEvent(kind=LedgerTxKind.issue, proof_hash=PROOF, student_topic="0x00",
                       timestamp=datetime.now(timezone.utc), block_number=block, tx_id="0x12", log_index=0)


class TestEvents:
    def test_events_walks_windows_up_to_head(self):
        gw = _make_gateway(batch_blocks=10)
        gw.latest_block = MagicMock(return_value=25)
        gw.fetch_events = MagicMock(side_effect=lambda lo, hi: [_event(lo)])
        blocks = [e.block_number for e in gw.events(5)]
        assert blocks == [5, 15, 25]
        assert [c.args for c in gw.fetch_events.call_args_list] == [(5, 14), (15, 24), (25, 25)]

    def test_fetch_events_skips_undecodable_logs(self):
        gw = _make_gateway()
        revoked = {"args": {"certificateHash": bytes.fromhex("ef" * 32), "studentId": b"\x01" * 32,
                            "revokedAt": 1_700_000_000},
                   "blockNumber": 9, "transactionHash": TX, "logIndex": 0}
        gw.contract.events.CertificateIssued.return_value.get_logs.return_value = [{"args": {}, "blockNumber": 8}]
        gw.contract.events.CertificateRevoked.return_value.get_logs.return_value = [revoked]
        events = gw.fetch_events(8, 9)
        assert [(e.kind, e.block_number, e.proof_hash) for e in events] == [(LedgerTxKind.revoke, 9, PROOF)]

    def test_stream_backs_off_and_resumes(self):
        gw = _make_gateway(backoff_base=0, backoff_max=0)
        gw.latest_block = MagicMock(side_effect=[LedgerError("rpc down"), 10, 10])
        gw.fetch_events = MagicMock(return_value=[_event(7)])
        stop = threading.Event()
        stream = gw.stream(5, stop)
        assert next(stream).block_number == 7
        gw.fetch_events.assert_called_once_with(5, 10)
        stop.set()
        assert list(stream) == []
