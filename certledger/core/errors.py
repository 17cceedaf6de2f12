# certledger/core/errors.py
from __future__ import annotations

from typing import Any, Dict, List, Optional


class CertLedgerError(Exception):
    """Base for every error the certificate core raises on purpose.

    `certificate_id` and `step` carry the operation context so a handler can
    tell which certificate failed and where (content upload, ledger submit,
    ledger wait, persist...).
    """

    code = "ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        certificate_id: Optional[int] = None,
        step: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.certificate_id = certificate_id
        self.step = step
        self.details = dict(details or {})

    def with_context(self, *, certificate_id: Optional[int] = None, step: Optional[str] = None) -> "CertLedgerError":
        if self.certificate_id is None:
            self.certificate_id = certificate_id
        if self.step is None:
            self.step = step
        return self

    def to_dict(self) -> Dict[str, Any]:
        details = dict(self.details)
        if self.certificate_id is not None:
            details["certificate_id"] = self.certificate_id
        if self.step:
            details["step"] = self.step
        return {"code": self.code, "message": self.message, "details": details}

    def __str__(self) -> str:
        ctx = []
        if self.certificate_id is not None:
            ctx.append(f"certificate={self.certificate_id}")
        if self.step:
            ctx.append(f"step={self.step}")
        return f"{self.message} ({', '.join(ctx)})" if ctx else self.message


class ValidationError(CertLedgerError):
    code = "VALIDATION_ERROR"
    status_code = 422

    def __init__(self, message: str, *, violations: Optional[List[Dict[str, str]]] = None, **kw):
        super().__init__(message, **kw)
        self.violations = list(violations or [])
        if self.violations:
            self.details.setdefault("violations", self.violations)


class NotFound(CertLedgerError):
    code = "NOT_FOUND"
    status_code = 404


class IllegalTransition(CertLedgerError):
    code = "ILLEGAL_TRANSITION"
    status_code = 409


class InvalidState(IllegalTransition):
    code = "INVALID_STATE"


class OperationCancelled(CertLedgerError):
    code = "CANCELLED"
    status_code = 409


class ServiceUnavailable(CertLedgerError):
    code = "SERVICE_UNAVAILABLE"
    status_code = 503


class ContentStoreError(CertLedgerError):
    code = "CONTENT_STORE_ERROR"
    status_code = 502


# ---------------------------- ledger ----------------------------

class LedgerError(CertLedgerError):
    code = "LEDGER_ERROR"
    status_code = 502


class InsufficientFunds(LedgerError):
    code = "INSUFFICIENT_FUNDS"
    status_code = 402


class LedgerTimeout(LedgerError):
    code = "LEDGER_TIMEOUT"
    status_code = 504


class LedgerRejected(LedgerError):
    code = "LEDGER_REJECTED"


class PartialFailure(CertLedgerError):
    """A ledger write went out but the record store could not be updated.

    Raised after inclusion when settling fails, or after broadcast when the
    pending transaction could not be recorded. The caller must not resubmit;
    `tx_id` names the transaction to look for.
    """

    code = "PARTIAL_FAILURE"
    status_code = 500

    def __init__(self, message: str, *, proof_hash: Optional[str] = None, tx_id: Optional[str] = None, **kw):
        super().__init__(message, **kw)
        self.proof_hash = proof_hash
        self.tx_id = tx_id
        self.details.update({"proof_hash": proof_hash, "tx_id": tx_id})
