# certledger/services/state_machine.py
from __future__ import annotations

from typing import Dict, FrozenSet

from certledger.core.errors import IllegalTransition, InvalidState
from certledger.models.certificate import CertificateStatus as S

TRANSITIONS: Dict[S, FrozenSet[S]] = {
    S.pending: frozenset({S.approved, S.rejected}),
    S.approved: frozenset({S.issued}),
    S.issued: frozenset({S.revoked}),
    S.rejected: frozenset(),
    S.revoked: frozenset(),
}

TERMINAL = frozenset(s for s, nxt in TRANSITIONS.items() if not nxt)


def can_transition(current: S | str, target: S | str) -> bool:
    return S(target) in TRANSITIONS[S(current)]


def check_transition(current: S | str, target: S | str, *, certificate_id: int | None = None) -> None:
    if not can_transition(current, target):
        raise IllegalTransition(
            f"Transition {S(current).value} -> {S(target).value} is not allowed",
            certificate_id=certificate_id,
            details={"from": S(current).value, "to": S(target).value},
        )


def require_status(current: S | str, required: S, *, certificate_id: int | None = None, action: str = "") -> None:
    """Raise InvalidState unless the certificate is in `required`."""
    if S(current) is not required:
        verb = action or f"move out of {required.value}"
        raise InvalidState(
            f"Certificate must be {required.value} to {verb} (current: {S(current).value})",
            certificate_id=certificate_id,
            details={"status": S(current).value, "required": required.value},
        )
