"""Tests for the certificate state machine."""

from __future__ import annotations

import pytest

from certledger.core.errors import IllegalTransition, InvalidState
from certledger.models.certificate import CertificateStatus as S
from certledger.services.state_machine import (
    TERMINAL,
    can_transition,
    check_transition,
    require_status,
)

LEGAL = {(S.pending, S.approved), (S.pending, S.rejected), (S.approved, S.issued), (S.issued, S.revoked)}


class TestTransitions:
    def test_only_documented_edges_are_legal(self):
        for current in S:
            for target in S:
                assert can_transition(current, target) == ((current, target) in LEGAL)

    def test_accepts_plain_strings(self):
        assert can_transition("pending", "approved")
        assert not can_transition("approved", "pending")

    def test_terminal_states(self):
        assert TERMINAL == {S.rejected, S.revoked}

    def test_illegal_transition_raises_with_context(self):
        with pytest.raises(IllegalTransition) as exc:
            check_transition(S.rejected, S.issued, certificate_id=7)
        assert exc.value.certificate_id == 7
        assert exc.value.details == {"from": "rejected", "to": "issued"}
        assert exc.value.status_code == 409


class TestRequireStatus:
    def test_passes_on_required_status(self):
        require_status(S.approved, S.approved, certificate_id=1, action="issue")

    def test_invalid_state_is_an_illegal_transition(self):
        with pytest.raises(IllegalTransition) as exc:
            require_status(S.pending, S.approved, certificate_id=3, action="issue")
        assert isinstance(exc.value, InvalidState)
        assert exc.value.code == "INVALID_STATE"
        assert "must be approved to issue" in exc.value.message
