"""Settings read from the environment."""

from __future__ import annotations

import pydantic
import pytest

from certledger.core.config import Settings


class TestSettings:
    def test_gas_margin_floor_applies_to_environment(self, monkeypatch):
        monkeypatch.setenv("GAS_SAFETY_MARGIN", "0")
        with pytest.raises(pydantic.ValidationError):
            Settings()

    def test_gas_margin_from_environment(self, monkeypatch):
        monkeypatch.setenv("GAS_SAFETY_MARGIN", "0.25")
        assert Settings().GAS_SAFETY_MARGIN == 0.25

    def test_reconcile_start_block(self, monkeypatch):
        monkeypatch.delenv("RECONCILE_START_BLOCK", raising=False)
        assert Settings().RECONCILE_START_BLOCK is None
        monkeypatch.setenv("RECONCILE_START_BLOCK", "4200")
        assert Settings().RECONCILE_START_BLOCK == 4200
