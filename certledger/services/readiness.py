# certledger/services/readiness.py
from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel


class ServiceState(str, Enum):
    ready = "ready"
    degraded = "degraded"
    down = "down"


class ServiceStatus(BaseModel):
    """Outcome of a gateway's startup probe."""

    name: str
    state: ServiceState
    reason: Optional[str] = None

    @property
    def ready(self) -> bool:
        return self.state is ServiceState.ready

    @classmethod
    def ok(cls, name: str) -> "ServiceStatus":
        return cls(name=name, state=ServiceState.ready)

    @classmethod
    def degraded(cls, name: str, reason: str) -> "ServiceStatus":
        return cls(name=name, state=ServiceState.degraded, reason=reason)

    @classmethod
    def unavailable(cls, name: str, reason: str) -> "ServiceStatus":
        return cls(name=name, state=ServiceState.down, reason=reason)
