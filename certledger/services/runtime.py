# certledger/services/runtime.py
"""Explicit construction of the gateways and orchestrators the API uses."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from sqlalchemy.orm import sessionmaker

from certledger.core.config import Settings
from certledger.db.session import SessionLocal
from certledger.services.content_store import ContentStoreGateway
from certledger.services.ledger import LedgerGateway
from certledger.services.lifecycle import CertificateLifecycle
from certledger.services.reconciler import Reconciler

logger = logging.getLogger(__name__)


@dataclass
class Services:
    ledger: LedgerGateway
    content: ContentStoreGateway
    lifecycle: CertificateLifecycle
    reconciler: Optional[Reconciler] = None

    def start(self) -> None:
        self.ledger.startup()
        self.content.startup()
        if self.reconciler is not None and self.ledger.status.ready:
            self.reconciler.start()
        elif self.reconciler is not None:
            logger.warning("reconciler not started: ledger %s", self.ledger.status.reason)

    def stop(self) -> None:
        if self.reconciler is not None:
            self.reconciler.stop()
        self.content.shutdown()
        self.ledger.shutdown()

    def health(self) -> Dict[str, dict]:
        out = {
            "ledger": self.ledger.status.model_dump(mode="json"),
            "content_store": self.content.status.model_dump(mode="json"),
        }
        out["reconciler"] = {"running": bool(self.reconciler and self.reconciler.running)}
        return out


def build_services(config: Settings, sessions: Optional[sessionmaker] = None) -> Services:
    sessions = sessions or SessionLocal
    ledger = LedgerGateway.from_settings(config)
    content = ContentStoreGateway.from_settings(config)
    lifecycle = CertificateLifecycle(sessions, ledger, content, config=config)
    reconciler = None
    if config.RECONCILER_ENABLED:
        reconciler = Reconciler(
            sessions, ledger,
            pending_age=config.RECONCILE_PENDING_AGE_SECONDS,
            interval=config.RECONCILE_INTERVAL_SECONDS,
            start_block=config.RECONCILE_START_BLOCK,
            backoff_base=config.LEDGER_BACKOFF_BASE_SECONDS,
            backoff_max=config.LEDGER_BACKOFF_MAX_SECONDS,
        )
    return Services(ledger=ledger, content=content, lifecycle=lifecycle, reconciler=reconciler)
