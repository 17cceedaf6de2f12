# certledger/services/content_store.py
"""
Content-addressed metadata store (IPFS HTTP API).

Uploads are pinned. When the API cannot be reached the gateway still returns
an identifier: "Qm" + the first 44 hex chars of sha256(canonical bytes). The
result is flagged `degraded` since nobody else can fetch that document until a
networked upload succeeds.
"""
from __future__ import annotations

import hashlib
import json
import logging
import re
from typing import Any, Dict, Mapping, Optional

import httpx
from pydantic import BaseModel

from certledger.core.config import Settings
from certledger.core.errors import ContentStoreError
from certledger.services.readiness import ServiceStatus

logger = logging.getLogger(__name__)

NAME = "content_store"
USER_AGENT = "certledger/1.0"
FALLBACK_ID_RE = re.compile(r"^Qm[0-9a-f]{44}$")


class PutResult(BaseModel):
    content_id: str
    pinned: bool
    degraded: bool = False
    reason: Optional[str] = None


def canonical_bytes(document: Mapping[str, Any]) -> bytes:
    return json.dumps(document, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str).encode("utf-8")


def fallback_content_id(data: bytes) -> str:
    return "Qm" + hashlib.sha256(data).hexdigest()[:44]


def is_fallback_id(content_id: str) -> bool:
    return bool(FALLBACK_ID_RE.match(content_id or ""))


class ContentStoreGateway:
    def __init__(
        self,
        api_url: str,
        gateway_url: str,
        *,
        timeout: float = 30.0,
        auth: Optional[httpx.Auth | tuple[str, str]] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.gateway_url = gateway_url if gateway_url.endswith("/") else gateway_url + "/"
        headers = {"User-Agent": USER_AGENT}
        self._api = httpx.Client(base_url=self.api_url, timeout=timeout, auth=auth, headers=headers, transport=transport)
        self._gateway = httpx.Client(timeout=min(timeout, 15.0), headers=headers, transport=transport)
        self.status: ServiceStatus = ServiceStatus.degraded(NAME, "not started")

    @classmethod
    def from_settings(cls, s: Settings, **kw) -> "ContentStoreGateway":
        auth = None
        if s.INFURA_PROJECT_ID and s.INFURA_PROJECT_SECRET:
            auth = (s.INFURA_PROJECT_ID, s.INFURA_PROJECT_SECRET)
        return cls(s.IPFS_API_URL, s.IPFS_GATEWAY, timeout=s.IPFS_TIMEOUT_SECONDS, auth=auth, **kw)

    # ------------------------------ lifecycle ------------------------------

    def startup(self) -> ServiceStatus:
        api_ok = self._probe(lambda: self._api.post("/api/v0/version", timeout=5.0))
        gateway_ok = self._probe(lambda: self._gateway.head(self.gateway_url, timeout=5.0))
        if api_ok:
            self.status = ServiceStatus.ok(NAME)
        elif gateway_ok:
            self.status = ServiceStatus.degraded(NAME, "API unreachable; uploads fall back to local identifiers")
        else:
            self.status = ServiceStatus.degraded(NAME, "API and gateway unreachable; uploads fall back to local identifiers")
        logger.info("content store startup: %s api=%s gateway=%s", self.status.state.value, api_ok, gateway_ok)
        return self.status

    def shutdown(self) -> None:
        self._api.close()
        self._gateway.close()

    def _probe(self, call) -> bool:
        try:
            return call().status_code < 400
        except httpx.HTTPError as exc:
            logger.debug("content store probe failed: %s", exc)
            return False

    # ------------------------------ operations -----------------------------

    def public_url(self, content_id: str) -> str:
        return f"{self.gateway_url}{content_id}"

    def put(self, document: Mapping[str, Any]) -> PutResult:
        data = canonical_bytes(document)
        try:
            resp = self._api.post(
                "/api/v0/add",
                params={"pin": "true", "cid-version": 1},
                files={"file": ("metadata.json", data, "application/json")},
            )
            resp.raise_for_status()
            content_id = resp.json()["Hash"]
        except (httpx.HTTPError, ValueError, KeyError) as exc:
            content_id = fallback_content_id(data)
            logger.warning("content store upload failed (%s); using local identifier %s", exc, content_id)
            return PutResult(content_id=content_id, pinned=False, degraded=True, reason=str(exc) or type(exc).__name__)
        logger.info("metadata pinned: %s (%d bytes)", content_id, len(data))
        return PutResult(content_id=content_id, pinned=True)

    def get(self, content_id: str) -> Dict[str, Any]:
        errors = []
        try:
            resp = self._api.post("/api/v0/cat", params={"arg": content_id})
            resp.raise_for_status()
            return json.loads(resp.content)
        except (httpx.HTTPError, ValueError) as exc:
            errors.append(f"api: {exc}")
        try:
            resp = self._gateway.get(self.public_url(content_id), headers={"Accept": "application/json"})
            resp.raise_for_status()
            return resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            errors.append(f"gateway: {exc}")

        if is_fallback_id(content_id):
            logger.warning("content %s is a local fallback identifier; returning placeholder", content_id)
            return {
                "placeholder": True,
                "content_id": content_id,
                "reason": "locally-pinned fallback identifier; document was never published to the content store",
            }
        raise ContentStoreError(f"Could not fetch content {content_id}", step="content_get", details={"errors": errors})

    def exists(self, content_id: str) -> bool:
        try:
            return self._gateway.head(self.public_url(content_id), timeout=10.0).status_code == 200
        except httpx.HTTPError as exc:
            logger.debug("content existence probe for %s failed: %s", content_id, exc)
            return False
