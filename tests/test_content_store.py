"""Tests for the content store gateway against a mocked IPFS HTTP API."""

from __future__ import annotations

import httpx
import pytest

from certledger.core.errors import ContentStoreError
from certledger.services.content_store import (
    ContentStoreGateway,
    canonical_bytes,
    fallback_content_id,
    is_fallback_id,
)
from certledger.services.readiness import ServiceState

DOC = {"name": "Honor roll - Alice", "certificate": {"id": 1, "achievement": {"gpa": 3.9}}, "version": "1.0"}


def _make_gateway(handler) -> ContentStoreGateway:
    return ContentStoreGateway("http://ipfs.test:5001", "http://gateway.test/ipfs", transport=httpx.MockTransport(handler))


class TestCanonicalBytes:
    def test_sorted_and_compact(self):
        assert canonical_bytes({"b": 1, "a": {"d": 2, "c": 3}}) == b'{"a":{"c":3,"d":2},"b":1}'

    def test_utf8(self):
        assert canonical_bytes({"name": "José"}) == '{"name":"José"}'.encode("utf-8")

    def test_fallback_id_format(self):
        cid = fallback_content_id(canonical_bytes(DOC))
        assert cid.startswith("Qm") and len(cid) == 46
        assert is_fallback_id(cid)
        assert not is_fallback_id("QmYwAPJzv5CZsnA625s3Xf2nemtYgPpHdWEz79ojWnPbdG")


class TestPut:
    def test_put_pins_and_returns_hash(self, ipfs, content):
        result = content.put(DOC)
        assert result.pinned and not result.degraded
        assert content.get(result.content_id) == DOC
        add = next(r for r in ipfs.requests if r.url.path == "/api/v0/add")
        assert add.url.params["pin"] == "true"
        assert add.url.params["cid-version"] == "1"

    def test_put_falls_back_when_unreachable(self, ipfs, content):
        ipfs.down = True
        first = content.put(DOC)
        second = content.put(dict(reversed(list(DOC.items()))))
        assert first.degraded and not first.pinned
        assert first.content_id == fallback_content_id(canonical_bytes(DOC))
        assert second.content_id == first.content_id
        assert "connection refused" in first.reason

    def test_put_falls_back_on_bad_response(self):
        gw = _make_gateway(lambda request: httpx.Response(200, json={"unexpected": True}))
        result = gw.put(DOC)
        assert result.degraded
        assert is_fallback_id(result.content_id)


class TestGet:
    def test_falls_back_to_gateway(self, ipfs):
        ipfs.docs["bafyabc"] = DOC

        def handler(request):
            if request.url.path == "/api/v0/cat":
                return httpx.Response(503)
            return ipfs(request)

        gw = _make_gateway(handler)
        assert gw.get("bafyabc") == DOC

    def test_unreachable_fallback_id_returns_placeholder(self, ipfs, content):
        ipfs.down = True
        cid = content.put(DOC).content_id
        doc = content.get(cid)
        assert doc["placeholder"] is True
        assert doc["content_id"] == cid

    def test_unreachable_regular_id_raises(self, ipfs, content):
        ipfs.down = True
        with pytest.raises(ContentStoreError) as exc:
            content.get("bafymissing")
        assert exc.value.step == "content_get"
        assert len(exc.value.details["errors"]) == 2


class TestExistsAndStartup:
    def test_exists(self, ipfs, content):
        cid = content.put(DOC).content_id
        assert content.exists(cid)
        assert not content.exists("bafynothere")

    def test_exists_never_raises(self, ipfs, content):
        ipfs.down = True
        assert content.exists("bafyabc") is False

    def test_public_url(self):
        gw = _make_gateway(lambda request: httpx.Response(200))
        assert gw.public_url("bafyabc") == "http://gateway.test/ipfs/bafyabc"

    def test_startup_ready(self, content):
        assert content.startup().state is ServiceState.ready

    def test_startup_degraded_never_down(self, ipfs, content):
        ipfs.down = True
        status = content.startup()
        assert status.state is ServiceState.degraded
        assert "unreachable" in status.reason
