"""HTTP surface: auth, role checks, error shape and the certificate routes."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from certledger.db.session import get_db
from certledger.main import api
from certledger.models.user import User
from certledger.services.readiness import ServiceStatus
from certledger.services.runtime import Services

from tests.conftest import PASSWORD


@pytest.fixture
def client(sessions, seeded, ledger, content, lifecycle):
    def _db():
        db = sessions()
        try:
            yield db
        finally:
            db.close()

    api.dependency_overrides[get_db] = _db
    api.state.services = Services(ledger=ledger, content=content, lifecycle=lifecycle)
    yield TestClient(api)
    api.dependency_overrides.clear()
    api.state.services = None


def _login(client, who: str) -> dict:
    password = "admin123" if who == "admin" else PASSWORD
    resp = client.post("/api/v1/auth/login", json={"email": f"{who}@example.org", "password": password})
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


def _request(client, seeded, headers, payload=None):
    return client.post("/api/v1/certificates", headers=headers, json={
        "student_id": seeded["alice"],
        "certificate_type_id": seeded["honor_roll"],
        "achievement_data": payload if payload is not None else {"gpa": 3.9},
    })


class TestAuth:
    def test_login_returns_token_and_roles(self, client):
        resp = client.post("/api/v1/auth/login", json={"email": "approver@example.org", "password": PASSWORD})
        body = resp.json()
        assert body["token_type"] == "bearer"
        assert body["user"]["roles"] == ["approver"]

    def test_wrong_password(self, client):
        resp = client.post("/api/v1/auth/login", json={"email": "approver@example.org", "password": "nope"})
        assert resp.status_code == 401

    def test_inactive_operator_cannot_log_in(self, client, sessions, seeded):
        with sessions.begin() as db:
            db.get(User, seeded["approver"]).status = "disabled"
        resp = client.post("/api/v1/auth/login", json={"email": "approver@example.org", "password": PASSWORD})
        assert resp.status_code == 401

    def test_oauth2_form(self, client):
        resp = client.post("/api/v1/auth/token", data={"username": "registrar@example.org", "password": PASSWORD})
        assert resp.status_code == 200
        me = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {resp.json()['access_token']}"})
        assert me.json()["email"] == "registrar@example.org"

    def test_missing_and_bad_tokens(self, client):
        assert client.get("/api/v1/certificates").status_code == 401
        bad = client.get("/api/v1/certificates", headers={"Authorization": "Bearer not-a-jwt"})
        assert bad.status_code == 401


class TestCertificateRoutes:
    def test_request_approve_issue_verify(self, client, seeded):
        registrar, approver = _login(client, "registrar"), _login(client, "approver")
        created = _request(client, seeded, registrar)
        assert created.status_code == 201
        cid = created.json()["id"]

        pending = client.get("/api/v1/certificates/pending", headers=approver).json()
        assert [c["id"] for c in pending] == [cid]

        approved = client.put(f"/api/v1/certificates/{cid}/approve", headers=approver, json={"comment": "ok"})
        assert approved.json()["status"] == "approved"

        issued = client.post(f"/api/v1/certificates/{cid}/issue", headers=registrar)
        assert issued.status_code == 200
        proof = issued.json()["proof_hash"]

        verified = client.get(f"/api/v1/certificates/verify/{proof}")
        assert verified.json()["is_valid"] is True
        assert verified.json()["certificate"]["id"] == cid

        detail = client.get(f"/api/v1/certificates/{cid}", headers=registrar).json()
        assert detail["status"] == "issued"
        assert len(detail["ledger_transactions"]) == 1

    def test_approve_without_body(self, client, seeded):
        cid = _request(client, seeded, _login(client, "registrar")).json()["id"]
        resp = client.put(f"/api/v1/certificates/{cid}/approve", headers=_login(client, "approver"))
        assert resp.status_code == 200

    def test_role_checks(self, client, seeded):
        registrar = _login(client, "registrar")
        cid = _request(client, seeded, registrar).json()["id"]
        assert client.put(f"/api/v1/certificates/{cid}/approve", headers=registrar).status_code == 403
        assert _request(client, seeded, _login(client, "approver")).status_code == 403
        # admin passes every role check
        assert client.put(f"/api/v1/certificates/{cid}/approve", headers=_login(client, "admin")).status_code == 200

    def test_validation_error_shape(self, client, seeded):
        resp = _request(client, seeded, _login(client, "registrar"), payload={})
        assert resp.status_code == 422
        body = resp.json()
        assert body["code"] == "VALIDATION_ERROR"
        assert body["details"]["violations"][0]["field"] == "gpa"

    def test_issue_pending_is_conflict(self, client, seeded):
        registrar = _login(client, "registrar")
        cid = _request(client, seeded, registrar).json()["id"]
        resp = client.post(f"/api/v1/certificates/{cid}/issue", headers=registrar)
        assert resp.status_code == 409
        assert resp.json()["code"] == "INVALID_STATE"
        assert resp.json()["details"]["certificate_id"] == cid

    def test_not_found(self, client, seeded):
        resp = client.get("/api/v1/certificates/4242", headers=_login(client, "registrar"))
        assert resp.status_code == 404
        assert resp.json()["code"] == "NOT_FOUND"

    def test_ledger_unavailable(self, client, seeded, ledger, make_approved):
        cid = make_approved()
        ledger.status = ServiceStatus.unavailable("ledger", "RPC endpoint unreachable")
        resp = client.post(f"/api/v1/certificates/{cid}/issue", headers=_login(client, "registrar"))
        assert resp.status_code == 503
        assert resp.json()["code"] == "SERVICE_UNAVAILABLE"

    def test_reject_and_batch(self, client, seeded):
        registrar, approver = _login(client, "registrar"), _login(client, "approver")
        first = _request(client, seeded, registrar).json()["id"]
        second = _request(client, seeded, registrar).json()["id"]
        rejected = client.put(f"/api/v1/certificates/{first}/reject", headers=approver, json={"comment": "no"})
        assert rejected.json()["status"] == "rejected"
        items = client.post("/api/v1/certificates/batch-approve", headers=approver,
                            json={"certificate_ids": [first, second]}).json()
        assert [i["ok"] for i in items] == [False, True]

    def test_stats_and_types(self, client, seeded):
        registrar = _login(client, "registrar")
        _request(client, seeded, registrar)
        assert client.get("/api/v1/certificates/stats", headers=registrar).json()["pending"] == 1
        types = client.get("/api/v1/certificates/types", headers=registrar).json()
        assert "honor-roll" in [t["name"] for t in types]

    def test_ledger_info_is_admin_only(self, client, seeded):
        assert client.get("/api/v1/certificates/ledger", headers=_login(client, "registrar")).status_code == 403
        info = client.get("/api/v1/certificates/ledger", headers=_login(client, "admin")).json()
        assert info["balance_ether"] == "1.5"
        assert info["contract"]["chain_id"] == 31337

    def test_student_certificates(self, client, seeded, lifecycle, make_approved):
        lifecycle.issue(make_approved())
        out = client.get(f"/api/v1/certificates/student/{seeded['alice']}", headers=_login(client, "registrar")).json()
        assert len(out["database"]) == 1
        assert len(out["ledger"]) == 1


class TestHealth:
    def test_ready(self, client):
        resp = client.get("/healthz")
        assert resp.status_code == 200
        assert resp.json()["services"]["reconciler"]["running"] is False

    def test_ledger_down(self, client, ledger):
        ledger.status = ServiceStatus.unavailable("ledger", "no contract")
        resp = client.get("/healthz")
        assert resp.status_code == 503
        assert resp.json()["services"]["ledger"]["reason"] == "no contract"
