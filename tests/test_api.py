import pytest
from fastapi.testclient import TestClient

from nomadcert.api.main import app, get_keys, get_store
from nomadcert.certs.envelope import verify_certificate
from nomadcert.certs.keys import KeyMaterial
from nomadcert.errors import StoreUnavailableError

ALICE = {"X-User-Id": "alice"}


@pytest.fixture
def client(store, keys):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_keys] = lambda: keys
    yield TestClient(app)
    app.dependency_overrides.clear()


def _seed(c):
    r1 = c.post("/api/log", json={"date": "2025-01-01", "country_name": "Spain", "city": "Madrid"}, headers=ALICE)
    r2 = c.post(
        "/api/log",
        json={"date": "Jun 15, 2025 at 9:30 AM", "country_name": "France", "latitude": 48.8566, "longitude": 2.3522},
        headers={**ALICE, "X-Forwarded-For": "203.0.113.5, 10.0.0.1"},
    )
    assert r1.status_code == 200 and r2.status_code == 200
    assert r2.json()["id"] == "2025-06-15"


def test_health(client):
    assert client.get("/health").json() == {"ok": True}


def test_certificate_flow_verifies_offline(client, keys):
    _seed(client)
    logs = client.get("/api/logs", headers=ALICE).json()
    assert [log["date"] for log in logs] == ["2025-01-01", "2025-06-15"]
    assert logs[1]["client_ip"] == "203.0.113.5"

    cert = client.get("/api/certificate/2025", headers=ALICE)
    assert cert.status_code == 200
    doc = cert.json()
    assert doc["manifest"]["log_count"] == 2
    assert doc["manifest"]["user_id"] == "alice"
    assert "verification_notice" in doc

    pub = client.get("/api/public-key").json()
    assert pub["publicKey"].startswith("-----BEGIN PUBLIC KEY-----")
    assert pub["keyId"] == keys.key_id
    # third-party check: only the published key and the downloaded document
    result = verify_certificate(cert.content, pub["publicKey"])
    assert result.authentic

    served = client.post("/api/verify", json=doc).json()
    assert served["status"] == "authentic"
    assert served["authentic"] is True


def test_empty_year_and_signature_swap(client):
    _seed(client)
    doc25 = client.get("/api/certificate/2025", headers=ALICE).json()
    doc24 = client.get("/api/certificate/2024", headers=ALICE).json()
    assert doc24["manifest"]["log_count"] == 0
    assert doc24["manifest"]["data"] == []
    assert client.post("/api/verify", json=doc24).json()["authentic"] is True
    forged = {**doc24, "signature": doc25["signature"]}
    assert client.post("/api/verify", json=forged).json()["status"] == "signature_mismatch"


def test_verify_malformed_document(client):
    r = client.post("/api/verify", json={"manifest": {"year": 2025}})
    assert r.status_code == 200
    assert r.json()["status"] == "malformed_certificate"

    depth = 100_000
    deep = '{"manifest": {"data": ' + "[" * depth + "]" * depth + '}, "signature": "ab"}'
    r = client.post("/api/verify", content=deep, headers={"Content-Type": "application/json"})
    assert r.status_code == 200
    assert r.json()["status"] == "malformed_certificate"
    assert client.post("/api/verify", content=b"not json").json()["status"] == "malformed_certificate"


def test_delete_log(client):
    _seed(client)
    assert client.delete("/api/log/2025-01-01", headers=ALICE).status_code == 200
    assert client.delete("/api/log/01-01-2025", headers=ALICE).status_code == 400
    doc = client.get("/api/certificate/2025", headers=ALICE).json()
    assert doc["manifest"]["log_count"] == 1
    assert doc["manifest"]["audit_evidence"][0]["action"] == "DELETE"


def test_requires_user(client):
    assert client.get("/api/certificate/2025").status_code == 401
    assert client.post("/api/log", json={"date": "2025-01-01", "country_name": "Spain"}).status_code == 401


def test_bad_input(client):
    assert client.get("/api/certificate/twenty", headers=ALICE).status_code == 400
    assert client.get("/api/certificate/2_025", headers=ALICE).status_code == 400
    r = client.post("/api/log", json={"date": "someday", "country_name": "Spain"}, headers=ALICE)
    assert r.status_code == 400
    assert client.post("/api/log", json={"date": "2025-01-01"}, headers=ALICE).status_code == 422


def test_no_private_key_refuses_to_issue(client, keys):
    app.dependency_overrides[get_keys] = lambda: KeyMaterial(public_key=keys.public_key)
    r = client.get("/api/certificate/2025", headers=ALICE)
    assert r.status_code == 500
    assert r.json()["detail"] == "signing key not configured"
    # public key distribution still works
    assert client.get("/api/public-key").json()["publicKey"]


def test_store_unavailable_is_503(client):
    class _Down:
        def logs_for_year(self, user_id, year):
            raise StoreUnavailableError("disk gone")

        def recent_audit(self, user_id, limit):
            raise StoreUnavailableError("disk gone")

    app.dependency_overrides[get_store] = lambda: _Down()
    assert client.get("/api/certificate/2025", headers=ALICE).status_code == 503


def test_get_keys_loads_once(monkeypatch, keys):
    import nomadcert.api.main as main_mod
    calls = []

    def fake_from_settings(cfg):
        calls.append(cfg)
        return keys

    monkeypatch.setattr(main_mod, "_keys", None)
    monkeypatch.setattr(main_mod.KeyMaterial, "from_settings", staticmethod(fake_from_settings))
    assert get_keys() is keys
    assert get_keys() is keys
    assert len(calls) == 1
