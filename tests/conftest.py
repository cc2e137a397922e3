import pytest

from nomadcert.certs.keys import KeyMaterial, gen_rsa_keypair
from nomadcert.models import LogRequest
from nomadcert.store import ResidencyStore


@pytest.fixture(scope="session")
def rsa_pems():
    return gen_rsa_keypair()


@pytest.fixture(scope="session")
def keys(rsa_pems):
    private_pem, public_pem = rsa_pems
    return KeyMaterial.from_pem(private_pem, public_pem)


@pytest.fixture(scope="session")
def other_keys():
    private_pem, _ = gen_rsa_keypair()
    return KeyMaterial.from_pem(private_pem)


@pytest.fixture
def store(tmp_path):
    return ResidencyStore(tmp_path / "data")


@pytest.fixture
def scenario_store(store):
    """alice: Spain on 2025-01-01, France on 2025-06-15."""
    store.upsert_log("alice", LogRequest(date="2025-01-01", country_name="Spain", city="Madrid"), "203.0.113.5")
    store.upsert_log(
        "alice",
        LogRequest(date="2025-06-15", country_name="France", latitude=48.8566, longitude=2.3522),
        "203.0.113.5",
    )
    return store
