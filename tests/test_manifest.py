import pytest

from nomadcert.certs.envelope import issue_certificate, verify_certificate
from nomadcert.certs.manifest import ManifestBuilder
from nomadcert.errors import StoreUnavailableError
from nomadcert.models import AuditEntry, LogRequest, ResidencyLog


def _fixed_clock():
    return "2025-12-31T23:59:59.000Z"


def test_scenario_year_scoping(scenario_store):
    b = ManifestBuilder(scenario_store, scenario_store)
    m25 = b.build("alice", 2025)
    m24 = b.build("alice", 2024)
    assert m25.log_count == 2
    assert [d.country_name for d in m25.data] == ["Spain", "France"]
    assert m24.log_count == 0
    assert m24.data == []
    # audit evidence is not year-scoped
    assert len(m24.audit_evidence) == 2


def test_manifest_header_fields(scenario_store):
    m = ManifestBuilder(scenario_store, scenario_store, version="1.0").build("alice", "2025")
    assert m.version == "1.0"
    assert m.user_id == "alice"
    assert m.year == 2025
    assert m.generated_at.endswith("Z")


def test_year_boundaries_inclusive(store):
    for day in ("2024-12-31", "2025-01-01", "2025-12-31", "2026-01-01"):
        store.upsert_log("bob", LogRequest(date=day, country_name="Portugal"))
    m = ManifestBuilder(store, store).build("bob", 2025)
    assert [d.date for d in m.data] == ["2025-01-01", "2025-12-31"]


def test_determinism_ignoring_generated_at(scenario_store):
    b = ManifestBuilder(scenario_store, scenario_store)
    first = b.build("alice", 2025).model_dump(exclude={"generated_at"})
    second = b.build("alice", 2025).model_dump(exclude={"generated_at"})
    assert first == second


def test_edit_overwrites_not_duplicates(scenario_store):
    scenario_store.upsert_log("alice", LogRequest(date="2025-06-15", country_name="Italy"))
    m = ManifestBuilder(scenario_store, scenario_store).build("alice", 2025)
    assert m.log_count == 2
    assert m.data[1].country_name == "Italy"
    assert m.audit_evidence[0].action == "UPDATE"


def test_audit_evidence_bounded_newest_first(store):
    for i in range(1, 6):
        store.upsert_log("carol", LogRequest(date=f"2025-03-0{i}", country_name="Japan"))
    m = ManifestBuilder(store, store, audit_limit=3).build("carol", 2025)
    assert m.log_count == 5
    assert [e.target_date for e in m.audit_evidence] == ["2025-03-05", "2025-03-04", "2025-03-03"]


def test_empty_year_is_signed_and_verifies(store, keys):
    m = ManifestBuilder(store, store).build("nobody", 2025)
    assert m.log_count == 0 and m.data == [] and m.audit_evidence == []
    cert = issue_certificate(m, keys)
    assert verify_certificate(cert.model_dump(), keys.public_pem()).authentic


@pytest.mark.parametrize("year", ["25", "20250", "abcd", 999, None, "2_025", " 2025 ", "+2025", "2025\n"])
def test_invalid_year(store, year):
    with pytest.raises(ValueError):
        ManifestBuilder(store, store).build("alice", year)


class _FakeSource:
    def __init__(self, logs=None, audit=None):
        self._logs = logs or []
        self._audit = audit or []

    def logs_for_year(self, user_id, year):
        return list(self._logs)

    def recent_audit(self, user_id, limit):
        return list(self._audit)


def _log(day, country, updated_at):
    return ResidencyLog(date=day, country_name=country, iso_timestamp=day, updated_at=updated_at)


def test_source_order_does_not_matter():
    logs = [_log("2025-05-01", "Chile", "t1"), _log("2025-02-01", "Peru", "t1")]
    audit = [
        AuditEntry(action="CREATE", target_date="2025-02-01", timestamp="2025-02-01T00:00:00.000Z"),
        AuditEntry(action="CREATE", target_date="2025-05-01", timestamp="2025-05-01T00:00:00.000Z"),
    ]
    a = ManifestBuilder(_FakeSource(logs, audit), _FakeSource(logs, audit), clock=_fixed_clock).build("u", 2025)
    b = ManifestBuilder(
        _FakeSource(logs[::-1], audit[::-1]), _FakeSource(logs[::-1], audit[::-1]), clock=_fixed_clock
    ).build("u", 2025)
    assert a == b
    assert [d.date for d in a.data] == ["2025-02-01", "2025-05-01"]
    assert a.audit_evidence[0].target_date == "2025-05-01"


def test_duplicate_dates_latest_write_wins():
    logs = [
        _log("2025-02-01", "Peru", "2025-02-01T10:00:00.000Z"),
        _log("2025-02-01", "Bolivia", "2025-02-01T12:00:00.000Z"),
        _log("2024-02-01", "Peru", "2024-02-01T10:00:00.000Z"),
    ]
    src = _FakeSource(logs)
    m = ManifestBuilder(src, src).build("u", 2025)
    assert m.log_count == 1
    assert m.data[0].country_name == "Bolivia"


def test_store_unavailable_propagates():
    class _Down:
        def logs_for_year(self, user_id, year):
            raise StoreUnavailableError("connection refused")

    with pytest.raises(StoreUnavailableError):
        ManifestBuilder(_Down(), _FakeSource()).build("u", 2025)
