from __future__ import annotations

from datetime import date as _date
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, computed_field, field_validator


def _check_calendar_date(v: str) -> str:
    try:
        parsed = _date.fromisoformat(v)
    except ValueError as e:
        raise ValueError(f"invalid calendar date {v!r}; expected YYYY-MM-DD") from e
    if parsed.isoformat() != v:
        raise ValueError(f"invalid calendar date {v!r}; expected YYYY-MM-DD")
    return v


class GpsFix(BaseModel):
    lat: float
    lon: float


class ResidencyLog(BaseModel):
    date: str  # YYYY-MM-DD, unique per user
    country_name: str
    city: str | None = None
    iso_timestamp: str
    gps: GpsFix | None = None
    client_ip: str | None = None
    updated_at: str

    @field_validator("date")
    @classmethod
    def _valid_date(cls, v: str) -> str:
        return _check_calendar_date(v)


class AuditEntry(BaseModel):
    action: Literal["CREATE", "UPDATE", "DELETE"]
    target_date: str
    timestamp: str
    new_data: ResidencyLog | None = None
    previous_data: ResidencyLog | None = None
    client_ip: str | None = None
    # sha256 hex of the canonical form of the preceding entry (None for the first)
    prev_entry_hash: str | None = None


class Manifest(BaseModel):
    version: str
    generated_at: str
    user_id: str
    year: int
    log_count: int
    data: list[ResidencyLog] = Field(default_factory=list)
    audit_evidence: list[AuditEntry] = Field(default_factory=list)


class Certificate(BaseModel):
    manifest: dict[str, Any]
    signature: str
    verification_notice: str
    key_id: str | None = None
    signature_algorithm: str = "RSASSA-PKCS1-v1_5-SHA256"
    canonicalization: str = "RFC8785"


class LogRequest(BaseModel):
    """Inbound residency entry (web dashboard or phone shortcut)."""
    date: str
    country_name: str
    city: str | None = None
    iso_timestamp: str | None = None
    latitude: float | None = None
    longitude: float | None = None


class VerificationStatus(str, Enum):
    AUTHENTIC = "authentic"
    SIGNATURE_MISMATCH = "signature_mismatch"
    MALFORMED_SIGNATURE = "malformed_signature"
    INVALID_PUBLIC_KEY = "invalid_public_key"
    MALFORMED_CERTIFICATE = "malformed_certificate"


class CountryDays(BaseModel):
    country: str
    days: int


class VerificationResult(BaseModel):
    status: VerificationStatus
    message: str
    manifest: dict[str, Any] | None = None
    residency: list[CountryDays] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def authentic(self) -> bool:
        return self.status is VerificationStatus.AUTHENTIC


class PublicKeyResponse(BaseModel):
    publicKey: str | None = None
    keyId: str | None = None
