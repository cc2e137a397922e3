from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Callable, Protocol

from ..models import AuditEntry, Manifest, ResidencyLog
from ..settings import settings

_YEAR_RE = re.compile(r"[0-9]{4}")


class LogSource(Protocol):
    def logs_for_year(self, user_id: str, year: int) -> list[ResidencyLog]: ...


class AuditSource(Protocol):
    def recent_audit(self, user_id: str, limit: int) -> list[AuditEntry]: ...


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def check_year(year: int | str) -> int:
    if isinstance(year, str) and not _YEAR_RE.fullmatch(year):
        raise ValueError(f"year must be a 4-digit calendar year, got {year!r}")
    try:
        y = int(year)
    except (TypeError, ValueError) as e:
        raise ValueError(f"year must be a 4-digit calendar year, got {year!r}") from e
    if not 1000 <= y <= 9999:
        raise ValueError(f"year must be a 4-digit calendar year, got {year!r}")
    return y


class ManifestBuilder:
    """Assemble the manifest for one user and year from the log and audit stores.

    Read-only: nothing is written back, and store failures propagate untouched
    (StoreUnavailableError) so callers can treat them as transient.
    """

    def __init__(
        self,
        logs: LogSource,
        audit: AuditSource,
        audit_limit: int | None = None,
        version: str | None = None,
        clock: Callable[[], str] = utc_now_iso,
    ):
        self.logs = logs
        self.audit = audit
        self.audit_limit = audit_limit if audit_limit is not None else settings.audit_evidence_limit
        self.version = version if version is not None else settings.manifest_version
        self.clock = clock

    def build(self, user_id: str, year: int | str) -> Manifest:
        y = check_year(year)
        lo, hi = f"{y:04d}-01-01", f"{y:04d}-12-31"
        by_date: dict[str, ResidencyLog] = {}
        for log in self.logs.logs_for_year(user_id, y):
            if not lo <= log.date <= hi:
                continue
            prev = by_date.get(log.date)
            # latest write wins if a source ever yields a date twice
            if prev is None or log.updated_at >= prev.updated_at:
                by_date[log.date] = log
        data = [by_date[d] for d in sorted(by_date)]
        evidence = self.audit.recent_audit(user_id, self.audit_limit)
        evidence = sorted(evidence, key=lambda e: e.timestamp, reverse=True)[: self.audit_limit]
        return Manifest(
            version=self.version,
            generated_at=self.clock(),
            user_id=user_id,
            year=y,
            log_count=len(data),
            data=data,
            audit_evidence=evidence,
        )


__all__ = ["AuditSource", "LogSource", "ManifestBuilder", "check_year", "utc_now_iso"]
