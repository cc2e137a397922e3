"""File-backed residency log and audit trail store.

Layout under the data dir::

    users/<user_id>/logs/<YYYY-MM-DD>.json    one record per calendar day
    users/<user_id>/audit/<seq>.json          append-only audit entries

Each audit entry carries ``prev_entry_hash``, the sha256 hex of the canonical
form of the entry before it, so a copied-out trail can be checked for gaps or
edits with :func:`verify_audit_chain`.
"""
from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import threading
from datetime import date as _date, datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from .certs.jcs import jcs_canonical
from .certs.sign import sha256_hex
from .errors import StoreUnavailableError
from .models import AuditEntry, GpsFix, LogRequest, ResidencyLog
from .settings import settings

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_USER_RE = re.compile(r"^[A-Za-z0-9_-][A-Za-z0-9_.@-]{0,127}$")
_AT_RE = re.compile(r"\s+at\s+", re.IGNORECASE)

# Formats seen from phone shortcuts once " at " is dropped
_LOOSE_FORMATS = (
    "%b %d, %Y %I:%M %p",
    "%B %d, %Y %I:%M %p",
    "%b %d, %Y %H:%M",
    "%B %d, %Y %H:%M",
    "%d %b %Y %H:%M",
    "%b %d, %Y",
    "%B %d, %Y",
    "%d %B %Y",
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def normalize_log_date(raw: str) -> str:
    """Reduce a submitted date/timestamp to YYYY-MM-DD (the date as written, no tz shift)."""
    text = _AT_RE.sub(" ", raw.strip())
    if _DATE_RE.match(text):
        return _date.fromisoformat(text).isoformat()
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        pass
    for fmt in _LOOSE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue
    head = text.split("T", 1)[0]
    if _DATE_RE.match(head):
        return _date.fromisoformat(head).isoformat()
    raise ValueError(f"unrecognized date {raw!r}")


def _atomic_write(path: Path, text: str) -> None:
    """Replace ``path`` in one step so readers never see a half-written record."""
    fd, tmp = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    finally:
        if os.path.exists(tmp):
            os.remove(tmp)


def entry_hash(entry: AuditEntry) -> str:
    return sha256_hex(jcs_canonical(entry.model_dump(mode="json")))


def verify_audit_chain(entries: list[AuditEntry]) -> bool:
    """Check prev_entry_hash links over a chronologically ordered (oldest first) trail."""
    prev: str | None = None
    for i, e in enumerate(entries):
        if i > 0 and e.prev_entry_hash != prev:
            return False
        prev = entry_hash(e)
    return True


class ResidencyStore:
    def __init__(self, root: Path | None = None):
        self.root = root if root is not None else settings.nomad_data_dir
        # serializes read-previous, write, audit append
        self._write_lock = threading.RLock()

    # -- paths -------------------------------------------------------------
    def _user_dir(self, user_id: str) -> Path:
        if not _USER_RE.match(user_id):
            raise ValueError(f"invalid user id {user_id!r}")
        return self.root / "users" / user_id

    def _logs_dir(self, user_id: str) -> Path:
        return self._user_dir(user_id) / "logs"

    def _audit_dir(self, user_id: str) -> Path:
        return self._user_dir(user_id) / "audit"

    # -- reads -------------------------------------------------------------
    def _read_log(self, path: Path) -> ResidencyLog | None:
        try:
            return ResidencyLog.model_validate_json(path.read_text())
        except FileNotFoundError:
            return None
        except ValidationError as e:
            logging.exception("Failed to parse log file %s: %s", path, e)
            return None
        except OSError as e:
            raise StoreUnavailableError(f"log store unreadable: {e}") from e

    def get_log(self, user_id: str, day: str) -> ResidencyLog | None:
        return self._read_log(self._logs_dir(user_id) / f"{day}.json")

    def all_logs(self, user_id: str) -> list[ResidencyLog]:
        d = self._logs_dir(user_id)
        try:
            files = sorted(d.glob("*.json")) if d.exists() else []
        except OSError as e:
            raise StoreUnavailableError(f"log store unreadable: {e}") from e
        logs = []
        for p in files:
            log = self._read_log(p)
            if log is not None:
                logs.append(log)
        return logs

    def logs_for_year(self, user_id: str, year: int) -> list[ResidencyLog]:
        prefix = f"{year:04d}-"
        return [log for log in self.all_logs(user_id) if log.date.startswith(prefix)]

    def _audit_files(self, user_id: str) -> list[Path]:
        d = self._audit_dir(user_id)
        try:
            return sorted(d.glob("*.json")) if d.exists() else []
        except OSError as e:
            raise StoreUnavailableError(f"audit store unreadable: {e}") from e

    def _read_entry(self, path: Path) -> AuditEntry | None:
        try:
            return AuditEntry.model_validate_json(path.read_text())
        except ValidationError as e:
            logging.exception("Failed to parse audit file %s: %s", path, e)
            return None
        except OSError as e:
            raise StoreUnavailableError(f"audit store unreadable: {e}") from e

    def audit_trail(self, user_id: str) -> list[AuditEntry]:
        """Full trail, oldest first."""
        entries = []
        for p in self._audit_files(user_id):
            e = self._read_entry(p)
            if e is not None:
                entries.append(e)
        return entries

    def recent_audit(self, user_id: str, limit: int) -> list[AuditEntry]:
        """Most recent `limit` entries, newest first."""
        out: list[AuditEntry] = []
        for p in reversed(self._audit_files(user_id)):
            if len(out) >= limit:
                break
            e = self._read_entry(p)
            if e is not None:
                out.append(e)
        return out

    # -- writes ------------------------------------------------------------
    def _append_audit(self, user_id: str, **fields) -> AuditEntry:
        d = self._audit_dir(user_id)
        with self._write_lock:
            files = self._audit_files(user_id)
            prev_hash = None
            for p in reversed(files):  # newest well-formed entry
                prev = self._read_entry(p)
                if prev is not None:
                    prev_hash = entry_hash(prev)
                    break
            entry = AuditEntry(prev_entry_hash=prev_hash, **fields)
            seq = int(files[-1].stem) + 1 if files else 1
            try:
                d.mkdir(parents=True, exist_ok=True)
                _atomic_write(d / f"{seq:08d}.json", entry.model_dump_json(indent=2))
            except OSError as e:
                raise StoreUnavailableError(f"audit store unwritable: {e}") from e
        return entry

    def upsert_log(self, user_id: str, req: LogRequest, client_ip: str | None = None) -> ResidencyLog:
        day = normalize_log_date(req.date)
        updated_at = _now_iso()
        gps = None
        if req.latitude is not None and req.longitude is not None:
            gps = GpsFix(lat=req.latitude, lon=req.longitude)
        log = ResidencyLog(
            date=day,
            country_name=req.country_name,
            city=req.city,
            iso_timestamp=req.iso_timestamp or req.date or updated_at,
            gps=gps,
            client_ip=client_ip,
            updated_at=updated_at,
        )
        d = self._logs_dir(user_id)
        with self._write_lock:
            previous = self.get_log(user_id, day)
            try:
                d.mkdir(parents=True, exist_ok=True)
                _atomic_write(d / f"{day}.json", log.model_dump_json(indent=2))
            except OSError as e:
                raise StoreUnavailableError(f"log store unwritable: {e}") from e
            self._append_audit(
                user_id,
                action="UPDATE" if previous else "CREATE",
                target_date=day,
                timestamp=updated_at,
                new_data=log,
                previous_data=previous,
                client_ip=client_ip,
            )
        return log

    def delete_log(self, user_id: str, day: str, client_ip: str | None = None) -> bool:
        """Delete one day's log; returns False (and audits nothing) when absent."""
        if not _DATE_RE.match(day):
            raise ValueError("Invalid date format. Expected YYYY-MM-DD")
        with self._write_lock:
            previous = self.get_log(user_id, day)
            if previous is None:
                return False
            try:
                (self._logs_dir(user_id) / f"{day}.json").unlink()
            except OSError as e:
                raise StoreUnavailableError(f"log store unwritable: {e}") from e
            self._append_audit(
                user_id,
                action="DELETE",
                target_date=day,
                timestamp=_now_iso(),
                previous_data=previous,
                client_ip=client_ip,
            )
        return True


__all__ = ["ResidencyStore", "entry_hash", "normalize_log_date", "verify_audit_chain"]
