from __future__ import annotations

import logging
import threading

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from ..certs.envelope import issue_certificate, verify_certificate
from ..certs.keys import KeyMaterial
from ..certs.manifest import ManifestBuilder
from ..errors import ConfigurationError, StoreUnavailableError
from ..models import LogRequest, PublicKeyResponse
from ..settings import settings
from ..store import ResidencyStore

app = FastAPI(title="Nomad Nights Residency Certificates")

_keys: KeyMaterial | None = None
_keys_lock = threading.Lock()
_store = ResidencyStore()


def get_keys() -> KeyMaterial:
    """Process-wide key material, loaded on first use and never re-read."""
    global _keys
    if _keys is None:
        with _keys_lock:
            if _keys is None:
                _keys = KeyMaterial.from_settings(settings)
    return _keys


def get_store() -> ResidencyStore:
    return _store


def current_user(x_user_id: str | None = Header(default=None, alias="X-User-Id")) -> str:
    # Stand-in for real authentication; the caller identity arrives pre-resolved
    if not x_user_id:
        raise HTTPException(401, "Unauthorized: no user identity provided")
    return x_user_id


@app.exception_handler(ConfigurationError)
async def _configuration_error(request: Request, exc: ConfigurationError):
    logging.error("Certificate signing unavailable (%s): %s", request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "signing key not configured"})


@app.exception_handler(StoreUnavailableError)
async def _store_unavailable(request: Request, exc: StoreUnavailableError):
    logging.error("Store unavailable (%s): %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Database not available"})


def _client_ip(request: Request) -> str | None:
    fwd = request.headers.get("x-forwarded-for")
    if fwd:
        return fwd.split(",")[0].strip()
    return request.client.host if request.client else None


@app.get("/health")
@app.get("/healthz")  # alias for k8s style probes
def health():
    return {"ok": True}


@app.get("/api/public-key")
def public_key(keys: KeyMaterial = Depends(get_keys)):
    return PublicKeyResponse(publicKey=keys.public_pem(), keyId=keys.key_id).model_dump()


@app.post("/api/log")
def post_log(
    req: LogRequest,
    request: Request,
    user_id: str = Depends(current_user),
    store: ResidencyStore = Depends(get_store),
):
    try:
        log = store.upsert_log(user_id, req, _client_ip(request))
    except ValueError as e:
        raise HTTPException(400, str(e)) from e
    return {"success": True, "message": "Log saved with audit trail", "id": log.date}


@app.delete("/api/log/{day}")
def delete_log(
    day: str,
    request: Request,
    user_id: str = Depends(current_user),
    store: ResidencyStore = Depends(get_store),
):
    try:
        store.delete_log(user_id, day, _client_ip(request))
    except ValueError as e:
        raise HTTPException(400, str(e)) from e
    return {"success": True, "message": "Log deleted and audited"}


@app.get("/api/logs")
def list_logs(user_id: str = Depends(current_user), store: ResidencyStore = Depends(get_store)):
    try:
        return [log.model_dump(mode="json") for log in store.all_logs(user_id)]
    except ValueError as e:
        raise HTTPException(400, str(e)) from e


@app.get("/api/certificate/{year}")
def certificate(
    year: str,
    user_id: str = Depends(current_user),
    store: ResidencyStore = Depends(get_store),
    keys: KeyMaterial = Depends(get_keys),
):
    """Build, sign and return the residency certificate for one calendar year."""
    # refuse before touching the store: no unsigned certificates
    keys.require_private()
    try:
        manifest = ManifestBuilder(store, store).build(user_id, year)
    except ValueError as e:
        raise HTTPException(400, str(e)) from e
    cert = issue_certificate(manifest, keys)
    logging.info(
        "Issued certificate user=%s year=%s logs=%d key_id=%s",
        user_id, manifest.year, manifest.log_count, cert.key_id,
    )
    return cert.model_dump(mode="json")


@app.post("/api/verify")
async def verify(request: Request, keys: KeyMaterial = Depends(get_keys)):
    """Check a certificate against this server's public key.

    Convenience only: the same result is reachable offline with the published key.
    The raw body goes straight to the verifier so unparseable documents come
    back as ``malformed_certificate`` rather than a framework error.
    """
    body = await request.body()
    return verify_certificate(body, keys).model_dump(mode="json")
