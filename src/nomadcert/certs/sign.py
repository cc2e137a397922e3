from __future__ import annotations

import hashlib
from typing import Any

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding

from ..models import Manifest
from .jcs import jcs_canonical
from .keys import KeyMaterial

SIGNATURE_ALGORITHM = "RSASSA-PKCS1-v1_5-SHA256"
CANONICALIZATION = "RFC8785"


def manifest_value(manifest: Manifest | dict[str, Any]) -> dict[str, Any]:
    """JSON value of a manifest, exactly as it appears on the wire."""
    if isinstance(manifest, Manifest):
        return manifest.model_dump(mode="json")
    return manifest


def canonical_manifest_bytes(manifest: Manifest | dict[str, Any]) -> bytes:
    return jcs_canonical(manifest_value(manifest))


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sign_bytes(payload: bytes, keys: KeyMaterial) -> str:
    """RSA PKCS#1 v1.5 / SHA-256 signature over payload, lowercase hex.

    Raises ConfigurationError when the key material holds no private key.
    """
    sk = keys.require_private()
    return sk.sign(payload, padding.PKCS1v15(), hashes.SHA256()).hex()


def sign_manifest(manifest: Manifest | dict[str, Any], keys: KeyMaterial) -> str:
    return sign_bytes(canonical_manifest_bytes(manifest), keys)


__all__ = [
    "CANONICALIZATION",
    "SIGNATURE_ALGORITHM",
    "canonical_manifest_bytes",
    "manifest_value",
    "sha256_hex",
    "sign_bytes",
    "sign_manifest",
]
