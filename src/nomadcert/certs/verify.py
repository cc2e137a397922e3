"""Offline signature verification.

Nothing here talks to the issuing server: a verifier needs the certificate
bytes and a previously fetched public key, nothing else. Bad input never
raises; every failure maps onto a :class:`VerificationStatus` so callers can
tell a forged document apart from a broken file or a wrong key.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from ..models import VerificationStatus
from .keys import KeyMaterial, load_public_key

PublicKeyLike = Union[rsa.RSAPublicKey, KeyMaterial, str, bytes, None]

_HEX_RE = re.compile(r"^(?:[0-9a-fA-F]{2})+$")


def resolve_public_key(public_key: PublicKeyLike) -> rsa.RSAPublicKey | None:
    """Coerce the accepted key forms to an RSA public key, or None if unusable."""
    if isinstance(public_key, rsa.RSAPublicKey):
        return public_key
    if isinstance(public_key, KeyMaterial):
        return public_key.public_key
    if isinstance(public_key, (str, bytes)) and public_key:
        try:
            return load_public_key(public_key)
        except ValueError as e:
            logging.debug("public key rejected: %s", e)
            return None
    return None


def decode_signature(signature_hex: Any) -> bytes | None:
    if not isinstance(signature_hex, str):
        return None
    sig = signature_hex.strip()
    if not _HEX_RE.match(sig):
        return None
    return bytes.fromhex(sig)


def check_signature(manifest_bytes: bytes, signature_hex: Any, public_key: PublicKeyLike) -> VerificationStatus:
    pk = resolve_public_key(public_key)
    if pk is None:
        return VerificationStatus.INVALID_PUBLIC_KEY
    sig = decode_signature(signature_hex)
    if sig is None:
        return VerificationStatus.MALFORMED_SIGNATURE
    try:
        pk.verify(sig, manifest_bytes, padding.PKCS1v15(), hashes.SHA256())
    except InvalidSignature:
        return VerificationStatus.SIGNATURE_MISMATCH
    return VerificationStatus.AUTHENTIC


def verify(manifest_bytes: bytes, signature_hex: Any, public_key: PublicKeyLike) -> bool:
    return check_signature(manifest_bytes, signature_hex, public_key) is VerificationStatus.AUTHENTIC


__all__ = ["PublicKeyLike", "check_signature", "decode_signature", "resolve_public_key", "verify"]
