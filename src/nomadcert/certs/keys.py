"""RSA key material for certificate signing.

Keys are loaded once per process into an immutable :class:`KeyMaterial` that
is handed to the signer and verifier; nothing re-reads the environment per
call.
"""
from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from ..errors import ConfigurationError
from ..settings import Settings

MIN_KEY_BITS = 2048


def gen_rsa_keypair(bits: int = MIN_KEY_BITS) -> tuple[bytes, bytes]:
    """Return (private_pem, public_pem) for a fresh RSA keypair."""
    sk = rsa.generate_private_key(public_exponent=65537, key_size=bits)
    private_pem = sk.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return private_pem, public_key_pem(sk.public_key()).encode()


def public_key_pem(pk: rsa.RSAPublicKey) -> str:
    return pk.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")


def key_fingerprint(pk: rsa.RSAPublicKey) -> str:
    """sha256 hex over the DER SubjectPublicKeyInfo."""
    der = pk.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return hashlib.sha256(der).hexdigest()


def load_public_key(pem: str | bytes) -> rsa.RSAPublicKey:
    """Parse a PEM public key; ValueError when it is not a usable RSA key."""
    if isinstance(pem, str):
        pem = pem.encode()
    try:
        pk = serialization.load_pem_public_key(pem)
    except UnsupportedAlgorithm as e:
        raise ValueError(str(e)) from e
    if not isinstance(pk, rsa.RSAPublicKey):
        raise ValueError("public key is not an RSA key")
    return pk


def _load_private_key(pem: bytes) -> rsa.RSAPrivateKey:
    try:
        sk = serialization.load_pem_private_key(pem, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise ConfigurationError(f"RSA private key could not be parsed: {e}") from e
    if not isinstance(sk, rsa.RSAPrivateKey):
        raise ConfigurationError("configured private key is not an RSA key")
    if sk.key_size < MIN_KEY_BITS:
        raise ConfigurationError(f"RSA private key is {sk.key_size} bits; at least {MIN_KEY_BITS} required")
    return sk


@dataclass(frozen=True, repr=False)
class KeyMaterial:
    public_key: rsa.RSAPublicKey | None
    private_key: rsa.RSAPrivateKey | None = None

    @classmethod
    def from_pem(cls, private_pem: str | bytes | None, public_pem: str | bytes | None = None) -> "KeyMaterial":
        sk = None
        if private_pem:
            sk = _load_private_key(private_pem.encode() if isinstance(private_pem, str) else private_pem)
        pk = None
        if public_pem:
            try:
                pk = load_public_key(public_pem)
            except ValueError as e:
                raise ConfigurationError(f"RSA public key could not be parsed: {e}") from e
        if sk is not None:
            derived = sk.public_key()
            if pk is not None and key_fingerprint(pk) != key_fingerprint(derived):
                raise ConfigurationError("configured public key does not match the private key")
            pk = derived
        return cls(public_key=pk, private_key=sk)

    @classmethod
    def from_settings(cls, cfg: Settings) -> "KeyMaterial":
        private_pem = cfg.rsa_private_key
        public_pem = cfg.rsa_public_key
        try:
            if not private_pem and cfg.rsa_private_key_file:
                private_pem = cfg.rsa_private_key_file.read_text()
            if not public_pem and cfg.rsa_public_key_file:
                public_pem = cfg.rsa_public_key_file.read_text()
        except OSError as e:
            raise ConfigurationError(f"RSA key file unreadable: {e}") from e
        if not private_pem and cfg.generate_dev_keys:
            private_pem = _dev_private_key(cfg.keys_dir())
        keys = cls.from_pem(private_pem, public_pem)
        if keys.private_key is None:
            logging.critical("RSA private key not configured; certificate signing will fail")
        if keys.public_key is None:
            logging.warning("RSA public key not configured; public key endpoint will return null")
        return keys

    @property
    def can_sign(self) -> bool:
        return self.private_key is not None

    @property
    def key_id(self) -> str | None:
        return key_fingerprint(self.public_key) if self.public_key is not None else None

    def public_pem(self) -> str | None:
        return public_key_pem(self.public_key) if self.public_key is not None else None

    def require_private(self) -> rsa.RSAPrivateKey:
        if self.private_key is None:
            raise ConfigurationError("RSA private key is not configured on the server")
        return self.private_key

    def __repr__(self) -> str:  # never render key material
        return f"KeyMaterial(key_id={self.key_id!r}, can_sign={self.can_sign})"


def _dev_private_key(key_dir: Path) -> str:
    sk_file = key_dir / "private.pem"
    if not sk_file.exists():
        logging.warning("Generating transient lab RSA keypair in %s (GENERATE_DEV_KEYS)", key_dir)
        key_dir.mkdir(parents=True, exist_ok=True)
        private_pem, public_pem = gen_rsa_keypair()
        sk_file.write_bytes(private_pem)
        (key_dir / "public.pem").write_bytes(public_pem)
    return sk_file.read_text()


__all__ = [
    "KeyMaterial",
    "gen_rsa_keypair",
    "key_fingerprint",
    "load_public_key",
    "public_key_pem",
]
