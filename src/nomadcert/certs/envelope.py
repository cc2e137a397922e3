"""Certificate envelope: the exported JSON document and its verifier entry point."""
from __future__ import annotations

import json
from collections import Counter
from typing import Any

from ..errors import MalformedCertificate
from ..models import Certificate, CountryDays, Manifest, VerificationResult, VerificationStatus
from ..settings import settings
from .jcs import jcs_canonical
from .keys import KeyMaterial
from .sign import CANONICALIZATION, SIGNATURE_ALGORITHM, manifest_value, sign_manifest
from .verify import PublicKeyLike, check_signature

_STATUS_MESSAGES = {
    VerificationStatus.AUTHENTIC: "Signature valid: the manifest is exactly as issued.",
    VerificationStatus.SIGNATURE_MISMATCH: (
        "Signature does not match the manifest: the document was modified or not issued with this key."
    ),
    VerificationStatus.MALFORMED_SIGNATURE: "Signature is not a hex-encoded value.",
    VerificationStatus.INVALID_PUBLIC_KEY: "Public key is missing or is not a PEM-encoded RSA key.",
}


def issue_certificate(manifest: Manifest, keys: KeyMaterial, notice: str | None = None) -> Certificate:
    value = manifest_value(manifest)
    return Certificate(
        manifest=value,
        signature=sign_manifest(value, keys),
        verification_notice=notice if notice is not None else settings.verification_notice,
        key_id=keys.key_id,
        signature_algorithm=SIGNATURE_ALGORITHM,
        canonicalization=CANONICALIZATION,
    )


def dumps_certificate(cert: Certificate, indent: int | None = 2) -> str:
    return json.dumps(cert.model_dump(mode="json"), indent=indent, ensure_ascii=False)


def parse_certificate(document: str | bytes | dict[str, Any]) -> tuple[dict[str, Any], str]:
    """Return (manifest, signature) or raise MalformedCertificate."""
    if isinstance(document, (str, bytes)):
        try:
            document = json.loads(document)
        except (ValueError, UnicodeDecodeError) as e:
            raise MalformedCertificate("certificate is not valid JSON") from e
        except RecursionError as e:
            raise MalformedCertificate("certificate is nested too deeply") from e
    if not isinstance(document, dict):
        raise MalformedCertificate("certificate must be a JSON object")
    manifest = document.get("manifest")
    signature = document.get("signature")
    if not manifest or not signature:
        raise MalformedCertificate("missing manifest or signature in the certificate")
    if not isinstance(manifest, dict):
        raise MalformedCertificate("manifest must be a JSON object")
    if not isinstance(signature, str):
        raise MalformedCertificate("signature must be a string")
    canon = document.get("canonicalization", CANONICALIZATION)
    if canon != CANONICALIZATION:
        raise MalformedCertificate(f"unsupported canonicalization {canon!r}")
    alg = document.get("signature_algorithm", SIGNATURE_ALGORITHM)
    if alg != SIGNATURE_ALGORITHM:
        raise MalformedCertificate(f"unsupported signature algorithm {alg!r}")
    return manifest, signature


def residency_breakdown(manifest: dict[str, Any]) -> list[CountryDays]:
    """Days per country, most days first."""
    counts: Counter[str] = Counter()
    data = manifest.get("data")
    for log in data if isinstance(data, list) else []:
        country = log.get("country_name") if isinstance(log, dict) else None
        counts[country or "Unknown"] += 1
    ordered = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    return [CountryDays(country=c, days=n) for c, n in ordered]


def verify_certificate(document: str | bytes | dict[str, Any], public_key: PublicKeyLike) -> VerificationResult:
    try:
        manifest, signature = parse_certificate(document)
        payload = jcs_canonical(manifest)
    except MalformedCertificate as e:
        return VerificationResult(status=VerificationStatus.MALFORMED_CERTIFICATE, message=str(e))
    except (TypeError, ValueError, RecursionError) as e:
        # e.g. NaN or runaway nesting in the manifest
        return VerificationResult(
            status=VerificationStatus.MALFORMED_CERTIFICATE,
            message=f"manifest cannot be canonicalized: {e}",
        )
    status = check_signature(payload, signature, public_key)
    if status is not VerificationStatus.AUTHENTIC:
        return VerificationResult(status=status, message=_STATUS_MESSAGES[status])
    return VerificationResult(
        status=status,
        message=_STATUS_MESSAGES[status],
        manifest=manifest,
        residency=residency_breakdown(manifest),
    )


__all__ = [
    "dumps_certificate",
    "issue_certificate",
    "parse_certificate",
    "residency_breakdown",
    "verify_certificate",
]
