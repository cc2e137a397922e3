from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from .certs.envelope import dumps_certificate, issue_certificate, verify_certificate
from .certs.keys import KeyMaterial, gen_rsa_keypair
from .certs.manifest import ManifestBuilder, utc_now_iso
from .certs.sign import canonical_manifest_bytes, sign_manifest
from .certs.verify import check_signature
from .errors import ConfigurationError, StoreUnavailableError
from .models import VerificationStatus
from .settings import settings
from .store import ResidencyStore

EXIT_CODES = {
    VerificationStatus.AUTHENTIC: 0,
    VerificationStatus.MALFORMED_CERTIFICATE: 2,
    VerificationStatus.MALFORMED_SIGNATURE: 3,
    VerificationStatus.INVALID_PUBLIC_KEY: 3,
    VerificationStatus.SIGNATURE_MISMATCH: 4,
}


def cmd_keygen(args: argparse.Namespace) -> int:
    out = Path(args.out_dir)
    sk_file, pk_file = out / "private.pem", out / "public.pem"
    if sk_file.exists() and not args.force:
        print(f"{sk_file} exists; pass --force to overwrite", file=sys.stderr)
        return 1
    out.mkdir(parents=True, exist_ok=True)
    private_pem, public_pem = gen_rsa_keypair(args.bits)
    sk_file.write_bytes(private_pem)
    sk_file.chmod(0o600)
    pk_file.write_bytes(public_pem)
    print(f"Wrote {sk_file} and {pk_file}")
    return 0


def cmd_public_key(args: argparse.Namespace) -> int:
    try:
        pem = KeyMaterial.from_settings(settings).public_pem()
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1
    if not pem:
        print("No public key configured.", file=sys.stderr)
        return 1
    sys.stdout.write(pem)
    return 0


def cmd_issue(args: argparse.Namespace) -> int:
    store = ResidencyStore(Path(args.data_dir) if args.data_dir else None)
    try:
        keys = KeyMaterial.from_settings(settings)
        keys.require_private()
        manifest = ManifestBuilder(store, store).build(args.user, args.year)
        cert = issue_certificate(manifest, keys)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1
    except StoreUnavailableError as e:
        print(f"Store unavailable: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(str(e), file=sys.stderr)
        return 2
    out = Path(args.out)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(dumps_certificate(cert))
    print(f"Wrote {out} ({manifest.log_count} logs, year {manifest.year})")
    return 0


def cmd_verify(args: argparse.Namespace) -> int:
    cert_path = Path(args.certificate)
    if not cert_path.exists():
        print(f"Certificate not found: {cert_path}", file=sys.stderr)
        return 2
    key_path = Path(args.public_key)
    if not key_path.exists():
        print(f"Public key not found: {key_path}", file=sys.stderr)
        return 3
    result = verify_certificate(cert_path.read_bytes(), key_path.read_bytes())
    if not result.authentic:
        print(f"NOT AUTHENTIC [{result.status.value}]: {result.message}", file=sys.stderr)
        return EXIT_CODES[result.status]
    m = result.manifest or {}
    print(f"AUTHENTIC: user {m.get('user_id')} year {m.get('year')}, {m.get('log_count')} days logged")
    print(f"Signed at {m.get('generated_at')}")
    for row in result.residency:
        print(f"  {row.country}: {row.days}")
    return 0


def cmd_self_test(args: argparse.Namespace) -> int:
    """Sign and verify a probe manifest with the configured keys."""
    try:
        keys = KeyMaterial.from_settings(settings)
        probe = {"test": "data", "timestamp": utc_now_iso()}
        signature = sign_manifest(probe, keys)
    except ConfigurationError as e:
        print(f"FAILED: {e}", file=sys.stderr)
        return 1
    print(f"Signature generated: {signature[:32]}...")
    status = check_signature(canonical_manifest_bytes(probe), signature, keys)
    if status is not VerificationStatus.AUTHENTIC:
        print(f"FAILED: verification returned {status.value}", file=sys.stderr)
        return 1
    print(f"Verification SUCCESS (key {keys.key_id})")
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="nomadcert",
        description="Nomad Nights residency certificate utilities",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    p_keygen = sub.add_parser("keygen", help="Generate an RSA signing keypair (PEM)")
    p_keygen.add_argument("--out-dir", required=True, help="Directory for private.pem / public.pem")
    p_keygen.add_argument("--bits", type=int, default=2048, help="RSA modulus size (default: 2048)")
    p_keygen.add_argument("--force", action="store_true", help="Overwrite existing keys")
    p_keygen.set_defaults(func=cmd_keygen)

    p_pub = sub.add_parser("public-key", help="Print the configured public key")
    p_pub.set_defaults(func=cmd_public_key)

    p_issue = sub.add_parser("issue", help="Build and sign a certificate from the local store")
    p_issue.add_argument("--user", required=True, help="User id")
    p_issue.add_argument("--year", required=True, help="Calendar year (YYYY)")
    p_issue.add_argument("--out", required=True, help="Output JSON path")
    p_issue.add_argument("--data-dir", help="Store root (default: NOMAD_DATA_DIR)")
    p_issue.set_defaults(func=cmd_issue)

    p_verify = sub.add_parser("verify", help="Verify a certificate offline")
    p_verify.add_argument("certificate", help="Certificate JSON file")
    p_verify.add_argument("--public-key", required=True, help="Issuer public key (PEM file)")
    p_verify.set_defaults(func=cmd_verify)

    p_self = sub.add_parser("self-test", help="Check that the configured keys sign and verify")
    p_self.set_defaults(func=cmd_self_test)
    return p


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=settings.log_level.upper(), format="%(levelname)s %(name)s: %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
