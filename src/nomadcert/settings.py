from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    nomad_data_dir: Path = Path("./data")
    # RSA key material (PEM text or file paths). Text wins over file.
    rsa_private_key: str | None = None
    rsa_public_key: str | None = None
    rsa_private_key_file: Path | None = None
    rsa_public_key_file: Path | None = None
    # Lab convenience: create a keypair under <data_dir>/keys when none is configured
    generate_dev_keys: bool = False
    # Manifest assembly
    manifest_version: str = "1.0"
    audit_evidence_limit: int = 100
    verification_notice: str = (
        "This document is cryptographically signed by Nomad Nights. "
        "Use our Public Key to verify its authenticity."
    )
    log_level: str = "INFO"

    def keys_dir(self) -> Path:
        return self.nomad_data_dir / "keys"

    def model_post_init(self, __context):  # type: ignore[override]
        # Keys pasted into single-line env vars carry literal "\n" sequences
        if self.rsa_private_key:
            self.rsa_private_key = self.rsa_private_key.replace("\\n", "\n")
        if self.rsa_public_key:
            self.rsa_public_key = self.rsa_public_key.replace("\\n", "\n")

settings = Settings()
settings.nomad_data_dir.mkdir(parents=True, exist_ok=True)
