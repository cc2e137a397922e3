from __future__ import annotations


class ConfigurationError(RuntimeError):
    """Signing key material is absent or unusable.

    Fatal for issuance: the service refuses to produce unsigned certificates.
    """


class StoreUnavailableError(RuntimeError):
    """The log or audit store could not be read or written."""


class MalformedCertificate(ValueError):
    """A certificate document cannot be interpreted for verification."""


__all__ = ["ConfigurationError", "StoreUnavailableError", "MalformedCertificate"]
