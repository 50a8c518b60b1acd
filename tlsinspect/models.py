"""
models.py
=========
Value types shared by the decoder, the three checks and the report.

Everything here is immutable and derived per inspection:
  - DistinguishedName / Certificate   decoded X.509 data
  - CertificateChain                  leaf + intermediates + optional CA
  - TrustResult                       Trusted | Untrusted(reason)
  - RevocationStatus                  NotApplicable | Valid | Revoked | CheckFailed

Statuses carry structured values; render() turns them into the strings
shown in the Debugging section of the report.
"""

import hashlib
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


# ------------------------------------------------------------------ #
#  Certificates                                                        #
# ------------------------------------------------------------------ #

@dataclass(frozen=True)
class DistinguishedName:
    common_name: str = ""
    organization: tuple = ()
    organizational_unit: tuple = ()
    country: tuple = ()
    rfc4514: str = ""


@dataclass(frozen=True)
class Certificate:
    """A decoded X.509 certificate. Build one with decoder.decode_certificate."""

    subject: DistinguishedName
    issuer: DistinguishedName
    not_before: datetime
    not_after: datetime
    serial_number: int
    public_key_algorithm: str
    signature_algorithm: str
    is_ca: bool = False
    crl_distribution_points: tuple = ()
    ocsp_servers: tuple = ()
    key_usages: tuple = ()
    dns_names: tuple = ()
    uris: tuple = ()
    ip_addresses: tuple = ()
    email_addresses: tuple = ()
    der: bytes = field(default=b"", repr=False)
    # cryptography.x509.Certificate, needed for verification and OCSP
    x509: Any = field(default=None, repr=False, compare=False)

    @property
    def fingerprint(self) -> str:
        """SHA-256 of the DER encoding as colon separated upper-case hex."""
        digest = hashlib.sha256(self.der).digest()
        return ":".join(f"{b:02X}" for b in digest)

    def is_valid_at(self, when: datetime) -> bool:
        return self.not_before <= when <= self.not_after


@dataclass(frozen=True)
class CertificateChain:
    """
    The certificate material of one secret.

    leaf is always the first block of the bundle. intermediates are the
    remaining blocks as DER, in blob order (not necessarily chain order).
    ca is the separately supplied CA certificate, if any.
    """

    leaf: Certificate
    intermediates: tuple = ()
    ca: Optional[bytes] = None

    @property
    def issuer_candidates(self) -> tuple:
        if self.ca:
            return (self.ca,) + tuple(self.intermediates)
        return tuple(self.intermediates)

    @property
    def issuer_candidate(self) -> Optional[bytes]:
        """The certificate used as OCSP issuer: the last candidate."""
        candidates = self.issuer_candidates
        return candidates[-1] if candidates else None


# ------------------------------------------------------------------ #
#  Trust                                                               #
# ------------------------------------------------------------------ #

class TrustResult:
    trusted = False

    def render(self) -> str:
        raise NotImplementedError


@dataclass(frozen=True)
class Trusted(TrustResult):
    trusted = True

    def render(self) -> str:
        return "yes"


@dataclass(frozen=True)
class Untrusted(TrustResult):
    reason: str

    def render(self) -> str:
        return f"no: {self.reason}"


# ------------------------------------------------------------------ #
#  Revocation                                                          #
# ------------------------------------------------------------------ #

def _capitalize(text: str) -> str:
    return text[:1].upper() + text[1:]


class RevocationStatus:
    """Outcome of a single revocation channel (CRL or OCSP)."""

    def render(self) -> str:
        raise NotImplementedError


@dataclass(frozen=True)
class NotApplicable(RevocationStatus):
    reason: str

    def render(self) -> str:
        return _capitalize(self.reason)


@dataclass(frozen=True)
class Valid(RevocationStatus):
    def render(self) -> str:
        return "Valid"


@dataclass(frozen=True)
class Revoked(RevocationStatus):
    source: str

    def render(self) -> str:
        return f"Revoked by {self.source}"


@dataclass(frozen=True)
class CheckFailed(RevocationStatus):
    reason: str
    detail: str = ""

    def render(self) -> str:
        if self.detail:
            return f"{_capitalize(self.reason)}: {self.detail}"
        return _capitalize(self.reason)
