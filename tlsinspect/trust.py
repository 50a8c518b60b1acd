"""
trust.py
========
"Trusted by this computer": chain verification against the local root
store, augmented with the intermediates supplied in the secret.

Every supplied intermediate is added to the root pool itself, so a chain
that ends at one of them counts as trusted. The pool loaded from disk is
an immutable tuple shared by the process; each call builds its own list
from it.

Verification uses cryptography.x509.verification at the caller's `now`.
"""

import functools
import ipaddress
import logging
import os
import ssl
from datetime import datetime, timezone

import certifi
from cryptography import x509
from cryptography.x509.oid import ExtendedKeyUsageOID
from cryptography.x509.verification import (
    Criticality, ExtensionPolicy, PolicyBuilder, Store, VerificationError,
)

from tlsinspect.config import load_config
from tlsinspect.models import Certificate, Trusted, TrustResult, Untrusted

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------ #
#  Root store                                                          #
# ------------------------------------------------------------------ #

def default_trust_store_path(cfg: dict = None) -> str:
    """
    Pick the CA bundle: configured path, then the system bundle, then certifi.
    """
    cfg = cfg or load_config()
    if cfg.get("trust_store_path"):
        return cfg["trust_store_path"]
    system_cafile = ssl.get_default_verify_paths().cafile
    if system_cafile and os.path.exists(system_cafile):
        return system_cafile
    return certifi.where()


@functools.lru_cache(maxsize=4)
def _load_roots(path: str) -> tuple:
    with open(path, "rb") as fh:
        roots = tuple(x509.load_pem_x509_certificates(fh.read()))
    logger.debug("Loaded %d trust anchors from %s", len(roots), path)
    return roots


def load_system_roots(path: str = None) -> tuple:
    """
    Return the process-wide root pool as an immutable tuple.

    Raises:
        OSError / ValueError: If the bundle cannot be read or parsed.
    """
    return _load_roots(path or default_trust_store_path())


# ------------------------------------------------------------------ #
#  Verification                                                        #
# ------------------------------------------------------------------ #

# stands in for the server name; the leaf policy below never checks names
_ANY_SERVER = x509.DNSName("tlsinspect.invalid")

_SERVER_AUTH_USAGES = (ExtendedKeyUsageOID.SERVER_AUTH, ExtendedKeyUsageOID.ANY_EXTENDED_KEY_USAGE)


def _format_time(when: datetime) -> str:
    return when.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _validity_error(leaf: Certificate, now: datetime) -> str:
    side, bound = ("before", leaf.not_before) if now < leaf.not_before else ("after", leaf.not_after)
    return (f"x509: certificate has expired or is not yet valid: current time "
            f"{_format_time(now)} is {side} {_format_time(bound)}")


def _require_server_auth(policy, cert, eku) -> None:
    # an absent extended key usage allows every usage
    if eku is not None and not any(oid in eku for oid in _SERVER_AUTH_USAGES):
        raise ValueError("certificate specifies an incompatible key usage")


def _require_ca(policy, cert, basic_constraints) -> None:
    # v1 roots carry no basic constraints at all
    if basic_constraints is not None and not basic_constraints.ca:
        raise ValueError("issuer is not a CA certificate")


def _require_cert_sign(policy, cert, key_usage) -> None:
    if key_usage is not None and not key_usage.key_cert_sign:
        raise ValueError("issuer key usage does not allow certificate signing")


def _extension_policies() -> tuple:
    """
    (ca_policy, ee_policy): chain validity for server auth, nothing more.

    Leaves are not held to the web PKI profile: no SAN, AKI or name
    requirements, only a server-auth compatible extended key usage.
    Issuers must be CAs allowed to sign certificates.
    """
    ca_policy = (
        ExtensionPolicy.permit_all()
        .may_be_present(x509.BasicConstraints, Criticality.AGNOSTIC, _require_ca)
        .may_be_present(x509.KeyUsage, Criticality.AGNOSTIC, _require_cert_sign)
        .may_be_present(x509.ExtendedKeyUsage, Criticality.AGNOSTIC, _require_server_auth)
    )
    ee_policy = ExtensionPolicy.permit_all().may_be_present(
        x509.ExtendedKeyUsage, Criticality.AGNOSTIC, _require_server_auth,
    )
    return ca_policy, ee_policy


def _server_subject(leaf: Certificate):
    """A SAN of the leaf when it has one, otherwise a placeholder name."""
    try:
        if leaf.dns_names:
            # a wildcard SAN matches any single label in its place
            return x509.DNSName(leaf.dns_names[0].replace("*", "wildcard", 1))
        if leaf.ip_addresses:
            return x509.IPAddress(ipaddress.ip_address(leaf.ip_addresses[0]))
    except ValueError:
        pass
    return _ANY_SERVER


def _build_verifier(store: Store, now: datetime, subject):
    ca_policy, ee_policy = _extension_policies()
    builder = (
        PolicyBuilder()
        .store(store)
        .time(now)
        .extension_policies(ca_policy=ca_policy, ee_policy=ee_policy)
    )
    return builder.build_server_verifier(subject)


def verify_trust(leaf: Certificate, intermediates, now: datetime, roots=None) -> TrustResult:
    """
    Check whether *leaf* chains to the root pool plus *intermediates*.

    Any valid chain to a pool member counts, verified for server auth at
    *now* without a hostname check.

    Args:
        leaf:           Decoded leaf certificate.
        intermediates:  Decoded chain certificates (Certificate objects).
        now:            Validation time (timezone-aware).
        roots:          Root certificates to use instead of the system store.

    Returns:
        Trusted() or Untrusted(reason).
    """
    if not leaf.is_valid_at(now):
        return Untrusted(_validity_error(leaf, now))

    if roots is None:
        try:
            roots = load_system_roots()
        except (OSError, ValueError) as exc:
            return Untrusted(f"error getting system CA store: {exc}")

    chain = [cert.x509 for cert in intermediates]
    pool = list(roots) + chain
    if not pool:
        return Untrusted("x509: certificate signed by unknown authority")

    try:
        verifier = _build_verifier(Store(pool), now, _server_subject(leaf))
        verifier.verify(leaf.x509, chain)
    except VerificationError as exc:
        return Untrusted(str(exc))
    except ValueError as exc:
        # certificate the policy cannot evaluate
        return Untrusted(f"cannot verify certificate: {exc}")
    return Trusted()
