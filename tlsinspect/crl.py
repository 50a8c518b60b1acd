"""
crl.py
======
Revocation check against the CRL distribution points of the leaf.

Distribution points are examined in declaration order:
  - a URL that does not parse stops the check (CheckFailed)
  - a URL with an unsupported scheme is skipped
  - a fetch or parse failure stops the check (CheckFailed)
  - the first CRL listing the leaf serial wins (Revoked)

A Valid answer from one point does not stop later points from being
examined; only a revocation short-circuits.
"""

import functools
import logging
from datetime import datetime
from urllib.parse import urlparse

from cryptography import x509

from tlsinspect.config import load_config
from tlsinspect.context import background
from tlsinspect.errors import CheckCancelled, FetchError, InvalidURLError, MalformedCRLError
from tlsinspect.models import (
    Certificate, CheckFailed, NotApplicable, RevocationStatus, Revoked, Valid,
)
from tlsinspect.transport import fetch_crl

logger = logging.getLogger(__name__)

_CONTROL_CHARS = {chr(c) for c in range(0x20)} | {"\x7f"}


def parse_url(url: str):
    """
    Parse a distribution point URL.

    Raises:
        InvalidURLError: For control characters, a space in the host or an
            invalid host/port component. Spaces elsewhere are allowed.
    """
    bad = sorted(set(url) & _CONTROL_CHARS)
    if bad:
        raise InvalidURLError(f"parse {url!r}: invalid control character in URL")
    try:
        parsed = urlparse(url)
        # port is validated lazily by urllib
        parsed.port
    except ValueError as exc:
        raise InvalidURLError(f"parse {url!r}: invalid URL: {exc}") from exc
    if " " in parsed.netloc:
        raise InvalidURLError(f"parse {url!r}: invalid character \" \" in host name")
    return parsed


def parse_crl(data: bytes) -> x509.CertificateRevocationList:
    """Load a DER or PEM encoded CRL."""
    try:
        if data.lstrip().startswith(b"-----BEGIN"):
            return x509.load_pem_x509_crl(data)
        return x509.load_der_x509_crl(data)
    except ValueError as exc:
        raise MalformedCRLError(f"cannot parse CRL: {exc}") from exc


def is_listed(crl: x509.CertificateRevocationList, serial_number: int, now: datetime) -> bool:
    """True if *serial_number* is revoked by *crl* at or before *now*."""
    entry = crl.get_revoked_certificate_by_serial_number(serial_number)
    if entry is None:
        return False
    return entry.revocation_date_utc <= now


def check_crl(leaf: Certificate, now: datetime, ctx=None, fetch=None,
              cfg: dict = None) -> RevocationStatus:
    """
    Check the leaf against every supported CRL distribution point.

    Args:
        leaf:   Decoded leaf certificate.
        now:    Reference time for revocation dates.
        ctx:    CheckContext bounding the network calls.
        fetch:  fetch(url, ctx) -> bytes; transport.fetch_crl by default.
        cfg:    Settings (supported schemes).

    Returns:
        NotApplicable, Valid, Revoked(url) or CheckFailed.
    """
    if not leaf.crl_distribution_points:
        return NotApplicable("no CRL endpoints set")

    ctx = ctx or background()
    cfg = cfg or load_config()
    fetch = fetch or functools.partial(fetch_crl, cfg=cfg)
    supported = {scheme.lower() for scheme in cfg["crl_schemes"]}

    checked = False
    for url in leaf.crl_distribution_points:
        try:
            parsed = parse_url(url)
        except InvalidURLError as exc:
            return CheckFailed("invalid CRL URL", str(exc))

        if parsed.scheme.lower() not in supported:
            logger.debug("Skipping CRL endpoint with unsupported scheme: %s", url)
            continue

        checked = True
        try:
            data = ctx.call(fetch, url, ctx)
            crl = parse_crl(data)
        except CheckCancelled as exc:
            return CheckFailed("cancelled", f"CRL check of {url}: {exc}")
        except (FetchError, MalformedCRLError) as exc:
            logger.warning("CRL check failed for %s: %s", url, exc)
            return CheckFailed("cannot check CRL", str(exc))

        if is_listed(crl, leaf.serial_number, now):
            return Revoked(url)

    if not checked:
        return NotApplicable("no supported CRL endpoints found")
    return Valid()
