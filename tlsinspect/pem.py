"""
pem.py
======
PEM bundle splitter.

A tls.crt value is a concatenation of PEM blocks: the leaf first, then
any intermediates. split_pems() returns the DER payload of every
CERTIFICATE block in blob order and ignores everything else (private
keys, CRLs, comments between blocks).
"""

import base64
import binascii
import logging
import re

from tlsinspect.errors import NoCertificateDataError

logger = logging.getLogger(__name__)

CERTIFICATE_LABEL = b"CERTIFICATE"

_PEM_BLOCK_RE = re.compile(
    rb"-----BEGIN (?P<label>[A-Z0-9 ]+)-----(?P<body>.*?)-----END (?P=label)-----",
    re.DOTALL,
)


def _decode_body(body: bytes) -> bytes:
    # RFC 1421 style headers ("Proc-Type: ...") precede a blank line
    lines = [line.strip() for line in body.splitlines()]
    payload = b"".join(line for line in lines if line and b":" not in line)
    return base64.b64decode(payload, validate=True)


def iter_pem_blocks(data: bytes):
    """Yield (label, der) for every decodable PEM block in *data*."""
    for match in _PEM_BLOCK_RE.finditer(data):
        label = match.group("label")
        try:
            der = _decode_body(match.group("body"))
        except (binascii.Error, ValueError) as exc:
            logger.debug("Skipping undecodable %s block: %s", label.decode(), exc)
            continue
        yield label, der


def split_pems(data) -> list:
    """
    Split a PEM bundle into DER certificates.

    Args:
        data: PEM bytes (str is accepted and encoded as ASCII).

    Returns:
        List of DER byte strings, one per CERTIFICATE block, in blob order.

    Raises:
        NoCertificateDataError: If no certificate block could be decoded.
    """
    if isinstance(data, str):
        data = data.encode("ascii", errors="ignore")

    certs = []
    for label, der in iter_pem_blocks(data or b""):
        if label != CERTIFICATE_LABEL:
            logger.debug("Skipping non-certificate PEM block %r", label.decode())
            continue
        if not der:
            continue
        certs.append(der)

    if not certs:
        raise NoCertificateDataError()
    return certs
