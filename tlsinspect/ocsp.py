"""
ocsp.py
=======
Revocation check against the OCSP responder of the leaf.

Issuer selection: the separately supplied CA certificate (if any) is put
in front of the intermediates and the LAST certificate of that list is
used as issuer. The request is a SHA-1 CertID for the leaf, POSTed in DER
to the first responder URL with a supported scheme.

A response is only believed when:
  1. its status is "successful"
  2. it is signed by the issuer, or by a responder certificate that the
     issuer signed directly and that carries the OCSP signing EKU
  3. it contains a SingleResponse for the leaf CertID
  4. its nextUpdate (when present) is not before `now`
"""

import functools
import logging
from datetime import datetime

from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import dsa, ec, ed448, ed25519, padding, rsa
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.x509 import ocsp
from cryptography.x509.oid import ExtendedKeyUsageOID, SignatureAlgorithmOID

from tlsinspect.config import load_config
from tlsinspect.context import background
from tlsinspect.decoder import decode_certificate
from tlsinspect.errors import (
    CheckCancelled, FetchError, MalformedCertificateError,
    MalformedOCSPResponseError, OCSPVerificationError,
)
from tlsinspect.models import (
    Certificate, CertificateChain, CheckFailed, NotApplicable,
    RevocationStatus, Revoked, Valid,
)
from tlsinspect.transport import post_ocsp

logger = logging.getLogger(__name__)


def select_issuer(leaf: Certificate, intermediates, ca: bytes = None):
    """Return the DER of the certificate used as OCSP issuer, or None."""
    return CertificateChain(leaf=leaf, intermediates=tuple(intermediates), ca=ca).issuer_candidate


# ------------------------------------------------------------------ #
#  Request                                                             #
# ------------------------------------------------------------------ #

def build_request(leaf: x509.Certificate, issuer: x509.Certificate,
                  algorithm: hashes.HashAlgorithm = None) -> ocsp.OCSPRequest:
    """Build an OCSP request for *leaf*; SHA-1 CertID unless told otherwise."""
    builder = ocsp.OCSPRequestBuilder().add_certificate(leaf, issuer, algorithm or hashes.SHA1())
    return builder.build()


# ------------------------------------------------------------------ #
#  Response                                                            #
# ------------------------------------------------------------------ #

def _rsa_padding(signature_oid, algorithm):
    if signature_oid == SignatureAlgorithmOID.RSASSA_PSS:
        return padding.PSS(mgf=padding.MGF1(algorithm), salt_length=padding.PSS.AUTO)
    return padding.PKCS1v15()


def _verify_signature(public_key, signature: bytes, data: bytes, algorithm,
                      signature_oid=None) -> None:
    try:
        if isinstance(public_key, rsa.RSAPublicKey):
            public_key.verify(signature, data, _rsa_padding(signature_oid, algorithm), algorithm)
        elif isinstance(public_key, ec.EllipticCurvePublicKey):
            public_key.verify(signature, data, ec.ECDSA(algorithm))
        elif isinstance(public_key, (ed25519.Ed25519PublicKey, ed448.Ed448PublicKey)):
            public_key.verify(signature, data)
        elif isinstance(public_key, dsa.DSAPublicKey):
            public_key.verify(signature, data, algorithm)
        else:
            raise OCSPVerificationError("unsupported responder key type")
    except InvalidSignature as exc:
        raise OCSPVerificationError("OCSP response signature verification failed") from exc


def _responder_public_key(response: ocsp.OCSPResponse, issuer: x509.Certificate):
    signers = response.certificates
    if not signers or signers[0] == issuer:
        return issuer.public_key()

    responder = signers[0]
    try:
        responder.verify_directly_issued_by(issuer)
    except (ValueError, TypeError, InvalidSignature) as exc:
        raise OCSPVerificationError(
            f"responder certificate is not issued by the issuer: {exc}"
        ) from exc

    try:
        eku = responder.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
    except x509.ExtensionNotFound:
        eku = []
    if ExtendedKeyUsageOID.OCSP_SIGNING not in eku:
        raise OCSPVerificationError("responder certificate is not authorised for OCSP signing")
    return responder.public_key()


def _matching_single_response(response: ocsp.OCSPResponse, leaf: x509.Certificate,
                              issuer: x509.Certificate):
    for single in response.responses:
        if single.serial_number != leaf.serial_number:
            continue
        try:
            expected = build_request(leaf, issuer, single.hash_algorithm)
        except (UnsupportedAlgorithm, ValueError, TypeError):
            # CertID hashed with an algorithm a request cannot use
            continue
        if (single.issuer_key_hash == expected.issuer_key_hash
                and single.issuer_name_hash == expected.issuer_name_hash):
            return single
    return None


def evaluate_response(data: bytes, leaf: x509.Certificate, issuer: x509.Certificate,
                      now: datetime) -> ocsp.OCSPCertStatus:
    """
    Parse and verify a DER OCSP response for *leaf*.

    Returns:
        The certificate status reported for the leaf.

    Raises:
        MalformedOCSPResponseError: Bytes are not an OCSP response, or the
            responder answered with a non-successful status.
        OCSPVerificationError: Signature, CertID or freshness checks failed.
    """
    try:
        response = ocsp.load_der_ocsp_response(data)
    except ValueError as exc:
        raise MalformedOCSPResponseError(f"cannot parse OCSP response: {exc}") from exc

    if response.response_status != ocsp.OCSPResponseStatus.SUCCESSFUL:
        raise MalformedOCSPResponseError(
            f"responder returned {response.response_status.name.lower()}"
        )

    try:
        public_key = _responder_public_key(response, issuer)
        _verify_signature(
            public_key,
            response.signature,
            response.tbs_response_bytes,
            response.signature_hash_algorithm,
            response.signature_algorithm_oid,
        )
    except (UnsupportedAlgorithm, ValueError, TypeError) as exc:
        raise OCSPVerificationError(f"cannot verify OCSP response signature: {exc}") from exc

    single = _matching_single_response(response, leaf, issuer)
    if single is None:
        raise OCSPVerificationError("OCSP response does not cover the certificate")

    if single.next_update_utc is not None and single.next_update_utc < now:
        raise OCSPVerificationError(
            f"OCSP response expired at {single.next_update_utc.isoformat()}"
        )
    return single.certificate_status


# ------------------------------------------------------------------ #
#  Check                                                               #
# ------------------------------------------------------------------ #

def check_ocsp(leaf: Certificate, intermediates, ca: bytes, now: datetime,
               ctx=None, send=None, cfg: dict = None) -> RevocationStatus:
    """
    Ask the leaf's OCSP responder whether the leaf is revoked.

    Args:
        leaf:           Decoded leaf certificate.
        intermediates:  Chain certificates as DER bytes, blob order.
        ca:             Separately supplied CA certificate (DER) or None.
        now:            Reference time for response freshness.
        ctx:            CheckContext bounding the network call.
        send:           send(url, request_der, ctx) -> bytes; transport.post_ocsp by default.
        cfg:            Settings (supported responder schemes).

    Returns:
        NotApplicable, Valid, Revoked(responder URL) or CheckFailed.
    """
    issuer_der = select_issuer(leaf, intermediates, ca)
    if issuer_der is None:
        return NotApplicable("no CA or intermediate certificate provided")

    try:
        issuer = decode_certificate(issuer_der)
    except MalformedCertificateError as exc:
        return CheckFailed("cannot parse issuer certificate", exc.detail)

    if not leaf.ocsp_servers:
        return NotApplicable("no OCSP responder URL set")

    cfg = cfg or load_config()
    supported = {scheme.lower() for scheme in cfg["ocsp_schemes"]}
    url = next(
        (u for u in leaf.ocsp_servers if u.split(":", 1)[0].lower() in supported),
        None,
    )
    if url is None:
        return NotApplicable("no supported OCSP responder found")

    ctx = ctx or background()
    send = send or functools.partial(post_ocsp, cfg=cfg)

    try:
        request_der = build_request(leaf.x509, issuer.x509).public_bytes(Encoding.DER)
    except (ValueError, TypeError) as exc:
        return CheckFailed("cannot check OCSP", f"cannot build request: {exc}")

    try:
        raw = ctx.call(send, url, request_der, ctx)
    except CheckCancelled as exc:
        return CheckFailed("cancelled", f"OCSP check of {url}: {exc}")
    except FetchError as exc:
        logger.warning("OCSP request to %s failed: %s", url, exc)
        return CheckFailed("cannot check OCSP", str(exc))

    try:
        status = evaluate_response(raw, leaf.x509, issuer.x509, now)
    except (MalformedOCSPResponseError, OCSPVerificationError) as exc:
        logger.warning("Rejected OCSP response from %s: %s", url, exc)
        return CheckFailed("cannot check OCSP", str(exc))

    if status == ocsp.OCSPCertStatus.REVOKED:
        return Revoked(url)
    if status == ocsp.OCSPCertStatus.GOOD:
        return Valid()
    return CheckFailed("cannot check OCSP", "responder does not know the certificate")
