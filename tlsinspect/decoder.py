"""
decoder.py
==========
Decode DER certificates into tlsinspect.models.Certificate.

The first certificate of a bundle is the leaf under inspection; the rest
are kept as DER so the OCSP checker can report a bad issuer block on its
own instead of failing the whole inspection.
"""

import logging

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives.asymmetric import dsa, ec, ed448, ed25519, rsa
from cryptography.x509.oid import (
    AuthorityInformationAccessOID, ExtendedKeyUsageOID, NameOID, SignatureAlgorithmOID,
)

from tlsinspect.errors import MalformedCertificateError, NoCertificateDataError
from tlsinspect.models import Certificate, CertificateChain, DistinguishedName
from tlsinspect.pem import split_pems

logger = logging.getLogger(__name__)


_KEY_USAGE_NAMES = [
    ("digital_signature", "digital signature"),
    ("content_commitment", "content commitment"),
    ("key_encipherment", "key encipherment"),
    ("data_encipherment", "data encipherment"),
    ("key_agreement", "key agreement"),
    ("key_cert_sign", "cert sign"),
    ("crl_sign", "crl sign"),
    ("encipher_only", "encipher only"),
    ("decipher_only", "decipher only"),
]

_EXT_KEY_USAGE_NAMES = {
    ExtendedKeyUsageOID.ANY_EXTENDED_KEY_USAGE: "any",
    ExtendedKeyUsageOID.SERVER_AUTH: "server auth",
    ExtendedKeyUsageOID.CLIENT_AUTH: "client auth",
    ExtendedKeyUsageOID.CODE_SIGNING: "code signing",
    ExtendedKeyUsageOID.EMAIL_PROTECTION: "email protection",
    ExtendedKeyUsageOID.TIME_STAMPING: "timestamping",
    ExtendedKeyUsageOID.OCSP_SIGNING: "ocsp signing",
}

_SIGNATURE_ALGORITHM_NAMES = {
    SignatureAlgorithmOID.RSA_WITH_MD5: "md5WithRSAEncryption",
    SignatureAlgorithmOID.RSA_WITH_SHA1: "sha1WithRSAEncryption",
    SignatureAlgorithmOID.RSA_WITH_SHA224: "sha224WithRSAEncryption",
    SignatureAlgorithmOID.RSA_WITH_SHA256: "sha256WithRSAEncryption",
    SignatureAlgorithmOID.RSA_WITH_SHA384: "sha384WithRSAEncryption",
    SignatureAlgorithmOID.RSA_WITH_SHA512: "sha512WithRSAEncryption",
    SignatureAlgorithmOID.RSASSA_PSS: "RSASSA-PSS",
    SignatureAlgorithmOID.ECDSA_WITH_SHA1: "ecdsa-with-SHA1",
    SignatureAlgorithmOID.ECDSA_WITH_SHA224: "ecdsa-with-SHA224",
    SignatureAlgorithmOID.ECDSA_WITH_SHA256: "ecdsa-with-SHA256",
    SignatureAlgorithmOID.ECDSA_WITH_SHA384: "ecdsa-with-SHA384",
    SignatureAlgorithmOID.ECDSA_WITH_SHA512: "ecdsa-with-SHA512",
    SignatureAlgorithmOID.DSA_WITH_SHA1: "dsa-with-sha1",
    SignatureAlgorithmOID.DSA_WITH_SHA224: "dsa-with-sha224",
    SignatureAlgorithmOID.DSA_WITH_SHA256: "dsa-with-sha256",
    SignatureAlgorithmOID.ED25519: "ed25519",
    SignatureAlgorithmOID.ED448: "ed448",
}


def _name_values(name: x509.Name, oid) -> tuple:
    return tuple(str(attr.value) for attr in name.get_attributes_for_oid(oid))


def _distinguished_name(name: x509.Name) -> DistinguishedName:
    common_names = _name_values(name, NameOID.COMMON_NAME)
    return DistinguishedName(
        common_name=common_names[0] if common_names else "",
        organization=_name_values(name, NameOID.ORGANIZATION_NAME),
        organizational_unit=_name_values(name, NameOID.ORGANIZATIONAL_UNIT_NAME),
        country=_name_values(name, NameOID.COUNTRY_NAME),
        rfc4514=name.rfc4514_string(),
    )


def _public_key_algorithm(cert: x509.Certificate) -> str:
    try:
        key = cert.public_key()
    except (UnsupportedAlgorithm, ValueError, TypeError):
        # unsupported algorithm, e.g. a post-quantum key
        return cert.public_key_algorithm_oid.dotted_string
    if isinstance(key, rsa.RSAPublicKey):
        return "RSA"
    if isinstance(key, ec.EllipticCurvePublicKey):
        return "ECDSA"
    if isinstance(key, ed25519.Ed25519PublicKey):
        return "Ed25519"
    if isinstance(key, ed448.Ed448PublicKey):
        return "Ed448"
    if isinstance(key, dsa.DSAPublicKey):
        return "DSA"
    return cert.public_key_algorithm_oid.dotted_string


def _signature_algorithm(cert: x509.Certificate) -> str:
    oid = cert.signature_algorithm_oid
    return _SIGNATURE_ALGORITHM_NAMES.get(oid, oid.dotted_string)

def _extension(cert: x509.Certificate, ext_class):
    try:
        return cert.extensions.get_extension_for_class(ext_class).value
    except x509.ExtensionNotFound:
        return None


def _key_usages(cert: x509.Certificate) -> tuple:
    usages = []
    ku = _extension(cert, x509.KeyUsage)
    if ku is not None:
        for attr, label in _KEY_USAGE_NAMES:
            try:
                if getattr(ku, attr):
                    usages.append(label)
            except ValueError:
                # encipher_only/decipher_only are undefined without key_agreement
                continue
    eku = _extension(cert, x509.ExtendedKeyUsage)
    if eku is not None:
        for oid in eku:
            usages.append(_EXT_KEY_USAGE_NAMES.get(oid, oid.dotted_string))
    return tuple(usages)


def _crl_distribution_points(cert: x509.Certificate) -> tuple:
    urls = []
    points = _extension(cert, x509.CRLDistributionPoints)
    for point in points or []:
        for name in point.full_name or []:
            if isinstance(name, x509.UniformResourceIdentifier):
                urls.append(name.value)
    return tuple(urls)


def _ocsp_servers(cert: x509.Certificate) -> tuple:
    urls = []
    aia = _extension(cert, x509.AuthorityInformationAccess)
    for desc in aia or []:
        if (desc.access_method == AuthorityInformationAccessOID.OCSP
                and isinstance(desc.access_location, x509.UniformResourceIdentifier)):
            urls.append(desc.access_location.value)
    return tuple(urls)


def decode_certificate(der: bytes) -> Certificate:
    """
    Decode one DER certificate.

    Args:
        der: DER bytes of an X.509 certificate.

    Returns:
        Certificate with descriptive fields and the cryptography object.

    Raises:
        MalformedCertificateError: If the bytes are not a valid certificate
            or one of its extensions cannot be parsed.
    """
    try:
        cert = x509.load_der_x509_certificate(der)
        san = _extension(cert, x509.SubjectAlternativeName)
        bc = _extension(cert, x509.BasicConstraints)
        return Certificate(
            subject=_distinguished_name(cert.subject),
            issuer=_distinguished_name(cert.issuer),
            not_before=cert.not_valid_before_utc,
            not_after=cert.not_valid_after_utc,
            serial_number=cert.serial_number,
            public_key_algorithm=_public_key_algorithm(cert),
            signature_algorithm=_signature_algorithm(cert),
            is_ca=bool(bc and bc.ca),
            crl_distribution_points=_crl_distribution_points(cert),
            ocsp_servers=_ocsp_servers(cert),
            key_usages=_key_usages(cert),
            dns_names=tuple(san.get_values_for_type(x509.DNSName)) if san else (),
            uris=tuple(san.get_values_for_type(x509.UniformResourceIdentifier)) if san else (),
            ip_addresses=tuple(str(ip) for ip in san.get_values_for_type(x509.IPAddress)) if san else (),
            email_addresses=tuple(san.get_values_for_type(x509.RFC822Name)) if san else (),
            der=bytes(der),
            x509=cert,
        )
    except ValueError as exc:
        raise MalformedCertificateError(str(exc)) from exc


def decode_intermediates(ders) -> list:
    """Decode supporting certificates, skipping blocks that do not parse."""
    decoded = []
    for index, der in enumerate(ders):
        try:
            decoded.append(decode_certificate(der))
        except MalformedCertificateError as exc:
            logger.warning("Ignoring chain certificate #%d: %s", index + 1, exc.detail)
    return decoded


def decode_bundle(data) -> tuple:
    """
    Split a tls.crt bundle and decode its leaf.

    Returns:
        (leaf: Certificate, intermediates: list of DER bytes)

    Raises:
        NoCertificateDataError, MalformedCertificateError
    """
    ders = split_pems(data)
    leaf = decode_certificate(ders[0])
    return leaf, ders[1:]


def build_chain(cert_data, ca_data=None) -> CertificateChain:
    """
    Build a CertificateChain from the tls.crt bundle and optional ca.crt.

    A ca.crt without any PEM certificate is kept as raw bytes so that OCSP
    issuer selection reports it as unparsable instead of ignoring it.
    """
    leaf, intermediates = decode_bundle(data=cert_data)
    ca = None
    if ca_data:
        try:
            ca = split_pems(ca_data)[0]
        except NoCertificateDataError:
            ca = ca_data if isinstance(ca_data, bytes) else str(ca_data).encode()
            logger.debug("ca.crt holds no PEM certificate; keeping raw bytes")
    return CertificateChain(leaf=leaf, intermediates=tuple(intermediates), ca=ca)
