"""
tests/test_pem.py
=================
Unit tests for the PEM bundle splitter and the certificate decoder.

Run with:  python -m pytest tests/ -v
"""

import hashlib
import unittest

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from pki_fixtures import DAY, NOW, bundle, key_pem, make_ca, make_leaf
from tlsinspect.decoder import (
    build_chain, decode_bundle, decode_certificate, decode_intermediates,
)
from tlsinspect.errors import MalformedCertificateError, NoCertificateDataError
from tlsinspect.pem import split_pems


class TestSplitPems(unittest.TestCase):
    """Splitting tls.crt bundles into DER blocks."""

    @classmethod
    def setUpClass(cls):
        cls.root = make_ca("Test Root")
        cls.inter = make_ca("Test Intermediate", issuer=cls.root)
        cls.leaf = make_leaf(cls.inter)

    def test_single_certificate(self):
        ders = split_pems(self.leaf.pem)
        self.assertEqual(ders, [self.leaf.der])

    def test_order_is_preserved(self):
        ders = split_pems(bundle(self.leaf, self.inter, self.root))
        self.assertEqual(ders, [self.leaf.der, self.inter.der, self.root.der])

    def test_non_certificate_blocks_are_skipped(self):
        blob = key_pem(self.leaf.key) + b"some comment\n" + self.leaf.pem + key_pem(self.inter.key)
        self.assertEqual(split_pems(blob), [self.leaf.der])

    def test_str_input(self):
        self.assertEqual(split_pems(self.leaf.pem.decode()), [self.leaf.der])

    def test_undecodable_block_is_skipped(self):
        broken = b"-----BEGIN CERTIFICATE-----\n!!!not base64!!!\n-----END CERTIFICATE-----\n"
        self.assertEqual(split_pems(broken + self.inter.pem), [self.inter.der])

    def test_empty_blob_raises(self):
        with self.assertRaises(NoCertificateDataError):
            split_pems(b"")

    def test_only_key_raises(self):
        with self.assertRaises(NoCertificateDataError):
            split_pems(key_pem(self.leaf.key))

    def test_none_raises(self):
        with self.assertRaises(NoCertificateDataError):
            split_pems(None)


class TestDecodeCertificate(unittest.TestCase):
    """Decoding DER into Certificate values."""

    @classmethod
    def setUpClass(cls):
        cls.root = make_ca("Test Root")
        cls.inter = make_ca("Test Intermediate", issuer=cls.root)
        cls.leaf = make_leaf(
            cls.inter,
            cn="www.example.com",
            dns_names=("www.example.com", "example.com"),
            ip_addresses=("10.0.0.1",),
            emails=("ops@example.com",),
            uris=("spiffe://cluster.local/ns/default/sa/web",),
            crl_urls=("https://crl.example.com/a.crl", "ldap://ldap.example.com/cn=crl"),
            ocsp_urls=("http://ocsp.example.com",),
            org="Example Org",
            ou="Platform",
            country="GB",
        )

    def test_descriptive_fields(self):
        cert = decode_certificate(self.leaf.der)
        self.assertEqual(cert.subject.common_name, "www.example.com")
        self.assertEqual(cert.subject.organization, ("Example Org",))
        self.assertEqual(cert.subject.organizational_unit, ("Platform",))
        self.assertEqual(cert.subject.country, ("GB",))
        self.assertEqual(cert.issuer.common_name, "Test Intermediate")
        self.assertEqual(cert.serial_number, self.leaf.serial)
        self.assertEqual(cert.public_key_algorithm, "ECDSA")
        self.assertEqual(cert.signature_algorithm, "ecdsa-with-SHA256")
        self.assertFalse(cert.is_ca)

    def test_subject_alternative_names(self):
        cert = decode_certificate(self.leaf.der)
        self.assertEqual(cert.dns_names, ("www.example.com", "example.com"))
        self.assertEqual(cert.ip_addresses, ("10.0.0.1",))
        self.assertEqual(cert.email_addresses, ("ops@example.com",))
        self.assertEqual(cert.uris, ("spiffe://cluster.local/ns/default/sa/web",))

    def test_revocation_pointers_in_declaration_order(self):
        cert = decode_certificate(self.leaf.der)
        self.assertEqual(
            cert.crl_distribution_points,
            ("https://crl.example.com/a.crl", "ldap://ldap.example.com/cn=crl"),
        )
        self.assertEqual(cert.ocsp_servers, ("http://ocsp.example.com",))

    def test_key_usages(self):
        cert = decode_certificate(self.leaf.der)
        self.assertEqual(cert.key_usages, ("digital signature", "server auth", "client auth"))

    def test_ca_flag(self):
        self.assertTrue(decode_certificate(self.inter.der).is_ca)

    def test_validity_window(self):
        cert = decode_certificate(self.leaf.der)
        self.assertEqual(cert.not_before, self.leaf.cert.not_valid_before_utc)
        self.assertEqual(cert.not_after, self.leaf.cert.not_valid_after_utc)
        self.assertTrue(cert.is_valid_at(cert.not_before))
        self.assertFalse(cert.is_valid_at(cert.not_after.replace(year=cert.not_after.year + 1)))

    def test_fingerprint(self):
        cert = decode_certificate(self.leaf.der)
        expected = hashlib.sha256(self.leaf.der).hexdigest().upper()
        self.assertEqual(cert.fingerprint.replace(":", ""), expected)
        self.assertEqual(len(cert.fingerprint.split(":")), 32)

    def test_unknown_extended_key_usage_uses_dotted_oid(self):
        leaf = make_leaf(self.inter, eku=[ExtendedKeyUsageOID.SERVER_AUTH,
                                          ExtendedKeyUsageOID.KERBEROS_PKINIT_KDC])
        cert = decode_certificate(leaf.der)
        self.assertIn("server auth", cert.key_usages)
        self.assertIn(ExtendedKeyUsageOID.KERBEROS_PKINIT_KDC.dotted_string, cert.key_usages)

    def test_malformed_raises_with_detail(self):
        with self.assertRaises(MalformedCertificateError) as ctx:
            decode_certificate(b"\x30\x03\x02\x01\x01")
        self.assertTrue(ctx.exception.detail)


class TestDecodeBundle(unittest.TestCase):
    """Leaf / chain split and CertificateChain construction."""

    @classmethod
    def setUpClass(cls):
        cls.root = make_ca("Test Root")
        cls.inter = make_ca("Test Intermediate", issuer=cls.root)
        cls.leaf = make_leaf(cls.inter)

    def test_first_block_is_leaf(self):
        leaf, intermediates = decode_bundle(bundle(self.leaf, self.inter, self.root))
        self.assertEqual(leaf.serial_number, self.leaf.serial)
        self.assertEqual(intermediates, [self.inter.der, self.root.der])

    def test_malformed_leaf_is_fatal(self):
        garbage = b"-----BEGIN CERTIFICATE-----\nAAAA\n-----END CERTIFICATE-----\n"
        with self.assertRaises(MalformedCertificateError):
            decode_bundle(garbage + self.inter.pem)

    def test_decode_intermediates_skips_garbage(self):
        decoded = decode_intermediates([b"garbage", self.inter.der])
        self.assertEqual([c.serial_number for c in decoded], [self.inter.serial])

    def test_build_chain_with_ca(self):
        chain = build_chain(bundle(self.leaf, self.inter), self.root.pem)
        self.assertEqual(chain.ca, self.root.der)
        self.assertEqual(chain.intermediates, (self.inter.der,))
        self.assertEqual(chain.issuer_candidates, (self.root.der, self.inter.der))
        self.assertEqual(chain.issuer_candidate, self.inter.der)

    def test_build_chain_without_ca(self):
        chain = build_chain(self.leaf.pem)
        self.assertIsNone(chain.ca)
        self.assertIsNone(chain.issuer_candidate)

    def test_build_chain_keeps_unparsable_ca_bytes(self):
        chain = build_chain(self.leaf.pem, b"not a certificate")
        self.assertEqual(chain.ca, b"not a certificate")
        self.assertEqual(chain.issuer_candidate, b"not a certificate")


class TestAlgorithmNames(unittest.TestCase):
    """Algorithm names come from a fixed table, dotted OIDs otherwise."""

    @classmethod
    def setUpClass(cls):
        cls.key = rsa.generate_private_key(public_exponent=65537, key_size=2048)

    def _self_signed(self, **sign_kwargs) -> bytes:
        name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "rsa.example.com")])
        cert = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(self.key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(NOW - DAY)
            .not_valid_after(NOW + DAY)
            .sign(self.key, hashes.SHA256(), **sign_kwargs)
        )
        return cert.public_bytes(Encoding.DER)

    def test_rsa_pkcs1(self):
        cert = decode_certificate(self._self_signed())
        self.assertEqual(cert.signature_algorithm, "sha256WithRSAEncryption")
        self.assertEqual(cert.public_key_algorithm, "RSA")

    def test_rsa_pss(self):
        pss = padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=padding.PSS.DIGEST_LENGTH)
        cert = decode_certificate(self._self_signed(rsa_padding=pss))
        self.assertEqual(cert.signature_algorithm, "RSASSA-PSS")


if __name__ == "__main__":
    unittest.main(verbosity=2)
