"""
report.py
=========
Entry point and report assembly for inspecting a kubernetes.io/tls secret.

inspect_secret() is the only place that reads the real clock: it decodes
the bundle, runs the trust, CRL and OCSP checks, and hands the results to
an ordered list of section builders. Each builder returns a Section
(title + ordered label/value mapping); Report.render() produces the text.

Only missing or malformed certificate data in tls.crt aborts. Every
other failure shows up as a status line in the Debugging section.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone

from tlsinspect.config import load_config
from tlsinspect.context import CheckContext
from tlsinspect.crl import check_crl
from tlsinspect.decoder import build_chain, decode_intermediates
from tlsinspect.models import CertificateChain, RevocationStatus, TrustResult
from tlsinspect.ocsp import check_ocsp
from tlsinspect.trust import verify_trust

TLS_CERT_KEY = "tls.crt"
TLS_CA_KEY = "ca.crt"

NONE = "<none>"


# ------------------------------------------------------------------ #
#  Structured report                                                   #
# ------------------------------------------------------------------ #

@dataclass(frozen=True)
class Section:
    title: str
    fields: dict = field(default_factory=dict)

    def render(self) -> str:
        lines = [f"{self.title}:"]
        lines.extend(f"\t{label}: {value}" for label, value in self.fields.items())
        return "\n".join(lines)


@dataclass(frozen=True)
class Report:
    sections: tuple

    def section(self, title: str) -> Section:
        for section in self.sections:
            if section.title == title:
                return section
        raise KeyError(title)

    def render(self) -> str:
        return "\n\n".join(section.render() for section in self.sections)


@dataclass(frozen=True)
class Inspection:
    """Everything the section builders need."""

    chain: CertificateChain
    trust: TrustResult
    crl: RevocationStatus
    ocsp: RevocationStatus


# ------------------------------------------------------------------ #
#  Formatting helpers                                                  #
# ------------------------------------------------------------------ #

def print_slice(items) -> str:
    if not items:
        return NONE
    return "\n\t\t- " + "\n\t\t- ".join(items)


def print_slice_or_one(items) -> str:
    if len(items) == 1:
        return items[0]
    return print_slice(items)


def print_or_none(value: str) -> str:
    return value or NONE


def format_time(when: datetime) -> str:
    """RFC 1123 in UTC, e.g. 'Mon, 02 Jan 2006 15:04:05 UTC'."""
    return when.astimezone(timezone.utc).strftime("%a, %d %b %Y %H:%M:%S UTC")


# ------------------------------------------------------------------ #
#  Section builders                                                    #
# ------------------------------------------------------------------ #

def describe_valid_for(data: Inspection) -> Section:
    cert = data.chain.leaf
    return Section("Valid for", {
        "DNS Names": print_slice(cert.dns_names),
        "URIs": print_slice(cert.uris),
        "IP Addresses": print_slice(cert.ip_addresses),
        "Email Addresses": print_slice(cert.email_addresses),
        "Usages": print_slice(cert.key_usages),
    })


def describe_validity_period(data: Inspection) -> Section:
    cert = data.chain.leaf
    return Section("Validity period", {
        "Not Before": format_time(cert.not_before),
        "Not After": format_time(cert.not_after),
    })


def _describe_name(title: str, name) -> Section:
    return Section(title, {
        "Common Name": print_or_none(name.common_name),
        "Organization": print_slice_or_one(name.organization),
        "OrganizationalUnit": print_slice_or_one(name.organizational_unit),
        "Country": print_slice_or_one(name.country),
    })


def describe_issued_by(data: Inspection) -> Section:
    return _describe_name("Issued By", data.chain.leaf.issuer)


def describe_issued_for(data: Inspection) -> Section:
    return _describe_name("Issued For", data.chain.leaf.subject)


def describe_certificate(data: Inspection) -> Section:
    cert = data.chain.leaf
    return Section("Certificate", {
        "Signing Algorithm": cert.signature_algorithm,
        "Public Key Algorithm": cert.public_key_algorithm,
        "Serial Number": str(cert.serial_number),
        "Fingerprints": cert.fingerprint,
        "Is a CA certificate": "true" if cert.is_ca else "false",
        "CRL": print_slice_or_one(cert.crl_distribution_points),
        "OCSP": print_slice_or_one(cert.ocsp_servers),
    })


def describe_debugging(data: Inspection) -> Section:
    return Section("Debugging", {
        "Trusted by this computer": data.trust.render(),
        "CRL Status": data.crl.render(),
        "OCSP Status": data.ocsp.render(),
    })


SECTION_BUILDERS = [
    describe_valid_for,
    describe_validity_period,
    describe_issued_by,
    describe_issued_for,
    describe_certificate,
    describe_debugging,
]


def build_report(chain: CertificateChain, trust: TrustResult,
                 crl: RevocationStatus, ocsp: RevocationStatus) -> Report:
    data = Inspection(chain=chain, trust=trust, crl=crl, ocsp=ocsp)
    return Report(sections=tuple(build(data) for build in SECTION_BUILDERS))


# ------------------------------------------------------------------ #
#  Entry points                                                        #
# ------------------------------------------------------------------ #

def run_checks(chain: CertificateChain, now: datetime, ctx: CheckContext, roots=None,
               fetch=None, send=None, cfg: dict = None, parallel: bool = True) -> tuple:
    """
    Run the trust, CRL and OCSP checks for *chain*.

    Returns:
        (trust: TrustResult, crl: RevocationStatus, ocsp: RevocationStatus)
    """
    leaf = chain.leaf

    def trust():
        return verify_trust(leaf, decode_intermediates(chain.intermediates), now, roots=roots)

    def crl():
        return check_crl(leaf, now, ctx=ctx, fetch=fetch, cfg=cfg)

    def ocsp():
        return check_ocsp(leaf, chain.intermediates, chain.ca, now, ctx=ctx, send=send, cfg=cfg)

    if not parallel:
        return trust(), crl(), ocsp()

    with ThreadPoolExecutor(max_workers=3, thread_name_prefix="tlsinspect-check") as pool:
        futures = [pool.submit(check) for check in (trust, crl, ocsp)]
        return tuple(future.result() for future in futures)


def inspect_secret(cert_data, ca_data=None, now: datetime = None, ctx: CheckContext = None,
                   roots=None, fetch=None, send=None, cfg: dict = None, log_fn=None) -> Report:
    """
    Inspect the certificate material of a TLS secret.

    Args:
        cert_data:  tls.crt bytes (leaf first, then intermediates, PEM).
        ca_data:    ca.crt bytes or None.
        now:        Reference time; the current UTC time if omitted.
        ctx:        CheckContext for the network checks (from config if omitted).
        roots:      Trust anchors replacing the system store.
        fetch:      CRL fetcher, see crl.check_crl.
        send:       OCSP sender, see ocsp.check_ocsp.
        cfg:        Settings (load_config() if omitted).
        log_fn:     Optional progress callback, log_fn(msg).

    Returns:
        Report with six sections.

    Raises:
        NoCertificateDataError: tls.crt holds no PEM certificate.
        MalformedCertificateError: The leaf certificate does not parse.
    """
    def _log(msg):
        if log_fn: log_fn(msg)

    cfg = cfg or load_config()
    now = now or datetime.now(timezone.utc)
    ctx = ctx or CheckContext.from_config(cfg)

    _log("Decoding certificate bundle ...")
    chain = build_chain(cert_data, ca_data)
    _log(f"Leaf serial: {chain.leaf.serial_number}, {len(chain.intermediates)} chain certificate(s)")

    _log("Running trust, CRL and OCSP checks ...")
    trust, crl, ocsp = run_checks(
        chain, now, ctx, roots=roots, fetch=fetch, send=send, cfg=cfg,
        parallel=cfg["parallel_checks"],
    )
    _log(f"Trusted: {trust.render()} | CRL: {crl.render()} | OCSP: {ocsp.render()}")

    return build_report(chain, trust, crl, ocsp)


def inspect_secret_data(data: dict, **kwargs) -> Report:
    """Inspect a secret's data mapping (tls.crt and optional ca.crt)."""
    return inspect_secret(data.get(TLS_CERT_KEY, b""), data.get(TLS_CA_KEY), **kwargs)
