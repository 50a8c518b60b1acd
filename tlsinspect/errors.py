"""
errors.py
=========
Exception taxonomy for tlsinspect.

Only NoCertificateDataError and MalformedCertificateError abort an
inspection. Everything else is caught by the checker that raised it and
turned into a CheckFailed / Untrusted status.
"""


class InspectError(Exception):
    """Base class for every error raised by tlsinspect."""


class NoCertificateDataError(InspectError):
    """The blob holds no decodable PEM certificate block."""

    def __init__(self, message: str = "no PEM certificate data found"):
        super().__init__(message)


class MalformedCertificateError(InspectError):
    """DER bytes are not a valid X.509 certificate."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"error when parsing certificate: {detail}")


class InvalidURLError(InspectError):
    """A CRL distribution point URL could not be parsed."""


class FetchError(InspectError):
    """Network or transport failure while talking to a CRL or OCSP endpoint."""


class MalformedCRLError(InspectError):
    """Fetched CRL bytes could not be parsed."""


class MalformedOCSPResponseError(InspectError):
    """Responder bytes are not a valid OCSP response."""


class OCSPVerificationError(InspectError):
    """OCSP response does not match the request or fails signature checks."""


class CheckCancelled(InspectError):
    """The check context was cancelled or its deadline passed."""
