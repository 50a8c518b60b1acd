"""
transport.py
============
Network I/O for the revocation checks.

  fetch_crl(url, ctx)              GET a CRL from a distribution point
  post_ocsp(url, request_der, ctx) POST a DER OCSP request to a responder

Both are plain blocking functions; the checkers run them through
CheckContext.call() so cancellation does not wait for the socket. Every
failure is raised as FetchError.

There is no LDAP client: ldap:// distribution points are attempted and
fail with FetchError. Pass a custom fetch to check_crl() to serve them.
"""

import logging
from urllib.parse import urlparse

import httpx

from tlsinspect.config import load_config
from tlsinspect.context import background
from tlsinspect.errors import FetchError

logger = logging.getLogger(__name__)

CRL_ACCEPT = "application/pkix-crl,application/x-pkcs7-crl,application/octet-stream,*/*"
OCSP_REQUEST_TYPE = "application/ocsp-request"
OCSP_RESPONSE_TYPE = "application/ocsp-response"


def create_http_client(cfg: dict = None, timeout: float = None) -> httpx.Client:
    """Build an httpx client configured from config.json."""
    cfg = cfg or load_config()
    return httpx.Client(
        timeout=timeout if timeout is not None else cfg["http_timeout_seconds"],
        follow_redirects=cfg["follow_redirects"],
        max_redirects=cfg["max_redirects"],
        headers={"User-Agent": cfg["user_agent"]},
    )


def _http_get(url: str, ctx, cfg: dict, client: httpx.Client = None) -> bytes:
    owns_client = client is None
    timeout = ctx.timeout_for(cfg["http_timeout_seconds"])
    client = client or create_http_client(cfg, timeout)
    max_bytes = cfg["max_crl_bytes"]
    try:
        with client.stream("GET", url, headers={"Accept": CRL_ACCEPT}, timeout=timeout) as response:
            if response.status_code != 200:
                raise FetchError(f"unexpected HTTP status {response.status_code} from {url}")
            declared = response.headers.get("Content-Length")
            if declared and declared.isdigit() and int(declared) > max_bytes:
                raise FetchError(f"CRL too large: {declared} bytes (max: {max_bytes})")

            content = bytearray()
            for chunk in response.iter_bytes():
                content.extend(chunk)
                if len(content) > max_bytes:
                    raise FetchError(f"CRL too large: more than {max_bytes} bytes")
                ctx.check()
            logger.debug("Fetched %d bytes from %s", len(content), url)
            return bytes(content)
    except httpx.TimeoutException as exc:
        raise FetchError(f"timeout fetching {url}") from exc
    except httpx.HTTPError as exc:
        raise FetchError(f"request to {url} failed: {exc}") from exc
    finally:
        if owns_client:
            client.close()


def fetch_crl(url: str, ctx=None, cfg: dict = None, client: httpx.Client = None) -> bytes:
    """
    Download the CRL published at *url*.

    Args:
        url:     Distribution point URL (https or ldap).
        ctx:     CheckContext bounding the request.
        cfg:     Settings (load_config() if omitted).
        client:  Optional httpx.Client to reuse.

    Returns:
        Raw CRL bytes (DER or PEM).

    Raises:
        FetchError: Transport failure, bad status, oversized body, or a
            retrieval protocol that has no client here (LDAP).
    """
    ctx = ctx or background()
    cfg = cfg or load_config()
    scheme = urlparse(url).scheme.lower()
    if scheme in ("http", "https"):
        return _http_get(url, ctx, cfg, client)
    raise FetchError(f'unsupported protocol scheme "{scheme}"')


def post_ocsp(url: str, request_der: bytes, ctx=None, cfg: dict = None,
              client: httpx.Client = None) -> bytes:
    """
    Send a DER OCSP request to a responder and return the raw response.

    Raises:
        FetchError: Transport failure or a non-200 reply.
    """
    ctx = ctx or background()
    cfg = cfg or load_config()
    owns_client = client is None
    timeout = ctx.timeout_for(cfg["http_timeout_seconds"])
    client = client or create_http_client(cfg, timeout)
    try:
        response = client.post(
            url,
            content=request_der,
            headers={"Content-Type": OCSP_REQUEST_TYPE, "Accept": OCSP_RESPONSE_TYPE},
            timeout=timeout,
        )
        if response.status_code != 200:
            raise FetchError(f"unexpected HTTP status {response.status_code} from {url}")
        return response.content
    except httpx.TimeoutException as exc:
        raise FetchError(f"timeout contacting {url}") from exc
    except httpx.HTTPError as exc:
        raise FetchError(f"request to {url} failed: {exc}") from exc
    finally:
        if owns_client:
            client.close()

