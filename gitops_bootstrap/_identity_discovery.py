"""Locate the cluster identity (OAuth) server from the API endpoint."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from urllib.parse import urlsplit

from gitops_bootstrap._http import HttpRequest, Transport, send_request

logger = logging.getLogger(__name__)

WELL_KNOWN_PATH = "/.well-known/oauth-authorization-server"


def cluster_domain(api_url: str) -> str:
    """Return the cluster base domain encoded in an API URL.

    Examples
    --------
    >>> cluster_domain("https://api.demo.abcd.p1.openshiftapps.com:6443/")
    'demo.abcd.p1.openshiftapps.com'
    """
    host = urlsplit(api_url).hostname or api_url
    return host.removeprefix("api.")


def candidate_identity_urls(api_url: str) -> list[str]:
    """Return identity URL patterns in probe order: hosted, then classic.

    Examples
    --------
    >>> candidate_identity_urls("https://api.demo.example.com:6443")
    ['https://oauth.demo.example.com', 'https://oauth-openshift.apps.demo.example.com']
    """
    domain = cluster_domain(api_url)
    return [f"https://oauth.{domain}", f"https://oauth-openshift.apps.{domain}"]


def _issuer_from_well_known(
    api_url: str,
    transport: Transport,
    ca_certificate: Path | None,
) -> str | None:
    response = transport(
        HttpRequest(
            method="GET",
            url=f"{api_url.rstrip('/')}{WELL_KNOWN_PATH}",
            allow_redirects=True,
            connect_timeout=15,
            read_timeout=30,
            ca_certificate=ca_certificate,
        )
    )
    if response.transport_failed or response.status != 200:
        logger.info("No well-known response from %s", api_url)
        return None
    try:
        payload = json.loads(response.body)
    except json.JSONDecodeError:
        logger.warning("Well-known response from %s is not JSON", api_url)
        return None
    issuer = payload.get("issuer") if isinstance(payload, dict) else None
    if not isinstance(issuer, str) or not issuer.strip():
        if issuer is not None:
            logger.warning("Ignoring malformed issuer %r from %s", issuer, api_url)
        return None
    return issuer.strip()


def _reachable(url: str, transport: Transport, ca_certificate: Path | None) -> bool:
    for target in (f"{url}/healthz", url):
        response = transport(
            HttpRequest(
                method="GET",
                url=target,
                allow_redirects=True,
                connect_timeout=5,
                read_timeout=10,
                ca_certificate=ca_certificate,
            )
        )
        if not response.transport_failed:
            return True
    return False


def discover_identity_url(
    api_url: str,
    *,
    transport: Transport = send_request,
    ca_certificate: Path | None = None,
) -> str:
    """Return the identity server URL for the cluster at ``api_url``.

    The ``issuer`` advertised by the API's well-known document wins. Without
    it, the hosted-control-plane and classic URL patterns are probed in turn
    and the classic pattern is the final default.
    """
    issuer = _issuer_from_well_known(api_url, transport, ca_certificate)
    if issuer:
        logger.info("Discovered identity server %s", issuer)
        return issuer.rstrip("/")

    hosted, classic = candidate_identity_urls(api_url)
    for candidate in (hosted, classic):
        if _reachable(candidate, transport, ca_certificate):
            logger.info("Identity server reachable at %s", candidate)
            return candidate
    logger.warning("Neither identity URL pattern answered; defaulting to %s", classic)
    return classic


__all__ = [
    "WELL_KNOWN_PATH",
    "candidate_identity_urls",
    "cluster_domain",
    "discover_identity_url",
]
