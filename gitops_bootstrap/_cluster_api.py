"""Minimal Kubernetes API client built on the HTTP transport."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

from gitops_bootstrap._auth_errors import ClusterApiError
from gitops_bootstrap._auth_models import SecretStr
from gitops_bootstrap._http import HttpRequest, HttpResponse, Transport, send_request
from gitops_bootstrap._phase_gate import ensure_reachable_endpoint

logger = logging.getLogger(__name__)

HTTP_OK = frozenset({200, 201, 202})
HTTP_CONFLICT = 409
HTTP_NOT_FOUND = 404


class ClusterApiClient:
    """Issue bearer-authenticated requests against the cluster API server.

    The client refuses the phase-gate placeholder endpoint at construction,
    so a closed gate fails before any request is built.

    Examples
    --------
    >>> client = ClusterApiClient("https://api.demo.example.com:6443", SecretStr("t"))
    >>> client.api_url
    'https://api.demo.example.com:6443'
    """

    def __init__(
        self,
        api_url: str,
        token: SecretStr,
        *,
        transport: Transport = send_request,
        ca_certificate: Path | None = None,
        timeout: int = 30,
    ) -> None:
        self.api_url = ensure_reachable_endpoint(api_url).rstrip("/")
        self._token = token
        self._transport = transport
        self._ca_certificate = ca_certificate
        self._timeout = timeout

    def request(
        self,
        method: str,
        path: str,
        *,
        body: str | None = None,
        content_type: str = "application/json",
        accept: str = "application/json",
    ) -> HttpResponse:
        """Send ``method`` to ``path`` and return the raw response."""
        headers: dict[str, str | SecretStr] = {
            "Authorization": SecretStr(f"Bearer {self._token.reveal()}"),
            "Accept": accept,
        }
        if body is not None:
            headers["Content-Type"] = content_type
        return self._transport(
            HttpRequest(
                method=method,
                url=f"{self.api_url}{path}",
                headers=headers,
                body=body,
                read_timeout=self._timeout,
                ca_certificate=self._ca_certificate,
            )
        )


def expect_status(
    response: HttpResponse,
    description: str,
    *,
    accepted: Iterable[int] = HTTP_OK,
) -> HttpResponse:
    """Raise :class:`ClusterApiError` unless ``response`` has an accepted status."""
    if response.transport_failed:
        detail = response.detail or "no details"
        reason = "cluster unreachable" if response.unreachable else "no HTTP response"
        msg = f"{description}: {reason} ({detail})"
        raise ClusterApiError(msg)
    if response.status in (401, 403):
        msg = f"{description}: authentication failed (HTTP {response.status})"
        raise ClusterApiError(msg)
    if response.status not in set(accepted):
        snippet = response.body.strip().splitlines()[:5]
        msg = f"{description}: unexpected HTTP {response.status}: {' '.join(snippet)}"
        raise ClusterApiError(msg)
    logger.debug("%s: HTTP %s", description, response.status)
    return response


__all__ = [
    "HTTP_CONFLICT",
    "HTTP_NOT_FOUND",
    "HTTP_OK",
    "ClusterApiClient",
    "expect_status",
]
