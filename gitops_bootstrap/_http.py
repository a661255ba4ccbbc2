"""HTTP transport for identity-server and Kubernetes API calls.

Requests are described by :class:`HttpRequest` and sent with ``requests``.
Connection-level failures are returned as an :class:`HttpResponse` with a
:class:`TransportFailure` instead of raising, so callers can classify them
structurally. Secrets stay wrapped in :class:`SecretStr` until the request is
handed to ``requests``.

Without a CA bundle, TLS verification is skipped: a freshly created cluster
serves self-signed certificates until its ingress is reconfigured.

Examples
--------
>>> response = HttpResponse(status=302, headers={"location": "/x"})
>>> response.header("Location"), response.transport_failed
('/x', False)
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Mapping
from typing import TypeAlias
from dataclasses import dataclass, field
from pathlib import Path

import requests

from gitops_bootstrap._auth_errors import MissingToolError
from gitops_bootstrap._auth_models import SecretStr

logger = logging.getLogger(__name__)


class TransportFailure(enum.Enum):
    """Why no HTTP response was received."""

    UNREACHABLE = "unreachable"
    TLS = "tls"
    OTHER = "other"


@dataclass(frozen=True, slots=True)
class HttpRequest:
    """A single HTTP request."""

    method: str
    url: str
    headers: Mapping[str, str | SecretStr] = field(default_factory=dict)
    basic_auth: tuple[str, SecretStr] | None = None
    body: str | None = None
    allow_redirects: bool = False
    connect_timeout: float = 10
    read_timeout: float = 30
    ca_certificate: Path | None = None


@dataclass(frozen=True, slots=True)
class HttpResponse:
    """Status, lower-cased headers and body, or the transport failure."""

    status: int | None = None
    headers: Mapping[str, str] = field(default_factory=dict)
    body: str = ""
    failure: TransportFailure | None = None
    detail: str = ""

    @property
    def transport_failed(self) -> bool:
        """Return ``True`` when no HTTP response was received."""
        return self.failure is not None or self.status is None

    @property
    def unreachable(self) -> bool:
        return self.failure is TransportFailure.UNREACHABLE

    def header(self, name: str) -> str | None:
        """Return a header value by case-insensitive name."""
        return self.headers.get(name.lower())


Transport: TypeAlias = Callable[[HttpRequest], HttpResponse]


def check_client_environment(ca_certificate: Path | None = None) -> None:
    """Raise :class:`MissingToolError` when a configured CA bundle is absent.

    Examples
    --------
    >>> check_client_environment(None)
    """
    if ca_certificate is not None and not ca_certificate.is_file():
        msg = f"CA certificate bundle not found: {ca_certificate}"
        raise MissingToolError(msg)


def _plain(value: str | SecretStr) -> str:
    return value.reveal() if isinstance(value, SecretStr) else value


def send_request(
    request: HttpRequest,
    session: requests.Session | None = None,
) -> HttpResponse:
    """Send ``request`` and return the response or the transport failure.

    Raises
    ------
    MissingToolError
        If the configured CA bundle does not exist.
    """
    check_client_environment(request.ca_certificate)
    send = session.request if session is not None else requests.request
    auth = None
    if request.basic_auth is not None:
        username, password = request.basic_auth
        auth = (username, password.reveal())
    try:
        response = send(
            request.method.upper(),
            request.url,
            headers={name: _plain(value) for name, value in request.headers.items()},
            auth=auth,
            data=request.body.encode("utf-8") if request.body is not None else None,
            allow_redirects=request.allow_redirects,
            timeout=(request.connect_timeout, request.read_timeout),
            verify=str(request.ca_certificate) if request.ca_certificate else False,
        )
    except requests.exceptions.SSLError as exc:
        return HttpResponse(failure=TransportFailure.TLS, detail=str(exc))
    except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as exc:
        return HttpResponse(failure=TransportFailure.UNREACHABLE, detail=str(exc))
    except requests.exceptions.RequestException as exc:
        return HttpResponse(failure=TransportFailure.OTHER, detail=str(exc))

    logger.debug("%s %s: HTTP %s", request.method.upper(), request.url, response.status_code)
    return HttpResponse(
        status=response.status_code,
        headers={name.lower(): value for name, value in response.headers.items()},
        body=response.text,
    )


__all__ = [
    "HttpRequest",
    "HttpResponse",
    "Transport",
    "TransportFailure",
    "check_client_environment",
    "send_request",
]
