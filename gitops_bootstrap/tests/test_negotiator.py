"""Unit tests for the challenging-client token negotiator."""

from __future__ import annotations

from pathlib import Path

import pytest

from gitops_bootstrap._auth_models import Credentials, ErrorKind, SecretStr
from gitops_bootstrap._error_classifier import classify
from gitops_bootstrap._http import HttpRequest, HttpResponse, TransportFailure
from gitops_bootstrap._negotiator import OAuthNegotiator, extract_access_token

IDENTITY_URL = "https://oauth-openshift.apps.demo.example.com"
ADMIN = Credentials(username="cluster-admin", password=SecretStr("hunter2"))


def test_negotiate_parses_token_from_location() -> None:
    requests: list[HttpRequest] = []

    def transport(request: HttpRequest) -> HttpResponse:
        requests.append(request)
        return HttpResponse(
            status=302,
            headers={
                "location": f"{IDENTITY_URL}/oauth/token/implicit"
                "#access_token=sha256~xyz&expires_in=86400&token_type=Bearer"
            },
        )

    outcome = OAuthNegotiator(transport=transport).negotiate(IDENTITY_URL, ADMIN)

    assert outcome.token is not None
    assert outcome.token.reveal() == "sha256~xyz"
    assert classify(outcome) is None
    request = requests[0]
    assert request.url == (
        f"{IDENTITY_URL}/oauth/authorize"
        "?response_type=token&client_id=openshift-challenging-client"
    )
    assert request.headers == {"X-CSRF-Token": "1"}
    assert request.basic_auth == ("cluster-admin", SecretStr("hunter2"))
    assert request.allow_redirects is False


def test_negotiate_reports_status_without_token() -> None:
    outcome = OAuthNegotiator(
        transport=lambda _request: HttpResponse(status=401)
    ).negotiate(IDENTITY_URL, ADMIN)

    assert outcome.token is None
    assert classify(outcome) is ErrorKind.PERMANENT_AUTH


def test_negotiate_reports_unreachable_identity_server() -> None:
    outcome = OAuthNegotiator(
        transport=lambda _request: HttpResponse(
            failure=TransportFailure.UNREACHABLE, detail="Failed to resolve host"
        )
    ).negotiate(IDENTITY_URL, ADMIN)

    assert outcome.transport_failure is TransportFailure.UNREACHABLE
    assert outcome.detail == "Failed to resolve host"
    assert classify(outcome) is ErrorKind.RETRYABLE_UNREACHABLE


def test_negotiate_reports_untrusted_certificate_as_config() -> None:
    outcome = OAuthNegotiator(
        transport=lambda _request: HttpResponse(
            failure=TransportFailure.TLS, detail="certificate verify failed"
        )
    ).negotiate(IDENTITY_URL, ADMIN)

    assert classify(outcome) is ErrorKind.PERMANENT_CONFIG


def test_negotiate_maps_missing_ca_bundle(tmp_path: Path) -> None:
    negotiator = OAuthNegotiator(ca_certificate=tmp_path / "absent-ca.pem")

    outcome = negotiator.negotiate(IDENTITY_URL, ADMIN)

    assert "absent-ca.pem" in outcome.detail
    assert classify(outcome) is ErrorKind.PERMANENT_ENV


def test_negotiate_requires_password() -> None:
    negotiator = OAuthNegotiator(transport=lambda _request: HttpResponse(status=302))
    with pytest.raises(ValueError, match="password"):
        negotiator.negotiate(IDENTITY_URL, Credentials(username="cluster-admin"))


@pytest.mark.parametrize(
    ("location", "expected"),
    [
        ("https://o/oauth/token/implicit#access_token=abc&expires_in=1", "abc"),
        ("https://o/cb?access_token=def", "def"),
        ("https://o/login?then=/oauth/authorize", None),
        ("", None),
        (None, None),
    ],
)
def test_extract_access_token(location: str | None, expected: str | None) -> None:
    token = extract_access_token(location)
    assert (token.reveal() if token else None) == expected
