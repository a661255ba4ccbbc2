"""Classify negotiation outcomes into retryable and terminal categories.

Conflating "bad password" with "server warming up" would spend the whole
retry budget on a failure that retries cannot fix, so classification inspects
the HTTP status and the transport failure rather than error text.

Examples
--------
>>> classify(NegotiationOutcome(status=401))
<ErrorKind.PERMANENT_AUTH: 'credential_invalid'>
>>> classify(NegotiationOutcome(transport_failure=TransportFailure.UNREACHABLE))
<ErrorKind.RETRYABLE_UNREACHABLE: 'unreachable'>
>>> classify(NegotiationOutcome(status=302, token=SecretStr("sha256~t"))) is None
True
"""

from __future__ import annotations

from dataclasses import dataclass

from gitops_bootstrap._auth_models import ErrorKind, SecretStr
from gitops_bootstrap._http import TransportFailure

HTTP_UNAUTHORIZED = 401
HTTP_FORBIDDEN = 403

_DESCRIPTIONS: dict[ErrorKind, str] = {
    ErrorKind.RETRYABLE_UNREACHABLE: "identity server not reachable",
    ErrorKind.RETRYABLE_TRANSIENT: "identity server returned a transient failure",
    ErrorKind.PERMANENT_AUTH: "invalid credentials",
    ErrorKind.PERMANENT_CONFIG: "request rejected by the identity endpoint or its TLS trust",
    ErrorKind.PERMANENT_ENV: "required client dependency is missing",
}

_REMEDIATIONS: dict[ErrorKind, str] = {
    ErrorKind.RETRYABLE_UNREACHABLE: (
        "establish network connectivity to the cluster, then re-run"
    ),
    ErrorKind.RETRYABLE_TRANSIENT: (
        "the identity server may still be reconciling after an identity "
        "provider change; wait a few minutes, then re-run"
    ),
    ErrorKind.PERMANENT_AUTH: (
        "fix the administrator username or password; retrying will not help"
    ),
    ErrorKind.PERMANENT_CONFIG: (
        "check the identity endpoint override, CLUSTER_CA_CERT and the "
        "cluster OAuth policy"
    ),
    ErrorKind.PERMANENT_ENV: (
        "provide the missing client dependency (for example the CA bundle "
        "named by CLUSTER_CA_CERT) on the machine running this pass"
    ),
}


@dataclass(frozen=True, slots=True)
class NegotiationOutcome:
    """Observable result of one negotiation attempt."""

    token: SecretStr | None = None
    status: int | None = None
    transport_failure: TransportFailure | None = None
    missing_tool: str | None = None
    detail: str = ""

    @property
    def succeeded(self) -> bool:
        return self.token is not None and bool(self.token)


def classify(outcome: NegotiationOutcome) -> ErrorKind | None:
    """Return the error category of ``outcome`` or ``None`` on success.

    A failed TLS handshake is permanent: retrying against an untrusted
    certificate cannot succeed.
    """
    if outcome.missing_tool is not None:
        return ErrorKind.PERMANENT_ENV
    if outcome.succeeded:
        return None
    if outcome.transport_failure is TransportFailure.UNREACHABLE:
        return ErrorKind.RETRYABLE_UNREACHABLE
    if outcome.transport_failure is TransportFailure.TLS:
        return ErrorKind.PERMANENT_CONFIG
    if outcome.transport_failure is not None:
        return ErrorKind.RETRYABLE_TRANSIENT
    if outcome.status == HTTP_UNAUTHORIZED:
        return ErrorKind.PERMANENT_AUTH
    if outcome.status == HTTP_FORBIDDEN:
        return ErrorKind.PERMANENT_CONFIG
    return ErrorKind.RETRYABLE_TRANSIENT


def describe(kind: ErrorKind) -> str:
    """Return a short human-readable description of ``kind``."""
    return _DESCRIPTIONS[kind]


def remediation(kind: ErrorKind) -> str:
    """Return operator guidance for ``kind``."""
    return _REMEDIATIONS[kind]


def terminal_message(kind: ErrorKind, attempts: int) -> str:
    """Build the ``AuthResult.error`` text for a terminal failure.

    Retryable kinds reaching this point have exhausted the budget and are
    reported as "retry later"; permanent kinds as "fix configuration".

    Examples
    --------
    >>> terminal_message(ErrorKind.PERMANENT_AUTH, 1).startswith("credential_invalid")
    True
    """
    advice = "retry later" if kind.retryable else "fix configuration"
    return (
        f"{kind.value}: {describe(kind)} after {attempts} attempt(s) "
        f"({advice}: {remediation(kind)})"
    )


__all__ = [
    "NegotiationOutcome",
    "classify",
    "describe",
    "remediation",
    "terminal_message",
]
