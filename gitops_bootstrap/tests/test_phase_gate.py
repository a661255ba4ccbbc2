"""Unit tests for the phase gate."""

from __future__ import annotations

import pytest

from gitops_bootstrap._auth_errors import GateClosedError
from gitops_bootstrap._auth_models import Phase, SecretStr
from gitops_bootstrap._cluster_api import ClusterApiClient
from gitops_bootstrap._phase_gate import (
    PLACEHOLDER_ENDPOINT,
    ensure_reachable_endpoint,
    evaluate_gate,
    gate_open,
    resolve_phase,
)

API_URL = "https://api.demo.example.com:6443"


def test_gate_closed_only_for_infra_only() -> None:
    assert not gate_open(Phase.INFRA_ONLY)
    assert gate_open(Phase.BOOTSTRAP)
    assert gate_open(Phase.STEADY_STATE)


def test_closed_gate_substitutes_placeholder() -> None:
    decision = evaluate_gate(Phase.INFRA_ONLY, API_URL, "https://oauth.demo.example.com")

    assert decision.api_url == PLACEHOLDER_ENDPOINT
    assert decision.identity_url == PLACEHOLDER_ENDPOINT
    assert "re-run" in decision.reason


def test_open_gate_keeps_endpoints() -> None:
    decision = evaluate_gate(Phase.STEADY_STATE, API_URL)

    assert decision.open
    assert decision.api_url == API_URL
    assert decision.identity_url is None
    assert decision.reason == ""


def test_placeholder_endpoint_is_refused() -> None:
    with pytest.raises(GateClosedError):
        ensure_reachable_endpoint(f"{PLACEHOLDER_ENDPOINT}/")
    assert ensure_reachable_endpoint(API_URL) == API_URL


def test_api_client_refuses_closed_gate() -> None:
    def transport(_request: object) -> object:
        raise AssertionError("no request may be sent")

    decision = evaluate_gate(Phase.INFRA_ONLY, API_URL)
    with pytest.raises(GateClosedError):
        ClusterApiClient(decision.api_url, SecretStr("t"), transport=transport)


@pytest.mark.parametrize(
    ("phase", "enable", "stored", "expected"),
    [
        (None, False, False, Phase.INFRA_ONLY),
        (None, False, True, Phase.INFRA_ONLY),
        (None, True, False, Phase.BOOTSTRAP),
        (None, True, True, Phase.STEADY_STATE),
        ("bootstrap", False, True, Phase.BOOTSTRAP),
        ("infra-only", True, True, Phase.INFRA_ONLY),
    ],
)
def test_resolve_phase(
    phase: str | None, enable: bool, stored: bool, expected: Phase
) -> None:
    assert resolve_phase(phase, enable_cluster_config=enable, has_stored_token=stored) is expected
