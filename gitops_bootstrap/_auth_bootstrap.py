"""Authentication bootstrap state machine.

The bootstrapper bridges a freshly created cluster to the tooling that
configures it. It negotiates a session token with one-time administrator
credentials, rides out the window in which the identity server is still
restarting, and stops at the first permanent failure.

States move ``IDLE -> ATTEMPTING -> {SUCCEEDED, RETRY_WAIT, FAILED}`` and
``RETRY_WAIT -> ATTEMPTING``. Terminal failures are returned inside the
:class:`AuthResult`; they are never raised, because "cluster unreachable
this pass" must not abort the surrounding infrastructure run.

Examples
--------
>>> from gitops_bootstrap._phase_gate import evaluate_gate
>>> gate = evaluate_gate(Phase.STEADY_STATE, "https://api.demo.example.com:6443")
>>> run = AuthBootstrapper().run(gate, Credentials(token=SecretStr("sha256~t")))
>>> run.state, run.attempt_count
(<BootstrapState.SUCCEEDED: 'succeeded'>, 0)
"""

from __future__ import annotations

import enum
import logging
import time
from collections.abc import Callable
from typing import TypeAlias
from dataclasses import dataclass

from gitops_bootstrap._auth_errors import MissingToolError
from gitops_bootstrap._auth_models import (
    AttemptRecord,
    AuthResult,
    Credentials,
    ErrorKind,
    Phase,
    RetryConfig,
    SecretStr,
)
from gitops_bootstrap._error_classifier import (
    NegotiationOutcome,
    classify,
    terminal_message,
)
from gitops_bootstrap._http import check_client_environment
from gitops_bootstrap._identity_discovery import discover_identity_url
from gitops_bootstrap._negotiator import OAuthNegotiator
from gitops_bootstrap._phase_gate import GateDecision
from gitops_bootstrap._retry_policy import wait_before

logger = logging.getLogger(__name__)

Negotiate: TypeAlias = Callable[[str, Credentials], NegotiationOutcome]
Discover: TypeAlias = Callable[[str], str]


class BootstrapState(enum.Enum):
    """States of one bootstrap run."""

    IDLE = "idle"
    ATTEMPTING = "attempting"
    RETRY_WAIT = "retry_wait"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class BootstrapRun:
    """Terminal state, attempt log and result of one bootstrap run."""

    state: BootstrapState
    attempts: tuple[AttemptRecord, ...]
    result: AuthResult
    error_kind: ErrorKind | None = None
    history: tuple[BootstrapState, ...] = ()

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)


class AuthBootstrapper:
    """Drive negotiation, classification and backoff to an :class:`AuthResult`."""

    def __init__(
        self,
        retry_config: RetryConfig | None = None,
        *,
        negotiate: Negotiate | None = None,
        discover: Discover | None = None,
        preflight: Callable[[], None] = check_client_environment,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.retry_config = retry_config or RetryConfig()
        self._negotiate = negotiate or OAuthNegotiator()
        self._discover = discover or discover_identity_url
        self._preflight = preflight
        self._sleep = sleep

    def run(self, gate: GateDecision, credentials: Credentials) -> BootstrapRun:
        """Run the state machine for one execution pass."""
        history = [BootstrapState.IDLE]

        if not gate.open:
            result = AuthResult(
                enabled=False,
                authenticated=False,
                host=gate.api_url,
                username=credentials.username,
                error=gate.reason,
            )
            return BootstrapRun(BootstrapState.IDLE, (), result, history=tuple(history))

        supplied = credentials.token
        if supplied is not None and supplied:
            history.append(BootstrapState.SUCCEEDED)
            logger.info("Using supplied token for %s; negotiation skipped", gate.api_url)
            return BootstrapRun(
                BootstrapState.SUCCEEDED,
                (),
                self._succeeded(gate, credentials, supplied),
                history=tuple(history),
            )

        if gate.phase is Phase.STEADY_STATE:
            return self._failed_early(
                gate,
                credentials,
                history,
                "steady-state pass requires the stored long-lived token; "
                "supply it or re-run the bootstrap pass",
            )
        if not credentials.has_password:
            return self._failed_early(
                gate, credentials, history, "username and password are required"
            )

        try:
            self._preflight()
            identity_url = gate.identity_url or self._discover(gate.api_url)
        except MissingToolError as exc:
            history.append(BootstrapState.FAILED)
            kind = ErrorKind.PERMANENT_ENV
            logger.error("Bootstrap cannot start: %s", exc)
            result = self._failure(gate, credentials, f"{terminal_message(kind, 0)}: {exc}")
            return BootstrapRun(BootstrapState.FAILED, (), result, kind, tuple(history))

        return self._attempt_loop(gate, credentials, identity_url, history)

    def _attempt_loop(
        self,
        gate: GateDecision,
        credentials: Credentials,
        identity_url: str,
        history: list[BootstrapState],
    ) -> BootstrapRun:
        config = self.retry_config
        attempts: list[AttemptRecord] = []
        attempt = 1
        while True:
            history.append(BootstrapState.ATTEMPTING)
            outcome = self._negotiate(identity_url, credentials)
            token = outcome.token
            classified = classify(outcome)

            if classified is None and token is not None:
                attempts.append(AttemptRecord(attempt, None, 0))
                logger.info(
                    "Token negotiation attempt %d/%d succeeded",
                    attempt,
                    config.max_attempts,
                )
                history.append(BootstrapState.SUCCEEDED)
                return BootstrapRun(
                    BootstrapState.SUCCEEDED,
                    tuple(attempts),
                    self._succeeded(gate, credentials, token),
                    history=tuple(history),
                )

            # classify returns None only when a token was received
            kind = classified or ErrorKind.RETRYABLE_TRANSIENT
            if not kind.retryable or attempt >= config.max_attempts:
                attempts.append(AttemptRecord(attempt, kind, 0))
                logger.warning(
                    "Token negotiation attempt %d/%d failed (%s); giving up",
                    attempt,
                    config.max_attempts,
                    kind.value,
                )
                history.append(BootstrapState.FAILED)
                message = terminal_message(kind, attempt)
                if outcome.detail:
                    message = f"{message}; last error: {outcome.detail}"
                return BootstrapRun(
                    BootstrapState.FAILED,
                    tuple(attempts),
                    self._failure(gate, credentials, message),
                    kind,
                    tuple(history),
                )

            wait = wait_before(attempt, config)
            attempts.append(AttemptRecord(attempt, kind, wait))
            logger.warning(
                "Token negotiation attempt %d/%d failed (%s); retrying in %ss",
                attempt,
                config.max_attempts,
                kind.value,
                wait,
            )
            history.append(BootstrapState.RETRY_WAIT)
            self._sleep(wait)
            attempt += 1

    def _failed_early(
        self,
        gate: GateDecision,
        credentials: Credentials,
        history: list[BootstrapState],
        reason: str,
    ) -> BootstrapRun:
        kind = ErrorKind.PERMANENT_CONFIG
        history.append(BootstrapState.FAILED)
        logger.error("Bootstrap cannot start: %s", reason)
        result = self._failure(gate, credentials, f"{kind.value}: {reason}")
        return BootstrapRun(BootstrapState.FAILED, (), result, kind, tuple(history))

    @staticmethod
    def _succeeded(gate: GateDecision, credentials: Credentials, token: SecretStr) -> AuthResult:
        return AuthResult(
            enabled=True,
            authenticated=True,
            host=gate.api_url,
            username=credentials.username,
            token=token,
        )

    @staticmethod
    def _failure(gate: GateDecision, credentials: Credentials, error: str) -> AuthResult:
        return AuthResult(
            enabled=True,
            authenticated=False,
            host=gate.api_url,
            username=credentials.username,
            error=error,
        )


__all__ = ["AuthBootstrapper", "BootstrapRun", "BootstrapState", "Discover", "Negotiate"]
