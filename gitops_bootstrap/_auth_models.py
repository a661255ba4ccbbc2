"""Data models for cluster authentication bootstrap.

These models are the contract shared by the bootstrapper, the phase gate, the
token store and the GitOps installer. Secrets travel as :class:`SecretStr`
handles so they cannot leak through ``repr`` or string formatting.

Examples
--------
>>> cfg = RetryConfig(max_attempts=3, initial_wait=5, max_wait=20)
>>> cfg.max_attempts
3
>>> str(SecretStr("sha256~abc"))
'**********'
"""

from __future__ import annotations

import datetime as dt
import enum
from dataclasses import dataclass, field

from gitops_bootstrap._auth_errors import RetryConfigError

DEFAULT_MAX_ATTEMPTS = 6
DEFAULT_INITIAL_WAIT = 10
DEFAULT_MAX_WAIT = 30


@dataclass(frozen=True, slots=True)
class SecretStr:
    """Opaque handle around a secret string.

    The value is only available through :meth:`reveal`, which is called at
    the boundary that must present it over the wire.
    """

    _value: str = field(repr=False)

    def reveal(self) -> str:
        """Return the wrapped secret."""
        return self._value

    def __bool__(self) -> bool:
        return bool(self._value)

    def __str__(self) -> str:
        return "**********"

    def __repr__(self) -> str:
        return "SecretStr('**********')"


class Phase(enum.Enum):
    """Execution pass of the two-phase provisioning workflow."""

    INFRA_ONLY = "infra_only"
    BOOTSTRAP = "bootstrap"
    STEADY_STATE = "steady_state"

    @classmethod
    def parse(cls, value: str) -> Phase:
        """Parse a phase name, accepting either case and dashes.

        Examples
        --------
        >>> Phase.parse("steady-state")
        <Phase.STEADY_STATE: 'steady_state'>
        """
        normalised = value.strip().lower().replace("-", "_")
        try:
            return cls(normalised)
        except ValueError as exc:
            choices = ", ".join(member.value for member in cls)
            msg = f"Unknown phase {value!r}; expected one of: {choices}"
            raise ValueError(msg) from exc


class ErrorKind(enum.Enum):
    """Classification of a failed negotiation attempt.

    The value is the taxonomy label reported to operators.
    """

    RETRYABLE_UNREACHABLE = "unreachable"
    RETRYABLE_TRANSIENT = "server_transient"
    PERMANENT_AUTH = "credential_invalid"
    PERMANENT_CONFIG = "endpoint_or_policy_wrong"
    PERMANENT_ENV = "environment_missing_tool"

    @property
    def retryable(self) -> bool:
        """Return ``True`` when another attempt could change the outcome."""
        return self in (ErrorKind.RETRYABLE_UNREACHABLE, ErrorKind.RETRYABLE_TRANSIENT)


@dataclass(frozen=True, slots=True)
class Credentials:
    """Administrator credentials or a pre-obtained long-lived token.

    A supplied ``token`` always wins over password negotiation.
    """

    username: str = ""
    password: SecretStr | None = None
    token: SecretStr | None = None

    @property
    def has_token(self) -> bool:
        return self.token is not None and bool(self.token)

    @property
    def has_password(self) -> bool:
        return bool(self.username) and self.password is not None and bool(self.password)


@dataclass(frozen=True, slots=True)
class RetryConfig:
    """Attempt budget and backoff bounds for the bootstrap loop."""

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    initial_wait: float = DEFAULT_INITIAL_WAIT
    max_wait: float = DEFAULT_MAX_WAIT

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            msg = f"max_attempts must be at least 1, got {self.max_attempts}"
            raise RetryConfigError(msg)
        if self.initial_wait <= 0:
            msg = f"initial_wait must be positive, got {self.initial_wait}"
            raise RetryConfigError(msg)
        if self.max_wait < self.initial_wait:
            msg = (
                f"max_wait ({self.max_wait}) must be greater than or equal to "
                f"initial_wait ({self.initial_wait})"
            )
            raise RetryConfigError(msg)


@dataclass(frozen=True, slots=True)
class AttemptRecord:
    """One entry in the append-only attempt log of a bootstrap run."""

    attempt_number: int
    error_kind: ErrorKind | None
    wait_before_next: float


@dataclass(frozen=True, slots=True)
class AuthResult:
    """Outcome of a bootstrap run, consumed by the gate and the installer."""

    enabled: bool
    authenticated: bool
    host: str
    username: str = ""
    token: SecretStr | None = None
    error: str = ""

    def __post_init__(self) -> None:
        has_token = self.token is not None and bool(self.token)
        if self.authenticated != has_token:
            msg = "AuthResult.authenticated must be true exactly when a token is present"
            raise ValueError(msg)

    def to_status(self) -> dict[str, object]:
        """Return the redacted status object reported to collaborators.

        Examples
        --------
        >>> AuthResult(enabled=False, authenticated=False, host="h").to_status()["enabled"]
        False
        """
        return {
            "enabled": self.enabled,
            "authenticated": self.authenticated,
            "host": self.host,
            "username": self.username,
            "error": self.error,
        }

    def to_external_output(self) -> dict[str, str]:
        """Return the string-only map of the external-program protocol.

        This is the one rendering that reveals the token.
        """
        return {
            "token": self.token.reveal() if self.token is not None else "",
            "authenticated": "true" if self.authenticated else "false",
            "enabled": "true" if self.enabled else "false",
            "host": self.host,
            "username": self.username,
            "error": self.error,
        }


@dataclass(frozen=True, slots=True)
class StoredTokenRef:
    """Name-based reference to the Secret that backs the long-lived token."""

    namespace: str
    secret_name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.secret_name}"


@dataclass(frozen=True, slots=True)
class StoredToken:
    """A long-lived service-account token; replaced on rotation, never mutated."""

    value: SecretStr
    created_at: dt.datetime
    subject_identity: str
    ref: StoredTokenRef


__all__ = [
    "DEFAULT_INITIAL_WAIT",
    "DEFAULT_MAX_ATTEMPTS",
    "DEFAULT_MAX_WAIT",
    "AttemptRecord",
    "AuthResult",
    "Credentials",
    "ErrorKind",
    "Phase",
    "RetryConfig",
    "SecretStr",
    "StoredToken",
    "StoredTokenRef",
]
