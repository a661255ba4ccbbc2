"""Exception hierarchy for the cluster authentication helpers.

Callers can catch :class:`ClusterAuthError` to handle every failure raised by
this package. Bootstrap failures are *not* raised; they are reported through
``AuthResult.error`` so an infrastructure pass can finish regardless.

Examples
--------
>>> isinstance(MissingToolError("CA certificate bundle not found"), ClusterAuthError)
True
"""

from __future__ import annotations


class ClusterAuthError(Exception):
    """Base error for cluster authentication and configuration helpers."""


class RetryConfigError(ClusterAuthError, ValueError):
    """Raised when retry parameters would produce a degenerate backoff."""


class MissingToolError(ClusterAuthError):
    """Raised when a client dependency of the pass, such as the CA bundle, is absent."""


class GateClosedError(ClusterAuthError):
    """Raised when cluster-internal work targets the gate placeholder."""


class ClusterApiError(ClusterAuthError):
    """Raised when a Kubernetes API request fails."""


class TokenStoreError(ClusterAuthError):
    """Raised when the service-account token cannot be issued or read."""


class InstallerError(ClusterAuthError):
    """Raised when a GitOps installer action fails."""


class InstallerBlockedError(InstallerError):
    """Raised when the installer is invoked without gate and credentials."""


__all__ = [
    "ClusterApiError",
    "ClusterAuthError",
    "GateClosedError",
    "InstallerBlockedError",
    "InstallerError",
    "MissingToolError",
    "RetryConfigError",
    "TokenStoreError",
]
