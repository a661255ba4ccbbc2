#!/usr/bin/env -S uv run python
# /// script
# requires-python = ">=3.13"
# dependencies = ["cyclopts>=2.9", "pyyaml", "requests"]
# ///
"""Obtain a cluster bearer token for an external-program data source.

The query arrives as a JSON object on stdin and the result leaves as a JSON
object of strings on stdout:

  in:  {"api_url", "oauth_url", "username", "password", "token", "phase",
        "enable_cluster_config", "ca_certificate"}
  out: {"token", "authenticated", "enabled", "host", "username", "error"}

The command always exits 0 so the caller can surface ``error`` itself.
Progress and per-attempt diagnostics go to stderr.
"""

from __future__ import annotations

import json
import logging
import sys
from collections import abc as cabc

from cyclopts import App
from gitops_bootstrap._auth_bootstrap import AuthBootstrapper
from gitops_bootstrap._auth_models import AuthResult
from gitops_bootstrap._cluster_inputs import RawClusterInputs, resolve_cluster_inputs
from gitops_bootstrap._cluster_pass import build_bootstrapper
from gitops_bootstrap._phase_gate import evaluate_gate

app = App(help="Obtain a cluster bearer token for an external-program data source.")
logger = logging.getLogger(__name__)

_QUERY_FIELDS = {
    "api_url": "api_url",
    "oauth_url": "identity_url",
    "username": "username",
    "password": "password",
    "token": "token",
    "phase": "phase",
    "enable_cluster_config": "enable_cluster_config",
    "ca_certificate": "ca_certificate",
}


def parse_query(text: str) -> RawClusterInputs:
    """Parse the stdin query into raw inputs; empty strings count as unset.

    Examples
    --------
    >>> parse_query('{"api_url": "https://api.demo:6443", "token": ""}').token is None
    True
    """
    payload = json.loads(text) if text.strip() else {}
    if not isinstance(payload, dict):
        msg = "query must be a JSON object"
        raise ValueError(msg)
    values = {
        field_name: str(payload[key])
        for key, field_name in _QUERY_FIELDS.items()
        if payload.get(key) not in (None, "")
    }
    return RawClusterInputs(**values)


def _error_output(host: str, message: str) -> dict[str, str]:
    return AuthResult(
        enabled=True, authenticated=False, host=host, error=message
    ).to_external_output()


def obtain_token(
    query: str,
    *,
    env: cabc.Mapping[str, str] | None = None,
    bootstrapper: AuthBootstrapper | None = None,
) -> dict[str, str]:
    """Answer one external-program query.

    Malformed input is reported in ``error`` rather than raised.
    """
    try:
        raw = parse_query(query)
    except ValueError as exc:
        return _error_output("", f"invalid query: {exc}")
    if raw.api_url is None:
        return _error_output("", "api_url is required")

    try:
        inputs = resolve_cluster_inputs(raw, env)
    except SystemExit as exc:
        return _error_output(raw.api_url, str(exc))

    gate = evaluate_gate(inputs.phase, inputs.api_url, inputs.identity_url)
    runner = bootstrapper or build_bootstrapper(inputs)
    run = runner.run(gate, inputs.credentials)
    logger.info(
        "Token bootstrap finished in state %s after %d attempt(s)",
        run.state.value,
        run.attempt_count,
    )
    return run.result.to_external_output()


@app.command()
def main(verbose: bool = False) -> int:
    """Read the query from stdin and write the token result to stdout.

    Parameters
    ----------
    verbose
        Log per-attempt diagnostics at debug level.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    output = obtain_token(sys.stdin.read())
    print(json.dumps(output))
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(app())
