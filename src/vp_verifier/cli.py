"""
Command-line interface for the OpenID4VP verifier.

Usage:
    vp-verifier serve --base-url https://verifier.example.com
    vp-verifier policies
    vp-verifier check response.json --vc-policy expired
    cat response.json | vp-verifier check -
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Any

import click
import httpx
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from vp_verifier.config import VerifierConfig
from vp_verifier.logging_config import configure_logging
from vp_verifier.orchestrator import VerificationOrchestrator
from vp_verifier.policies import MalformedPolicyRequest
from vp_verifier.request import InvalidVerificationRequest
from vp_verifier.sessions import PresentationSessionResult
from vp_verifier.submission import TokenDecodeFailure, TokenResponse


console = Console()


def format_result(result: PresentationSessionResult) -> None:
    """Format and print a verification result."""
    if result.verification_result:
        status_icon = "[bold green]VALID[/]"
        panel_style = "green"
    elif result.error is not None:
        status_icon = "[bold yellow]ERROR[/]"
        panel_style = "yellow"
    else:
        status_icon = "[bold red]INVALID[/]"
        panel_style = "red"

    table = Table(box=None, padding=(0, 2))
    table.add_column("Target", style="dim")
    table.add_column("Policy")
    table.add_column("Result")
    table.add_column("Error")

    for policy_result in result.policy_results:
        table.add_row(
            policy_result.target,
            policy_result.policy,
            "[green]passed[/]" if policy_result.success else "[red]failed[/]",
            policy_result.error or "",
        )

    console.print(Panel(table, title=f"Verification Result: {status_icon}", border_style=panel_style))

    if result.error:
        console.print(f"\n[bold red]Error:[/] {result.error}")


def load_response(source: str, timeout: float) -> dict[str, Any]:
    """Load a wallet response (vp_token + presentation_submission).

    Args:
        source: File path, URL, or "-" for stdin.
        timeout: HTTP timeout when ``source`` is a URL.
    """
    if source == "-":
        return json.loads(sys.stdin.read())

    if source.startswith("http://") or source.startswith("https://"):
        with httpx.Client(timeout=timeout) as client:
            response = client.get(source, headers={"Accept": "application/json"})
            response.raise_for_status()
            return response.json()

    path = Path(source)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {source}")

    with path.open() as f:
        return json.load(f)


@click.group()
@click.version_option(package_name="vp-verifier")
def main() -> None:
    """OpenID4VP verifier: presentation sessions and policy checks."""


@main.command()
@click.option("--host", default=None, help="Interface to bind (default from VP_VERIFIER_HOST)")
@click.option("--port", type=int, default=None, help="Port to listen on (default from VP_VERIFIER_PORT)")
@click.option("--base-url", default=None, help="Public URL of this verifier, used in authorization requests")
@click.option("--log-level", default=None, help="Logging level")
@click.option("--json-logs", is_flag=True, help="Emit logs as JSON lines")
def serve(
    host: str | None,
    port: int | None,
    base_url: str | None,
    log_level: str | None,
    json_logs: bool,
) -> None:
    """Run the verifier HTTP service."""
    import uvicorn

    from vp_verifier.api import create_app

    config = VerifierConfig.from_env(
        host=host, port=port, base_url=base_url, log_level=log_level, log_json=json_logs or None
    )
    configure_logging(config.log_level, config.log_json)
    uvicorn.run(create_app(config), host=config.host, port=config.port, log_config=None)


@main.command()
@click.option("--json-output", is_flag=True, help="Output as JSON")
def policies(json_output: bool) -> None:
    """List the registered verification policies."""
    orchestrator = VerificationOrchestrator.from_config(VerifierConfig.from_env())
    descriptions = orchestrator.policy_manager.list_policy_descriptions()

    if json_output:
        console.print_json(data=descriptions)
        return

    table = Table(title="Verification policies")
    table.add_column("Name", style="bold")
    table.add_column("Description")
    for name, description in descriptions.items():
        table.add_row(name, description)
    console.print(table)


@main.command()
@click.argument("source", required=True)
@click.option("--vp-policy", "vp_policies", multiple=True, help="Presentation policy (repeatable)")
@click.option("--vc-policy", "vc_policies", multiple=True, help="Credential policy (repeatable)")
@click.option("--credential", "credentials", multiple=True, help="Requested credential type (repeatable)")
@click.option("--json-output", is_flag=True, help="Output result as JSON")
@click.option("--timeout", type=float, default=30.0, help="HTTP request timeout in seconds")
def check(
    source: str,
    vp_policies: tuple[str, ...],
    vc_policies: tuple[str, ...],
    credentials: tuple[str, ...],
    json_output: bool,
    timeout: float,
) -> None:
    """Verify a wallet response through a throw-away presentation session.

    SOURCE is a JSON object with `vp_token` and `presentation_submission`,
    read from a file path, a URL, or "-" for stdin.

    Examples:

        vp-verifier check response.json

        vp-verifier check response.json --vc-policy signature --vc-policy expired
    """
    try:
        parameters = load_response(source, timeout)
        requested = list(credentials) or [
            c.type or c.id for c in TokenResponse.from_http_parameters(parameters).decode().credentials
        ]

        body: dict[str, Any] = {"request_credentials": requested}
        if vp_policies:
            body["vp_policies"] = list(vp_policies)
        if vc_policies:
            body["vc_policies"] = list(vc_policies)

        config = VerifierConfig.from_env(http_timeout_seconds=timeout)
        orchestrator = VerificationOrchestrator.from_config(config)
        session, _ = orchestrator.initialize_from_request(body)
        result = asyncio.run(orchestrator.verify_submission(session.id, parameters))

        if json_output:
            console.print_json(data={
                "valid": bool(result.verification_result),
                "error": result.error,
                "results": [
                    {"target": r.target, "policy": r.policy, "success": r.success, "error": r.error}
                    for r in result.policy_results
                ],
            })
        else:
            format_result(result)

        sys.exit(0 if result.verification_result else 1)

    except (
        FileNotFoundError,
        json.JSONDecodeError,
        TokenDecodeFailure,
        InvalidVerificationRequest,
        MalformedPolicyRequest,
    ) as e:
        if json_output:
            console.print_json(data={"error": f"Invalid input: {e}"})
        else:
            console.print(f"[red]Error:[/] Invalid input: {e}")
        sys.exit(2)

    except httpx.HTTPError as e:
        if json_output:
            console.print_json(data={"error": f"HTTP error: {e}"})
        else:
            console.print(f"[red]Error:[/] HTTP error: {e}")
        sys.exit(2)


if __name__ == "__main__":
    main()
