"""Provider utility commands: test-provider, detect-proxy."""

from __future__ import annotations

__all__ = ["detect_proxy", "test_provider"]

import json

import click

from proxypal.cli.api_client import api_request

from ..styling import style_dim, style_error, style_success


def _parse_headers(values: tuple[str, ...]) -> dict[str, str]:
    headers: dict[str, str] = {}
    for value in values:
        name, sep, content = value.partition("=")
        if not sep or not name.strip():
            raise click.BadParameter(f"expected NAME=VALUE, got '{value}'", param_hint="--header")
        headers[name.strip()] = content.strip()
    return headers


@click.command("test-provider")
@click.option("--base-url", required=True, help="Provider base URL (e.g. https://api.example.com/v1)")
@click.option("--api-key", default="", help="Bearer key sent to the provider")
@click.option("--header", "headers", multiple=True, help="Extra header as NAME=VALUE (repeatable)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def test_provider(base_url: str, api_key: str, headers: tuple[str, ...], as_json: bool) -> None:
    """Test connectivity to an OpenAI-compatible provider."""
    body = {"base_url": base_url, "api_key": api_key, "headers": _parse_headers(headers) or None}
    response = api_request("POST", "/api/providers/test", json_data=body)
    result = response if isinstance(response, dict) else {}

    if as_json:
        click.echo(json.dumps(result, indent=2))
    elif result.get("success"):
        latency = result.get("latency_ms")
        click.echo(style_success(f"{result.get('message')} in {latency} ms"))
    else:
        click.echo(style_error(str(result.get("message", "Connection failed"))))

    if not result.get("success"):
        raise SystemExit(1)


@click.command("detect-proxy")
def detect_proxy() -> None:
    """Show the system proxy the daemon would detect."""
    response = api_request("GET", "/api/system-proxy")
    proxy_url = response.get("proxy_url") if isinstance(response, dict) else None
    if proxy_url:
        click.echo(proxy_url)
    else:
        click.echo(style_dim("No system proxy detected."))
