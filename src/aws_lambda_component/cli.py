"""Command-line interface for aws-lambda-component."""

import asyncio
import json
import logging
import re
import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import click

from .component import LambdaComponent
from .models import ReconcilerOptions
from .normalizer import load_inputs, normalize_inputs
from .packaging import Packager
from .state import JsonFileStateStore

DEFAULT_CONFIG = "lambda.yml"
DEFAULT_STATE = ".aws-lambda-component/state.json"

DURATION_PATTERN = re.compile(r"^(\d+)([mhd])$")
DURATION_UNITS = {"m": "minutes", "h": "hours", "d": "days"}


def _parse_time(value: str, now: datetime) -> datetime:
    """Parse an ISO timestamp or a relative duration like ``30m``, ``24h``, ``7d``."""
    match = DURATION_PATTERN.match(value)
    if match:
        amount, unit = match.groups()
        return now - timedelta(**{DURATION_UNITS[unit]: int(amount)})
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise click.BadParameter(
            f"'{value}' is neither an ISO timestamp nor a duration like 30m, 24h or 7d"
        ) from None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _load_config(config: str, region: str | None) -> dict[str, Any]:
    inputs = load_inputs(config) if Path(config).exists() else {}
    if region:
        inputs["region"] = region
    return inputs


@click.group()
@click.version_option(package_name="aws-lambda-component")
@click.option("--verbose", "-v", is_flag=True, help="Show provider calls as they happen")
def cli(verbose: bool) -> None:
    """Deploy and manage a single AWS Lambda function."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


config_option = click.option(
    "--config",
    "-c",
    default=DEFAULT_CONFIG,
    show_default=True,
    help="YAML file with the function inputs (missing file means all defaults)",
)
state_option = click.option(
    "--state",
    "-s",
    default=DEFAULT_STATE,
    show_default=True,
    help="JSON file holding the persisted state",
)
endpoint_option = click.option(
    "--endpoint-url",
    help=(
        "AWS endpoint URL "
        "(e.g., http://localhost:4566 for LocalStack, or other AWS-compatible services)"
    ),
)


@cli.command()
@config_option
@state_option
@click.option(
    "--region",
    help="AWS region (overrides the config file; fixed after the first deploy)",
)
@endpoint_option
@click.option(
    "--install-deps/--no-install-deps",
    default=False,
    help="Install requirements.txt dependencies into the package",
)
@click.option(
    "--wait/--no-wait",
    default=True,
    help="Wait for the function to become active after each change",
)
def deploy(
    config: str,
    state: str,
    region: str | None,
    endpoint_url: str | None,
    install_deps: bool,
    wait: bool,
) -> None:
    """Create or update the function."""

    async def _deploy() -> None:
        component = LambdaComponent(
            JsonFileStateStore(state),
            endpoint_url=endpoint_url,
            options=ReconcilerOptions(wait=wait),
            packager=Packager(install=install_deps),
        )
        try:
            inputs = _load_config(config, region)
            result = await component.deploy(inputs)
        except Exception as e:
            click.echo(f"✗ Deployment failed: {e}", err=True)
            sys.exit(1)

        if result.operations:
            click.echo(f"✓ Function deployed ({', '.join(result.operations)})")
        else:
            click.echo("✓ Function is up to date")
        click.echo(f"  Name: {result.name}")
        click.echo(f"  ARN: {result.arn}")
        click.echo(f"  Version: {result.version or '-'}")
        click.echo(f"  Role: {result.role_arn}")
        if result.alias:
            click.echo(
                f"  Alias: {result.alias} "
                f"(provisioned concurrency {result.provisioned_concurrency})"
            )
        if result.meta_role_arn:
            click.echo(f"  Meta role: {result.meta_role_arn}")
        if result.subnet_ids:
            click.echo(f"  Subnets: {', '.join(result.subnet_ids)}")
            click.echo(f"  Security groups: {', '.join(result.security_group_ids)}")

    asyncio.run(_deploy())


@cli.command()
@state_option
@endpoint_option
@click.option(
    "--yes",
    "-y",
    is_flag=True,
    help="Skip confirmation prompt",
)
def remove(state: str, endpoint_url: str | None, yes: bool) -> None:
    """Delete the function, its alias and its auto-created roles."""
    store = JsonFileStateStore(state)
    persisted = store.load()
    if persisted.is_empty:
        click.echo("Nothing to remove")
        return

    if not yes:
        click.confirm(
            f"Are you sure you want to remove function '{persisted.name}'?",
            abort=True,
        )

    async def _remove() -> None:
        component = LambdaComponent(store, endpoint_url=endpoint_url)
        try:
            await component.remove()
        except Exception as e:
            click.echo(f"✗ Removal failed: {e}", err=True)
            sys.exit(1)
        click.echo(f"✓ Function '{persisted.name}' removed")

    asyncio.run(_remove())


@cli.command()
@state_option
@endpoint_option
@click.option(
    "--since",
    default="24h",
    show_default=True,
    help="Range start: ISO timestamp or duration ago (30m, 24h, 7d)",
)
@click.option(
    "--until",
    default=None,
    help="Range end: ISO timestamp or duration ago (default: now)",
)
@click.option("--json", "as_json", is_flag=True, help="Print the raw series as JSON")
def metrics(
    state: str,
    endpoint_url: str | None,
    since: str,
    until: str | None,
    as_json: bool,
) -> None:
    """Show invocation metrics of the deployed function."""
    now = datetime.now(UTC)
    start = _parse_time(since, now)
    end = _parse_time(until, now) if until else now

    async def _metrics() -> None:
        component = LambdaComponent(JsonFileStateStore(state), endpoint_url=endpoint_url)
        try:
            series = await component.metrics(start, end)
        except Exception as e:
            click.echo(f"✗ Failed to read metrics: {e}", err=True)
            sys.exit(1)

        if as_json:
            payload = {
                name: [{"timestamp": p.timestamp.isoformat(), "value": p.value} for p in points]
                for name, points in series.items()
            }
            click.echo(json.dumps(payload, indent=2))
            return

        click.echo(f"Metrics from {start.isoformat()} to {end.isoformat()}")
        for name, points in series.items():
            values = [p.value for p in points]
            if not values:
                click.echo(f"  {name}: no data")
            elif name == "Duration":
                click.echo(f"  {name}: {sum(values) / len(values):.1f} ms average")
            else:
                click.echo(f"  {name}: {sum(values):g}")

    asyncio.run(_metrics())


@cli.command()
@state_option
def status(state: str) -> None:
    """Show the persisted state of the function."""
    try:
        persisted = JsonFileStateStore(state).load()
    except Exception as e:
        click.echo(f"✗ Failed to read state: {e}", err=True)
        sys.exit(1)

    if persisted.is_empty:
        click.echo("No function deployed")
        return

    click.echo(f"Function: {persisted.name}")
    click.echo(f"  Region: {persisted.region}")
    click.echo(f"  ARN: {persisted.function_arn}")
    click.echo(f"  Version: {persisted.current_version or '-'}")
    role_kind = "auto-created" if persisted.role_is_auto_created else "user-supplied"
    click.echo(f"  Role: {persisted.role_arn} ({role_kind})")
    if persisted.meta_role_arn:
        click.echo(f"  Meta role: {persisted.meta_role_arn}")
    if persisted.alias_name:
        click.echo(f"  Alias: {persisted.alias_name}")
    if persisted.code_hash:
        click.echo(f"  Code SHA256: {persisted.code_hash}")


@cli.command()
@config_option
@click.option(
    "--output-dir",
    "-o",
    type=click.Path(file_okay=False),
    help="Directory for the zip (default: a temporary directory)",
)
@click.option(
    "--install-deps/--no-install-deps",
    default=False,
    help="Install requirements.txt dependencies into the package",
)
def package(config: str, output_dir: str | None, install_deps: bool) -> None:
    """Build the deployment zip without deploying it."""
    try:
        desired = normalize_inputs(_load_config(config, None))
        artifact = Packager(output_dir, install=install_deps).package(desired)
    except Exception as e:
        click.echo(f"✗ Failed to build package: {e}", err=True)
        sys.exit(1)

    size_kb = artifact.path.stat().st_size / 1024
    click.echo(f"✓ Package built ({size_kb:.1f} KB)")
    click.echo(f"  Path: {artifact.path}")
    click.echo(f"  Code SHA256: {artifact.code_hash}")


if __name__ == "__main__":
    cli()
