"""azdeploy command line.

A thin layer over ManagementService: each command resolves configuration,
opens the service in a ``with`` block, runs one provisioning step and prints
the outcome.

Examples:
    $ azdeploy storage create myappstore --region "West Europe"
    $ azdeploy storage connection-string myappstore
    $ azdeploy service create myapp --region "West Europe"
    $ azdeploy deploy myapp --package https://.../app.cspkg --config-file app.cscfg
    $ azdeploy autoscale myapp WebRole1
"""

import logging
import sys
from collections.abc import Callable
from functools import wraps
from typing import Any

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from azdeploy import __version__
from azdeploy.autoscale import AutoscaleSetting, AutoscaleState
from azdeploy.click_group import DeployGroup
from azdeploy.config_manager import ConfigError, ConfigManager, DeployerConfig
from azdeploy.deployment import DeploymentSlot
from azdeploy.errors import ManagementError
from azdeploy.log_sanitizer import LogSanitizer
from azdeploy.payloads import StorageAccountType
from azdeploy.service import open_management_service

logger = logging.getLogger(__name__)
console = Console()


def _handle_errors(func: Callable[..., Any]) -> Callable[..., Any]:
    """Report library failures in red and exit 1."""

    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except (ManagementError, ConfigError, OSError) as e:
            console.print(f"[red]Error:[/red] {escape(LogSanitizer.create_safe_error_message(e))}")
            sys.exit(1)

    return wrapper


def _load_config(ctx: click.Context) -> DeployerConfig:
    return ConfigManager.load_config(ctx.obj.get("config_path"))


def _open_service(config: DeployerConfig):
    subscription_id, blob = ConfigManager.resolve_credentials(config)
    return open_management_service(
        subscription_id,
        blob,
        settings=config.client_settings(),
        autoscale_config=config.autoscale_policy(),
    )


@click.group(cls=DeployGroup)
@click.option("--config", "config_path", type=click.Path(), help="Config file path")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.version_option(__version__, prog_name="azdeploy")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """Provision Azure cloud services with a management certificate."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format="%(message)s")
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


@main.group()
def storage() -> None:
    """Storage account commands."""
    pass


@storage.command("create")
@click.argument("name")
@click.option("--region", help="Region (defaults to default_region)")
@click.option(
    "--type",
    "account_type",
    default=StorageAccountType.STANDARD_GRS.value,
    show_default=True,
    help=f"Account type ({', '.join(t.value for t in StorageAccountType)})",
)
@click.pass_context
@_handle_errors
def storage_create(ctx: click.Context, name: str, region: str | None, account_type: str) -> None:
    """Create storage account NAME."""
    config = _load_config(ctx)
    region = ConfigManager.get_region(region, ctx.obj.get("config_path"))
    with _open_service(config) as service:
        service.create_storage_account(region, name, account_type)
    console.print(f"[green]Storage account {name} created in {region}[/green]")


@storage.command("connection-string")
@click.argument("name")
@click.pass_context
@_handle_errors
def storage_connection_string(ctx: click.Context, name: str) -> None:
    """Print the connection string of storage account NAME (secondary key)."""
    config = _load_config(ctx)
    with _open_service(config) as service:
        connection_string = service.get_connection_string(name)
    # Intended output; only ever written to stdout, never logged
    click.echo(connection_string)


@main.group()
def service() -> None:
    """Hosted service commands."""
    pass


@service.command("create")
@click.argument("name")
@click.option("--region", help="Region (defaults to default_region)")
@click.option("--label", help="Display label (defaults to NAME)")
@click.option("--description", help="Description")
@click.pass_context
@_handle_errors
def service_create(
    ctx: click.Context,
    name: str,
    region: str | None,
    label: str | None,
    description: str | None,
) -> None:
    """Create hosted service NAME."""
    config = _load_config(ctx)
    region = ConfigManager.get_region(region, ctx.obj.get("config_path"))
    with _open_service(config) as management:
        management.create_hosted_service(region, name, label=label, description=description)
    console.print(f"[green]Hosted service {name} created in {region}[/green]")


@main.command()
@click.argument("service_name")
@click.option("--package", "package_uri", required=True, help="Package URI")
@click.option(
    "--config-file",
    "config_file",
    required=True,
    type=click.Path(dir_okay=False),
    help="Service configuration file",
)
@click.option(
    "--slot",
    type=click.Choice([slot.value for slot in DeploymentSlot]),
    default=DeploymentSlot.PRODUCTION.value,
    show_default=True,
)
@click.option("--no-start", is_flag=True, help="Do not start the deployment")
@click.pass_context
@_handle_errors
def deploy(
    ctx: click.Context,
    service_name: str,
    package_uri: str,
    config_file: str,
    slot: str,
    no_start: bool,
) -> None:
    """Deploy a package into SERVICE_NAME."""
    config = _load_config(ctx)
    with _open_service(config) as management:
        descriptor = management.deploy(
            service_name, package_uri, config_file, slot=slot, start_deployment=not no_start
        )
    console.print(f"[green]Deployment {descriptor.name} created[/green] ({descriptor.label})")


@main.command()
@click.argument("service_name")
@click.argument("role_name")
@click.pass_context
@_handle_errors
def autoscale(ctx: click.Context, service_name: str, role_name: str) -> None:
    """Apply the autoscale policy to ROLE_NAME of SERVICE_NAME."""
    config = _load_config(ctx)
    with _open_service(config) as management:
        result = management.autoscale_cloud_service(service_name, role_name)

    _print_autoscale(result.setting)
    color = "green" if result.state == AutoscaleState.VERIFIED else "yellow"
    console.print(
        f"[{color}]{result.resource_id}: status {result.status_code}, {result.state}[/{color}]"
    )
    for difference in result.differences:
        console.print(f"  [yellow]differs:[/yellow] {escape(difference)}")


def _print_autoscale(setting: AutoscaleSetting) -> None:
    table = Table(title="Autoscale rules")
    table.add_column("Metric")
    table.add_column("Condition")
    table.add_column("Action")
    table.add_column("Cooldown")
    for profile in setting.profiles:
        for rule in profile.rules:
            trigger, action = rule.metric_trigger, rule.scale_action
            table.add_row(
                trigger.metric_name,
                f"{trigger.operator} {trigger.threshold:g}",
                f"{action.direction} {action.value}",
                str(action.cooldown),
            )
    console.print(table)


@main.group("config")
def config_group() -> None:
    """Show or change configuration."""
    pass


@config_group.command("show")
@click.pass_context
@_handle_errors
def config_show(ctx: click.Context) -> None:
    """Show current configuration."""
    config = _load_config(ctx)
    table = Table(title="azdeploy configuration")
    table.add_column("Key")
    table.add_column("Value")
    for key, value in LogSanitizer.sanitize_dict(config.to_dict()).items():
        table.add_row(key, escape(str(value)))
    console.print(table)


@config_group.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
@_handle_errors
def config_set(ctx: click.Context, key: str, value: str) -> None:
    """Set configuration KEY to VALUE."""
    if key not in DeployerConfig.__dataclass_fields__ or key == "autoscale":
        raise ConfigError(f"Unknown config key: {key}")

    current = getattr(DeployerConfig(), key)
    typed: Any = value
    try:
        if isinstance(current, bool):
            typed = value.lower() in ("1", "true", "yes")
        elif isinstance(current, int):
            typed = int(value)
        elif isinstance(current, float):
            typed = float(value)
    except ValueError as e:
        raise ConfigError(f"Invalid value for {key}: {value}") from e

    ConfigManager.update_config(ctx.obj.get("config_path"), **{key: typed})
    console.print(f"[green]{key} updated[/green]")


if __name__ == "__main__":
    main()
