#!/usr/bin/env python3
"""
Command-line interface for single-VM provisioning.

    vmbootstrap provision              # create, attach ISO, boot from CD, power on
    vmbootstrap provision --dry-run    # show the stages only
    vmbootstrap config                 # show resolved configuration

Settings come from the environment (or .env); options override them.
"""

import logging
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from vmbootstrap.config import ProvisionConfig
from vmbootstrap.models import ConfigurationError, ProvisioningError
from vmbootstrap.provisioner import Provisioner, get_client

# Initialize CLI app and console
app = typer.Typer(
    name="vmbootstrap",
    help="Create and boot a VM from an installation ISO",
    add_completion=False
)
console = Console()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)8s] %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)


def load_config(**overrides: object) -> ProvisionConfig:
    """Environment configuration with command-line overrides, validated."""
    try:
        config = ProvisionConfig.from_environment().with_overrides(**overrides)
        config.validate()
    except ConfigurationError as e:
        console.print(f"❌ Configuration error: {e}")
        raise typer.Exit(e.exit_code)

    logging.getLogger().setLevel(config.log_level)
    return config


@app.command("provision")
def provision(
    host: Optional[str] = typer.Option(None, "--host", help="Hypervisor host to connect to and place the VM on"),
    user: Optional[str] = typer.Option(None, "--user", help="Login user"),
    password: Optional[str] = typer.Option(None, "--password", help="Login password (prefer HYPERVISOR_PASSWORD)"),
    backend: Optional[str] = typer.Option(None, "--backend", help="vsphere or proxmox"),
    vm_name: Optional[str] = typer.Option(None, "--vm-name", help="Name of the new VM"),
    datastore: Optional[str] = typer.Option(None, "--datastore", help="Datastore for the VM disk"),
    network: Optional[str] = typer.Option(None, "--network", help="Network for the VM NIC"),
    iso_path: Optional[str] = typer.Option(None, "--iso-path", help="Datastore path of the installation ISO"),
    cpu_count: Optional[int] = typer.Option(None, "--cpus", help="Number of vCPUs"),
    memory_gb: Optional[int] = typer.Option(None, "--memory-gb", help="Memory in GB"),
    disk_gb: Optional[int] = typer.Option(None, "--disk-gb", help="Disk size in GB"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show the stages without contacting the host"),
) -> None:
    """Create the VM, attach the ISO, boot from CD/DVD and power it on."""
    config = load_config(
        host=host,
        user=user,
        password=password,
        backend=backend,
        vm_name=vm_name,
        datastore=datastore,
        network=network,
        iso_path=iso_path,
        cpu_count=cpu_count,
        memory_gb=memory_gb,
        disk_gb=disk_gb,
    )
    provisioner = Provisioner(get_client(config), config.to_spec(), config.host)

    if dry_run:
        console.print("🔍 DRY RUN MODE - No changes will be made\n")
        table = Table(title=f"Provisioning plan ({config.backend})")
        table.add_column("Stage", style="cyan")
        table.add_column("Action", style="green")
        for stage, action in provisioner.plan():
            table.add_row(stage.value, escape(action))
        console.print(table)
        return

    console.print(f"🚀 Provisioning {config.vm_name!r} on {config.host} ({config.backend})")
    try:
        result = provisioner.run()
    except ProvisioningError as e:
        logger.error(f"Provisioning failed at stage {e.stage.value}: {e}")
        console.print(f"❌ {e.stage.description} failed: {escape(str(e))}")
        raise typer.Exit(e.exit_code)

    console.print(f"✅ VM {result.vm_name!r} (id={result.vm_id}) powered on")


@app.command("config")
def show_config() -> None:
    """Show the resolved configuration with secrets masked."""
    try:
        config = ProvisionConfig.from_environment()
    except ConfigurationError as e:
        console.print(f"❌ Configuration error: {e}")
        raise typer.Exit(e.exit_code)

    table = Table(title="Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    for key, value in config.to_dict().items():
        table.add_row(key, "(not set)" if value is None else escape(str(value)))
    console.print(table)

    try:
        config.validate()
        console.print("✅ Configuration is valid")
    except ConfigurationError as e:
        console.print(f"⚠️  {e}")


if __name__ == "__main__":
    app()
