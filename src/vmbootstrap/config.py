"""
Configuration for the provisioning run.
Values come from the environment (optionally a .env file) and can be
overridden per run from the command line.
"""

import dataclasses
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from vmbootstrap.models import ConfigurationError, VMSpec

BACKENDS = ("vsphere", "proxmox")
DEFAULT_PORTS = {"vsphere": 443, "proxmox": 8006}
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class ProvisionConfig:
    """Connection settings and the VM to build."""

    # Connection
    host: str = "labhost"
    user: str = "root"
    password: Optional[str] = None
    backend: str = "vsphere"
    port: Optional[int] = None
    verify_ssl: bool = False

    # VM
    vm_name: str = "TestVM"
    datastore: str = "datastore1"
    network: str = "VM Network"
    iso_path: str = "[datastore1] OpsRampGateway.iso"
    cpu_count: int = 2
    memory_gb: int = 4
    disk_gb: int = 40

    log_level: str = "INFO"

    @classmethod
    def from_environment(cls) -> "ProvisionConfig":
        """Load configuration from environment variables."""
        load_dotenv()

        port = os.getenv("HYPERVISOR_PORT")
        try:
            return cls(
                host=os.getenv("HYPERVISOR_HOST", "labhost"),
                user=os.getenv("HYPERVISOR_USER", "root"),
                password=os.getenv("HYPERVISOR_PASSWORD") or None,
                backend=os.getenv("HYPERVISOR_BACKEND", "vsphere").strip().lower(),
                port=int(port) if port else None,
                verify_ssl=os.getenv("HYPERVISOR_VERIFY_SSL", "false").lower() == "true",
                vm_name=os.getenv("VM_NAME", "TestVM"),
                datastore=os.getenv("VM_DATASTORE", "datastore1"),
                network=os.getenv("VM_NETWORK", "VM Network"),
                iso_path=os.getenv("VM_ISO_PATH", "[datastore1] OpsRampGateway.iso"),
                cpu_count=int(os.getenv("VM_CPU_COUNT", "2")),
                memory_gb=int(os.getenv("VM_MEMORY_GB", "4")),
                disk_gb=int(os.getenv("VM_DISK_GB", "40")),
                log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid numeric setting: {e}") from e

    def with_overrides(self, **overrides: Any) -> "ProvisionConfig":
        """Return a copy with every non-None override applied."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        return dataclasses.replace(self, **changes)

    @property
    def resolved_port(self) -> int:
        return self.port if self.port is not None else DEFAULT_PORTS.get(self.backend, 443)

    def validate(self) -> None:
        """Validate configuration settings."""
        if self.backend not in BACKENDS:
            raise ConfigurationError(f"Unknown backend {self.backend!r}, must be one of {', '.join(BACKENDS)}")

        if not self.password:
            raise ConfigurationError("HYPERVISOR_PASSWORD is not set")

        for name in ("host", "user", "vm_name", "datastore", "network", "iso_path"):
            if not getattr(self, name).strip():
                raise ConfigurationError(f"{name} must not be empty")

        for name in ("cpu_count", "memory_gb", "disk_gb"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive, got {getattr(self, name)}")

        if self.port is not None and not 0 < self.port < 65536:
            raise ConfigurationError(f"Invalid port {self.port}")

        if self.log_level not in LOG_LEVELS:
            raise ConfigurationError(f"Invalid LOG_LEVEL {self.log_level!r}")

    def to_spec(self) -> VMSpec:
        """Build the immutable VM specification handed to the hypervisor."""
        return VMSpec(
            name=self.vm_name,
            cpu_count=self.cpu_count,
            memory_gb=self.memory_gb,
            disk_gb=self.disk_gb,
            datastore=self.datastore,
            network=self.network,
            iso_path=self.iso_path,
        )

    def to_dict(self, mask_secrets: bool = True) -> Dict[str, Any]:
        """Convert to dictionary for display."""
        data = dataclasses.asdict(self)
        data["port"] = self.resolved_port
        if mask_secrets and data["password"]:
            data["password"] = "********"
        return data
