"""Data models and exceptions for VM provisioning."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Type


class Stage(Enum):
    """Provisioning stages, in execution order."""

    CONNECT = "connect"
    LOOKUP = "lookup"
    CREATE = "create"
    ATTACH = "attach"
    BOOT = "boot"
    POWER_ON = "power_on"
    DISCONNECT = "disconnect"

    @property
    def exit_code(self) -> int:
        """Process exit status used when this stage fails."""
        return _EXIT_CODES[self]

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]


_EXIT_CODES = {
    Stage.CONNECT: 10,
    Stage.LOOKUP: 11,
    Stage.CREATE: 12,
    Stage.ATTACH: 13,
    Stage.BOOT: 14,
    Stage.POWER_ON: 15,
    Stage.DISCONNECT: 16,
}

_DESCRIPTIONS = {
    Stage.CONNECT: "Connect to hypervisor",
    Stage.LOOKUP: "Resolve host",
    Stage.CREATE: "Create VM",
    Stage.ATTACH: "Attach ISO image",
    Stage.BOOT: "Set boot device",
    Stage.POWER_ON: "Power on VM",
    Stage.DISCONNECT: "Disconnect",
}


class BootDevice(Enum):
    """Device classes that can be placed first in the boot order."""

    CDROM = "cdrom"
    DISK = "disk"


@dataclass(frozen=True)
class VMSpec:
    """Everything the create and attach calls need to build the VM."""

    name: str
    cpu_count: int
    memory_gb: int
    disk_gb: int
    datastore: str
    network: str
    iso_path: str

    @property
    def memory_mb(self) -> int:
        return self.memory_gb * 1024

    @property
    def disk_kb(self) -> int:
        return self.disk_gb * 1024 * 1024


@dataclass
class ProvisionResult:
    """Outcome of a completed provisioning run."""

    vm_name: str
    host: str
    backend: str
    vm_id: Optional[str] = None
    stages: List[Stage] = field(default_factory=list)


class ConfigurationError(Exception):
    """Raised when provisioning settings are missing or invalid."""

    exit_code = 2


class ProvisioningError(Exception):
    """Base exception for a failed provisioning stage."""

    stage: Stage = Stage.CONNECT

    @property
    def exit_code(self) -> int:
        return self.stage.exit_code


class ConnectError(ProvisioningError):
    """Raised when the hypervisor is unreachable or rejects the credentials."""

    stage = Stage.CONNECT


class HostNotFoundError(ProvisioningError):
    """Raised when the host name is not in the session's inventory."""

    stage = Stage.LOOKUP


class VMCreateError(ProvisioningError):
    """Raised when the VM cannot be created."""

    stage = Stage.CREATE


class VMAlreadyExistsError(VMCreateError):
    """Raised when a VM with the requested name already exists."""

    pass


class MediaAttachError(ProvisioningError):
    """Raised when the ISO image cannot be attached."""

    stage = Stage.ATTACH


class BootConfigError(ProvisioningError):
    """Raised when the boot order cannot be changed."""

    stage = Stage.BOOT


class PowerOnError(ProvisioningError):
    """Raised when the power-on request is rejected."""

    stage = Stage.POWER_ON


class DisconnectError(ProvisioningError):
    """Raised when the session cannot be closed after a successful run."""

    stage = Stage.DISCONNECT


_STAGE_ERRORS = {
    Stage.CONNECT: ConnectError,
    Stage.LOOKUP: HostNotFoundError,
    Stage.CREATE: VMCreateError,
    Stage.ATTACH: MediaAttachError,
    Stage.BOOT: BootConfigError,
    Stage.POWER_ON: PowerOnError,
    Stage.DISCONNECT: DisconnectError,
}


def error_for_stage(stage: Stage) -> Type[ProvisioningError]:
    """Return the exception class raised when ``stage`` fails."""
    return _STAGE_ERRORS[stage]
