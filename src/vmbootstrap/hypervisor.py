"""Interface shared by the hypervisor backends."""

from abc import ABC, abstractmethod
from typing import Any

from vmbootstrap.models import BootDevice, VMSpec


class HypervisorClient(ABC):
    """Operations the provisioning workflow needs from a management API.

    Host and VM references are whatever the backend uses natively; the
    workflow only passes them back into the same client.
    """

    backend_name = "unknown"

    def __init__(self, host: str, user: str, password: str, port: int, verify_ssl: bool = False) -> None:
        self.host = host
        self.user = user
        self.password = password
        self.port = port
        self.verify_ssl = verify_ssl

    @abstractmethod
    def connect(self) -> None:
        """Open an authenticated session."""

    @abstractmethod
    def find_host(self, name: str) -> Any:
        """Return the host reference for ``name`` or raise HostNotFoundError."""

    @abstractmethod
    def vm_exists(self, host_ref: Any, name: str) -> bool:
        """Check whether a VM called ``name`` is already registered."""

    @abstractmethod
    def create_vm(self, host_ref: Any, spec: VMSpec) -> Any:
        """Create a powered-off VM and return its reference."""

    @abstractmethod
    def attach_iso(self, vm: Any, iso_path: str, start_connected: bool = True) -> None:
        """Add a CD/DVD drive backed by ``iso_path``."""

    @abstractmethod
    def set_boot_device(self, vm: Any, device: BootDevice) -> None:
        """Put ``device`` first in the VM's boot order."""

    @abstractmethod
    def power_on(self, vm: Any) -> None:
        """Issue a power-on request."""

    @abstractmethod
    def disconnect(self) -> None:
        """Close the session without asking for confirmation."""

    @abstractmethod
    def vm_id(self, vm: Any) -> str:
        """Backend identifier of ``vm`` for reporting."""
