"""
Single-VM provisioning workflow.

Runs connect -> lookup -> create -> attach -> boot -> power-on -> disconnect
against a HypervisorClient. The first failing stage aborts the run; the
session is closed on every path once it was opened. A VM created before a
later stage fails is left in place.
"""

import logging
from contextlib import contextmanager
from typing import Any, Callable, Iterator, List, Tuple

from vmbootstrap.config import ProvisionConfig
from vmbootstrap.hypervisor import HypervisorClient
from vmbootstrap.models import (
    BootDevice,
    ConfigurationError,
    ProvisioningError,
    ProvisionResult,
    Stage,
    VMAlreadyExistsError,
    VMSpec,
    error_for_stage,
)
from vmbootstrap.proxmox_api import ProxmoxClient
from vmbootstrap.vsphere_api import VSphereClient

logger = logging.getLogger(__name__)


def get_client(config: ProvisionConfig) -> HypervisorClient:
    """Build the hypervisor client selected by ``config.backend``."""
    if config.password is None:
        raise ConfigurationError("HYPERVISOR_PASSWORD is not set")

    if config.backend == "vsphere":
        return VSphereClient(
            config.host, config.user, config.password, port=config.resolved_port, verify_ssl=config.verify_ssl
        )
    if config.backend == "proxmox":
        return ProxmoxClient(
            config.host, config.user, config.password, port=config.resolved_port, verify_ssl=config.verify_ssl
        )
    raise ConfigurationError(f"Unknown backend {config.backend!r}")


class Provisioner:
    """Create, configure and power on one VM."""

    def __init__(
        self,
        client: HypervisorClient,
        spec: VMSpec,
        host_name: str,
        boot_device: BootDevice = BootDevice.CDROM,
    ) -> None:
        self.client = client
        self.spec = spec
        self.host_name = host_name
        self.boot_device = boot_device

    @classmethod
    def from_config(cls, config: ProvisionConfig) -> "Provisioner":
        return cls(get_client(config), config.to_spec(), config.host)

    def plan(self) -> List[Tuple[Stage, str]]:
        """Describe every stage without contacting the hypervisor."""
        spec = self.spec
        return [
            (Stage.CONNECT, f"Open session to {self.client.host}:{self.client.port} as {self.client.user}"),
            (Stage.LOOKUP, f"Resolve host {self.host_name!r}"),
            (
                Stage.CREATE,
                f"Create {spec.name!r}: {spec.cpu_count} CPUs, {spec.memory_gb}GB RAM, "
                f"{spec.disk_gb}GB disk on {spec.datastore}, network {spec.network!r}",
            ),
            (Stage.ATTACH, f"Attach {spec.iso_path} (connected at power-on)"),
            (Stage.BOOT, f"Boot from {self.boot_device.value} first"),
            (Stage.POWER_ON, f"Power on {spec.name!r}"),
            (Stage.DISCONNECT, "Close session without confirmation"),
        ]

    def _run_stage(self, stage: Stage, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run one stage, wrapping backend failures in the stage's exception."""
        logger.info(f"[{stage.value}] {stage.description}")
        try:
            return func(*args, **kwargs)
        except ProvisioningError:
            raise
        except Exception as e:
            logger.error(f"[{stage.value}] {stage.description} failed: {e}")
            raise error_for_stage(stage)(str(e) or type(e).__name__) from e

    @contextmanager
    def session(self) -> Iterator[HypervisorClient]:
        """Open the session and guarantee a single disconnect afterwards.

        A disconnect error is raised only when the body succeeded; otherwise
        it is logged and the original failure propagates.
        """
        self._run_stage(Stage.CONNECT, self.client.connect)
        succeeded = False
        try:
            yield self.client
            succeeded = True
        finally:
            if succeeded:
                self._run_stage(Stage.DISCONNECT, self.client.disconnect)
            else:
                try:
                    self.client.disconnect()
                except Exception as e:
                    logger.error(f"Disconnect after failure also failed: {e}")

    def _create(self, host_ref: Any) -> Any:
        if self.client.vm_exists(host_ref, self.spec.name):
            raise VMAlreadyExistsError(f"VM {self.spec.name!r} already exists on {self.host_name}")
        return self.client.create_vm(host_ref, self.spec)

    def run(self) -> ProvisionResult:
        """Execute every stage in order and return what was done."""
        result = ProvisionResult(vm_name=self.spec.name, host=self.host_name, backend=self.client.backend_name)

        with self.session() as client:
            result.stages.append(Stage.CONNECT)

            host_ref = self._run_stage(Stage.LOOKUP, client.find_host, self.host_name)
            result.stages.append(Stage.LOOKUP)

            vm = self._run_stage(Stage.CREATE, self._create, host_ref)
            result.vm_id = client.vm_id(vm)
            result.stages.append(Stage.CREATE)

            self._run_stage(Stage.ATTACH, client.attach_iso, vm, self.spec.iso_path, start_connected=True)
            result.stages.append(Stage.ATTACH)

            self._run_stage(Stage.BOOT, client.set_boot_device, vm, self.boot_device)
            result.stages.append(Stage.BOOT)

            self._run_stage(Stage.POWER_ON, client.power_on, vm)
            result.stages.append(Stage.POWER_ON)

        result.stages.append(Stage.DISCONNECT)
        logger.info(f"VM {self.spec.name!r} (id={result.vm_id}) powered on at {self.host_name}")
        return result
