from dataclasses import dataclass
from typing import Any, Dict, Optional
import logging
import re
import time

from proxmoxer import ProxmoxAPI

from vmbootstrap.hypervisor import HypervisorClient
from vmbootstrap.models import BootDevice, HostNotFoundError, VMSpec

logger = logging.getLogger(__name__)

# "[datastore1] path/file.iso" style paths
_DATASTORE_PATH = re.compile(r"^\[(?P<storage>[^\]]+)\]\s*(?P<path>.+)$")

BOOT_ORDERS = {
    BootDevice.CDROM: "order=ide2;scsi0",
    BootDevice.DISK: "order=scsi0;ide2",
}


def to_volume_id(iso_path: str) -> str:
    """Translate a datastore-relative ISO path into a Proxmox volume id.

    "[local] ubuntu.iso" becomes "local:iso/ubuntu.iso"; anything else is
    assumed to already be a volume id and is returned unchanged.
    """
    match = _DATASTORE_PATH.match(iso_path.strip())
    if not match:
        return iso_path
    path = match.group("path").strip()
    if not path.startswith("iso/"):
        path = f"iso/{path}"
    return f"{match.group('storage')}:{path}"


@dataclass(frozen=True)
class ProxmoxVM:
    """Reference to a VM on a Proxmox node."""

    node: str
    vmid: int
    name: str


class ProxmoxClient(HypervisorClient):
    """Wrapper around the Proxmox API for single-VM provisioning."""

    backend_name = "proxmox"

    def __init__(
        self,
        host: str,
        user: str,
        password: str,
        port: int = 8006,
        verify_ssl: bool = False,
        task_timeout: int = 120,
        poll_interval: float = 2.0,
    ) -> None:
        # Proxmox users carry a realm, default to PAM
        if "@" not in user:
            user = f"{user}@pam"
        super().__init__(host, user, password, port, verify_ssl)
        self.task_timeout = task_timeout
        self.poll_interval = poll_interval
        self.proxmox: Optional[ProxmoxAPI] = None

    def _api(self) -> ProxmoxAPI:
        if self.proxmox is None:
            raise RuntimeError("Not connected to Proxmox")
        return self.proxmox

    def _wait_for_task(self, node: str, upid: str) -> None:
        """Poll a node task until it stops; raise if it did not end OK."""
        deadline = time.time() + self.task_timeout
        while time.time() < deadline:
            status: Dict[str, Any] = self._api().nodes(node).tasks(upid).status.get()
            if status.get("status") == "stopped":
                if status.get("exitstatus") != "OK":
                    raise RuntimeError(f"Task {upid} failed: {status.get('exitstatus')}")
                return
            time.sleep(self.poll_interval)
        raise TimeoutError(f"Task {upid} did not finish within {self.task_timeout}s")

    def connect(self) -> None:
        logger.info(f"Connecting to Proxmox at {self.host}:{self.port} as {self.user}")
        self.proxmox = ProxmoxAPI(
            self.host,
            user=self.user,
            password=self.password,
            port=self.port,
            verify_ssl=self.verify_ssl,
        )

    def find_host(self, name: str) -> str:
        for node in self._api().nodes.get():
            if node.get("node") == name:
                return name
        raise HostNotFoundError(f"Node {name!r} not found in Proxmox cluster")

    def vm_exists(self, host_ref: str, name: str) -> bool:
        return any(vm.get("name") == name for vm in self._api().nodes(host_ref).qemu.get())

    def create_vm(self, host_ref: str, spec: VMSpec) -> ProxmoxVM:
        api = self._api()
        vmid = int(api.cluster.nextid.get())

        logger.info(
            f"Creating VM {spec.name!r} on {host_ref}: {spec.cpu_count} CPUs, "
            f"{spec.memory_gb}GB RAM, {spec.disk_gb}GB disk on {spec.datastore} (vmid={vmid})"
        )
        upid = api.nodes(host_ref).qemu.create(
            vmid=vmid,
            name=spec.name,
            cores=spec.cpu_count,
            memory=spec.memory_mb,
            scsihw="virtio-scsi-pci",
            scsi0=f"{spec.datastore}:{spec.disk_gb}",
            net0=f"virtio,bridge={spec.network}",
            ostype="l26",
        )
        self._wait_for_task(host_ref, upid)
        return ProxmoxVM(node=host_ref, vmid=vmid, name=spec.name)

    def attach_iso(self, vm: ProxmoxVM, iso_path: str, start_connected: bool = True) -> None:
        volume = to_volume_id(iso_path)
        if not start_connected:
            logger.warning("Proxmox CD/DVD drives are always connected at start; ignoring start_connected=False")
        logger.info(f"Attaching {volume} to VM {vm.vmid} as ide2")
        self._api().nodes(vm.node).qemu(vm.vmid).config.post(ide2=f"{volume},media=cdrom")

    def set_boot_device(self, vm: ProxmoxVM, device: BootDevice) -> None:
        logger.info(f"Setting first boot device of VM {vm.vmid} to {device.value}")
        self._api().nodes(vm.node).qemu(vm.vmid).config.post(boot=BOOT_ORDERS[device])

    def power_on(self, vm: ProxmoxVM) -> None:
        logger.info(f"Starting VM {vm.vmid}")
        self._api().nodes(vm.node).qemu(vm.vmid).status.start.post()

    def disconnect(self) -> None:
        # The API is stateless per request; dropping the ticket ends the session
        logger.info(f"Disconnecting from {self.host}")
        self.proxmox = None

    def vm_id(self, vm: ProxmoxVM) -> str:
        return str(vm.vmid)
