"""ESXi / vCenter backend built on pyVmomi."""

import logging
import ssl
import time
from typing import Any, List, Optional

from pyVim.connect import Disconnect, SmartConnect
from pyVmomi import vim

from vmbootstrap.hypervisor import HypervisorClient
from vmbootstrap.models import BootDevice, HostNotFoundError, VMSpec

logger = logging.getLogger(__name__)

# Temporary keys for devices added in the create spec
SCSI_CONTROLLER_KEY = -101
DISK_KEY = -102
NIC_KEY = -103

DEFAULT_GUEST_ID = "otherGuest64"


def wait_for_task(task: Any, poll_interval: float = 2.0) -> Any:
    """Block until a vSphere task finishes and return its result.

    Raises the task's fault when it ends in the error state.
    """
    while task.info.state in (vim.TaskInfo.State.queued, vim.TaskInfo.State.running):
        time.sleep(poll_interval)

    if task.info.state == vim.TaskInfo.State.error:
        raise task.info.error
    return task.info.result


class VSphereClient(HypervisorClient):
    """Wrapper around the vSphere API for single-VM provisioning."""

    backend_name = "vsphere"

    def __init__(
        self,
        host: str,
        user: str,
        password: str,
        port: int = 443,
        verify_ssl: bool = False,
        guest_id: str = DEFAULT_GUEST_ID,
        poll_interval: float = 2.0,
    ) -> None:
        super().__init__(host, user, password, port, verify_ssl)
        self.guest_id = guest_id
        self.poll_interval = poll_interval
        self.si: Optional[Any] = None

    def _ssl_context(self) -> Optional[ssl.SSLContext]:
        if self.verify_ssl:
            return None
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        return context

    def _content(self) -> Any:
        if self.si is None:
            raise RuntimeError("Not connected to vSphere")
        return self.si.RetrieveContent()

    def _find_by_name(self, vimtype: List[Any], name: str) -> Optional[Any]:
        """Get the inventory object of the given type with the given name."""
        content = self._content()
        view = content.viewManager.CreateContainerView(content.rootFolder, vimtype, True)
        try:
            for obj in view.view:
                if obj.name == name:
                    return obj
            return None
        finally:
            view.Destroy()

    def _wait(self, task: Any) -> Any:
        return wait_for_task(task, self.poll_interval)

    def connect(self) -> None:
        logger.info(f"Connecting to vSphere at {self.host}:{self.port} as {self.user}")
        self.si = SmartConnect(
            host=self.host,
            user=self.user,
            pwd=self.password,
            port=self.port,
            sslContext=self._ssl_context(),
        )

    def find_host(self, name: str) -> Any:
        host = self._find_by_name([vim.HostSystem], name)
        if host is None:
            raise HostNotFoundError(f"Host {name!r} not found in vSphere inventory")
        return host

    def vm_exists(self, host_ref: Any, name: str) -> bool:
        return self._find_by_name([vim.VirtualMachine], name) is not None

    @staticmethod
    def _datacenter_of(host: Any) -> Any:
        obj = host
        while obj is not None and not isinstance(obj, vim.Datacenter):
            obj = obj.parent
        if obj is None:
            raise LookupError(f"No datacenter found above host {host.name!r}")
        return obj

    def build_config_spec(self, spec: VMSpec) -> Any:
        """Build the ConfigSpec for a new VM: controller, disk and NIC."""
        controller = vim.vm.device.VirtualLsiLogicController(
            key=SCSI_CONTROLLER_KEY,
            busNumber=0,
            sharedBus=vim.vm.device.VirtualSCSIController.Sharing.noSharing,
        )

        disk = vim.vm.device.VirtualDisk(
            key=DISK_KEY,
            controllerKey=SCSI_CONTROLLER_KEY,
            unitNumber=0,
            capacityInKB=spec.disk_kb,
            backing=vim.vm.device.VirtualDisk.FlatVer2BackingInfo(
                diskMode="persistent",
                thinProvisioned=False,
                fileName=f"[{spec.datastore}]",
            ),
        )

        nic = vim.vm.device.VirtualVmxnet3(
            key=NIC_KEY,
            backing=vim.vm.device.VirtualEthernetCard.NetworkBackingInfo(deviceName=spec.network),
            connectable=vim.vm.device.VirtualDevice.ConnectInfo(
                startConnected=True,
                allowGuestControl=True,
            ),
        )

        add = vim.vm.device.VirtualDeviceSpec.Operation.add
        device_changes = [
            vim.vm.device.VirtualDeviceSpec(operation=add, device=controller),
            vim.vm.device.VirtualDeviceSpec(
                operation=add,
                fileOperation=vim.vm.device.VirtualDeviceSpec.FileOperation.create,
                device=disk,
            ),
            vim.vm.device.VirtualDeviceSpec(operation=add, device=nic),
        ]

        return vim.vm.ConfigSpec(
            name=spec.name,
            numCPUs=spec.cpu_count,
            memoryMB=spec.memory_mb,
            guestId=self.guest_id,
            files=vim.vm.FileInfo(vmPathName=f"[{spec.datastore}]"),
            deviceChange=device_changes,
        )

    def create_vm(self, host_ref: Any, spec: VMSpec) -> Any:
        datacenter = self._datacenter_of(host_ref)
        pool = host_ref.parent.resourcePool

        logger.info(
            f"Creating VM {spec.name!r} on {host_ref.name}: {spec.cpu_count} CPUs, "
            f"{spec.memory_gb}GB RAM, {spec.disk_gb}GB disk on {spec.datastore}, network {spec.network!r}"
        )
        task = datacenter.vmFolder.CreateVM_Task(config=self.build_config_spec(spec), pool=pool, host=host_ref)
        return self._wait(task)

    @staticmethod
    def _free_ide_controller(vm: Any) -> Any:
        for device in vm.config.hardware.device:
            # Two devices per IDE channel
            if isinstance(device, vim.vm.device.VirtualIDEController) and len(device.device) < 2:
                return device
        raise LookupError(f"VM {vm.name!r} has no free IDE slot for a CD/DVD drive")

    def attach_iso(self, vm: Any, iso_path: str, start_connected: bool = True) -> None:
        controller = self._free_ide_controller(vm)
        cdrom = vim.vm.device.VirtualCdrom(
            key=-1,
            controllerKey=controller.key,
            unitNumber=len(controller.device),
            backing=vim.vm.device.VirtualCdrom.IsoBackingInfo(fileName=iso_path),
            connectable=vim.vm.device.VirtualDevice.ConnectInfo(
                startConnected=start_connected,
                allowGuestControl=True,
            ),
        )
        device_spec = vim.vm.device.VirtualDeviceSpec(
            operation=vim.vm.device.VirtualDeviceSpec.Operation.add,
            device=cdrom,
        )

        logger.info(f"Attaching {iso_path} to VM {vm.name!r} (start connected: {start_connected})")
        self._wait(vm.ReconfigVM_Task(spec=vim.vm.ConfigSpec(deviceChange=[device_spec])))

    def _boot_entry(self, vm: Any, device: BootDevice) -> Any:
        if device is BootDevice.CDROM:
            return vim.vm.BootOptions.BootableCdromDevice()
        for dev in vm.config.hardware.device:
            if isinstance(dev, vim.vm.device.VirtualDisk):
                return vim.vm.BootOptions.BootableDiskDevice(deviceKey=dev.key)
        raise LookupError(f"VM {vm.name!r} has no virtual disk to boot from")

    def set_boot_device(self, vm: Any, device: BootDevice) -> None:
        boot_options = vim.vm.BootOptions(bootOrder=[self._boot_entry(vm, device)])
        logger.info(f"Setting first boot device of VM {vm.name!r} to {device.value}")
        self._wait(vm.ReconfigVM_Task(spec=vim.vm.ConfigSpec(bootOptions=boot_options)))

    def power_on(self, vm: Any) -> None:
        logger.info(f"Powering on VM {vm.name!r}")
        self._wait(vm.PowerOnVM_Task())

    def disconnect(self) -> None:
        if self.si is None:
            return
        logger.info(f"Disconnecting from {self.host}")
        try:
            Disconnect(self.si)
        finally:
            self.si = None

    def vm_id(self, vm: Any) -> str:
        return str(vm._moId)
