"""Tests for vsphere_api module."""

import ssl
from unittest import mock

import pytest
from pyVmomi import vim

from vmbootstrap.models import BootDevice, HostNotFoundError, VMSpec
from vmbootstrap.vsphere_api import SCSI_CONTROLLER_KEY, VSphereClient, wait_for_task


@pytest.fixture
def client(mock_service_instance):
    client = VSphereClient("labhost", "root", "secretvalue", poll_interval=0)
    client.connect()
    return client


@pytest.fixture
def spec():
    return VMSpec(
        name="TestVM",
        cpu_count=2,
        memory_gb=4,
        disk_gb=40,
        datastore="datastore1",
        network="VM Network",
        iso_path="[datastore1] OpsRampGateway.iso",
    )


def _named(name):
    obj = mock.MagicMock()
    obj.name = name
    return obj


def _task(result=None):
    task = mock.MagicMock()
    task.info.state = vim.TaskInfo.State.success
    task.info.result = result
    return task


def _vm_with_devices(*devices):
    vm = _named("TestVM")
    vm.config.hardware.device = list(devices)
    vm.ReconfigVM_Task.return_value = _task()
    return vm


def _reconfig_spec(vm):
    return vm.ReconfigVM_Task.call_args[1]["spec"]


class TestWaitForTask:
    """Test cases for wait_for_task."""

    @mock.patch("vmbootstrap.vsphere_api.time.sleep")
    def test_polls_until_success(self, mock_sleep):
        task = mock.MagicMock()
        type(task.info).state = mock.PropertyMock(
            side_effect=[vim.TaskInfo.State.running, vim.TaskInfo.State.success, vim.TaskInfo.State.success]
        )
        task.info.result = "vm-42"

        assert wait_for_task(task, poll_interval=1) == "vm-42"
        mock_sleep.assert_called_once_with(1)

    def test_raises_task_fault(self):
        task = mock.MagicMock()
        task.info.state = vim.TaskInfo.State.error
        task.info.error = RuntimeError("File [datastore1] OpsRampGateway.iso was not found")

        with pytest.raises(RuntimeError, match="was not found"):
            wait_for_task(task)


class TestConnection:
    """Test cases for connect and disconnect."""

    def test_connect_uses_credentials_and_unverified_context(self):
        with mock.patch("vmbootstrap.vsphere_api.SmartConnect") as mock_connect:
            client = VSphereClient("labhost", "root", "secretvalue")
            client.connect()

        kwargs = mock_connect.call_args[1]
        assert kwargs["host"] == "labhost"
        assert kwargs["user"] == "root"
        assert kwargs["pwd"] == "secretvalue"
        assert kwargs["port"] == 443
        assert kwargs["sslContext"].verify_mode == ssl.CERT_NONE
        assert client.si is mock_connect.return_value

    def test_connect_with_ssl_verification_uses_default_context(self):
        with mock.patch("vmbootstrap.vsphere_api.SmartConnect") as mock_connect:
            VSphereClient("labhost", "root", "secretvalue", verify_ssl=True).connect()

        assert mock_connect.call_args[1]["sslContext"] is None

    def test_connect_propagates_login_failure(self):
        with mock.patch("vmbootstrap.vsphere_api.SmartConnect") as mock_connect:
            mock_connect.side_effect = vim.fault.InvalidLogin()

            with pytest.raises(vim.fault.InvalidLogin):
                VSphereClient("labhost", "root", "wrong").connect()

    @mock.patch("vmbootstrap.vsphere_api.Disconnect")
    def test_disconnect_closes_session_once(self, mock_disconnect, client, mock_service_instance):
        client.disconnect()
        client.disconnect()

        mock_disconnect.assert_called_once_with(mock_service_instance)
        assert client.si is None

    def test_operations_require_session(self):
        with pytest.raises(RuntimeError, match="Not connected"):
            VSphereClient("labhost", "root", "secretvalue").find_host("labhost")


class TestInventory:
    """Test cases for host and VM lookups."""

    def test_find_host_by_name(self, client, mock_service_instance):
        host = _named("labhost")
        view = mock_service_instance.RetrieveContent.return_value.viewManager.CreateContainerView.return_value
        view.view = [_named("otherhost"), host]

        assert client.find_host("labhost") is host
        view.Destroy.assert_called_once()

    def test_find_host_missing_raises(self, client, mock_service_instance):
        view = mock_service_instance.RetrieveContent.return_value.viewManager.CreateContainerView.return_value
        view.view = [_named("otherhost")]

        with pytest.raises(HostNotFoundError, match="labhost"):
            client.find_host("labhost")
        view.Destroy.assert_called_once()

    def test_vm_exists(self, client, mock_service_instance):
        view = mock_service_instance.RetrieveContent.return_value.viewManager.CreateContainerView.return_value
        view.view = [_named("TestVM")]

        assert client.vm_exists(_named("labhost"), "TestVM") is True
        assert client.vm_exists(_named("labhost"), "OtherVM") is False

    def test_datacenter_of_walks_parents(self):
        datacenter = vim.Datacenter("ha-datacenter")
        host = _named("labhost")
        host.parent.parent.parent = datacenter

        assert VSphereClient._datacenter_of(host) is datacenter

    def test_datacenter_of_missing_raises(self):
        host = _named("labhost")
        host.parent.parent = None

        with pytest.raises(LookupError, match="No datacenter"):
            VSphereClient._datacenter_of(host)


class TestCreateVM:
    """Test cases for VM creation."""

    def test_config_spec_contents(self, spec):
        config = VSphereClient("labhost", "root", "secretvalue").build_config_spec(spec)

        assert config.name == "TestVM"
        assert config.numCPUs == 2
        assert config.memoryMB == 4096
        assert config.files.vmPathName == "[datastore1]"

        devices = [change.device for change in config.deviceChange]
        controllers = [d for d in devices if isinstance(d, vim.vm.device.VirtualSCSIController)]
        disks = [d for d in devices if isinstance(d, vim.vm.device.VirtualDisk)]
        nics = [d for d in devices if isinstance(d, vim.vm.device.VirtualEthernetCard)]

        assert len(controllers) == 1
        assert len(disks) == 1
        assert disks[0].capacityInKB == 41943040
        assert disks[0].controllerKey == SCSI_CONTROLLER_KEY
        assert disks[0].backing.fileName == "[datastore1]"
        assert len(nics) == 1
        assert nics[0].backing.deviceName == "VM Network"

    def test_disk_change_creates_file(self, spec):
        config = VSphereClient("labhost", "root", "secretvalue").build_config_spec(spec)

        disk_change = next(c for c in config.deviceChange if isinstance(c.device, vim.vm.device.VirtualDisk))
        assert disk_change.fileOperation == vim.vm.device.VirtualDeviceSpec.FileOperation.create

    def test_create_vm_submits_task_in_datacenter_folder(self, client, spec):
        host = _named("labhost")
        datacenter = mock.MagicMock()
        vm = _named("TestVM")
        datacenter.vmFolder.CreateVM_Task.return_value = _task(result=vm)

        with mock.patch.object(VSphereClient, "_datacenter_of", return_value=datacenter):
            created = client.create_vm(host, spec)

        assert created is vm
        kwargs = datacenter.vmFolder.CreateVM_Task.call_args[1]
        assert kwargs["pool"] is host.parent.resourcePool
        assert kwargs["host"] is host
        assert kwargs["config"].name == "TestVM"

    def test_create_vm_task_error_propagates(self, client, spec):
        datacenter = mock.MagicMock()
        task = mock.MagicMock()
        task.info.state = vim.TaskInfo.State.error
        task.info.error = vim.fault.DuplicateName(name="TestVM")
        datacenter.vmFolder.CreateVM_Task.return_value = task

        with mock.patch.object(VSphereClient, "_datacenter_of", return_value=datacenter):
            with pytest.raises(vim.fault.DuplicateName):
                client.create_vm(_named("labhost"), spec)


class TestAttachIso:
    """Test cases for CD/DVD attachment."""

    def test_attach_adds_connected_iso_cdrom(self, client):
        ide = vim.vm.device.VirtualIDEController(key=200, busNumber=0, device=[])
        vm = _vm_with_devices(ide)

        client.attach_iso(vm, "[datastore1] OpsRampGateway.iso", start_connected=True)

        change = _reconfig_spec(vm).deviceChange[0]
        assert change.operation == vim.vm.device.VirtualDeviceSpec.Operation.add
        assert isinstance(change.device, vim.vm.device.VirtualCdrom)
        assert change.device.controllerKey == 200
        assert change.device.unitNumber == 0
        assert change.device.backing.fileName == "[datastore1] OpsRampGateway.iso"
        assert change.device.connectable.startConnected is True

    def test_attach_skips_full_controller(self, client):
        full = vim.vm.device.VirtualIDEController(key=200, busNumber=0, device=[3000, 3001])
        free = vim.vm.device.VirtualIDEController(key=201, busNumber=1, device=[3002])
        vm = _vm_with_devices(full, free)

        client.attach_iso(vm, "[datastore1] OpsRampGateway.iso")

        device = _reconfig_spec(vm).deviceChange[0].device
        assert device.controllerKey == 201
        assert device.unitNumber == 1

    def test_attach_without_ide_controller_raises(self, client):
        vm = _vm_with_devices()

        with pytest.raises(LookupError, match="no free IDE slot"):
            client.attach_iso(vm, "[datastore1] OpsRampGateway.iso")
        vm.ReconfigVM_Task.assert_not_called()


class TestBootAndPower:
    """Test cases for boot order and power-on."""

    def test_boot_from_cdrom(self, client):
        vm = _vm_with_devices()

        client.set_boot_device(vm, BootDevice.CDROM)

        boot_order = _reconfig_spec(vm).bootOptions.bootOrder
        assert len(boot_order) == 1
        assert isinstance(boot_order[0], vim.vm.BootOptions.BootableCdromDevice)

    def test_boot_from_disk_uses_disk_key(self, client):
        disk = vim.vm.device.VirtualDisk(key=2000, capacityInKB=1024)
        vm = _vm_with_devices(disk)

        client.set_boot_device(vm, BootDevice.DISK)

        entry = _reconfig_spec(vm).bootOptions.bootOrder[0]
        assert isinstance(entry, vim.vm.BootOptions.BootableDiskDevice)
        assert entry.deviceKey == 2000

    def test_power_on_waits_for_task(self, client):
        vm = _named("TestVM")
        vm.PowerOnVM_Task.return_value = _task()

        client.power_on(vm)

        vm.PowerOnVM_Task.assert_called_once_with()

    def test_vm_id_is_managed_object_id(self, client):
        vm = mock.MagicMock()
        vm._moId = "42"

        assert client.vm_id(vm) == "42"
