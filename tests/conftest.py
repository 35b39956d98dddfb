"""Shared test fixtures and configuration for vmbootstrap tests."""

from typing import Dict
from unittest import mock

import pytest

from vmbootstrap.config import ProvisionConfig
from vmbootstrap.models import VMSpec

ENV_VARS = [
    "HYPERVISOR_BACKEND",
    "HYPERVISOR_HOST",
    "HYPERVISOR_USER",
    "HYPERVISOR_PASSWORD",
    "HYPERVISOR_PORT",
    "HYPERVISOR_VERIFY_SSL",
    "VM_NAME",
    "VM_DATASTORE",
    "VM_NETWORK",
    "VM_ISO_PATH",
    "VM_CPU_COUNT",
    "VM_MEMORY_GB",
    "VM_DISK_GB",
    "LOG_LEVEL",
]


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every provisioning variable so defaults apply."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    # Keep a stray .env file from leaking into tests
    monkeypatch.setattr("vmbootstrap.config.load_dotenv", lambda *args, **kwargs: False)
    return monkeypatch


@pytest.fixture
def mock_env(clean_env) -> Dict[str, str]:
    """Minimal environment for a valid vSphere run."""
    env_vars = {
        "HYPERVISOR_HOST": "labhost",
        "HYPERVISOR_USER": "root",
        "HYPERVISOR_PASSWORD": "secretvalue",
    }
    for key, value in env_vars.items():
        clean_env.setenv(key, value)
    return env_vars


@pytest.fixture
def default_spec() -> VMSpec:
    """VM spec built from the default configuration."""
    return ProvisionConfig(password="secretvalue").to_spec()


@pytest.fixture
def mock_client():
    """Hypervisor client double that records every call."""
    client = mock.MagicMock()
    client.backend_name = "vsphere"
    client.host = "labhost"
    client.port = 443
    client.user = "root"
    client.vm_exists.return_value = False
    client.vm_id.return_value = "vm-42"
    return client


@pytest.fixture
def mock_service_instance():
    """Mock pyVmomi service instance returned by SmartConnect."""
    with mock.patch("vmbootstrap.vsphere_api.SmartConnect") as mock_connect:
        si = mock.MagicMock()
        mock_connect.return_value = si
        content = si.RetrieveContent.return_value
        content.viewManager.CreateContainerView.return_value.view = []
        yield si


@pytest.fixture
def mock_proxmox():
    """Mock proxmoxer API client for testing."""
    with mock.patch("vmbootstrap.proxmox_api.ProxmoxAPI") as mock_api:
        proxmox = mock.MagicMock()
        mock_api.return_value = proxmox

        proxmox.nodes.get.return_value = [{"node": "pve"}, {"node": "labhost"}]
        proxmox.nodes.return_value.qemu.get.return_value = []
        proxmox.cluster.nextid.get.return_value = "108"
        proxmox.nodes.return_value.qemu.create.return_value = "UPID:labhost:0001:qmcreate:108:root@pam:"
        proxmox.nodes.return_value.tasks.return_value.status.get.return_value = {
            "status": "stopped",
            "exitstatus": "OK",
        }

        yield proxmox
