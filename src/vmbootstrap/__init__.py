"""Create and boot a single VM on an ESXi or Proxmox host."""

__version__ = "0.1.0"
