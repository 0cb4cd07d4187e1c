"""pyVmomi device-spec builders and device lookups on existing VMs."""

from __future__ import annotations

from typing import Any, Optional

from pyVmomi import vim

from ..errors import VMDeployError

CONTROLLER_CLASSES = {
    'paravirtual': vim.vm.device.ParaVirtualSCSIController,
    'lsilogic': vim.vm.device.VirtualLsiLogicController,
    'lsilogicsas': vim.vm.device.VirtualLsiLogicSASController,
    'buslogic': vim.vm.device.VirtualBusLogicController,
}

# SCSI buses 0-3 are the only ones a VM can address.
MAX_SCSI_BUSES = 4

_Op = vim.vm.device.VirtualDeviceSpec.Operation
_FileOp = vim.vm.device.VirtualDeviceSpec.FileOperation


def controller_class(controller_type: str) -> type:
    try:
        return CONTROLLER_CLASSES[controller_type.strip().lower()]
    except KeyError:
        raise ValueError(
            f'Unknown SCSI controller type {controller_type!r}; '
            f'expected one of: {", ".join(CONTROLLER_CLASSES)}'
        ) from None


def add_controller_spec(
    controller_type: str, *, key: int, bus_number: int
) -> vim.vm.device.VirtualDeviceSpec:
    ctrl = controller_class(controller_type)()
    ctrl.key = key
    ctrl.busNumber = bus_number
    ctrl.sharedBus = vim.vm.device.VirtualSCSIController.Sharing.noSharing
    return vim.vm.device.VirtualDeviceSpec(operation=_Op.add, device=ctrl)


def add_disk_spec(
    size_gb: int,
    storage_format: str,
    *,
    controller_key: int,
    key: int,
    unit_number: int = 0,
    datastore: str = '',
) -> vim.vm.device.VirtualDeviceSpec:
    fmt = storage_format.strip().lower()
    backing = vim.vm.device.VirtualDisk.FlatVer2BackingInfo()
    backing.diskMode = 'persistent'
    backing.thinProvisioned = fmt == 'thin'
    backing.eagerlyScrub = fmt == 'eagerzeroedthick'
    backing.fileName = f'[{datastore}]' if datastore else ''
    disk = vim.vm.device.VirtualDisk()
    disk.key = key
    disk.controllerKey = controller_key
    disk.unitNumber = unit_number
    disk.capacityInKB = int(size_gb) * 1024 * 1024
    disk.backing = backing
    return vim.vm.device.VirtualDeviceSpec(
        operation=_Op.add, fileOperation=_FileOp.create, device=disk
    )


def is_distributed_portgroup(network: Any) -> bool:
    """True when the network object is backed by a distributed switch."""
    config = getattr(network, 'config', None)
    return getattr(config, 'distributedVirtualSwitch', None) is not None


def nic_backing(network: Any) -> tuple[Any, str]:
    """Return ``(backing, kind)`` where kind is 'distributed' or 'standard'."""
    if is_distributed_portgroup(network):
        port = vim.dvs.PortConnection()
        port.portgroupKey = network.key
        port.switchUuid = network.config.distributedVirtualSwitch.uuid
        backing = (
            vim.vm.device.VirtualEthernetCard.DistributedVirtualPortBackingInfo()
        )
        backing.port = port
        return backing, 'distributed'
    backing = vim.vm.device.VirtualEthernetCard.NetworkBackingInfo()
    backing.deviceName = network.name
    return backing, 'standard'


def add_nic_spec(
    backing: Any, *, key: int, nic_class: Optional[type] = None
) -> vim.vm.device.VirtualDeviceSpec:
    nic = (nic_class or vim.vm.device.VirtualE1000e)()
    nic.key = key
    nic.backing = backing
    nic.addressType = 'generated'
    nic.connectable = vim.vm.device.VirtualDevice.ConnectInfo(
        startConnected=True, allowGuestControl=True, connected=False
    )
    return vim.vm.device.VirtualDeviceSpec(operation=_Op.add, device=nic)


def remove_spec(device: Any, *, destroy: bool = False) -> vim.vm.device.VirtualDeviceSpec:
    spec = vim.vm.device.VirtualDeviceSpec(operation=_Op.remove, device=device)
    if destroy:
        spec.fileOperation = _FileOp.destroy
    return spec


def edit_spec(device: Any) -> vim.vm.device.VirtualDeviceSpec:
    return vim.vm.device.VirtualDeviceSpec(operation=_Op.edit, device=device)


def _devices(vm: Any) -> list:
    config = getattr(vm, 'config', None)
    hardware = getattr(config, 'hardware', None)
    return list(getattr(hardware, 'device', None) or [])


def scsi_controllers(vm: Any) -> list:
    return [
        d for d in _devices(vm) if isinstance(d, vim.vm.device.VirtualSCSIController)
    ]


def disks(vm: Any) -> list:
    found = [d for d in _devices(vm) if isinstance(d, vim.vm.device.VirtualDisk)]
    return sorted(found, key=lambda d: (d.controllerKey or 0, d.unitNumber or 0))


def primary_disk(vm: Any) -> Optional[vim.vm.device.VirtualDisk]:
    found = disks(vm)
    return found[0] if found else None


def ethernet_cards(vm: Any) -> list:
    return [
        d for d in _devices(vm) if isinstance(d, vim.vm.device.VirtualEthernetCard)
    ]


def video_card(vm: Any) -> Optional[vim.vm.device.VirtualVideoCard]:
    for d in _devices(vm):
        if isinstance(d, vim.vm.device.VirtualVideoCard):
            return d
    return None


def next_free_bus(vm: Any) -> int:
    used = {c.busNumber for c in scsi_controllers(vm)}
    for bus in range(MAX_SCSI_BUSES):
        if bus not in used:
            return bus
    raise VMDeployError(
        f'VM {getattr(vm, "name", "?")} has no free SCSI bus '
        f'(buses in use: {sorted(used)})'
    )
