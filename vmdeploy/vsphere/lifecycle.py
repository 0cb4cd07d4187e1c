"""VM create and reset sequences: allocation, hardware reconfiguration, disk reset."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable

from loguru import logger
from pyVmomi import vim

from ..inventory import VmSpec
from ..results import CreateResult, ResetResult
from ..util import gpu_profile_enabled
from . import devices

if TYPE_CHECKING:
    from .session import HypervisorSession

log = logger

# Controller the VM is created with; the configured type replaces it afterwards.
CREATE_CONTROLLER_TYPE = 'lsilogicsas'

_CTRL_KEY = -101
_DISK_KEY = -102
_NIC_KEY = -103


def _reconfigure(
    session: 'HypervisorSession', vm: Any, config: Any, description: str
) -> None:
    session.wait_for_task(vm.ReconfigVM_Task(spec=config), description)


def _base_config(
    spec: VmSpec, backing: Any, storage_format: str
) -> vim.vm.ConfigSpec:
    layout = spec.layout
    config = vim.vm.ConfigSpec()
    config.name = spec.name
    config.guestId = spec.guest_id
    config.memoryMB = int(spec.memory_gb) * 1024
    config.numCPUs = int(spec.vcpus)
    config.numCoresPerSocket = layout.cores_per_socket
    config.firmware = 'efi'
    config.files = vim.vm.FileInfo(vmPathName=f'[{spec.datastore}]')
    if spec.vmx_version:
        config.version = spec.vmx_version
    config.deviceChange = [
        devices.add_controller_spec(
            CREATE_CONTROLLER_TYPE, key=_CTRL_KEY, bus_number=0
        ),
        devices.add_disk_spec(
            spec.disk_gb,
            storage_format,
            controller_key=_CTRL_KEY,
            key=_DISK_KEY,
            datastore=spec.datastore,
        ),
        devices.add_nic_spec(backing, key=_NIC_KEY),
    ]
    return config


def _pin_memory_reservation(session, vm, spec: VmSpec, **_) -> None:
    config = vim.vm.ConfigSpec(memoryReservationLockedToMax=True)
    _reconfigure(session, vm, config, f'Reserve all memory on {spec.name}')


def _set_controller_type(
    session, vm, spec: VmSpec, *, controller_type: str, **_
) -> None:
    target = devices.controller_class(controller_type)
    disk = devices.primary_disk(vm)
    controllers = devices.scsi_controllers(vm)
    current = next(
        (
            c
            for c in controllers
            if disk is not None and c.key == disk.controllerKey
        ),
        controllers[0] if controllers else None,
    )
    if current is not None and isinstance(current, target):
        log.debug('{} already uses a {} controller', spec.name, controller_type)
        return
    changes = []
    bus = 0
    if current is not None:
        bus = current.busNumber
        changes.append(devices.remove_spec(current))
    changes.append(
        devices.add_controller_spec(controller_type, key=_CTRL_KEY, bus_number=bus)
    )
    for d in devices.disks(vm):
        if current is not None and d.controllerKey == current.key:
            d.controllerKey = _CTRL_KEY
            changes.append(devices.edit_spec(d))
    config = vim.vm.ConfigSpec(deviceChange=changes)
    _reconfigure(
        session, vm, config, f'Set SCSI controller of {spec.name} to {controller_type}'
    )


def _upgrade_network_adapter(session, vm, spec: VmSpec, **_) -> None:
    changes = []
    for nic in devices.ethernet_cards(vm):
        if isinstance(nic, vim.vm.device.VirtualVmxnet3):
            continue
        changes.append(devices.remove_spec(nic))
        changes.append(
            devices.add_nic_spec(
                nic.backing,
                key=_NIC_KEY - len(changes),
                nic_class=vim.vm.device.VirtualVmxnet3,
            )
        )
    if not changes:
        log.debug('{} network adapters are already VMXNET3', spec.name)
        return
    config = vim.vm.ConfigSpec(deviceChange=changes)
    _reconfigure(session, vm, config, f'Upgrade network adapter of {spec.name}')


def _configure_video(session, vm, spec: VmSpec, **_) -> None:
    card = devices.video_card(vm)
    if card is None:
        card = vim.vm.device.VirtualVideoCard()
        card.key = -104
        change = vim.vm.device.VirtualDeviceSpec(
            operation=vim.vm.device.VirtualDeviceSpec.Operation.add, device=card
        )
    else:
        change = devices.edit_spec(card)
    card.numDisplays = int(spec.displays)
    card.videoRamSizeInKB = int(spec.video_mem_kb)
    card.useAutoDetect = False
    config = vim.vm.ConfigSpec(deviceChange=[change])
    _reconfigure(session, vm, config, f'Configure video card of {spec.name}')


def _disable_secure_boot(session, vm, spec: VmSpec, **_) -> None:
    config = vim.vm.ConfigSpec(
        bootOptions=vim.vm.BootOptions(efiSecureBootEnabled=False)
    )
    _reconfigure(session, vm, config, f'Disable secure boot on {spec.name}')


def _attach_gpu(session, vm, spec: VmSpec, **_) -> None:
    backing = vim.vm.device.VirtualPCIPassthrough.VmiopBackingInfo(
        vgpu=spec.gpu_profile
    )
    gpu = vim.vm.device.VirtualPCIPassthrough(key=-105, backing=backing)
    change = vim.vm.device.VirtualDeviceSpec(
        operation=vim.vm.device.VirtualDeviceSpec.Operation.add, device=gpu
    )
    config = vim.vm.ConfigSpec(deviceChange=[change])
    _reconfigure(
        session, vm, config, f'Attach GPU profile {spec.gpu_profile} to {spec.name}'
    )


def _disable_hot_plug(session, vm, spec: VmSpec, **_) -> None:
    config = vim.vm.ConfigSpec(
        cpuHotAddEnabled=False,
        cpuHotRemoveEnabled=False,
        memoryHotAddEnabled=False,
    )
    _reconfigure(session, vm, config, f'Disable hot plug on {spec.name}')


def hardware_steps(spec: VmSpec) -> list[tuple[str, Callable]]:
    """Ordered post-create reconfiguration steps for ``spec``."""
    steps: list[tuple[str, Callable]] = [
        ('memory-reservation', _pin_memory_reservation),
        ('scsi-controller', _set_controller_type),
        ('network-adapter', _upgrade_network_adapter),
        ('video', _configure_video),
        ('secure-boot-off', _disable_secure_boot),
    ]
    if gpu_profile_enabled(spec.gpu_profile):
        steps.append(('gpu', _attach_gpu))
    steps.append(('hot-plug-off', _disable_hot_plug))
    return steps


def create_vm(
    session: 'HypervisorSession',
    spec: VmSpec,
    *,
    resource_pool: str,
    storage_format: str,
    controller_type: str,
    dry_run: bool = False,
) -> tuple[Any, CreateResult]:
    """
    Allocate ``spec`` on vCenter and apply the hardware reconfiguration steps.

    Placement objects are looked up even in dry-run mode so a rehearsal fails
    on a missing folder, datastore, network, or pool. Returns the new VM (None
    in dry-run mode) and a :class:`CreateResult` listing the steps applied.
    """
    layout = spec.layout
    folder = session.require_object(vim.Folder, spec.folder, 'Folder')
    pool = session.resolve_resource_pool(resource_pool)
    session.require_object(vim.Datastore, spec.datastore, 'Datastore')
    network = session.require_object(vim.Network, spec.network, 'Network')
    backing, backing_kind = devices.nic_backing(network)
    result = CreateResult(
        vm_name=spec.name,
        cores_per_socket=layout.cores_per_socket,
        sockets=layout.sockets,
        network_backing=backing_kind,
    )
    log.info(
        'Creating VM {}: {} vCPU ({} socket(s) x {} cores), {} GB RAM, '
        '{} GB {} disk on {}, {} network {}',
        spec.name,
        spec.vcpus,
        layout.sockets,
        layout.cores_per_socket,
        spec.memory_gb,
        spec.disk_gb,
        storage_format,
        spec.datastore,
        backing_kind,
        spec.network,
    )
    steps = hardware_steps(spec)
    if dry_run:
        log.info('DRYRUN: CreateVM_Task name={} folder={}', spec.name, spec.folder)
        for name, _ in steps:
            log.info('DRYRUN: reconfigure {} step {}', spec.name, name)
            result.steps.append(name)
        return None, result

    config = _base_config(spec, backing, storage_format)
    vm = session.wait_for_task(
        folder.CreateVM_Task(config=config, pool=pool), f'Create VM {spec.name}'
    )
    for name, step in steps:
        log.info('Reconfiguring {}: {}', spec.name, name)
        step(session, vm, spec, controller_type=controller_type)
        result.steps.append(name)
    return vm, result


def _root_snapshots(vm: Any) -> list:
    snapshot = getattr(vm, 'snapshot', None)
    return list(getattr(snapshot, 'rootSnapshotList', None) or [])


def _snapshots_leaf_first(trees: list) -> list:
    ordered = []
    for tree in trees:
        ordered.extend(_snapshots_leaf_first(list(tree.childSnapshotList or [])))
        ordered.append(tree)
    return ordered


def reset_vm(
    session: 'HypervisorSession',
    vm: Any,
    *,
    disk_gb: int,
    storage_format: str,
    controller_type: str,
    dry_run: bool = False,
) -> ResetResult:
    """
    Return an existing VM to a blank-disk state.

    Order is fixed: hard power-off, snapshot removal (children before their
    parent, one task each), primary disk deletion,
    then a new disk on a new controller. A disk cannot be deleted while a
    snapshot references it.
    """
    name = vm.name
    result = ResetResult(vm_name=name)

    if vm.runtime.powerState == vim.VirtualMachinePowerState.poweredOn:
        result.powered_off = True
        if dry_run:
            log.info('DRYRUN: power off VM {}', name)
        else:
            log.info('Powering off VM {} (hard stop)', name)
            session.wait_for_task(vm.PowerOffVM_Task(), f'Power off {name}')

    snapshots = _snapshots_leaf_first(_root_snapshots(vm))
    if snapshots:
        log.info('Removing {} snapshot(s) from {}', len(snapshots), name)
    for tree in snapshots:
        result.snapshots_removed.append(tree.name)
        if dry_run:
            log.info('DRYRUN: remove snapshot {} of {}', tree.name, name)
            continue
        session.wait_for_task(
            tree.snapshot.RemoveSnapshot_Task(removeChildren=False),
            f'Remove snapshot {tree.name} of {name}',
        )

    disk = devices.primary_disk(vm)
    if disk is not None:
        label = disk.deviceInfo.label if disk.deviceInfo else f'disk {disk.key}'
        result.disk_removed = label
        if dry_run:
            log.info('DRYRUN: delete {} of {}', label, name)
        else:
            log.info('Deleting {} of {}', label, name)
            config = vim.vm.ConfigSpec(
                deviceChange=[devices.remove_spec(disk, destroy=True)]
            )
            _reconfigure(session, vm, config, f'Delete {label} of {name}')
    else:
        log.warning('VM {} has no disk to delete', name)

    bus = devices.next_free_bus(vm)
    result.disk_created_gb = int(disk_gb)
    if dry_run:
        log.info(
            'DRYRUN: add {} controller on bus {} with {} GB {} disk to {}',
            controller_type,
            bus,
            disk_gb,
            storage_format,
            name,
        )
        return result
    log.info(
        'Creating {} GB {} disk on new {} controller (bus {}) for {}',
        disk_gb,
        storage_format,
        controller_type,
        bus,
        name,
    )
    config = vim.vm.ConfigSpec(
        deviceChange=[
            devices.add_controller_spec(
                controller_type, key=_CTRL_KEY, bus_number=bus
            ),
            devices.add_disk_spec(
                disk_gb, storage_format, controller_key=_CTRL_KEY, key=_DISK_KEY
            ),
        ]
    )
    _reconfigure(session, vm, config, f'Create disk for {name}')
    return result
