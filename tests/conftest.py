"""Shared fakes standing in for vCenter managed objects."""

from __future__ import annotations

from types import SimpleNamespace

import pytest
from pyVmomi import vim

from vmdeploy.config import VCenterConfig
from vmdeploy.inventory import VmSpec
from vmdeploy.util import CredentialPrompt
from vmdeploy.vsphere import HypervisorSession

MUTATING_CALLS = {
    'CreateVM_Task',
    'ReconfigVM_Task',
    'PowerOffVM_Task',
    'PowerOnVM_Task',
    'RemoveSnapshot_Task',
}


class FakeTask:
    def __init__(self, result=None, state='success', error=None):
        self.info = SimpleNamespace(state=state, result=result, error=error)


class FakeSnapshot:
    def __init__(self, calls: list, name: str):
        self.calls = calls
        self.name = name

    def RemoveSnapshot_Task(self, removeChildren):
        self.calls.append(('RemoveSnapshot_Task', self.name, removeChildren))
        return FakeTask()


def snapshot_tree(calls: list, name: str, children=()):
    return SimpleNamespace(
        name=name,
        snapshot=FakeSnapshot(calls, name),
        childSnapshotList=list(children),
    )


def standard_devices(mac: str = '00:50:56:aa:bb:cc') -> list:
    ctrl = vim.vm.device.VirtualLsiLogicSASController()
    ctrl.key = 1000
    ctrl.busNumber = 0
    disk = vim.vm.device.VirtualDisk()
    disk.key = 2000
    disk.controllerKey = 1000
    disk.unitNumber = 0
    disk.capacityInKB = 40 * 1024 * 1024
    disk.deviceInfo = vim.Description(label='Hard disk 1', summary='40 GB')
    nic = vim.vm.device.VirtualE1000e()
    nic.key = 4000
    nic.macAddress = mac
    nic.backing = vim.vm.device.VirtualEthernetCard.NetworkBackingInfo(
        deviceName='VLAN10'
    )
    video = vim.vm.device.VirtualVideoCard()
    video.key = 500
    return [ctrl, disk, nic, video]


class FakeVM:
    def __init__(
        self,
        name: str,
        calls: list,
        *,
        devices=None,
        power_state: str = 'poweredOff',
        snapshots=(),
    ):
        self.name = name
        self._moId = f'vm-{abs(hash(name)) % 1000}'
        self.calls = calls
        self.runtime = SimpleNamespace(powerState=power_state)
        self.config = SimpleNamespace(
            hardware=SimpleNamespace(
                device=list(standard_devices() if devices is None else devices)
            )
        )
        self.snapshot = (
            SimpleNamespace(rootSnapshotList=list(snapshots)) if snapshots else None
        )

    def ReconfigVM_Task(self, spec):
        self.calls.append(('ReconfigVM_Task', self.name, spec))
        return FakeTask()

    def PowerOffVM_Task(self):
        self.calls.append(('PowerOffVM_Task', self.name))
        return FakeTask()

    def PowerOnVM_Task(self):
        self.calls.append(('PowerOnVM_Task', self.name))
        return FakeTask()


class FakeFolder:
    def __init__(self, name: str, inventory: 'FakeInventory'):
        self.name = name
        self.inventory = inventory

    def CreateVM_Task(self, config, pool):
        self.inventory.calls.append(('CreateVM_Task', config.name, config))
        vm = FakeVM(
            config.name,
            self.inventory.calls,
            devices=standard_devices(self.inventory.next_mac),
        )
        self.inventory.created[config.name] = vm
        return FakeTask(result=vm)


class FakeInventory:
    """Name-keyed vCenter inventory with a shared mutating-call log."""

    def __init__(self):
        self.calls: list = []
        self.created: dict = {}
        self.next_mac = '00:50:56:aa:bb:cc'
        self.objects: dict = {}
        self.add(vim.Folder, FakeFolder('Workstations', self))
        self.add(vim.ResourcePool, SimpleNamespace(name='Cluster01'))
        self.add(vim.Datastore, SimpleNamespace(name='DS01'))
        self.add(vim.Network, SimpleNamespace(name='VLAN10', config=None))

    def add(self, vimtype, obj):
        self.objects[(vimtype, obj.name)] = obj
        return obj

    def add_vm(self, name: str, **kwargs) -> FakeVM:
        return self.add(vim.VirtualMachine, FakeVM(name, self.calls, **kwargs))

    def find(self, vimtype, name):
        return self.objects.get((vimtype, name))

    def mutations(self) -> list:
        return [c for c in self.calls if c[0] in MUTATING_CALLS]

    def call_names(self) -> list[str]:
        return [c[0] for c in self.calls]


@pytest.fixture
def inventory() -> FakeInventory:
    return FakeInventory()


@pytest.fixture
def vcenter_cfg() -> VCenterConfig:
    return VCenterConfig(server='vc01', cluster='Cluster01')


@pytest.fixture
def session(inventory, vcenter_cfg) -> HypervisorSession:
    prompt = CredentialPrompt(
        input_fn=lambda _msg: 'operator', secret_fn=lambda _msg: 'secret'
    )
    sess = HypervisorSession(vcenter_cfg, prompt=prompt)
    sess.si = SimpleNamespace(
        RetrieveContent=lambda: SimpleNamespace(
            sessionManager=SimpleNamespace(AcquireCloneTicket=lambda: 'TICKET')
        )
    )
    sess.find_object = inventory.find
    sess.task_poll_s = 0
    return sess


@pytest.fixture
def make_spec():
    def _make(name: str = 'W10-01', **overrides) -> VmSpec:
        values = dict(
            name=name,
            task_sequence_id='WIN10-STD',
            datastore='DS01',
            network='VLAN10',
            folder='Workstations',
            disk_gb=60,
            memory_gb=8,
            vcpus=4,
            displays=1,
            video_mem_kb=16384,
            hardware_version='19',
            guest_id='windows9_64Guest',
        )
        values.update(overrides)
        return VmSpec(**values)

    return _make
