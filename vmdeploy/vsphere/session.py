"""Authenticated vCenter session with bounded connection retry."""

from __future__ import annotations

import ssl
import time
import webbrowser
from typing import Any, Optional

from loguru import logger
from pyVim.connect import Disconnect, SmartConnect
from pyVmomi import vim, vmodl

from ..config import VCenterConfig
from ..errors import (
    HypervisorConnectionError,
    HypervisorTaskError,
    InventoryLookupError,
    VMDeployError,
)
from ..util import CredentialPrompt, normalize_mac
from . import devices, lifecycle

log = logger

_PENDING_STATES = (vim.TaskInfo.State.queued, vim.TaskInfo.State.running)


class HypervisorSession:
    """
    One vCenter connection shared by every VM processed in a run.

    Connection attempts escalate the credentials they use: first whatever was
    supplied (possibly nothing, which lets a cached or passthrough session
    through), then a username, then a username and password. Missing values
    are prompted for.

    Example:
        >>> from vmdeploy.config import VCenterConfig
        >>> session = HypervisorSession(VCenterConfig(server='vc01'))
        >>> session.connected
        False
    """

    task_poll_s = 1.0

    def __init__(
        self,
        cfg: VCenterConfig,
        *,
        username: Optional[str] = None,
        password: Optional[str] = None,
        prompt: Optional[CredentialPrompt] = None,
    ):
        self.cfg = cfg
        self.username = username or cfg.username or None
        self.password = password or None
        self.prompt = prompt or CredentialPrompt()
        self.si: Any = None

    @property
    def connected(self) -> bool:
        return self.si is not None

    def __enter__(self) -> 'HypervisorSession':
        return self.connect()

    def __exit__(self, *exc) -> None:
        self.disconnect()

    def _ssl_context(self) -> ssl.SSLContext:
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        if not self.cfg.verify_ssl:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    def _credentials_for_attempt(self, attempt: int) -> tuple[str, str]:
        purpose = f'vCenter {self.cfg.server}'
        # Values that already failed are asked for again, the old username
        # offered as the default.
        if attempt == 2 or (attempt > 2 and not self.username):
            self.username = (
                self.prompt.username(purpose, default=self.username) or None
            )
        if attempt >= 3:
            self.password = self.prompt.password(purpose, self.username or '')
        return self.username or '', self.password or ''

    def connect(self) -> 'HypervisorSession':
        if self.connected:
            return self
        attempts = int(self.cfg.connect_attempts)
        last_error: Exception | None = None
        for attempt in range(1, attempts + 1):
            user, pwd = self._credentials_for_attempt(attempt)
            log.info(
                'Connecting to vCenter {} (attempt {}/{}, user={})',
                self.cfg.server,
                attempt,
                attempts,
                user or '(session)',
            )
            try:
                self.si = SmartConnect(
                    host=self.cfg.server,
                    port=int(self.cfg.port),
                    user=user,
                    pwd=pwd,
                    sslContext=self._ssl_context(),
                )
            except (vmodl.MethodFault, OSError) as ex:
                last_error = ex
                msg = getattr(ex, 'msg', None) or str(ex)
                log.warning(
                    'vCenter connection attempt {}/{} failed: {}',
                    attempt,
                    attempts,
                    msg,
                )
                continue
            log.info('Connected to vCenter {}', self.cfg.server)
            return self
        raise HypervisorConnectionError(
            f'Could not connect to vCenter {self.cfg.server} after '
            f'{attempts} attempts: {last_error}'
        )

    def disconnect(self) -> None:
        if self.si is None:
            return
        try:
            Disconnect(self.si)
        except (vmodl.MethodFault, OSError) as ex:
            log.debug('Ignoring error during vCenter disconnect: {}', ex)
        finally:
            self.si = None
        log.debug('Disconnected from vCenter {}', self.cfg.server)

    @property
    def content(self) -> Any:
        if self.si is None:
            raise VMDeployError('vCenter session is not connected')
        return self.si.RetrieveContent()

    def find_object(self, vimtype: type, name: str) -> Any:
        """Return the first inventory object of ``vimtype`` named ``name``."""
        content = self.content
        view = content.viewManager.CreateContainerView(
            content.rootFolder, [vimtype], True
        )
        try:
            for obj in view.view:
                if obj.name == name:
                    return obj
        finally:
            view.Destroy()
        return None

    def require_object(self, vimtype: type, name: str, kind: str) -> Any:
        obj = self.find_object(vimtype, name)
        if obj is None:
            raise InventoryLookupError(
                f'{kind} {name!r} not found on vCenter {self.cfg.server}'
            )
        return obj

    def find_vm(self, name: str) -> Any:
        """Return the VM named ``name`` or None when it does not exist."""
        vm = self.find_object(vim.VirtualMachine, name)
        log.debug('Lookup VM {}: {}', name, 'found' if vm is not None else 'absent')
        return vm

    def resolve_resource_pool(self, name: str) -> Any:
        pool = self.find_object(vim.ResourcePool, name)
        if pool is not None:
            return pool
        cluster = self.find_object(vim.ClusterComputeResource, name)
        if cluster is not None:
            return cluster.resourcePool
        raise InventoryLookupError(
            f'Resource pool or cluster {name!r} not found on vCenter '
            f'{self.cfg.server}'
        )

    def wait_for_task(self, task: Any, description: str) -> Any:
        while task.info.state in _PENDING_STATES:
            time.sleep(self.task_poll_s)
        if task.info.state == vim.TaskInfo.State.error:
            raise HypervisorTaskError(description, task.info.error)
        log.debug('{} completed', description)
        return task.info.result

    def get_mac_address(self, vm: Any) -> str:
        cards = devices.ethernet_cards(vm)
        if not cards:
            raise VMDeployError(f'VM {vm.name} has no network adapter')
        return normalize_mac(cards[0].macAddress)

    def create_vm(
        self,
        spec,
        *,
        resource_pool: str,
        storage_format: str,
        controller_type: str,
        dry_run: bool = False,
    ):
        return lifecycle.create_vm(
            self,
            spec,
            resource_pool=resource_pool,
            storage_format=storage_format,
            controller_type=controller_type,
            dry_run=dry_run,
        )

    def reset_vm(
        self,
        vm,
        *,
        disk_gb: int,
        storage_format: str,
        controller_type: str,
        dry_run: bool = False,
    ):
        return lifecycle.reset_vm(
            self,
            vm,
            disk_gb=disk_gb,
            storage_format=storage_format,
            controller_type=controller_type,
            dry_run=dry_run,
        )

    def power_on(self, vm: Any, *, name: str = '', dry_run: bool = False) -> None:
        label = name or getattr(vm, 'name', '?')
        if dry_run:
            log.info('DRYRUN: power on VM {}', label)
            return
        log.info('Powering on VM {}', label)
        vm.PowerOnVM_Task()

    def console_url(self, vm: Any) -> str:
        ticket = self.content.sessionManager.AcquireCloneTicket()
        return f'vmrc://clone:{ticket}@{self.cfg.server}/?moid={vm._moId}'

    def open_console(self, vm: Any, *, name: str = '', dry_run: bool = False) -> None:
        label = name or getattr(vm, 'name', '?')
        if dry_run:
            log.info('DRYRUN: open remote console for VM {}', label)
            return
        log.info('Opening remote console for VM {}', label)
        webbrowser.open(self.console_url(vm))
