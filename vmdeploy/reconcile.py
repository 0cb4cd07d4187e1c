"""Create-or-reset decision for one VM."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Union

from loguru import logger

from .config import VCenterConfig
from .inventory import VmSpec
from .results import CreateResult, ResetResult

log = logger


class Action(str, enum.Enum):
    CREATE = 'create'
    RESET = 'reset'


@dataclass
class ReconcileOutcome:
    spec: VmSpec
    action: Action
    vm: Any
    detail: Union[CreateResult, ResetResult]

    @property
    def created(self) -> bool:
        return self.action is Action.CREATE


def decide(existing_vm: Any) -> Action:
    return Action.CREATE if existing_vm is None else Action.RESET


def reconcile_vm(
    session: Any,
    spec: VmSpec,
    settings: VCenterConfig,
    *,
    dry_run: bool = False,
) -> ReconcileOutcome:
    """
    Look the VM up once, then either create it or reset it.

    The existence check is never repeated during the sequence, so a VM is
    never both created and reset. Success of the hypervisor calls is trusted;
    failures propagate.
    """
    existing = session.find_vm(spec.name)
    action = decide(existing)
    if action is Action.CREATE:
        log.info('{} does not exist: creating', spec.name)
        vm, detail = session.create_vm(
            spec,
            resource_pool=settings.cluster,
            storage_format=settings.disk_format,
            controller_type=settings.scsi_controller,
            dry_run=dry_run,
        )
    else:
        log.info('{} exists: resetting', spec.name)
        vm = existing
        detail = session.reset_vm(
            existing,
            disk_gb=spec.disk_gb,
            storage_format=settings.disk_format,
            controller_type=settings.scsi_controller,
            dry_run=dry_run,
        )
    return ReconcileOutcome(spec=spec, action=action, vm=vm, detail=detail)
