"""Sequential per-VM workflow: reconcile, register, pause, power on, console."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, Sequence

from loguru import logger

from .config import RunConfig, VCenterConfig
from .deploydb import DeploymentDatabase, DeploymentSettings
from .errors import VMDeployError
from .inventory import VmSpec, select_specs
from .reconcile import ReconcileOutcome, reconcile_vm
from .results import Decision, RunReport
from .util import SENTINEL_MAC, wait_for_operator

log = logger


@dataclass(frozen=True)
class RunOptions:
    register: bool = True
    pause: bool = False
    power_on: bool = True
    console: bool = False
    rehearsal: bool = False

    @classmethod
    def from_config(
        cls, run: RunConfig, **overrides: Optional[bool]
    ) -> 'RunOptions':
        values = {
            'register': bool(run.register),
            'pause': bool(run.pause),
            'power_on': bool(run.power_on),
            'console': bool(run.console),
            'rehearsal': bool(run.rehearsal),
        }
        for key, value in overrides.items():
            if key not in values:
                raise KeyError(f'Unknown run option: {key}')
            if value is not None:
                values[key] = bool(value)
        return cls(**values)


class Orchestrator:
    """
    Drive every selected VM through the provisioning workflow, one at a time.

    The hypervisor session and the deployment database are owned by the
    caller and shared across VMs. A failure for one VM propagates and ends
    the run.
    """

    def __init__(
        self,
        session: Any,
        settings: VCenterConfig,
        options: RunOptions,
        *,
        database: Optional[DeploymentDatabase] = None,
        acknowledge: Optional[Callable[[str], None]] = None,
    ):
        if options.register and database is None:
            raise VMDeployError(
                'Registration is enabled but no deployment database was given'
            )
        if database is not None and options.rehearsal:
            database.dry_run = True
        self.session = session
        self.settings = settings
        self.options = options
        self.database = database
        self.acknowledge = acknowledge or wait_for_operator
        self.report = RunReport(rehearsal=options.rehearsal)

    def _decide(self, vm_name: str, action: str, detail: str = '') -> None:
        decision = Decision(vm_name=vm_name, action=action, detail=detail)
        self.report.decisions.append(decision)
        prefix = 'REHEARSAL: ' if self.options.rehearsal else ''
        log.info('{}{}', prefix, decision)

    def run(self, specs: Sequence[VmSpec], selection: Iterable[str]) -> RunReport:
        chosen = select_specs(specs, selection)
        log.info(
            'Processing {} VM(s){}',
            len(chosen),
            ' in rehearsal mode' if self.options.rehearsal else '',
        )
        for spec in chosen:
            self.process(spec)
        return self.report

    def process(self, spec: VmSpec) -> None:
        dry_run = self.options.rehearsal
        outcome = reconcile_vm(self.session, spec, self.settings, dry_run=dry_run)
        self._decide(spec.name, outcome.action.value, _outcome_detail(outcome))
        if outcome.created:
            self.report.created.append(spec.name)
        else:
            self.report.reset.append(spec.name)

        if self.options.register and outcome.created:
            self._register(spec, outcome)

        if self.options.pause:
            self._decide(spec.name, 'pause')
            if not dry_run:
                self.acknowledge(f'{spec.name} is ready for its manual step.')

        if self.options.power_on:
            self._decide(spec.name, 'power-on')
            self.session.power_on(outcome.vm, name=spec.name, dry_run=dry_run)
            if self.options.console:
                self._decide(spec.name, 'console')
                self.session.open_console(
                    outcome.vm, name=spec.name, dry_run=dry_run
                )

    def _register(self, spec: VmSpec, outcome: ReconcileOutcome) -> None:
        assert self.database is not None
        if outcome.vm is None:
            mac = SENTINEL_MAC
        else:
            mac = self.session.get_mac_address(outcome.vm)
        self._decide(spec.name, 'lookup', mac)
        if self.options.rehearsal and mac == SENTINEL_MAC:
            log.info(
                'REHEARSAL: {} has no MAC yet; skipping database lookup', spec.name
            )
            record = None
        else:
            self.database.connect()
            record = self.database.lookup_by_mac(mac)
        if record is not None:
            self._decide(
                spec.name,
                'already-registered',
                f'ID {record.identity_id} {record.description} '
                f'task sequence {record.task_sequence_id or "(none)"}',
            )
            return
        settings = DeploymentSettings(task_sequence_id=spec.task_sequence_id)
        self._decide(spec.name, 'insert', f'task sequence {spec.task_sequence_id}')
        self.database.insert_if_absent(spec.name, mac, settings)
        self.report.registered.append(spec.name)


def _outcome_detail(outcome: ReconcileOutcome) -> str:
    detail = outcome.detail
    if outcome.created:
        return (
            f'{detail.sockets} socket(s) x {detail.cores_per_socket} cores, '
            f'{detail.network_backing} network'
        )
    return (
        f'{len(detail.snapshots_removed)} snapshot(s) removed, '
        f'new {detail.disk_created_gb} GB disk'
    )
