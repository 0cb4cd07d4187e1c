"""Top-level modal CLI wiring, argv normalization, and logging setup."""

from __future__ import annotations

import contextlib
import os
import sys

import scriptconfig as scfg
from loguru import logger

from ..deploydb import DeploymentDatabase
from ..orchestrator import Orchestrator, RunOptions
from ..results import RunReport
from ..util import CredentialPrompt
from ..vsphere import HypervisorSession
from ._common import (
    _BaseCommand,
    _cfg_path,
    _load_cfg,
    _load_cfg_with_path,
    _load_specs,
    _resolve_selection,
    log,
)
from .config import ConfigModalCLI


class RunCLI(_BaseCommand):
    """Create or reset the selected VMs and register new ones for deployment."""

    vm_list = scfg.Value('', help='VM list CSV (default: paths.vm_list).')
    vms = scfg.Value('', help='Comma-separated VM names to process.')
    all = scfg.Value(False, isflag=True, help='Process every VM in the list.')
    register = scfg.Value(
        None, isflag=True, help='Register created VMs in the deployment database.'
    )
    pause = scfg.Value(
        None, isflag=True, help='Wait for the operator after each VM.'
    )
    power_on = scfg.Value(None, isflag=True, help='Power VMs on when done.')
    console = scfg.Value(
        None, isflag=True, help='Open a remote console after power-on.'
    )
    dry_run = scfg.Value(
        False, isflag=True, help='Rehearse: log every action without mutating.'
    )
    username = scfg.Value('', help='vCenter username.')
    password = scfg.Value('', help='vCenter password (prompted if omitted).')
    db_username = scfg.Value('', help='Deployment database username.')
    db_password = scfg.Value('', help='Deployment database password.')

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        cfg, cfg_path = _load_cfg_with_path(args.config)
        specs = _load_specs(cfg, args.vm_list)
        log.debug('Loaded {} VM definition(s) using {}', len(specs), cfg_path)
        selection = _resolve_selection(
            specs, vms=args.vms, select_all=bool(args.all)
        )
        options = RunOptions.from_config(
            cfg.run,
            register=args.register,
            pause=args.pause,
            power_on=args.power_on,
            console=args.console,
            rehearsal=True if args.dry_run else None,
        )
        prompt = CredentialPrompt()
        session = HypervisorSession(
            cfg.vcenter,
            username=args.username or None,
            password=args.password or None,
            prompt=prompt,
        )
        database = None
        if options.register:
            database = DeploymentDatabase(
                cfg.deploydb,
                username=args.db_username or None,
                password=args.db_password or None,
                prompt=prompt,
                dry_run=options.rehearsal,
            )
        with session, (database or contextlib.nullcontext()):
            orchestrator = Orchestrator(
                session, cfg.vcenter, options, database=database
            )
            report = orchestrator.run(specs, selection)
        print(render_summary(report))
        return 0


def render_summary(report: RunReport) -> str:
    title = 'Rehearsal summary' if report.rehearsal else 'Run summary'
    lines = [title]
    for label, names in (
        ('created', report.created),
        ('reset', report.reset),
        ('registered', report.registered),
    ):
        lines.append(f'  {label}: {", ".join(names) if names else "(none)"}')
    if report.decisions:
        lines.append('Decisions')
        lines.extend(f'  - {d}' for d in report.decisions)
    return '\n'.join(lines)


class ListCLI(_BaseCommand):
    """List the VM definitions and their derived CPU layouts."""

    vm_list = scfg.Value('', help='VM list CSV (default: paths.vm_list).')

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        cfg = _load_cfg(args.config)
        specs = _load_specs(cfg, args.vm_list)
        print('VM definitions')
        if not specs:
            print('  (none)')
        for spec in specs:
            layout = spec.layout
            gpu = spec.gpu_profile or '-'
            print(
                f'  - {spec.name} | vcpu={spec.vcpus} '
                f'({layout.sockets}x{layout.cores_per_socket}) '
                f'| mem={spec.memory_gb}GB | disk={spec.disk_gb}GB '
                f'| guest={spec.guest_id} | task_seq={spec.task_sequence_id} '
                f'| gpu={gpu}'
            )
        return 0


class VMDeployModalCLI(scfg.ModalCLI):
    """Provision or reset vSphere VMs and register them for MDT deployment."""

    config = ConfigModalCLI
    run = RunCLI
    list = ListCLI


def main(argv: list[str] | None = None) -> None:
    verbosity = 1
    config_value = None
    if argv is None:
        argv = sys.argv[1:]
    argv = _normalize_argv(argv)
    if '--config' in argv:
        try:
            config_value = argv[argv.index('--config') + 1]
        except IndexError:
            pass
    try:
        path = _cfg_path(config_value)
        if path.exists():
            verbosity = _load_cfg(config_value).verbosity
    except Exception:
        verbosity = 1

    explicit_verbose = _count_verbose(argv)
    _setup_logging(explicit_verbose, verbosity)

    try:
        rc = VMDeployModalCLI.main(argv=argv, _noexit=True)
    except Exception as ex:
        print(f'ERROR: {ex}', file=sys.stderr)
        log.error('Unhandled vmdeploy error: {}', ex)
        sys.exit(2)

    if any(flag in argv for flag in ('-h', '--help')):
        sys.exit(0)
    if isinstance(rc, int):
        sys.exit(rc)
    sys.exit(0)


def _setup_logging(args_verbose: int, cfg_verbosity: int) -> None:
    logger.remove()
    effective_verbosity = args_verbose if args_verbose > 0 else cfg_verbosity
    level = 'WARNING'
    if effective_verbosity == 1:
        level = 'INFO'
    elif effective_verbosity >= 2:
        level = 'DEBUG'
    colorize = sys.stderr.isatty() and os.getenv('NO_COLOR') is None
    logger.add(
        sys.stderr,
        level=level,
        colorize=colorize,
        format='<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>',
    )
    log.debug(
        'Logging configured at {} (effective_verbosity={}, colorize={})',
        level,
        effective_verbosity,
        colorize,
    )


def _normalize_argv(argv: list[str]) -> list[str]:
    """Normalize accepted short spellings to scriptconfig command names."""
    if len(argv) >= 1 and argv[0] == 'init':
        return ['config', 'init', *argv[1:]]
    if len(argv) >= 1 and argv[0] == 'ls':
        return ['list', *argv[1:]]
    if len(argv) >= 1 and argv[0] == 'rehearse':
        return ['run', '--dry_run', *argv[1:]]
    return argv


def _count_verbose(argv: list[str]) -> int:
    count = 0
    for item in argv:
        if item == '--verbose':
            count += 1
        elif item.startswith('-') and not item.startswith('--'):
            short = item[1:]
            if short and set(short) <= {'v'}:
                count += len(short)
    return count
