from __future__ import annotations

from pathlib import Path
from typing import Sequence

import scriptconfig as scfg
from loguru import logger

from ..config import DeployConfig, default_config_path, load
from ..errors import InputError
from ..inventory import VmSpec, load_vm_list
from ..util import stdin_is_interactive

log = logger


class _BaseCommand(scfg.DataConfig):
    """Base options shared by all commands."""

    config = scfg.Value(
        None, help='Path to config TOML (default: .vmdeploy.toml).'
    )
    verbose = scfg.Value(
        0,
        short_alias=['v'],
        isflag='counter',
        help='Increase verbosity (-v, -vv).',
    )


def _cfg_path(p: str | None) -> Path:
    if p:
        return Path(p).expanduser().resolve()
    return default_config_path()


def _load_cfg_with_path(config_path: str | None) -> tuple[DeployConfig, Path]:
    path = _cfg_path(config_path)
    cfg = load(path).expanded_paths(base_dir=path.parent).validate()
    return cfg, path


def _load_cfg(config_path: str | None) -> DeployConfig:
    cfg, _ = _load_cfg_with_path(config_path)
    return cfg


def _load_specs(cfg: DeployConfig, vm_list: str = '') -> list[VmSpec]:
    path = Path(vm_list or cfg.paths.vm_list).expanduser()
    return load_vm_list(path, delimiter=cfg.paths.delimiter or ',')


def parse_selection(raw: str, names: Sequence[str]) -> list[str]:
    """
    Turn an operator answer like ``1,3-4`` or ``all`` into VM names.

    Example:
        >>> parse_selection('1,3-4', ['a', 'b', 'c', 'd'])
        ['a', 'c', 'd']
        >>> parse_selection('all', ['a', 'b'])
        ['a', 'b']
    """
    text = raw.strip().lower()
    if text in {'all', '*'}:
        return list(names)
    picked: list[int] = []
    for part in text.replace(' ', '').split(','):
        if not part:
            continue
        lo, sep, hi = part.partition('-')
        if not lo.isdigit() or (sep and not hi.isdigit()):
            raise ValueError(f'Not a number or range: {part!r}')
        start = int(lo)
        stop = int(hi) if sep else start
        if start > stop:
            start, stop = stop, start
        for idx in range(start, stop + 1):
            if not 1 <= idx <= len(names):
                raise ValueError(
                    f'{idx} is out of range; pick between 1 and {len(names)}'
                )
            if idx not in picked:
                picked.append(idx)
    if not picked:
        raise ValueError('Nothing selected')
    return [names[i - 1] for i in sorted(picked)]


def _choose_vms_interactive(specs: Sequence[VmSpec]) -> list[str]:
    names = [s.name for s in specs]
    if not stdin_is_interactive():
        raise InputError(
            'No VMs selected and stdin is not interactive. '
            'Re-run with --vms or --all.'
        )
    print('VMs in list:')
    for idx, spec in enumerate(specs, start=1):
        print(
            f'  {idx}. {spec.name} | vcpu={spec.vcpus} mem={spec.memory_gb}GB '
            f'disk={spec.disk_gb}GB | task_seq={spec.task_sequence_id}'
        )
    while True:
        raw = input('Select VMs (e.g. 1,3-4 or all): ')
        try:
            return parse_selection(raw, names)
        except ValueError as ex:
            print(f'{ex}. Try again.')


def _resolve_selection(
    specs: Sequence[VmSpec], *, vms: str = '', select_all: bool = False
) -> list[str]:
    if select_all:
        return [s.name for s in specs]
    wanted = [n.strip() for n in str(vms or '').split(',') if n.strip()]
    if wanted:
        return wanted
    return _choose_vms_interactive(specs)


__all__ = [name for name in globals() if not name.startswith('__')]
