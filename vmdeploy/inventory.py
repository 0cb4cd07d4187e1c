"""VM list loading and run selection."""

from __future__ import annotations

import csv
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence

from loguru import logger

from .errors import InputError
from .hardware import HardwareLayout, derive_layout

log = logger

REQUIRED_COLUMNS = (
    'Name',
    'TaskSeq',
    'Datastore',
    'Network',
    'Folder',
    'Disk',
    'Mem',
    'vCPU',
    'Displays',
    'VideoMem',
    'HWVersion',
    'GuestId',
)


@dataclass(frozen=True)
class VmSpec:
    name: str
    task_sequence_id: str
    datastore: str
    network: str
    folder: str
    disk_gb: int
    memory_gb: int
    vcpus: int
    displays: int
    video_mem_kb: int
    hardware_version: str
    guest_id: str
    gpu_profile: str = ''

    @property
    def layout(self) -> HardwareLayout:
        return derive_layout(self.vcpus, self.guest_id)

    @property
    def vmx_version(self) -> str:
        text = self.hardware_version.strip().lower()
        if not text:
            return ''
        if text.startswith('vmx-'):
            return text
        return f'vmx-{text.lstrip("v")}'


def _int_field(row: dict, key: str, line: int, *, minimum: int) -> int:
    raw = (row.get(key) or '').strip()
    try:
        value = int(raw)
    except ValueError:
        raise InputError(
            f'VM list line {line}: column {key}={raw!r} is not an integer'
        ) from None
    if value < minimum:
        raise InputError(
            f'VM list line {line}: column {key}={value} must be >= {minimum}'
        )
    return value


def parse_vm_rows(rows: Iterable[dict], *, start_line: int = 2) -> list[VmSpec]:
    specs: list[VmSpec] = []
    seen: dict[str, int] = {}
    for line, row in enumerate(rows, start=start_line):
        if not any((v or '').strip() for v in row.values() if isinstance(v, str)):
            continue
        name = (row.get('Name') or '').strip()
        if not name:
            raise InputError(f'VM list line {line}: Name is empty')
        if name in seen:
            raise InputError(
                f'VM list line {line}: duplicate Name {name!r} '
                f'(first seen on line {seen[name]})'
            )
        seen[name] = line
        specs.append(
            VmSpec(
                name=name,
                task_sequence_id=(row.get('TaskSeq') or '').strip(),
                datastore=(row.get('Datastore') or '').strip(),
                network=(row.get('Network') or '').strip(),
                folder=(row.get('Folder') or '').strip(),
                disk_gb=_int_field(row, 'Disk', line, minimum=1),
                memory_gb=_int_field(row, 'Mem', line, minimum=1),
                vcpus=_int_field(row, 'vCPU', line, minimum=1),
                displays=_int_field(row, 'Displays', line, minimum=1),
                video_mem_kb=_int_field(row, 'VideoMem', line, minimum=0),
                hardware_version=(row.get('HWVersion') or '').strip(),
                guest_id=(row.get('GuestId') or '').strip(),
                gpu_profile=(row.get('GPU') or '').strip(),
            )
        )
    return specs


def load_vm_list(path: Path, *, delimiter: str = ',') -> list[VmSpec]:
    if not path.exists():
        raise InputError(f'VM list not found: {path}')
    with path.open(newline='', encoding='utf-8-sig') as file:
        reader = csv.DictReader(file, delimiter=delimiter)
        header = [h.strip() for h in (reader.fieldnames or [])]
        reader.fieldnames = header
        missing = [col for col in REQUIRED_COLUMNS if col not in header]
        if missing:
            raise InputError(
                f'VM list {path} is missing columns: {", ".join(missing)}'
            )
        specs = parse_vm_rows(reader)
    log.debug('Loaded {} VM definitions from {}', len(specs), path)
    return specs


def select_specs(specs: Sequence[VmSpec], selection: Iterable[str]) -> list[VmSpec]:
    """Filter ``specs`` to the selected names, keeping VM list order."""
    wanted = [str(n).strip() for n in selection if str(n).strip()]
    known = {s.name for s in specs}
    unknown = [n for n in wanted if n not in known]
    if unknown:
        raise InputError(f'Selected VMs not in VM list: {", ".join(unknown)}')
    chosen = set(wanted)
    return [s for s in specs if s.name in chosen]
