"""Run configuration: vCenter placement, deployment database, and run toggles."""

from __future__ import annotations

import tomllib
from dataclasses import asdict, dataclass, field
from pathlib import Path

import ubelt as ub

from .errors import ConfigError, InputError
from .util import expand

SCSI_CONTROLLER_TYPES = ('paravirtual', 'lsilogic', 'lsilogicsas', 'buslogic')
DISK_FORMATS = ('thin', 'thick', 'eagerzeroedthick')
DEFAULT_ODBC_DRIVER = 'ODBC Driver 18 for SQL Server'


@dataclass
class VCenterConfig:
    server: str = 'vcenter.example.local'
    port: int = 443
    cluster: str = 'Cluster01'
    scsi_controller: str = 'paravirtual'
    disk_format: str = 'thin'
    username: str = ''
    connect_attempts: int = 3
    verify_ssl: bool = False


@dataclass
class DeployDBConfig:
    server: str = 'mdt.example.local'
    port: int = 1433
    database: str = 'MDT'
    driver: str = DEFAULT_ODBC_DRIVER
    integrated_auth: bool = False
    username: str = ''
    url: str = ''
    retry_delay: float = 2.0


@dataclass
class RunConfig:
    register: bool = True
    pause: bool = False
    power_on: bool = True
    console: bool = False
    rehearsal: bool = False


@dataclass
class PathsConfig:
    vm_list: str = 'vms.csv'
    delimiter: str = ','


@dataclass
class DeployConfig:
    vcenter: VCenterConfig = field(default_factory=VCenterConfig)
    deploydb: DeployDBConfig = field(default_factory=DeployDBConfig)
    run: RunConfig = field(default_factory=RunConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    verbosity: int = 1

    def expanded_paths(self, base_dir: Path | None = None) -> 'DeployConfig':
        vm_list = expand(self.paths.vm_list) if self.paths.vm_list else ''
        if vm_list and base_dir is not None and not Path(vm_list).is_absolute():
            vm_list = str(base_dir / vm_list)
        self.paths.vm_list = vm_list
        return self

    def validate(self) -> 'DeployConfig':
        ctrl = self.vcenter.scsi_controller.strip().lower()
        if ctrl not in SCSI_CONTROLLER_TYPES:
            raise ConfigError(
                f'vcenter.scsi_controller={self.vcenter.scsi_controller!r} '
                f'must be one of: {", ".join(SCSI_CONTROLLER_TYPES)}'
            )
        fmt = self.vcenter.disk_format.strip().lower()
        if fmt not in DISK_FORMATS:
            raise ConfigError(
                f'vcenter.disk_format={self.vcenter.disk_format!r} '
                f'must be one of: {", ".join(DISK_FORMATS)}'
            )
        if int(self.vcenter.connect_attempts) < 1:
            raise ConfigError('vcenter.connect_attempts must be at least 1')
        if not self.vcenter.server.strip():
            raise ConfigError('vcenter.server is empty')
        self.vcenter.scsi_controller = ctrl
        self.vcenter.disk_format = fmt
        return self


_SECTIONS = ('vcenter', 'deploydb', 'run', 'paths')


def default_config_path() -> Path:
    local = Path('.vmdeploy.toml')
    if local.exists():
        return local.resolve()
    appdir = ub.Path.appdir('vmdeploy', type='config')
    return Path(appdir) / 'config.toml'


def _toml_escape(s: str) -> str:
    return s.replace('\\', '\\\\').replace('"', '\\"')


def dump_toml(cfg: DeployConfig) -> str:
    d = asdict(cfg)
    lines: list[str] = []
    if d.get('verbosity', 1) != 1:
        lines.append(f'verbosity = {d["verbosity"]}')
        lines.append('')
    for section in _SECTIONS:
        lines.append(f'[{section}]')
        for k, v in d[section].items():
            if isinstance(v, bool):
                lines.append(f'{k} = {"true" if v else "false"}')
            elif isinstance(v, (int, float)):
                lines.append(f'{k} = {v}')
            else:
                lines.append(f'{k} = "{_toml_escape(str(v))}"')
        lines.append('')
    return '\n'.join(lines).rstrip() + '\n'


def load(path: Path) -> DeployConfig:
    if not path.exists():
        raise InputError(
            f'Config not found: {path}. Run: vmdeploy config init --config {path}'
        )
    try:
        raw = tomllib.loads(path.read_text(encoding='utf-8'))
    except tomllib.TOMLDecodeError as ex:
        raise InputError(f'Config {path} is not valid TOML: {ex}') from ex
    cfg = DeployConfig()
    for section in _SECTIONS:
        if section in raw and isinstance(raw[section], dict):
            obj = getattr(cfg, section)
            for k, v in raw[section].items():
                if hasattr(obj, k):
                    setattr(obj, k, v)
    if 'verbosity' in raw:
        cfg.verbosity = int(raw['verbosity'])
    return cfg


def save(path: Path, cfg: DeployConfig) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dump_toml(cfg), encoding='utf-8')
