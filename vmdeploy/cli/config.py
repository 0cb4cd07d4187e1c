from __future__ import annotations

import sys

import scriptconfig as scfg

from ..config import DeployConfig, dump_toml, save
from ._common import _BaseCommand, _cfg_path, _load_cfg_with_path


class InitCLI(_BaseCommand):
    """Write a config file with default settings."""

    force = scfg.Value(
        False, isflag=True, help='Overwrite an existing config file.'
    )
    vcenter = scfg.Value('', help='vCenter server to write into the file.')
    cluster = scfg.Value('', help='Cluster or resource pool name.')
    deploydb = scfg.Value('', help='Deployment database server.')
    vm_list = scfg.Value('', help='Path of the VM list CSV.')

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        path = _cfg_path(args.config)
        if path.exists() and not args.force:
            print(f'Config already exists: {path}', file=sys.stderr)
            print('Use --force to overwrite it.', file=sys.stderr)
            return 2
        cfg = DeployConfig()
        if args.vcenter:
            cfg.vcenter.server = str(args.vcenter)
        if args.cluster:
            cfg.vcenter.cluster = str(args.cluster)
        if args.deploydb:
            cfg.deploydb.server = str(args.deploydb)
        if args.vm_list:
            cfg.paths.vm_list = str(args.vm_list)
        save(path, cfg.validate())
        print(f'Wrote config: {path}')
        return 0


class ConfigShowCLI(_BaseCommand):
    """Show the resolved config content."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        cfg, path = _load_cfg_with_path(args.config)
        print(f'# Config: {path}')
        print(dump_toml(cfg), end='')
        return 0


class ConfigPathCLI(_BaseCommand):
    """Show which config file would be used."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        path = _cfg_path(args.config)
        print(f'config = {path} ({"exists" if path.exists() else "missing"})')
        return 0


class ConfigModalCLI(scfg.ModalCLI):
    """Config file management."""

    init = InitCLI
    show = ConfigShowCLI
    path = ConfigPathCLI
