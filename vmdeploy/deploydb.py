"""Deployment (MDT) database gateway: MAC lookup and idempotent registration."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional

from loguru import logger
from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    String,
    Table,
    and_,
    create_engine,
    select,
    text,
)
from sqlalchemy.engine import URL, Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from .config import DeployDBConfig
from .errors import VMDeployError
from .util import CredentialPrompt, normalize_mac

log = logger

metadata = MetaData()

computer_identity = Table(
    'ComputerIdentity',
    metadata,
    Column('ID', Integer, primary_key=True, autoincrement=True),
    Column('Description', String(255)),
    Column('MacAddress', String(50)),
)

settings_table = Table(
    'Settings',
    metadata,
    Column('Type', String(1), primary_key=True),
    Column('ID', Integer, primary_key=True, autoincrement=False),
    Column('TaskSequenceID', String(50)),
    Column('OSInstall', String(50)),
    Column('SkipApplications', String(50)),
    Column('SkipTaskSequence', String(50)),
)

# Settings rows keyed to a ComputerIdentity row use type 'C'.
COMPUTER_SETTINGS_TYPE = 'C'


def _flag(value: bool) -> str:
    return 'YES' if value else 'NO'


@dataclass(frozen=True)
class DeploymentSettings:
    task_sequence_id: str
    os_install: bool = True
    skip_applications: bool = True
    skip_task_sequence: bool = True

    def as_row(self, identity_id: int) -> dict[str, object]:
        return {
            'Type': COMPUTER_SETTINGS_TYPE,
            'ID': identity_id,
            'TaskSequenceID': self.task_sequence_id,
            'OSInstall': _flag(self.os_install),
            'SkipApplications': _flag(self.skip_applications),
            'SkipTaskSequence': _flag(self.skip_task_sequence),
        }


@dataclass(frozen=True)
class DeploymentRecord:
    identity_id: int
    mac_address: str
    description: str
    task_sequence_id: str = ''


def build_url(
    cfg: DeployDBConfig,
    username: Optional[str] = None,
    password: Optional[str] = None,
) -> URL | str:
    if cfg.url:
        return cfg.url
    query = {'driver': cfg.driver, 'TrustServerCertificate': 'yes'}
    if cfg.integrated_auth:
        query['Trusted_Connection'] = 'yes'
        username = password = None
    return URL.create(
        'mssql+pyodbc',
        username=username or None,
        password=password or None,
        host=cfg.server,
        port=int(cfg.port) if cfg.port else None,
        database=cfg.database,
        query=query,
    )


class DeploymentDatabase:
    """
    Connection to the deployment database, opened lazily and held for the run.

    ``connect`` keeps retrying until it succeeds. With SQL authentication a
    failed attempt forgets the username so the operator is asked again;
    integrated authentication never prompts.
    """

    def __init__(
        self,
        cfg: DeployDBConfig,
        *,
        username: Optional[str] = None,
        password: Optional[str] = None,
        prompt: Optional[CredentialPrompt] = None,
        dry_run: bool = False,
    ):
        self.cfg = cfg
        self.username = username or cfg.username or None
        self.password = password or None
        self.prompt = prompt or CredentialPrompt()
        self.dry_run = dry_run
        self.engine: Engine | None = None

    @property
    def connected(self) -> bool:
        return self.engine is not None

    def __enter__(self) -> 'DeploymentDatabase':
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _needs_credentials(self) -> bool:
        return not self.cfg.url and not self.cfg.integrated_auth

    def _ensure_credentials(self) -> None:
        if not self._needs_credentials() or self.username:
            return
        purpose = f'Deployment database {self.cfg.server}/{self.cfg.database}'
        self.username = self.prompt.username(purpose) or None
        self.password = self.prompt.password(purpose, self.username or '')

    def connect(self) -> 'DeploymentDatabase':
        if self.connected:
            return self
        attempt = 0
        while True:
            attempt += 1
            self._ensure_credentials()
            url = build_url(self.cfg, self.username, self.password)
            log.info(
                'Connecting to deployment database {}/{} (attempt {})',
                self.cfg.server,
                self.cfg.database,
                attempt,
            )
            engine = None
            try:
                engine = create_engine(url, pool_pre_ping=True)
                with engine.connect() as conn:
                    conn.execute(text('SELECT 1'))
            except (SQLAlchemyError, OSError) as ex:
                log.warning('Deployment database connection failed: {}', ex)
                if engine is not None:
                    engine.dispose()
                if self._needs_credentials():
                    self.username = None
                    self.password = None
                time.sleep(float(self.cfg.retry_delay))
                continue
            self.engine = engine
            log.info('Connected to deployment database')
            return self

    def close(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
            self.engine = None
            log.debug('Closed deployment database connection')

    def _require_engine(self) -> Engine:
        if self.engine is None:
            raise VMDeployError('Deployment database is not connected')
        return self.engine

    @staticmethod
    def _lookup(conn: Connection, mac: str) -> DeploymentRecord | None:
        settings_join = computer_identity.outerjoin(
            settings_table,
            and_(
                settings_table.c.ID == computer_identity.c.ID,
                settings_table.c.Type == COMPUTER_SETTINGS_TYPE,
            ),
        )
        query = (
            select(
                computer_identity.c.ID,
                computer_identity.c.MacAddress,
                computer_identity.c.Description,
                settings_table.c.TaskSequenceID,
            )
            .select_from(settings_join)
            .where(computer_identity.c.MacAddress == mac)
            .order_by(computer_identity.c.ID)
        )
        row = conn.execute(query).first()
        if row is None:
            return None
        return DeploymentRecord(
            identity_id=int(row.ID),
            mac_address=row.MacAddress,
            description=row.Description or '',
            task_sequence_id=row.TaskSequenceID or '',
        )

    def lookup_by_mac(self, mac_address: str) -> DeploymentRecord | None:
        mac = normalize_mac(mac_address)
        with self._require_engine().connect() as conn:
            record = self._lookup(conn, mac)
        log.debug('Lookup MAC {}: {}', mac, record or 'absent')
        return record

    def insert_if_absent(
        self,
        description: str,
        mac_address: str,
        settings: DeploymentSettings,
    ) -> int | None:
        """
        Register ``mac_address`` unless a record for it already exists.

        Returns the identity ID of the new or existing record, or None in
        dry-run mode. Both rows are written in one transaction.
        """
        mac = normalize_mac(mac_address)
        if self.dry_run:
            log.info(
                'DRYRUN: insert ComputerIdentity({}, {}) with task sequence {}',
                mac,
                description,
                settings.task_sequence_id,
            )
            return None
        with self._require_engine().begin() as conn:
            existing = self._lookup(conn, mac)
            if existing is not None:
                log.info(
                    'MAC {} already registered as {} (ID {}); not inserting',
                    mac,
                    existing.description,
                    existing.identity_id,
                )
                return existing.identity_id
            result = conn.execute(
                computer_identity.insert().values(
                    Description=description, MacAddress=mac
                )
            )
            identity_id = int(result.inserted_primary_key[0])
            conn.execute(
                settings_table.insert().values(**settings.as_row(identity_id))
            )
        log.info(
            'Registered {} ({}) as ID {} with task sequence {}',
            description,
            mac,
            identity_id,
            settings.task_sequence_id,
        )
        return identity_id


__all__ = [
    'DeploymentDatabase',
    'DeploymentRecord',
    'DeploymentSettings',
    'build_url',
    'computer_identity',
    'metadata',
    'settings_table',
]
