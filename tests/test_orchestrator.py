from __future__ import annotations

from pathlib import Path

import pytest
import sqlalchemy as sa

from vmdeploy.config import DeployDBConfig, RunConfig
from vmdeploy.deploydb import (
    DeploymentDatabase,
    DeploymentSettings,
    computer_identity,
    metadata,
)
from vmdeploy.errors import InputError, VMDeployError
from vmdeploy.orchestrator import Orchestrator, RunOptions

from conftest import snapshot_tree


@pytest.fixture
def db_cfg(tmp_path: Path) -> DeployDBConfig:
    url = f'sqlite:///{tmp_path / "mdt.db"}'
    engine = sa.create_engine(url)
    metadata.create_all(engine)
    engine.dispose()
    return DeployDBConfig(url=url, retry_delay=0)


def _identity_rows(cfg: DeployDBConfig) -> list:
    engine = sa.create_engine(cfg.url)
    try:
        with engine.connect() as conn:
            return list(conn.execute(sa.select(computer_identity)))
    finally:
        engine.dispose()


def _run(session, vcenter_cfg, db_cfg, specs, selection, **options):
    database = DeploymentDatabase(db_cfg)
    with database:
        orch = Orchestrator(
            session, vcenter_cfg, RunOptions(**options), database=database
        )
        return orch.run(specs, selection)


def test_run_options_from_config() -> None:
    run = RunConfig(register=True, pause=True, power_on=False)
    opts = RunOptions.from_config(run, pause=None, power_on=True, rehearsal=True)
    assert opts == RunOptions(
        register=True, pause=True, power_on=True, console=False, rehearsal=True
    )
    with pytest.raises(KeyError):
        RunOptions.from_config(run, bogus=True)


def test_registration_requires_database(session, vcenter_cfg) -> None:
    with pytest.raises(VMDeployError, match='no deployment database'):
        Orchestrator(session, vcenter_cfg, RunOptions(register=True))
    Orchestrator(session, vcenter_cfg, RunOptions(register=False))


def test_new_vm_is_created_and_registered(
    session, inventory, vcenter_cfg, db_cfg, make_spec
) -> None:
    report = _run(session, vcenter_cfg, db_cfg, [make_spec()], ['W10-01'])
    assert report.actions_for('W10-01') == ['create', 'lookup', 'insert', 'power-on']
    assert report.created == ['W10-01'] and report.registered == ['W10-01']
    create_config = inventory.calls[0][2]
    assert create_config.numCoresPerSocket == 2
    assert inventory.call_names()[-1] == 'PowerOnVM_Task'

    (row,) = _identity_rows(db_cfg)
    assert row.Description == 'W10-01'
    assert row.MacAddress == '00:50:56:AA:BB:CC'


def test_existing_vm_is_reset_not_registered(
    session, inventory, vcenter_cfg, db_cfg, make_spec
) -> None:
    calls = inventory.calls
    inventory.add_vm(
        'W10-02',
        power_state='poweredOn',
        snapshots=[snapshot_tree(calls, 'a'), snapshot_tree(calls, 'b')],
    )
    report = _run(session, vcenter_cfg, db_cfg, [make_spec('W10-02')], ['W10-02'])
    assert report.actions_for('W10-02') == ['reset', 'power-on']
    assert inventory.call_names() == [
        'PowerOffVM_Task',
        'RemoveSnapshot_Task',
        'RemoveSnapshot_Task',
        'ReconfigVM_Task',
        'ReconfigVM_Task',
        'PowerOnVM_Task',
    ]
    assert _identity_rows(db_cfg) == []


def test_reset_removes_each_snapshot_in_a_chain(
    session, inventory, vcenter_cfg, make_spec
) -> None:
    calls = inventory.calls
    chain = snapshot_tree(calls, 'base', [snapshot_tree(calls, 'child')])
    inventory.add_vm('W10-01', snapshots=[chain])
    opts = RunOptions(register=False, power_on=False)
    report = Orchestrator(session, vcenter_cfg, opts).run([make_spec()], ['W10-01'])
    removals = [c for c in calls if c[0] == 'RemoveSnapshot_Task']
    assert [c[1] for c in removals] == ['child', 'base']
    (decision,) = report.decisions
    assert decision.action == 'reset'
    assert decision.detail.startswith('2 snapshot(s) removed')


def test_known_mac_is_not_inserted_twice(
    session, inventory, vcenter_cfg, db_cfg, make_spec
) -> None:
    with DeploymentDatabase(db_cfg) as db:
        db.connect()
        db.insert_if_absent('OLD-PC', '00:50:56:AA:BB:CC', DeploymentSettings('X'))
    report = _run(session, vcenter_cfg, db_cfg, [make_spec()], ['W10-01'])
    assert report.actions_for('W10-01') == [
        'create',
        'lookup',
        'already-registered',
        'power-on',
    ]
    assert report.registered == []
    assert len(_identity_rows(db_cfg)) == 1


def test_each_vm_is_either_created_or_reset(
    session, inventory, vcenter_cfg, db_cfg, make_spec
) -> None:
    inventory.add_vm('B')
    specs = [make_spec('A'), make_spec('B'), make_spec('C')]
    report = _run(
        session, vcenter_cfg, db_cfg, specs, ['A', 'B', 'C'], power_on=False
    )
    assert report.created == ['A', 'C']
    assert report.reset == ['B']
    for name in 'ABC':
        actions = report.actions_for(name)
        assert ('create' in actions) != ('reset' in actions)


def test_rehearsal_matches_live_trace_without_mutations(
    inventory, session, vcenter_cfg, db_cfg, make_spec, monkeypatch
) -> None:
    opened = []
    monkeypatch.setattr(
        'vmdeploy.vsphere.session.webbrowser.open', lambda url: opened.append(url)
    )
    inventory.add_vm('B', power_state='poweredOn')
    specs = [make_spec('A'), make_spec('B')]

    rehearsal = _run(
        session, vcenter_cfg, db_cfg, specs, ['A', 'B'],
        rehearsal=True, console=True,
    )
    assert inventory.mutations() == []
    assert _identity_rows(db_cfg) == []
    assert rehearsal.rehearsal

    live = _run(
        session, vcenter_cfg, db_cfg, specs, ['A', 'B'], console=True
    )
    assert rehearsal.trace() == live.trace()
    assert len(opened) == 2
    assert live.trace() == [
        ('A', 'create'),
        ('A', 'lookup'),
        ('A', 'insert'),
        ('A', 'power-on'),
        ('A', 'console'),
        ('B', 'reset'),
        ('B', 'power-on'),
        ('B', 'console'),
    ]


def test_pause_waits_for_operator_outside_rehearsal(
    session, vcenter_cfg, make_spec
) -> None:
    acknowledged = []
    opts = RunOptions(register=False, pause=True, power_on=False)
    orch = Orchestrator(session, vcenter_cfg, opts, acknowledge=acknowledged.append)
    report = orch.run([make_spec()], ['W10-01'])
    assert report.actions_for('W10-01') == ['create', 'pause']
    assert acknowledged == ['W10-01 is ready for its manual step.']

    acknowledged.clear()
    opts = RunOptions(register=False, pause=True, power_on=False, rehearsal=True)
    orch = Orchestrator(session, vcenter_cfg, opts, acknowledge=acknowledged.append)
    orch.run([make_spec('W10-09')], ['W10-09'])
    assert acknowledged == []


def test_unknown_selection_fails_before_any_work(
    session, inventory, vcenter_cfg, make_spec
) -> None:
    orch = Orchestrator(session, vcenter_cfg, RunOptions(register=False))
    with pytest.raises(InputError):
        orch.run([make_spec()], ['W10-01', 'NOPE'])
    assert inventory.calls == []
