"""Result dataclasses returned by create/reset and run orchestration."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class CreateResult:
    vm_name: str
    cores_per_socket: int
    sockets: int
    network_backing: str = ''
    steps: list[str] = field(default_factory=list)


@dataclass
class ResetResult:
    vm_name: str
    powered_off: bool = False
    snapshots_removed: list[str] = field(default_factory=list)
    disk_removed: str = ''
    disk_created_gb: int = 0


@dataclass(frozen=True)
class Decision:
    vm_name: str
    action: str
    detail: str = ''

    def __str__(self) -> str:
        text = f'{self.vm_name}: {self.action}'
        return f'{text} ({self.detail})' if self.detail else text


@dataclass
class RunReport:
    rehearsal: bool = False
    decisions: list[Decision] = field(default_factory=list)
    created: list[str] = field(default_factory=list)
    reset: list[str] = field(default_factory=list)
    registered: list[str] = field(default_factory=list)

    def actions_for(self, vm_name: str) -> list[str]:
        return [d.action for d in self.decisions if d.vm_name == vm_name]

    def trace(self) -> list[tuple[str, str]]:
        return [(d.vm_name, d.action) for d in self.decisions]
