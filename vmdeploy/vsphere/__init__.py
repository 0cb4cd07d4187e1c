"""vSphere access: session, device specs, and VM lifecycle sequences."""

from __future__ import annotations

from . import devices
from .lifecycle import create_vm, hardware_steps, reset_vm
from .session import HypervisorSession

__all__ = [
    'HypervisorSession',
    'create_vm',
    'devices',
    'hardware_steps',
    'reset_vm',
]
