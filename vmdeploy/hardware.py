"""CPU socket layout derived from the requested vCPU count and guest OS."""

from __future__ import annotations

from dataclasses import dataclass

_SERVER_HINTS = ('srv', 'server')


@dataclass(frozen=True)
class HardwareLayout:
    sockets: int
    cores_per_socket: int


def is_server_guest(guest_id: str) -> bool:
    text = (guest_id or '').lower()
    return any(hint in text for hint in _SERVER_HINTS)


def derive_layout(vcpus: int, guest_id: str) -> HardwareLayout:
    """
    Split ``vcpus`` into sockets and cores per socket.

    Desktop guests with an even count get two sockets; odd counts and any
    server guest get a single socket holding every core.

    Example:
        >>> derive_layout(4, 'windows9_64Guest')
        HardwareLayout(sockets=2, cores_per_socket=2)
        >>> derive_layout(4, 'windows2019srv_64Guest')
        HardwareLayout(sockets=1, cores_per_socket=4)
        >>> derive_layout(3, 'windows9_64Guest')
        HardwareLayout(sockets=1, cores_per_socket=3)
    """
    if vcpus < 1:
        raise ValueError(f'vcpus must be positive, got {vcpus}')
    if is_server_guest(guest_id) or vcpus % 2:
        cores = vcpus
    else:
        cores = vcpus // 2
    return HardwareLayout(sockets=vcpus // cores, cores_per_socket=cores)
