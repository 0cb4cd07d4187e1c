"""Shared helpers for path expansion, MAC addresses, and operator prompts."""

from __future__ import annotations

import getpass
import os
import re
import sys
from dataclasses import dataclass
from typing import Callable, Optional

from loguru import logger

log = logger

SENTINEL_MAC = '00:00:00:00:00:00'

_MAC_HEX_RE = re.compile(r'^[0-9A-Fa-f]{12}$')


def expand(path: str) -> str:
    return os.path.expandvars(os.path.expanduser(path))


def normalize_mac(mac: str) -> str:
    """
    Return a MAC address in uppercase, colon-delimited form.

    Accepts colon, dash, dot, or undelimited input. Anything that does not
    contain exactly twelve hex digits is returned stripped and uppercased so
    the caller can still use it as an exact-match key.

    Example:
        >>> normalize_mac('00-50-56-ab-cd-ef')
        '00:50:56:AB:CD:EF'
        >>> normalize_mac('0050.56ab.cdef')
        '00:50:56:AB:CD:EF'
    """
    raw = (mac or '').strip()
    digits = re.sub(r'[:\-\.]', '', raw)
    if not _MAC_HEX_RE.match(digits):
        return raw.upper()
    digits = digits.upper()
    return ':'.join(digits[i : i + 2] for i in range(0, 12, 2))


def gpu_profile_enabled(profile: str | None) -> bool:
    text = (profile or '').strip()
    return bool(text) and text.lower() != 'false'


def stdin_is_interactive() -> bool:
    return sys.stdin.isatty()


@dataclass
class CredentialPrompt:
    """Interactive source for usernames and passwords."""

    input_fn: Callable[[str], str] = input
    secret_fn: Callable[[str], str] = getpass.getpass

    def username(self, purpose: str, default: Optional[str] = None) -> str:
        if not stdin_is_interactive() and self.input_fn is input:
            raise RuntimeError(
                f'{purpose} requires a username, but stdin is not interactive. '
                'Pass it on the command line.'
            )
        suffix = f' [{default}]' if default else ''
        raw = self.input_fn(f'{purpose} username{suffix}: ').strip()
        return raw or (default or '')

    def password(self, purpose: str, username: str = '') -> str:
        if not stdin_is_interactive() and self.secret_fn is getpass.getpass:
            raise RuntimeError(
                f'{purpose} requires a password, but stdin is not interactive. '
                'Pass it on the command line.'
            )
        who = f' for {username}' if username else ''
        return self.secret_fn(f'{purpose} password{who}: ')


def wait_for_operator(message: str) -> None:
    if not stdin_is_interactive():
        raise RuntimeError(
            'Operator acknowledgment requested, but stdin is not interactive. '
            'Re-run without --pause.'
        )
    input(f'{message} Press Enter to continue...')
    log.debug('Operator acknowledged: {}', message)
