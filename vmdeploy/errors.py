"""Project-specific exception types."""

from __future__ import annotations


class VMDeployError(RuntimeError):
    """Base error for domain-level vmdeploy failures."""


class InputError(VMDeployError):
    """Raised when the run configuration or VM list cannot be loaded."""


class ConfigError(InputError):
    """Raised when a configuration value is present but not usable."""


class HypervisorConnectionError(VMDeployError):
    """Raised when the vCenter connection cannot be established."""


class InventoryLookupError(VMDeployError):
    """Raised when a required vCenter inventory object does not exist."""


class HypervisorTaskError(VMDeployError):
    """Raised when a vCenter task finishes in the error state."""

    def __init__(self, description: str, fault: object = None):
        self.description = description
        self.fault = fault
        msg = getattr(fault, 'msg', None) or str(fault or 'unknown fault')
        super().__init__(f'{description} failed: {msg}')
