"""CLI package exports for top-level command entry points."""

from __future__ import annotations

from .main import VMDeployModalCLI, main

__all__ = ['VMDeployModalCLI', 'main']
