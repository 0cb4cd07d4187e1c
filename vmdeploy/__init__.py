"""Provision or reset vSphere VMs and register them for MDT deployment."""

__version__ = '0.1.0'
