"""Reconcile Hyper-V virtual disks and host files against a declared state."""

from __future__ import annotations

__version__ = '0.1.0'
