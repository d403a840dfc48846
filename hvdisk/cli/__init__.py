"""CLI package exports for top-level command entry points."""

from __future__ import annotations

from .main import HvDiskModalCLI, main

__all__ = ['HvDiskModalCLI', 'main']
