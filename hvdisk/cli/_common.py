from __future__ import annotations

from pathlib import Path
from typing import Callable

import scriptconfig as scfg
from loguru import logger

from ..client import HypervClient
from ..config import DEFAULT_MANIFEST_NAME, HvDiskConfig, load
from ..executor import ScriptExecutor
from ..reconcile import Batch
from ..runtime import make_runner
from ..store import (
    KIND_FILE,
    KIND_VHD,
    ResourceState,
    StateStore,
    load_store,
    record_state,
    resource_state,
    save_store,
)

log = logger


class _BaseCommand(scfg.DataConfig):
    """Base options shared by all commands."""

    config = scfg.Value(
        None, help=f'Path to manifest TOML (default: {DEFAULT_MANIFEST_NAME}).'
    )
    verbose = scfg.Value(
        0,
        short_alias=['v'],
        isflag='counter',
        help='Increase verbosity (-v, -vv).',
    )


def _cfg_path(p: str | None) -> Path:
    return Path(p or DEFAULT_MANIFEST_NAME).resolve()


def _load_cfg(config_path: str | None) -> HvDiskConfig:
    cfg, _ = _load_cfg_with_path(config_path)
    return cfg


def _load_cfg_with_path(config_path: str | None) -> tuple[HvDiskConfig, Path]:
    path = _cfg_path(config_path)
    if not path.exists():
        raise FileNotFoundError(
            f'Manifest not found: {path}. Pass --config or create {DEFAULT_MANIFEST_NAME}.'
        )
    return load(path).expanded_paths(), path


def _state_file(cfg: HvDiskConfig) -> Path | None:
    return Path(cfg.paths.state_file) if cfg.paths.state_file else None


def _load_states(
    cfg: HvDiskConfig, *, only_path: str = ''
) -> tuple[StateStore, list[ResourceState]]:
    store = load_store(_state_file(cfg))
    states: list[ResourceState] = []
    for disk in cfg.disks:
        states.append(resource_state(store, KIND_VHD, disk))
    for item in cfg.files:
        states.append(resource_state(store, KIND_FILE, item))
    if only_path:
        want = only_path.casefold()
        states = [s for s in states if s.desired.path.casefold() == want]
        if not states:
            raise RuntimeError(f'No declared disk or file with path {only_path}')
    return store, states


def _client_factory(
    cfg: HvDiskConfig, *, dry_run: bool = False
) -> Callable[[], HypervClient]:
    def make_client() -> HypervClient:
        return HypervClient(ScriptExecutor(make_runner(cfg.host, dry_run=dry_run)))

    return make_client


def _record_batch(cfg: HvDiskConfig, store: StateStore, batch: Batch) -> Path:
    for outcome in batch.outcomes:
        record_state(store, outcome.state)
    return save_store(store, _state_file(cfg))


def _print_batch(batch: Batch, operation: str) -> int:
    for outcome in batch.outcomes:
        st = outcome.state
        if outcome.ok:
            size = st.get_observed('size') if st.exists else '-'
            print(
                f'✅ {operation} {st.kind} {st.desired.path} '
                f'| exists={"yes" if st.exists else "no"} | size={size}'
            )
        else:
            print(f'❌ {operation} {st.kind} {st.desired.path}: {outcome.error}')
    return 2 if batch.failed else 0


__all__ = [name for name in globals() if not name.startswith('__')]
