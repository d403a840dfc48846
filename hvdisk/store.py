"""Attribute store: per-artifact desired/observed state and the on-disk state file."""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import ubelt as ub

from .config import emit_toml_kv, file_from_dict, vhd_from_dict
from .models import FileSpec, VhdSpec, change_set, path_key

KIND_VHD = 'vhd'
KIND_FILE = 'file'

_BLANK = {KIND_VHD: VhdSpec(), KIND_FILE: FileSpec()}


@dataclass
class ResourceState:
    """Desired and last observed attributes of one artifact instance.

    ``observed`` is ``None`` until the first successful read.
    """

    kind: str
    desired: Any
    observed: Any | None = None
    exists: bool = False
    id: str = ''

    def get_desired(self, name: str) -> Any:
        return getattr(self.desired, name)

    def get_observed(self, name: str) -> Any:
        if self.observed is None:
            return None
        return getattr(self.observed, name)

    def change_set(self) -> frozenset[str]:
        return change_set(self.desired, self.observed)

    def has_changed(self, name: str) -> bool:
        return name in self.change_set()

    def set_observed(self, name: str, value: Any) -> None:
        base = self.observed if self.observed is not None else _BLANK[self.kind]
        self.observed = replace(base, **{name: value})

    def set_id(self, path: str) -> None:
        self.id = path

    def forget(self) -> None:
        """Mark the artifact absent after a confirmed delete or empty read."""
        self.observed = None
        self.exists = False


@dataclass
class StateStore:
    schema_version: int = 1
    vhds: list[VhdSpec] = field(default_factory=list)
    files: list[FileSpec] = field(default_factory=list)


def state_path() -> Path:
    p = ub.Path.appdir('hvdisk', type='data').ensuredir()
    return Path(p) / 'state.toml'


_key = path_key


def _records(store: StateStore, kind: str) -> list:
    return store.vhds if kind == KIND_VHD else store.files


def find_observed(store: StateStore, kind: str, path: str) -> Any | None:
    for rec in _records(store, kind):
        if _key(rec.path) == _key(path):
            return rec
    return None


def resource_state(store: StateStore, kind: str, desired: Any) -> ResourceState:
    observed = find_observed(store, kind, desired.path)
    return ResourceState(
        kind=kind,
        desired=desired,
        observed=observed,
        exists=observed is not None,
        id=observed.path if observed is not None else '',
    )


def record_state(store: StateStore, state: ResourceState) -> None:
    """Write the observed side of ``state`` back into the store."""
    records = _records(store, state.kind)
    keys = {_key(state.desired.path)}
    if state.id:
        keys.add(_key(state.id))
    kept = [rec for rec in records if _key(rec.path) not in keys]
    if state.exists and state.observed is not None:
        kept.append(state.observed)
    records[:] = kept


def load_store(path: Path | None = None) -> StateStore:
    fpath = path or state_path()
    if not fpath.exists():
        return StateStore()
    raw = tomllib.loads(fpath.read_text(encoding='utf-8'))
    store = StateStore()
    store.schema_version = int(raw.get('schema_version', 1))
    for item in raw.get('vhds', []):
        if isinstance(item, dict) and str(item.get('path', '')).strip():
            store.vhds.append(vhd_from_dict(item))
    for item in raw.get('files', []):
        if isinstance(item, dict) and str(item.get('path', '')).strip():
            store.files.append(file_from_dict(item))
    return store


def save_store(store: StateStore, path: Path | None = None) -> Path:
    fpath = path or state_path()
    fpath.parent.mkdir(parents=True, exist_ok=True)
    lines: list[str] = [f'schema_version = {store.schema_version}', '']
    for table, records in (('vhds', store.vhds), ('files', store.files)):
        for rec in sorted(records, key=lambda r: _key(r.path)):
            lines.append(f'[[{table}]]')
            for f in fields(rec):
                emit_toml_kv(lines, f.name, getattr(rec, f.name))
            lines.append('')
    fpath.write_text('\n'.join(lines).rstrip() + '\n', encoding='utf-8')
    return fpath
