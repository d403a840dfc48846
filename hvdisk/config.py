"""Manifest loading: host transport settings and the declared artifacts."""

from __future__ import annotations

import tomllib
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any

from .models import FileSpec, VhdSpec, VhdType
from .util import expand

DEFAULT_MANIFEST_NAME = '.hvdisk.toml'


@dataclass
class HostConfig:
    address: str = ''
    user: str = ''
    port: int = 22
    identity_file: str = ''
    known_hosts_file: str = ''
    strict_host_key_checking: str = 'accept-new'
    connect_timeout: int = 10
    script_timeout: int = 0
    shell: str = 'powershell'


@dataclass
class PathsConfig:
    state_file: str = ''


@dataclass
class ReconcileConfig:
    workers: int = 1


@dataclass
class HvDiskConfig:
    host: HostConfig = field(default_factory=HostConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    reconcile: ReconcileConfig = field(default_factory=ReconcileConfig)
    disks: list[VhdSpec] = field(default_factory=list)
    files: list[FileSpec] = field(default_factory=list)
    verbosity: int = 1

    def expanded_paths(self) -> 'HvDiskConfig':
        self.host.identity_file = (
            expand(self.host.identity_file) if self.host.identity_file else ''
        )
        self.host.known_hosts_file = (
            expand(self.host.known_hosts_file) if self.host.known_hosts_file else ''
        )
        self.paths.state_file = (
            expand(self.paths.state_file) if self.paths.state_file else ''
        )
        return self


_SECTIONS = ('host', 'paths', 'reconcile')


def _toml_escape(s: str) -> str:
    return s.replace('\\', '\\\\').replace('"', '\\"')


def emit_toml_kv(lines: list[str], key: str, val: object) -> None:
    if isinstance(val, Enum):
        val = val.value
    if isinstance(val, bool):
        lines.append(f'{key} = {"true" if val else "false"}')
    elif isinstance(val, int):
        lines.append(f'{key} = {val}')
    elif isinstance(val, list):
        parts = [f'"{_toml_escape(str(item))}"' for item in val]
        lines.append(f'{key} = [{", ".join(parts)}]')
    else:
        lines.append(f'{key} = "{_toml_escape(str(val))}"')


def vhd_from_dict(raw: dict[str, Any]) -> VhdSpec:
    known = {f.name for f in fields(VhdSpec)}
    kwargs = {k: v for k, v in raw.items() if k in known}
    if 'vhd_type' in kwargs:
        kwargs['vhd_type'] = VhdType.parse(kwargs['vhd_type'])
    for key in (
        'source_disk',
        'size',
        'block_size',
        'logical_sector_size',
        'physical_sector_size',
    ):
        if key in kwargs:
            kwargs[key] = int(kwargs[key])
    return VhdSpec(**kwargs)


def file_from_dict(raw: dict[str, Any]) -> FileSpec:
    known = {f.name for f in fields(FileSpec)}
    kwargs = {k: v for k, v in raw.items() if k in known}
    if 'size' in kwargs:
        kwargs['size'] = int(kwargs['size'])
    return FileSpec(**kwargs)


def dump_toml(cfg: HvDiskConfig) -> str:
    lines: list[str] = []
    if cfg.verbosity != 1:
        lines.append(f'verbosity = {cfg.verbosity}')
        lines.append('')
    for section in _SECTIONS:
        lines.append(f'[{section}]')
        for k, v in asdict(getattr(cfg, section)).items():
            emit_toml_kv(lines, k, v)
        lines.append('')
    for disk in cfg.disks:
        lines.append('[[disks]]')
        for f in fields(disk):
            emit_toml_kv(lines, f.name, getattr(disk, f.name))
        lines.append('')
    for item in cfg.files:
        lines.append('[[files]]')
        emit_toml_kv(lines, 'path', item.path)
        emit_toml_kv(lines, 'source', item.source)
        lines.append('')
    return '\n'.join(lines).rstrip() + '\n'


def loads(text: str) -> HvDiskConfig:
    raw = tomllib.loads(text)
    cfg = HvDiskConfig()
    for section in _SECTIONS:
        if section in raw and isinstance(raw[section], dict):
            obj = getattr(cfg, section)
            for k, v in raw[section].items():
                if hasattr(obj, k):
                    setattr(obj, k, v)
    for item in raw.get('disks', []):
        if isinstance(item, dict):
            cfg.disks.append(vhd_from_dict(item))
    for item in raw.get('files', []):
        if isinstance(item, dict):
            cfg.files.append(file_from_dict(item))
    if 'verbosity' in raw:
        cfg.verbosity = int(raw['verbosity'])
    return cfg


def load(path: Path) -> HvDiskConfig:
    return loads(path.read_text(encoding='utf-8'))


def save(path: Path, cfg: HvDiskConfig) -> None:
    path.write_text(dump_toml(cfg), encoding='utf-8')
