"""Typed attribute records for storage artifacts and host payload decoding."""

from __future__ import annotations

from dataclasses import dataclass, fields
from enum import Enum
from typing import Any


class VhdType(str, Enum):
    UNKNOWN = 'Unknown'
    FIXED = 'Fixed'
    DYNAMIC = 'Dynamic'
    DIFFERENCING = 'Differencing'

    @classmethod
    def parse(cls, value: Any) -> 'VhdType':
        """Accept enum names, case-insensitive strings, or Hyper-V's numeric values."""
        if isinstance(value, VhdType):
            return value
        if value is None or value == '':
            return cls.UNKNOWN
        if isinstance(value, int) and not isinstance(value, bool):
            return _VHD_TYPE_CODES.get(value, cls.UNKNOWN)
        text = str(value).strip().lower()
        for item in cls:
            if item.value.lower() == text:
                return item
        raise ValueError(f'Unknown vhd type: {value!r}')


# Microsoft.Vhd.PowerShell.VhdType
_VHD_TYPE_CODES = {
    0: VhdType.UNKNOWN,
    2: VhdType.FIXED,
    3: VhdType.DYNAMIC,
    4: VhdType.DIFFERENCING,
}

# Attributes fixed at creation time. Changing any of them forces a recreate.
FILE_RECREATE_FIELDS = frozenset({'path', 'source'})
VHD_RECREATE_FIELDS = frozenset(
    {'path', 'source', 'source_vm', 'source_disk', 'parent_path'}
)
PATH_FIELDS = frozenset({'path', 'parent_path'})
# Sizes where 0 means "whatever the host picks".
HOST_DEFAULT_FIELDS = frozenset(
    {'size', 'block_size', 'logical_sector_size', 'physical_sector_size'}
)


@dataclass(frozen=True)
class FileSpec:
    """Desired or observed attributes of a plain host file."""

    path: str = ''
    source: str = ''
    size: int = 0


@dataclass(frozen=True)
class VhdSpec:
    """Desired or observed attributes of a virtual disk."""

    path: str = ''
    source: str = ''
    source_vm: str = ''
    source_disk: int = 0
    vhd_type: VhdType = VhdType.DYNAMIC
    parent_path: str = ''
    size: int = 0
    block_size: int = 0
    logical_sector_size: int = 0
    physical_sector_size: int = 0

    @property
    def is_differencing(self) -> bool:
        return bool(self.parent_path) or self.vhd_type == VhdType.DIFFERENCING

    def as_payload(self) -> dict[str, Any]:
        """Structure handed to the create-or-update template."""
        return {
            'Path': self.path,
            'VhdType': self.vhd_type.value,
            'ParentPath': self.parent_path,
            'Size': int(self.size),
            'BlockSize': int(self.block_size),
            'LogicalSectorSize': int(self.logical_sector_size),
            'PhysicalSectorSize': int(self.physical_sector_size),
        }


@dataclass(frozen=True)
class FileInfo:
    """File as reported by the host. An empty path means absent."""

    path: str = ''
    size: int = 0

    @property
    def exists(self) -> bool:
        return bool(self.path)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> 'FileInfo':
        return cls(
            path=_payload_str(payload, 'Path'),
            size=_payload_int(payload, 'Size'),
        )


@dataclass(frozen=True)
class VhdInfo:
    """Virtual disk as reported by ``Get-VHD``. An empty path means absent."""

    path: str = ''
    vhd_format: str = ''
    vhd_type: VhdType = VhdType.UNKNOWN
    parent_path: str = ''
    size: int = 0
    file_size: int = 0
    minimum_size: int = 0
    block_size: int = 0
    logical_sector_size: int = 0
    physical_sector_size: int = 0
    attached: bool = False

    @property
    def exists(self) -> bool:
        return bool(self.path)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> 'VhdInfo':
        return cls(
            path=_payload_str(payload, 'Path'),
            vhd_format=_payload_str(payload, 'VhdFormat'),
            vhd_type=VhdType.parse(payload.get('VhdType')),
            parent_path=_payload_str(payload, 'ParentPath'),
            size=_payload_int(payload, 'Size'),
            file_size=_payload_int(payload, 'FileSize'),
            minimum_size=_payload_int(payload, 'MinimumSize'),
            block_size=_payload_int(payload, 'BlockSize'),
            logical_sector_size=_payload_int(payload, 'LogicalSectorSize'),
            physical_sector_size=_payload_int(payload, 'PhysicalSectorSize'),
            attached=bool(payload.get('Attached') or False),
        )


def _payload_str(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    return '' if value is None else str(value)


def _payload_int(payload: dict[str, Any], key: str) -> int:
    value = payload.get(key)
    if value is None or value == '':
        return 0
    return int(value)


def observed_file(info: FileInfo, desired: FileSpec) -> FileSpec:
    # source is not observable on the host; keep what created the file
    return FileSpec(path=info.path, source=desired.source, size=info.size)


def observed_vhd(info: VhdInfo, desired: VhdSpec) -> VhdSpec:
    return VhdSpec(
        path=info.path,
        source=desired.source,
        source_vm=desired.source_vm,
        source_disk=desired.source_disk,
        vhd_type=info.vhd_type,
        parent_path=info.parent_path,
        size=info.size,
        block_size=info.block_size,
        logical_sector_size=info.logical_sector_size,
        physical_sector_size=info.physical_sector_size,
    )


def path_key(path: str) -> str:
    # Windows paths are case-insensitive and accept either separator
    return (path or '').replace('/', '\\').casefold()


def _matches(desired: Any, name: str, have: Any) -> bool:
    want = getattr(desired, name)
    if name in PATH_FIELDS:
        return path_key(want) == path_key(have)
    if name in HOST_DEFAULT_FIELDS and want == 0:
        return True
    if name == 'vhd_type' and desired.parent_path:
        return have in (want, VhdType.DIFFERENCING)
    return want == have


def change_set(desired: Any, observed: Any | None) -> frozenset[str]:
    """Names of the fields whose desired value differs from the observed one.

    Paths compare the way the host resolves them, a zero size leaves the value
    to the host, and a disk with a parent is always reported as differencing.
    """
    if observed is None:
        return frozenset(f.name for f in fields(desired))
    if type(desired) is not type(observed):
        raise TypeError(
            f'Cannot diff {type(desired).__name__} against {type(observed).__name__}'
        )
    return frozenset(
        f.name
        for f in fields(desired)
        if not _matches(desired, f.name, getattr(observed, f.name))
    )
