from __future__ import annotations

import pytest

from hvdisk.models import FileSpec, VhdInfo, VhdSpec, VhdType, change_set, observed_vhd


def test_vhd_type_parse() -> None:
    assert VhdType.parse('fixed') == VhdType.FIXED
    assert VhdType.parse(4) == VhdType.DIFFERENCING
    assert VhdType.parse(None) == VhdType.UNKNOWN
    assert VhdType.parse(VhdType.DYNAMIC) == VhdType.DYNAMIC
    with pytest.raises(ValueError):
        VhdType.parse('sparse')


def test_change_set_fieldwise() -> None:
    desired = VhdSpec(path='C:\\a.vhdx', size=10, parent_path='C:\\base.vhdx')
    assert change_set(desired, None) == frozenset(
        f for f in VhdSpec.__dataclass_fields__
    )
    assert change_set(desired, desired) == frozenset()
    observed = VhdSpec(path='C:\\a.vhdx', size=5)
    assert change_set(desired, observed) == {'size', 'parent_path'}
    with pytest.raises(TypeError):
        change_set(desired, FileSpec(path='C:\\a.vhdx'))


def test_observed_vhd_carries_creation_attributes() -> None:
    desired = VhdSpec(path='C:\\a.vhdx', source_vm='tmpl', source_disk=1)
    info = VhdInfo.from_payload(
        {'Path': 'C:\\a.vhdx', 'VhdType': 3, 'Size': 9, 'ParentPath': None}
    )
    observed = observed_vhd(info, desired)
    assert observed.source_vm == 'tmpl'
    assert observed.source_disk == 1
    assert observed.vhd_type == VhdType.DYNAMIC
    assert observed.parent_path == ''
    assert observed.size == 9


def test_change_set_compares_paths_as_the_host_does() -> None:
    desired = VhdSpec(path='c:/vms/Child.vhdx', parent_path='C:/vms/base.vhdx')
    observed = VhdSpec(
        path='C:\\vms\\child.vhdx',
        parent_path='C:\\VMs\\base.vhdx',
        vhd_type=VhdType.DIFFERENCING,
    )
    assert change_set(desired, observed) == frozenset()
    moved = VhdSpec(path='C:\\vms\\child.vhdx', parent_path='C:\\vms\\other.vhdx')
    assert change_set(desired, moved) == {'parent_path'}


def test_zero_sizes_leave_the_choice_to_the_host() -> None:
    desired = VhdSpec(path='C:\\a.vhdx', size=0)
    observed = VhdSpec(
        path='C:\\a.vhdx',
        size=5,
        block_size=33554432,
        logical_sector_size=512,
        physical_sector_size=4096,
    )
    assert change_set(desired, observed) == frozenset()
    assert change_set(FileSpec(path='C:\\a.iso'), FileSpec(path='C:\\a.iso', size=7)) == frozenset()
    assert change_set(VhdSpec(path='C:\\a.vhdx', block_size=2097152), observed) == {
        'block_size'
    }
