"""Tests for the Hyper-V artifact client."""

from __future__ import annotations

import json

import pytest

from hvdisk.client import HypervClient
from hvdisk.errors import ArgumentError, DecodeError, RenderError
from hvdisk.models import VhdSpec, VhdType
from hvdisk.templates import TemplateRegistry


class FakeExecutor:
    def __init__(self, payload=None):
        self.payload = payload if payload is not None else {}
        self.fired = []
        self.queried = []

    def run_fire_and_forget(self, script):
        self.fired.append(script)

    def run_with_result(self, script):
        self.queried.append(script)
        return self.payload


def test_create_or_update_vhd_embeds_structured_arguments() -> None:
    ex = FakeExecutor()
    spec = VhdSpec(
        path="C:\\vms\\o'brien.vhdx",
        vhd_type=VhdType.FIXED,
        size=1073741824,
        block_size=0,
    )
    HypervClient(ex).create_or_update_vhd(spec, replace=True)
    (script,) = ex.fired
    assert script.operation == 'create_or_update_vhd'
    assert script.target == spec.path
    vhd_line = [ln for ln in script.text.splitlines() if ln.startswith('$vhd = ')][0]
    literal = vhd_line[len("$vhd = ('"):-len("' | ConvertFrom-Json)")]
    payload = json.loads(literal.replace("''", "'"))
    assert payload['Path'] == spec.path
    assert payload['VhdType'] == 'Fixed'
    assert payload['Size'] == 1073741824
    assert '$replace = $true' in script.text.splitlines()


def test_get_vhd_absent_returns_zero_identity() -> None:
    info = HypervClient(FakeExecutor({})).get_vhd('C:\\vms\\missing.vhdx')
    assert info.path == ''
    assert info.exists is False


def test_get_vhd_decodes_payload() -> None:
    payload = {
        'Path': 'C:\\vms\\child.vhdx',
        'VhdFormat': 'VHDX',
        'VhdType': 'Differencing',
        'ParentPath': 'C:\\vms\\base.vhdx',
        'Size': 2147483648,
        'FileSize': 4194304,
        'MinimumSize': None,
        'BlockSize': 2097152,
        'LogicalSectorSize': 512,
        'PhysicalSectorSize': 4096,
        'Attached': False,
    }
    info = HypervClient(FakeExecutor(payload)).get_vhd('C:\\vms\\child.vhdx')
    assert info.exists
    assert info.vhd_type == VhdType.DIFFERENCING
    assert info.parent_path == 'C:\\vms\\base.vhdx'
    assert info.size == 2147483648
    assert info.minimum_size == 0


def test_get_file_decodes_payload() -> None:
    ex = FakeExecutor({'Path': 'C:\\iso\\a.iso', 'Size': 123})
    info = HypervClient(ex).get_file('C:\\iso\\a.iso')
    assert (info.path, info.size) == ('C:\\iso\\a.iso', 123)
    assert ex.queried[0].operation == 'get_file'


def test_resize_rejects_differencing_before_remote_call() -> None:
    ex = FakeExecutor()
    client = HypervClient(ex)
    with pytest.raises(ArgumentError, match='differencing'):
        client.resize_vhd('C:\\vms\\a.vhdx', 10, parent_path='C:\\vms\\base.vhdx')
    with pytest.raises(ArgumentError):
        client.resize_vhd('C:\\vms\\a.vhdx', -1)
    assert ex.fired == []
    client.resize_vhd('C:\\vms\\a.vhdx', 2147483648)
    assert '$size = 2147483648' in ex.fired[0].text


def test_delete_verbs_fire_and_forget() -> None:
    ex = FakeExecutor()
    client = HypervClient(ex)
    client.delete_vhd('C:\\vms\\a.vhdx')
    client.delete_file('C:\\iso\\a.iso')
    assert [s.operation for s in ex.fired] == ['delete_vhd', 'delete_file']


def test_render_error_happens_before_execution() -> None:
    ex = FakeExecutor()
    client = HypervClient(ex, registry=TemplateRegistry())
    with pytest.raises(RenderError):
        client.create_or_update_file('C:\\a.txt')
    assert ex.fired == []


def test_malformed_payload_is_decode_error_with_context() -> None:
    ex = FakeExecutor({'Path': 'C:\\vms\\a.vhdx', 'Size': 'n/a'})
    with pytest.raises(DecodeError) as info:
        HypervClient(ex).get_vhd('C:\\vms\\a.vhdx')
    assert info.value.op == 'get_vhd'
    assert info.value.path == 'C:\\vms\\a.vhdx'
    assert '"n/a"' in info.value.raw

    ex = FakeExecutor({'Path': 'C:\\vms\\a.vhdx', 'VhdType': 'Sparse'})
    with pytest.raises(DecodeError, match='get_vhd'):
        HypervClient(ex).get_vhd('C:\\vms\\a.vhdx')
