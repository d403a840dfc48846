"""Tests for script rendering and the template registry."""

from __future__ import annotations

import pytest

from hvdisk.errors import RenderError
from hvdisk.models import VhdType
from hvdisk.templates import (
    GET_VHD,
    ScriptTemplate,
    TemplateRegistry,
    default_registry,
    ps_literal,
)


def test_ps_literal_scalars() -> None:
    assert ps_literal('C:\\vms\\a.vhdx') == "'C:\\vms\\a.vhdx'"
    assert ps_literal(True) == '$true'
    assert ps_literal(False) == '$false'
    assert ps_literal(None) == '$null'
    assert ps_literal(2147483648) == '2147483648'
    assert ps_literal(VhdType.FIXED) == "'Fixed'"


def test_ps_literal_doubles_every_single_quote_kind() -> None:
    assert ps_literal("it's") == "'it''s'"
    assert ps_literal('a\u2019b') == "'a\u2019\u2019b'"
    # string interpolation markers stay inert inside single quotes
    assert ps_literal('$(Remove-Item C:\\)') == "'$(Remove-Item C:\\)'"


def test_ps_literal_structures_go_through_json() -> None:
    text = ps_literal({'Size': 1, 'Path': "x'y"})
    assert text == '(\'{"Path": "x\'\'y", "Size": 1}\' | ConvertFrom-Json)'


def test_ps_literal_rejects_unencodable_values() -> None:
    with pytest.raises(RenderError):
        ps_literal(object())
    with pytest.raises(RenderError):
        ps_literal('bad\x00path')
    with pytest.raises(RenderError):
        ps_literal({'a': object()})


def test_render_assigns_parameters_before_body() -> None:
    script = default_registry().render(
        'resize_vhd', {'path': 'C:\\vms\\a.vhdx', 'size': 10}, target='C:\\vms\\a.vhdx'
    )
    lines = script.text.splitlines()
    assert lines[0] == "$ErrorActionPreference = 'Stop'"
    assert "$path = 'C:\\vms\\a.vhdx'" in lines
    assert '$size = 10' in lines
    assert lines.index('$size = 10') < lines.index('$current = Get-VHD -Path $path')
    assert script.operation == 'resize_vhd'
    assert script.target == 'C:\\vms\\a.vhdx'


def test_render_is_deterministic() -> None:
    reg = default_registry()
    params = {
        'vhd': {'Path': 'C:\\a.vhdx', 'Size': 5, 'ParentPath': ''},
        'source': '',
        'source_vm': '',
        'source_disk': 0,
        'replace': False,
    }
    first = reg.render('create_or_update_vhd', params).text
    second = reg.render('create_or_update_vhd', dict(reversed(list(params.items())))).text
    assert first == second


def test_render_validates_parameters() -> None:
    with pytest.raises(RenderError, match='missing parameter'):
        GET_VHD.render({})
    with pytest.raises(RenderError, match='unknown parameters'):
        GET_VHD.render({'path': 'x', 'extra': 1})
    with pytest.raises(RenderError, match='expects str'):
        GET_VHD.render({'path': 5})
    resize = default_registry().get('resize_vhd')
    with pytest.raises(RenderError, match='expects int'):
        resize.render({'path': 'x', 'size': True})


def test_render_error_names_template_and_target() -> None:
    with pytest.raises(RenderError) as info:
        GET_VHD.render({'path': 'a\x00b'}, target='C:\\x.vhdx')
    assert '[get_vhd] C:\\x.vhdx' in str(info.value)


def test_registry_is_explicit() -> None:
    reg = TemplateRegistry()
    assert reg.names() == []
    with pytest.raises(RenderError, match='Unknown template'):
        reg.get('get_vhd')
    tmpl = ScriptTemplate(name='noop', params={}, body='$null')
    reg.register(tmpl)
    with pytest.raises(RenderError, match='already registered'):
        reg.register(tmpl)
    reg.register(tmpl, replace=True)
    assert reg.names() == ['noop']


def test_default_registry_covers_every_verb() -> None:
    reg = default_registry()
    assert reg.names() == sorted(
        [
            'create_or_update_file',
            'create_or_update_vhd',
            'delete_file',
            'delete_vhd',
            'get_file',
            'get_vhd',
            'resize_vhd',
        ]
    )
    # each call builds a fresh registry
    assert default_registry() is not reg


def test_get_templates_report_absence_as_empty_object() -> None:
    reg = default_registry()
    for name in ('get_vhd', 'get_file'):
        text = reg.render(name, {'path': 'C:\\missing.vhdx'}).text
        assert "'{}'" in text


def test_delete_template_tolerates_missing_directory_and_matches() -> None:
    text = default_registry().render('delete_vhd', {'path': 'C:\\vms\\a.vhdx'}).text
    assert 'Test-Path -LiteralPath $targetDirectory' in text
    assert '$_.BaseName.StartsWith($targetName, ' in text
    assert 'Remove-ArtifactFamily -Path $path' in text.splitlines()


def _create_vhd_text(**overrides) -> str:
    params = {
        'vhd': {'Path': 'C:\\vms\\disk1.vhdx', 'ParentPath': '', 'Size': 2147483648},
        'source': '',
        'source_vm': '',
        'source_disk': 0,
        'replace': True,
    }
    params.update(overrides)
    return default_registry().render('create_or_update_vhd', params).text


def test_create_vhd_sizes_existing_disks_too() -> None:
    lines = _create_vhd_text().splitlines()
    guard = lines.index('if (-not (Test-Path -LiteralPath $path)) {')
    sizing = lines.index('if (-not $vhd.ParentPath -and $vhd.Size -gt 0) {')
    # top level, after the creation block has closed
    assert sizing > guard
    assert '}' in lines[guard:sizing]
    assert lines[sizing - 2] == '}'
    assert '        Resize-VHD -Path $path -SizeBytes ([uint64]$vhd.Size)' in lines


def test_replace_only_removes_the_artifact_and_its_own_siblings() -> None:
    for text in (
        _create_vhd_text(),
        default_registry()
        .render(
            'create_or_update_file',
            {'path': 'C:\\iso\\a.iso', 'source': '', 'replace': True},
        )
        .text,
    ):
        lines = text.splitlines()
        assert '    Remove-ArtifactFamily -Path $path -Strict' in lines
        assert '    Remove-ArtifactFamily -Path $path' not in lines
        assert "$_.BaseName.StartsWith($targetName + '_', " in text
        assert '$_.BaseName -eq $targetName -or' in text
