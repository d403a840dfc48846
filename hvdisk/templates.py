"""PowerShell script templates and the registry the client renders them from.

Templates never substitute text into their bodies. Rendering validates the
parameters, encodes each one as a PowerShell literal and assigns it to a
variable ahead of the static body, so a path such as ``C:\\it's.vhdx`` can not
change the meaning of the script.

The registry is built explicitly with :func:`default_registry` and handed to
the client; nothing registers itself at import time.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping

from .errors import RenderError

PREAMBLE = """\
$ErrorActionPreference = 'Stop'
$ProgressPreference = 'SilentlyContinue'
"""

# PowerShell treats all of these as single-quote characters inside literals.
_PS_SINGLE_QUOTES = ("'", '\u2018', '\u2019', '\u201a', '\u201b')


def ps_literal(value: Any) -> str:
    """Encode a Python value as a PowerShell expression that evaluates to it."""
    if value is None:
        return '$null'
    if isinstance(value, bool):
        return '$true' if value else '$false'
    if isinstance(value, Enum):
        return ps_literal(value.value)
    if isinstance(value, int):
        return str(int(value))
    if isinstance(value, str):
        if '\x00' in value:
            raise RenderError(f'Cannot encode NUL character in {value!r}')
        out = value
        for ch in _PS_SINGLE_QUOTES:
            out = out.replace(ch, ch + ch)
        return f"'{out}'"
    if isinstance(value, (dict, list, tuple)):
        try:
            text = json.dumps(value, sort_keys=True)
        except (TypeError, ValueError) as ex:
            raise RenderError(f'Cannot serialize template argument: {ex}') from ex
        return f'({ps_literal(text)} | ConvertFrom-Json)'
    raise RenderError(
        f'Unsupported template argument type: {type(value).__name__}'
    )


@dataclass(frozen=True)
class RenderedScript:
    operation: str
    target: str
    text: str


@dataclass(frozen=True)
class ScriptTemplate:
    name: str
    params: Mapping[str, tuple[type, ...]]
    body: str

    def render(self, params: Mapping[str, Any], *, target: str = '') -> RenderedScript:
        where = f'[{self.name}] {target}'.rstrip()
        unknown = sorted(set(params) - set(self.params))
        if unknown:
            raise RenderError(f'{where}: unknown parameters {unknown}')
        lines = [PREAMBLE.rstrip('\n')]
        for key, accepted in self.params.items():
            if key not in params:
                raise RenderError(f'{where}: missing parameter {key!r}')
            value = params[key]
            if not _accepts(accepted, value):
                names = ', '.join(t.__name__ for t in accepted)
                raise RenderError(
                    f'{where}: parameter {key!r} expects {names}, '
                    f'got {type(value).__name__}'
                )
            try:
                literal = ps_literal(value)
            except RenderError as ex:
                raise RenderError(f'{where}: parameter {key!r}: {ex}') from ex
            lines.append(f'${key} = {literal}')
        lines.append('')
        lines.append(self.body.strip('\n'))
        return RenderedScript(self.name, target, '\n'.join(lines) + '\n')


def _accepts(accepted: tuple[type, ...], value: Any) -> bool:
    # bool is an int subclass; only allow it where asked for explicitly
    if isinstance(value, bool) and bool not in accepted:
        return False
    return isinstance(value, accepted)


class TemplateRegistry:
    def __init__(self, templates: Iterable[ScriptTemplate] = ()):
        self._templates: dict[str, ScriptTemplate] = {}
        for tmpl in templates:
            self.register(tmpl)

    def register(self, template: ScriptTemplate, *, replace: bool = False) -> None:
        if template.name in self._templates and not replace:
            raise RenderError(f'Template already registered: {template.name}')
        self._templates[template.name] = template

    def get(self, name: str) -> ScriptTemplate:
        try:
            return self._templates[name]
        except KeyError:
            raise RenderError(f'Unknown template: {name}') from None

    def names(self) -> list[str]:
        return sorted(self._templates)

    def render(
        self, name: str, params: Mapping[str, Any], *, target: str = ''
    ) -> RenderedScript:
        return self.get(name).render(params, target=target)


# Shared helper functions prepended to bodies that need them.
_INIT_DIRECTORY_FN = r"""
function Initialize-ParentDirectory {
    param([string]$Path)
    $directory = Split-Path -Path $Path -Parent
    if ($directory -and -not (Test-Path -LiteralPath $directory)) {
        New-Item -ItemType Directory -Path $directory -Force | Out-Null
    }
}
"""

_REMOVE_FAMILY_FN = r"""
function Remove-ArtifactFamily {
    param([string]$Path, [switch]$Strict)
    $targetDirectory = Split-Path -Path $Path -Parent
    $targetName = Split-Path -Path $Path -Leaf
    $dot = $targetName.LastIndexOf('.')
    if ($dot -gt 0) {
        $targetName = $targetName.Substring(0, $dot)
    }
    if (-not $targetDirectory -or -not (Test-Path -LiteralPath $targetDirectory)) {
        return
    }
    Get-ChildItem -LiteralPath $targetDirectory -File |
        Where-Object {
            if ($Strict) {
                $_.BaseName -eq $targetName -or
                    $_.BaseName.StartsWith($targetName + '_', [StringComparison]::OrdinalIgnoreCase)
            } else {
                $_.BaseName.StartsWith($targetName, [StringComparison]::OrdinalIgnoreCase)
            }
        } |
        ForEach-Object { Remove-Item -LiteralPath $_.FullName -Force }
}
"""

_FETCH_SOURCE_FN = r"""
function Copy-ArtifactFromSource {
    param([string]$Source, [string]$Destination)
    Initialize-ParentDirectory -Path $Destination
    $directory = Split-Path -Path $Destination -Parent
    $staging = Join-Path $directory ([IO.Path]::GetRandomFileName())
    New-Item -ItemType Directory -Path $staging -Force | Out-Null
    try {
        $leaf = Split-Path -Path ($Source -replace '\?.*$', '') -Leaf
        $download = Join-Path $staging $leaf
        if ($Source -match '^https?://') {
            Invoke-WebRequest -Uri $Source -OutFile $download -UseBasicParsing
        } else {
            Copy-Item -LiteralPath $Source -Destination $download -Force
        }
        if ($download -match '\.zip$') {
            Expand-Archive -LiteralPath $download -DestinationPath $staging -Force
            Remove-Item -LiteralPath $download -Force
            $download = (Get-ChildItem -LiteralPath $staging -File -Recurse |
                Sort-Object Length -Descending |
                Select-Object -First 1).FullName
        }
        Move-Item -LiteralPath $download -Destination $Destination -Force
    } finally {
        Remove-Item -LiteralPath $staging -Recurse -Force -ErrorAction SilentlyContinue
    }
}
"""

CREATE_OR_UPDATE_FILE = ScriptTemplate(
    name='create_or_update_file',
    params={'path': (str,), 'source': (str,), 'replace': (bool,)},
    body=_INIT_DIRECTORY_FN
    + _REMOVE_FAMILY_FN
    + _FETCH_SOURCE_FN
    + r"""
if ($replace) {
    Remove-ArtifactFamily -Path $path -Strict
}
if (-not (Test-Path -LiteralPath $path)) {
    if ($source) {
        Copy-ArtifactFromSource -Source $source -Destination $path
    } else {
        Initialize-ParentDirectory -Path $path
        New-Item -ItemType File -Path $path -Force | Out-Null
    }
}
""",
)

GET_FILE = ScriptTemplate(
    name='get_file',
    params={'path': (str,)},
    body=r"""
$item = Get-Item -LiteralPath $path -ErrorAction SilentlyContinue
if ($item -and -not $item.PSIsContainer) {
    ConvertTo-Json -Compress -InputObject ([ordered]@{
        Path = $item.FullName
        Size = $item.Length
    })
} else {
    '{}'
}
""",
)

DELETE_FILE = ScriptTemplate(
    name='delete_file',
    params={'path': (str,)},
    body=_REMOVE_FAMILY_FN
    + r"""
Remove-ArtifactFamily -Path $path
""",
)

CREATE_OR_UPDATE_VHD = ScriptTemplate(
    name='create_or_update_vhd',
    params={
        'vhd': (dict,),
        'source': (str,),
        'source_vm': (str,),
        'source_disk': (int,),
        'replace': (bool,),
    },
    body=_INIT_DIRECTORY_FN
    + _REMOVE_FAMILY_FN
    + _FETCH_SOURCE_FN
    + r"""
$path = $vhd.Path
if ($replace) {
    Remove-ArtifactFamily -Path $path -Strict
}
if (-not (Test-Path -LiteralPath $path)) {
    Initialize-ParentDirectory -Path $path
    if ($source) {
        Copy-ArtifactFromSource -Source $source -Destination $path
    } elseif ($source_vm) {
        $drives = @(Get-VMHardDiskDrive -VMName $source_vm)
        if ($source_disk -ge $drives.Count) {
            throw "VM '$source_vm' has no hard disk at index $source_disk"
        }
        Copy-Item -LiteralPath $drives[$source_disk].Path -Destination $path -Force
    } else {
        $newVhdArgs = @{ Path = $path }
        if ($vhd.ParentPath) {
            $newVhdArgs.ParentPath = $vhd.ParentPath
            $newVhdArgs.Differencing = $true
        } else {
            $newVhdArgs.SizeBytes = [uint64]$vhd.Size
            if ($vhd.VhdType -eq 'Fixed') {
                $newVhdArgs.Fixed = $true
            } else {
                $newVhdArgs.Dynamic = $true
            }
            if ($vhd.LogicalSectorSize -gt 0) {
                $newVhdArgs.LogicalSectorSizeBytes = [uint32]$vhd.LogicalSectorSize
            }
            if ($vhd.PhysicalSectorSize -gt 0) {
                $newVhdArgs.PhysicalSectorSizeBytes = [uint32]$vhd.PhysicalSectorSize
            }
        }
        if ($vhd.BlockSize -gt 0) {
            $newVhdArgs.BlockSizeBytes = [uint32]$vhd.BlockSize
        }
        New-VHD @newVhdArgs | Out-Null
    }
}
# Applies to disks found on the host as well as to ones just created.
if (-not $vhd.ParentPath -and $vhd.Size -gt 0) {
    $current = Get-VHD -Path $path
    if ($current.Size -ne $vhd.Size) {
        Resize-VHD -Path $path -SizeBytes ([uint64]$vhd.Size)
    }
}
""",
)

GET_VHD = ScriptTemplate(
    name='get_vhd',
    params={'path': (str,)},
    body=r"""
$vhdObject = $null
if (Test-Path -LiteralPath $path) {
    $vhdObject = Get-VHD -Path $path | ForEach-Object {
        [ordered]@{
            Path = $_.Path
            VhdFormat = $_.VhdFormat.ToString()
            VhdType = $_.VhdType.ToString()
            ParentPath = $_.ParentPath
            Size = $_.Size
            FileSize = $_.FileSize
            MinimumSize = $_.MinimumSize
            BlockSize = $_.BlockSize
            LogicalSectorSize = $_.LogicalSectorSize
            PhysicalSectorSize = $_.PhysicalSectorSize
            Attached = $_.Attached
        }
    }
}
if ($vhdObject) {
    ConvertTo-Json -Compress -InputObject $vhdObject
} else {
    '{}'
}
""",
)

RESIZE_VHD = ScriptTemplate(
    name='resize_vhd',
    params={'path': (str,), 'size': (int,)},
    body=r"""
$current = Get-VHD -Path $path
if ($current.Size -ne $size) {
    Resize-VHD -Path $path -SizeBytes ([uint64]$size)
}
""",
)

DELETE_VHD = ScriptTemplate(
    name='delete_vhd',
    params={'path': (str,)},
    body=DELETE_FILE.body,
)


def default_registry() -> TemplateRegistry:
    """Build a fresh registry holding every built-in template."""
    return TemplateRegistry(
        [
            CREATE_OR_UPDATE_FILE,
            GET_FILE,
            DELETE_FILE,
            CREATE_OR_UPDATE_VHD,
            GET_VHD,
            RESIZE_VHD,
            DELETE_VHD,
        ]
    )
