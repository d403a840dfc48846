"""One method per lifecycle verb for each artifact kind on a Hyper-V host."""

from __future__ import annotations

import json
from typing import Any, Callable, TypeVar

from .errors import ArgumentError, DecodeError
from .executor import ScriptExecutor
from .models import FileInfo, VhdInfo, VhdSpec
from .templates import RenderedScript, TemplateRegistry, default_registry

T = TypeVar('T')


class HypervClient:
    """Stateless translator from method calls to rendered scripts.

    Every method renders before it runs anything, so a rendering error never
    reaches the host. Errors from the executor are returned unchanged.
    """

    def __init__(
        self, executor: ScriptExecutor, registry: TemplateRegistry | None = None
    ):
        self.executor = executor
        self.registry = registry if registry is not None else default_registry()

    def _query(
        self, script: RenderedScript, parse: Callable[[dict[str, Any]], T]
    ) -> T:
        payload = self.executor.run_with_result(script)
        try:
            return parse(payload)
        except (TypeError, ValueError) as ex:
            raise DecodeError(
                script.operation,
                script.target,
                f'unexpected payload: {ex}',
                raw=json.dumps(payload, default=str),
            ) from ex

    # Files

    def create_or_update_file(
        self, path: str, source: str = '', *, replace: bool = False
    ) -> None:
        script = self.registry.render(
            'create_or_update_file',
            {'path': path, 'source': source, 'replace': replace},
            target=path,
        )
        self.executor.run_fire_and_forget(script)

    def get_file(self, path: str) -> FileInfo:
        script = self.registry.render('get_file', {'path': path}, target=path)
        return self._query(script, FileInfo.from_payload)

    def delete_file(self, path: str) -> None:
        script = self.registry.render('delete_file', {'path': path}, target=path)
        self.executor.run_fire_and_forget(script)

    # Virtual disks

    def create_or_update_vhd(self, spec: VhdSpec, *, replace: bool = False) -> None:
        script = self.registry.render(
            'create_or_update_vhd',
            {
                'vhd': spec.as_payload(),
                'source': spec.source,
                'source_vm': spec.source_vm,
                'source_disk': int(spec.source_disk),
                'replace': replace,
            },
            target=spec.path,
        )
        self.executor.run_fire_and_forget(script)

    def get_vhd(self, path: str) -> VhdInfo:
        script = self.registry.render('get_vhd', {'path': path}, target=path)
        return self._query(script, VhdInfo.from_payload)

    def resize_vhd(self, path: str, size: int, *, parent_path: str = '') -> None:
        """Resize a disk to ``size`` bytes. Differencing disks can not be resized."""
        if parent_path:
            raise ArgumentError(
                'resize',
                path,
                f'differencing disk (parent {parent_path}) can not be resized',
            )
        if size < 0:
            raise ArgumentError('resize', path, f'size must be >= 0, got {size}')
        script = self.registry.render(
            'resize_vhd', {'path': path, 'size': int(size)}, target=path
        )
        self.executor.run_fire_and_forget(script)

    def delete_vhd(self, path: str) -> None:
        script = self.registry.render('delete_vhd', {'path': path}, target=path)
        self.executor.run_fire_and_forget(script)
