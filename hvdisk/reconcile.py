"""Diff-driven reconciliation of declared storage artifacts against a host.

One cycle for a virtual disk:

1. create-or-update when the disk is not known to exist or a creation-time
   attribute (path, source, source_vm, source_disk, parent_path) changed;
2. otherwise resize when only the size changed and the disk has no parent;
3. read the disk back, always, to record what the host actually holds.

A failed create or resize stops the cycle before the read. Deleting is never
driven by the diff; it is requested explicitly.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Sequence

from loguru import logger

from .client import HypervClient
from .errors import ArgumentError, ReconcileCancelled
from .models import (
    FILE_RECREATE_FIELDS,
    VHD_RECREATE_FIELDS,
    FileInfo,
    VhdInfo,
    VhdType,
    observed_file,
    observed_vhd,
)
from .store import KIND_FILE, KIND_VHD, ResourceState

log = logger


class Action(str, Enum):
    CREATE_OR_UPDATE = 'create_or_update'
    RESIZE = 'resize'
    READ = 'read'
    DELETE = 'delete'


@dataclass(frozen=True)
class Step:
    action: Action
    path: str
    replace: bool = False
    size: int = 0
    reason: str = ''

    def describe(self) -> str:
        text = self.action.value
        if self.action == Action.CREATE_OR_UPDATE and self.replace:
            text += ' (replace)'
        if self.action == Action.RESIZE:
            text += f' to {self.size} bytes'
        text += f' {self.path}'
        if self.reason:
            text += f': {self.reason}'
        return text


def _check_cancel(cancel: threading.Event | None, op: str, path: str) -> None:
    if cancel is not None and cancel.is_set():
        raise ReconcileCancelled(op, path, 'cancelled before the next remote call')


def _require_path(state: ResourceState, op: str) -> str:
    path = state.desired.path or state.id
    if not path:
        raise ArgumentError(op, '(unset)', 'path argument is required')
    return path


def _recreate_reason(state: ResourceState, recreate_fields: frozenset[str]) -> str:
    if not state.exists:
        return 'not present'
    changed = sorted(state.change_set() & recreate_fields)
    if changed:
        return 'changed ' + ', '.join(changed)
    return ''


# Virtual disks


def _validate_vhd(state: ResourceState, op: str) -> None:
    desired = state.desired
    path = _require_path(state, op)
    if desired.size < 0:
        raise ArgumentError(op, path, f'size must be >= 0, got {desired.size}')
    if desired.vhd_type == VhdType.DIFFERENCING and not desired.parent_path:
        raise ArgumentError(op, path, 'differencing disks require parent_path')
    if desired.source_disk < 0:
        raise ArgumentError(
            op, path, f'source_disk must be >= 0, got {desired.source_disk}'
        )


def plan_vhd(state: ResourceState) -> list[Step]:
    """Decide the steps of one cycle without touching the host."""
    _validate_vhd(state, 'update')
    desired = state.desired
    changes = state.change_set()
    steps: list[Step] = []
    reason = _recreate_reason(state, VHD_RECREATE_FIELDS)
    if reason:
        if (
            not (desired.source or desired.source_vm or desired.parent_path)
            and desired.size <= 0
        ):
            raise ArgumentError(
                'create',
                desired.path,
                'size is required for a new disk without source or parent',
            )
        # Only replace in place when something other than the location changed.
        replace = state.exists and bool((changes & VHD_RECREATE_FIELDS) - {'path'})
        steps.append(
            Step(
                Action.CREATE_OR_UPDATE,
                desired.path,
                replace=replace,
                size=desired.size,
                reason=reason,
            )
        )
    elif (
        desired.size > 0
        and not desired.parent_path
        and (not state.exists or 'size' in changes)
    ):
        steps.append(
            Step(
                Action.RESIZE,
                desired.path,
                size=desired.size,
                reason=f'size {state.get_observed("size")} -> {desired.size}',
            )
        )
    steps.append(Step(Action.READ, desired.path))
    return steps


def read_vhd(
    client: HypervClient,
    state: ResourceState,
    *,
    cancel: threading.Event | None = None,
) -> VhdInfo:
    path = _require_path(state, 'read')
    _check_cancel(cancel, 'read', path)
    info = client.get_vhd(path)
    state.set_id(path)
    if info.exists:
        # Creation-only attributes are not reported by the host.
        carry = state.observed if state.observed is not None else state.desired
        state.observed = observed_vhd(info, carry)
        state.exists = True
        log.info('Read vhd {} (size={}, type={})', path, info.size, info.vhd_type.value)
    else:
        state.forget()
        log.info('Vhd {} does not exist on host', path)
    return info


def apply_vhd(
    client: HypervClient,
    state: ResourceState,
    *,
    cancel: threading.Event | None = None,
) -> VhdInfo:
    """Run one reconciliation cycle for a virtual disk."""
    steps = plan_vhd(state)
    desired = state.desired
    for step in steps:
        if step.action == Action.CREATE_OR_UPDATE:
            _check_cancel(cancel, 'create', step.path)
            log.info('Creating vhd {} ({})', step.path, step.reason)
            client.create_or_update_vhd(desired, replace=step.replace)
            # Earlier observations no longer describe the disk.
            state.observed = None
        elif step.action == Action.RESIZE:
            _check_cancel(cancel, 'resize', step.path)
            log.info('Resizing vhd {} ({})', step.path, step.reason)
            client.resize_vhd(step.path, step.size, parent_path=desired.parent_path)
    return read_vhd(client, state, cancel=cancel)


def delete_vhd(
    client: HypervClient,
    state: ResourceState,
    *,
    cancel: threading.Event | None = None,
) -> None:
    path = _require_path(state, 'delete')
    _check_cancel(cancel, 'delete', path)
    log.info('Deleting vhd {}', path)
    client.delete_vhd(path)
    state.forget()
    log.info('Deleted vhd {}', path)


# Plain files


def plan_file(state: ResourceState) -> list[Step]:
    _require_path(state, 'update')
    steps: list[Step] = []
    reason = _recreate_reason(state, FILE_RECREATE_FIELDS)
    if reason:
        replace = state.exists and bool(
            (state.change_set() & FILE_RECREATE_FIELDS) - {'path'}
        )
        steps.append(
            Step(
                Action.CREATE_OR_UPDATE,
                state.desired.path,
                replace=replace,
                reason=reason,
            )
        )
    steps.append(Step(Action.READ, state.desired.path))
    return steps


def read_file(
    client: HypervClient,
    state: ResourceState,
    *,
    cancel: threading.Event | None = None,
) -> FileInfo:
    path = _require_path(state, 'read')
    _check_cancel(cancel, 'read', path)
    info = client.get_file(path)
    state.set_id(path)
    if info.exists:
        carry = state.observed if state.observed is not None else state.desired
        state.observed = observed_file(info, carry)
        state.exists = True
        log.info('Read file {} (size={})', path, info.size)
    else:
        state.forget()
        log.info('File {} does not exist on host', path)
    return info


def apply_file(
    client: HypervClient,
    state: ResourceState,
    *,
    cancel: threading.Event | None = None,
) -> FileInfo:
    for step in plan_file(state):
        if step.action == Action.CREATE_OR_UPDATE:
            _check_cancel(cancel, 'create', step.path)
            log.info('Creating file {} ({})', step.path, step.reason)
            client.create_or_update_file(
                step.path, state.desired.source, replace=step.replace
            )
            state.observed = None
    return read_file(client, state, cancel=cancel)


def delete_file(
    client: HypervClient,
    state: ResourceState,
    *,
    cancel: threading.Event | None = None,
) -> None:
    path = _require_path(state, 'delete')
    _check_cancel(cancel, 'delete', path)
    log.info('Deleting file {}', path)
    client.delete_file(path)
    state.forget()
    log.info('Deleted file {}', path)


# Dispatch across kinds and instances

_OPERATIONS = {
    (KIND_VHD, 'plan'): plan_vhd,
    (KIND_VHD, 'apply'): apply_vhd,
    (KIND_VHD, 'read'): read_vhd,
    (KIND_VHD, 'delete'): delete_vhd,
    (KIND_FILE, 'plan'): plan_file,
    (KIND_FILE, 'apply'): apply_file,
    (KIND_FILE, 'read'): read_file,
    (KIND_FILE, 'delete'): delete_file,
}


def plan(state: ResourceState) -> list[Step]:
    return _OPERATIONS[(state.kind, 'plan')](state)


def run_operation(
    client: HypervClient,
    state: ResourceState,
    operation: str,
    *,
    cancel: threading.Event | None = None,
) -> None:
    if operation == 'plan' or (state.kind, operation) not in _OPERATIONS:
        raise ValueError(f'Unknown operation {operation!r} for {state.kind}')
    _OPERATIONS[(state.kind, operation)](client, state, cancel=cancel)


@dataclass
class Outcome:
    state: ResourceState
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class Batch:
    outcomes: list[Outcome] = field(default_factory=list)

    @property
    def failed(self) -> list[Outcome]:
        return [o for o in self.outcomes if not o.ok]


def reconcile_all(
    make_client: Callable[[], HypervClient],
    states: Sequence[ResourceState],
    *,
    operation: str = 'apply',
    workers: int = 1,
    cancel: threading.Event | None = None,
) -> Batch:
    """Run ``operation`` for every state, ``workers`` instances at a time.

    Instances share nothing, so one failing does not stop the others. Each
    outcome carries the error of its own cycle.
    """
    workers = max(1, int(workers))
    batch = Batch()
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futs = [
            pool.submit(run_operation, make_client(), st, operation, cancel=cancel)
            for st in states
        ]
        for st, fut in zip(states, futs):
            err = fut.exception()
            if err is not None:
                log.error('{} failed for {}: {}', operation, st.desired.path, err)
            batch.outcomes.append(Outcome(state=st, error=err))
    return batch
