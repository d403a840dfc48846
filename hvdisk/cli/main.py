"""Top-level modal CLI wiring, argv normalization, and logging setup."""

from __future__ import annotations

import os
import sys

import scriptconfig as scfg
from loguru import logger

from ..client import HypervClient
from ..executor import ScriptExecutor
from ..reconcile import plan, reconcile_all, run_operation
from ..runtime import DryRunRunner
from ._common import (
    _BaseCommand,
    _cfg_path,
    _client_factory,
    _load_cfg,
    _load_cfg_with_path,
    _load_states,
    _print_batch,
    _record_batch,
    _state_file,
    log,
)


class PlanCLI(_BaseCommand):
    """Print the steps the next apply would take for each declared artifact."""

    path = scfg.Value('', help='Only plan the artifact with this path.')

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        cfg, cfg_path = _load_cfg_with_path(args.config)
        _, states = _load_states(cfg, only_path=args.path)
        if not states:
            print(f'No disks or files declared in {cfg_path}')
            return 0
        for st in states:
            print(f'{st.kind} {st.desired.path}')
            for step in plan(st):
                print(f'  - {step.describe()}')
        return 0


class ApplyCLI(_BaseCommand):
    """Reconcile every declared disk and file against the host."""

    path = scfg.Value('', help='Only apply the artifact with this path.')
    workers = scfg.Value(
        None, type=int, help='Artifacts reconciled in parallel (default: manifest).'
    )
    dry_run = scfg.Value(
        False, isflag=True, help='Render scripts without running them.'
    )

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        cfg = _load_cfg(args.config)
        store, states = _load_states(cfg, only_path=args.path)
        workers = args.workers if args.workers is not None else cfg.reconcile.workers
        log.debug('Applying {} artifact(s) with workers={}', len(states), workers)
        batch = reconcile_all(
            _client_factory(cfg, dry_run=args.dry_run),
            states,
            operation='apply',
            workers=workers,
        )
        if not args.dry_run:
            fpath = _record_batch(cfg, store, batch)
            log.debug('Recorded state in {}', fpath)
        return _print_batch(batch, 'apply')


class RefreshCLI(_BaseCommand):
    """Read every declared artifact back from the host and record it."""

    path = scfg.Value('', help='Only refresh the artifact with this path.')

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        cfg = _load_cfg(args.config)
        store, states = _load_states(cfg, only_path=args.path)
        batch = reconcile_all(
            _client_factory(cfg),
            states,
            operation='read',
            workers=cfg.reconcile.workers,
        )
        _record_batch(cfg, store, batch)
        return _print_batch(batch, 'refresh')


class DestroyCLI(_BaseCommand):
    """Delete declared artifacts (and their sibling files) from the host."""

    path = scfg.Value('', help='Only destroy the artifact with this path.')
    dry_run = scfg.Value(
        False, isflag=True, help='Render scripts without running them.'
    )

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        cfg = _load_cfg(args.config)
        store, states = _load_states(cfg, only_path=args.path)
        batch = reconcile_all(
            _client_factory(cfg, dry_run=args.dry_run),
            states,
            operation='delete',
            workers=cfg.reconcile.workers,
        )
        if not args.dry_run:
            _record_batch(cfg, store, batch)
        return _print_batch(batch, 'destroy')


class RenderCLI(_BaseCommand):
    """Print the scripts an operation would send for one declared artifact."""

    path = scfg.Value('', help='Path of the declared artifact.')
    operation = scfg.Value(
        'apply', help='One of: apply, read, delete.'
    )

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        allowed = {'apply', 'read', 'delete'}
        if args.operation not in allowed:
            raise RuntimeError(
                f'--operation must be one of: {", ".join(sorted(allowed))}'
            )
        if not args.path:
            raise RuntimeError('--path is required')
        cfg = _load_cfg(args.config)
        _, states = _load_states(cfg, only_path=args.path)
        runner = DryRunRunner()
        client = HypervClient(ScriptExecutor(runner))
        run_operation(client, states[0], args.operation)
        for idx, script in enumerate(runner.scripts, start=1):
            print(f'# --- script {idx} ---')
            print(script)
        return 0


class StatusCLI(_BaseCommand):
    """Show recorded state and pending changes for declared artifacts."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        cfg = _load_cfg(args.config)
        _, states = _load_states(cfg)
        for st in states:
            if not st.exists:
                print(f'➖ {st.kind} {st.desired.path} | not recorded')
                continue
            pending = sorted(st.change_set())
            print(
                f'✅ {st.kind} {st.desired.path} | size={st.get_observed("size")} '
                f'| pending={", ".join(pending) if pending else "(none)"}'
            )
        print('')
        print(f'State file: {_state_file(cfg) or "(default)"}')
        return 0


class HvDiskModalCLI(scfg.ModalCLI):
    """Reconcile Hyper-V virtual disks and host files from a TOML manifest."""

    plan = PlanCLI
    apply = ApplyCLI
    refresh = RefreshCLI
    destroy = DestroyCLI
    render = RenderCLI
    status = StatusCLI


def main(argv: list[str] | None = None) -> None:
    verbosity = 1
    config_value = None
    if argv is None:
        argv = sys.argv[1:]
    argv = _normalize_argv(argv)
    if '--config' in argv:
        try:
            config_value = argv[argv.index('--config') + 1]
        except IndexError:
            pass
    try:
        if config_value is not None:
            verbosity = _load_cfg(config_value).verbosity
        elif _cfg_path(None).exists():
            verbosity = _load_cfg(None).verbosity
    except Exception:
        verbosity = 1

    explicit_verbose = _count_verbose(argv)
    _setup_logging(explicit_verbose, verbosity)

    try:
        rc = HvDiskModalCLI.main(argv=argv, _noexit=True)
    except Exception as ex:
        print(f'ERROR: {ex}', file=sys.stderr)
        log.error('Unhandled hvdisk error: {}', ex)
        sys.exit(2)

    if any(flag in argv for flag in ('-h', '--help')):
        sys.exit(0)
    if isinstance(rc, int):
        sys.exit(rc)
    sys.exit(0)


def _setup_logging(args_verbose: int, cfg_verbosity: int) -> None:
    logger.remove()
    effective_verbosity = args_verbose if args_verbose > 0 else cfg_verbosity
    level = 'WARNING'
    if effective_verbosity == 1:
        level = 'INFO'
    elif effective_verbosity >= 2:
        level = 'DEBUG'
    colorize = sys.stderr.isatty() and os.getenv('NO_COLOR') is None
    logger.add(
        sys.stderr,
        level=level,
        colorize=colorize,
        format='<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>',
    )
    log.debug(
        'Logging configured at {} (effective_verbosity={}, colorize={})',
        level,
        effective_verbosity,
        colorize,
    )


def _normalize_argv(argv: list[str]) -> list[str]:
    """Normalize accepted aliases and hyphenated spellings to command names."""
    argv = [
        item.replace('--dry-run', '--dry_run') if item.startswith('--') else item
        for item in argv
    ]
    aliases = {'up': 'apply', 'down': 'destroy', 'read': 'refresh'}
    if len(argv) >= 1 and argv[0] in aliases:
        argv = [aliases[argv[0]], *argv[1:]]
    if len(argv) >= 2 and argv[0] in {'plan', 'apply', 'destroy', 'refresh', 'render'}:
        if not argv[1].startswith('-'):
            return [argv[0], '--path', argv[1], *argv[2:]]
    return argv


def _count_verbose(argv: list[str]) -> int:
    count = 0
    for item in argv:
        if item == '--verbose':
            count += 1
        elif item.startswith('-') and not item.startswith('--'):
            short = item[1:]
            if short and set(short) <= {'v'}:
                count += len(short)
    return count
