"""Script runners that carry rendered PowerShell to a Hyper-V host."""

from __future__ import annotations

import base64
from typing import Protocol

from loguru import logger

from .config import HostConfig
from .util import CmdResult, expand, run_cmd

log = logger


class ScriptRunner(Protocol):
    def run(self, script: str) -> CmdResult: ...


def encode_command(script: str) -> str:
    """Encode a script for ``powershell -EncodedCommand`` (base64 of UTF-16LE)."""
    return base64.b64encode(script.encode('utf-16-le')).decode('ascii')


def powershell_args(script: str) -> list[str]:
    return [
        '-NoLogo',
        '-NoProfile',
        '-NonInteractive',
        '-ExecutionPolicy',
        'Bypass',
        '-EncodedCommand',
        encode_command(script),
    ]


def ssh_base_args(
    ident: str = '',
    *,
    port: int = 22,
    strict_host_key_checking: str = 'accept-new',
    connect_timeout: int | None = None,
    batch_mode: bool = True,
    user_known_hosts_file: str | None = None,
) -> list[str]:
    args: list[str] = []
    if batch_mode:
        args.extend(['-o', 'BatchMode=yes'])
    if connect_timeout is not None:
        args.extend(['-o', f'ConnectTimeout={connect_timeout}'])
    args.extend(['-o', f'StrictHostKeyChecking={strict_host_key_checking}'])
    if user_known_hosts_file:
        args.extend(['-o', f'UserKnownHostsFile={user_known_hosts_file}'])
    if port != 22:
        args.extend(['-p', str(port)])
    if ident:
        args.extend(['-i', ident])
    return args


class SSHScriptRunner:
    """Run scripts through the host's OpenSSH server."""

    def __init__(self, host: HostConfig):
        self.host = host

    @property
    def destination(self) -> str:
        if self.host.user:
            return f'{self.host.user}@{self.host.address}'
        return self.host.address

    def command(self, script: str) -> list[str]:
        ident = expand(self.host.identity_file) if self.host.identity_file else ''
        return [
            'ssh',
            *ssh_base_args(
                ident,
                port=int(self.host.port),
                strict_host_key_checking=self.host.strict_host_key_checking,
                connect_timeout=int(self.host.connect_timeout),
                user_known_hosts_file=self.host.known_hosts_file or None,
            ),
            self.destination,
            self.host.shell,
            *powershell_args(script),
        ]

    def run(self, script: str) -> CmdResult:
        log.debug('Running script on {} over ssh', self.destination)
        return run_cmd(
            self.command(script),
            check=False,
            capture=True,
            timeout=self.host.script_timeout or None,
        )


class LocalScriptRunner:
    """Run scripts with a PowerShell on this machine (when it is the Hyper-V host)."""

    def __init__(self, host: HostConfig):
        self.host = host

    def command(self, script: str) -> list[str]:
        return [self.host.shell, *powershell_args(script)]

    def run(self, script: str) -> CmdResult:
        log.debug('Running script locally with {}', self.host.shell)
        return run_cmd(
            self.command(script),
            check=False,
            capture=True,
            timeout=self.host.script_timeout or None,
        )


class DryRunRunner:
    """Record scripts instead of running them.

    Every script "succeeds" and prints an empty object, so reads report the
    artifact as absent.
    """

    def __init__(self) -> None:
        self.scripts: list[str] = []

    def run(self, script: str) -> CmdResult:
        self.scripts.append(script)
        log.info('DRYRUN: script #{} ({} lines)', len(self.scripts), len(script.splitlines()))
        return CmdResult(0, '{}', '')


def make_runner(host: HostConfig, *, dry_run: bool = False) -> ScriptRunner:
    if dry_run:
        return DryRunRunner()
    if host.address:
        return SSHScriptRunner(host)
    return LocalScriptRunner(host)
