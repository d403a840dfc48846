"""Run rendered scripts and decode the structured payload they print."""

from __future__ import annotations

import json
import subprocess
from typing import Any

from loguru import logger

from .errors import DecodeError, ExecutionError
from .runtime import ScriptRunner
from .templates import RenderedScript
from .util import CmdError, CmdResult

log = logger


class ScriptExecutor:
    """Fire-and-forget and with-result execution on top of a script runner.

    The executor keeps no state between calls; one instance may be shared by
    threads working on different artifacts when the runner allows it.
    """

    def __init__(self, runner: ScriptRunner):
        self.runner = runner

    def _run(self, script: RenderedScript) -> CmdResult:
        log.debug(
            'Executing {} for {}:\n{}', script.operation, script.target, script.text
        )
        try:
            res = self.runner.run(script.text)
        except CmdError as ex:
            raise ExecutionError(
                script.operation, script.target, ex.result.stderr or str(ex), ex.result.code
            ) from ex
        except (OSError, subprocess.SubprocessError) as ex:
            raise ExecutionError(script.operation, script.target, str(ex)) from ex
        if res.code != 0:
            diagnostic = res.stderr.strip() or res.stdout.strip()
            log.error(
                '{} failed for {} (code={}): {}',
                script.operation,
                script.target,
                res.code,
                diagnostic,
            )
            raise ExecutionError(script.operation, script.target, diagnostic, res.code)
        return res

    def run_fire_and_forget(self, script: RenderedScript) -> None:
        self._run(script)

    def run_with_result(self, script: RenderedScript) -> dict[str, Any]:
        res = self._run(script)
        return decode_payload(script, res.stdout)


def decode_payload(script: RenderedScript, stdout: str) -> dict[str, Any]:
    """Decode the single JSON object a template prints as its result.

    Hosts sometimes print warnings before the payload, so the last non-empty
    line is used when the whole output is not valid JSON.
    """
    raw = stdout.strip().lstrip('\ufeff').strip()
    if not raw:
        raise DecodeError(script.operation, script.target, 'script returned no data')
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        last = [line for line in raw.splitlines() if line.strip()][-1]
        try:
            payload = json.loads(last)
        except json.JSONDecodeError as ex:
            log.debug('Raw {} output for {}: {}', script.operation, script.target, stdout)
            raise DecodeError(
                script.operation,
                script.target,
                f'unparsable output: {ex}',
                raw=stdout,
            ) from ex
    if not isinstance(payload, dict):
        raise DecodeError(
            script.operation,
            script.target,
            f'expected a JSON object, got {type(payload).__name__}',
            raw=stdout,
        )
    return payload
