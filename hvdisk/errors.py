"""Project-specific exception types."""

from __future__ import annotations


class HvDiskError(RuntimeError):
    """Base error for domain-level hvdisk failures."""


class OperationError(HvDiskError):
    """Error tied to one operation on one artifact path."""

    def __init__(self, op: str, path: str, message: str):
        self.op = op
        self.path = path
        super().__init__(f'[{op}] {path}: {message}')


class ArgumentError(OperationError):
    """Raised when a desired attribute is missing or invalid.

    Always raised before any remote call is made.
    """


class RenderError(HvDiskError):
    """Raised when template parameters cannot be encoded into a script."""


class ExecutionError(OperationError):
    """Raised when the host ran a script and reported failure."""

    def __init__(self, op: str, path: str, diagnostic: str, code: int | None = None):
        self.diagnostic = diagnostic
        self.code = code
        detail = diagnostic.strip() or '(no diagnostic output)'
        if code is not None:
            detail = f'exit code {code}: {detail}'
        super().__init__(op, path, detail)


class DecodeError(OperationError):
    """Raised when the host ran a script but its output could not be parsed."""

    def __init__(self, op: str, path: str, message: str, raw: str = ''):
        self.raw = raw
        super().__init__(op, path, message)


class ReconcileCancelled(OperationError):
    """Raised between steps of a cycle when cancellation was requested."""
