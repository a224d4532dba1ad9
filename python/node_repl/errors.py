"""Error types raised by the REPL bridge.

Every failure that crosses the process boundary is reported as a subclass of
ReplError. Errors raised by code evaluated inside the interpreter are not
represented here: the bootstrap loop reports them on the child's stderr and
keeps running.
"""

from __future__ import annotations


class ReplError(Exception):
    """Base class for all REPL bridge errors."""

    pass


class ProtocolConfigError(ReplError):
    """Raised when a configuration is invalid or inconsistent."""

    pass


class SpawnError(ReplError):
    """Raised when a session could not be started."""

    pass


class WorkspaceError(SpawnError):
    """Raised when the working directory could not be created."""

    pass


class ScriptWriteError(WorkspaceError):
    """Raised when the bootstrap script could not be written."""

    pass


class CopyFailedError(SpawnError):
    """Raised when copying an auxiliary path into the workspace fails."""

    def __init__(self, path: str, exit_code: int | None, stderr: str):
        self.path = path
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(
            f"Failed to copy {path!r} into workspace (exit code {exit_code}): {stderr.strip()}"
        )


class SpawnExecError(SpawnError):
    """Raised when the shell running the interpreter could not be started."""

    pass


class RunError(ReplError):
    """Raised when a call on a live session fails."""

    pass


class WriteError(RunError):
    """Raised when the request could not be written to the child's stdin."""

    pass


class UnexpectedEofError(RunError):
    """Raised when stdout closed before the sentinel was seen.

    The bytes read before the stream ended are kept on ``partial``.
    """

    def __init__(self, partial: bytes):
        self.partial = partial
        super().__init__(
            f"Interpreter stdout closed before end of output ({len(partial)} bytes read)"
        )


class SessionClosedError(RunError):
    """Raised when a call is made on a session whose child has exited."""

    pass
