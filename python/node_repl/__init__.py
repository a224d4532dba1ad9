"""node-repl-bridge - drive a long-lived Node.js REPL from Python.

A session runs the interpreter as a subprocess in its own temporary
directory. Each call sends a snippet of code on stdin and returns exactly the
bytes the snippet wrote to stdout; interpreter state persists between calls.
"""

from node_repl.config import (
    CommandBuilder,
    DefaultCommandBuilder,
    FunctionCommandBuilder,
    ReplConfig,
)
from node_repl.errors import (
    CopyFailedError,
    ProtocolConfigError,
    ReplError,
    RunError,
    ScriptWriteError,
    SessionClosedError,
    SpawnError,
    SpawnExecError,
    UnexpectedEofError,
    WorkspaceError,
    WriteError,
)
from node_repl.framing import SentinelScanner, read_frame, wrap_code
from node_repl.script import build_script
from node_repl.session import Session, SessionState, open_session, spawn
from node_repl.workspace import Workspace

__version__ = "0.1.0"
__all__ = [
    "CommandBuilder",
    "CopyFailedError",
    "DefaultCommandBuilder",
    "FunctionCommandBuilder",
    "ProtocolConfigError",
    "ReplConfig",
    "ReplError",
    "RunError",
    "ScriptWriteError",
    "SentinelScanner",
    "Session",
    "SessionClosedError",
    "SessionState",
    "SpawnError",
    "SpawnExecError",
    "UnexpectedEofError",
    "Workspace",
    "WorkspaceError",
    "WriteError",
    "build_script",
    "open_session",
    "read_frame",
    "spawn",
    "wrap_code",
]
