"""Interpreter process supervision and the Session API.

A session is one long-lived interpreter process plus the workspace it runs
in. Calls are strictly request/response:

    async with open_session(ReplConfig.build()) as session:
        out = await session.run("console.log('Hello, world!');")
        assert out == b"Hello, world!\\n"
        await session.stop()

There is no timeout on a call. Wrap run() in asyncio.wait_for() to bound it;
a cancelled call kills the interpreter, since its output can no longer be
matched to requests.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
from enum import Enum
from typing import AsyncIterator

from node_repl.config import ReplConfig
from node_repl.errors import (
    SessionClosedError,
    SpawnExecError,
    UnexpectedEofError,
    WriteError,
)
from node_repl.framing import (
    READ_CHUNK_SIZE,
    STOP_COMMAND,
    SentinelScanner,
    read_frame,
    wrap_code,
)
from node_repl.script import build_script
from node_repl.workspace import Workspace

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    """Lifecycle state of a session."""

    SPAWNED = "spawned"
    RUNNING = "running"
    STOPPING = "stopping"
    EXITED = "exited"


class Session:
    """A live interpreter process driven through the framing protocol.

    Sessions are created by spawn(). At most one call runs at a time;
    concurrent callers wait their turn on an internal lock.
    """

    def __init__(
        self,
        config: ReplConfig,
        workspace: Workspace,
        process: asyncio.subprocess.Process,
        command: str,
    ):
        self.config = config
        self.workspace = workspace
        self.process = process
        self.command = command
        self.sentinel = config.sentinel
        self._scanner = SentinelScanner(config.sentinel)
        self._lock = asyncio.Lock()
        self._state = SessionState.SPAWNED
        self._closed = False
        self._in_call = False

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def returncode(self) -> int | None:
        return self.process.returncode

    @property
    def workspace_path(self) -> str:
        return str(self.workspace.path)

    @property
    def stdin(self) -> asyncio.StreamWriter:
        assert self.process.stdin is not None
        return self.process.stdin

    @property
    def stdout(self) -> asyncio.StreamReader:
        assert self.process.stdout is not None
        return self.process.stdout

    @property
    def stderr(self) -> asyncio.StreamReader:
        """The child's stderr.

        Only read by the session while reaping the process, when whatever is
        left is discarded.
        """
        assert self.process.stderr is not None
        return self.process.stderr

    @property
    def closed(self) -> bool:
        return self._closed

    async def run(self, code: str) -> bytes:
        """Evaluate code in the interpreter and return what it wrote to stdout."""
        async with self._lock:
            return await self._call(code)

    async def stop(self) -> bytes:
        """Ask the bootstrap loop to exit and wait for the process to end.

        Returns the output of the stop call itself. The workspace is kept
        until close().
        """
        async with self._lock:
            self._check_open()
            self._state = SessionState.STOPPING
            output = await self._call(STOP_COMMAND)
            self.stdin.close()
            with contextlib.suppress(BrokenPipeError, ConnectionResetError):
                await self.stdin.wait_closed()
            returncode = await self._reap()
            self._state = SessionState.EXITED
            logger.info("Interpreter pid %s stopped with status %s", self.pid, returncode)
            return output

    async def wait(self) -> int:
        """Wait for the interpreter process to exit and return its status.

        Output the interpreter still writes is discarded, so a child blocked
        on a full pipe can finish.
        """
        returncode = await self._reap()
        self._state = SessionState.EXITED
        return returncode

    async def kill(self) -> int:
        """Kill the interpreter (and anything it started) and reap it."""
        self._kill_now()
        return await self.wait()

    async def close(self) -> None:
        """Release the session: kill the process if alive, delete the workspace."""
        if self._closed:
            return
        self._closed = True
        try:
            if self.process.returncode is None:
                await self.kill()
            else:
                self._state = SessionState.EXITED
        finally:
            if not self.stdin.is_closing():
                self.stdin.close()
            self.workspace.cleanup()
            logger.debug("Session pid %s closed", self.pid)

    async def __aenter__(self) -> Session:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _check_open(self) -> None:
        if self._closed:
            raise SessionClosedError("Session is closed")
        if self._state == SessionState.EXITED:
            raise SessionClosedError(
                f"Interpreter has exited (status {self.process.returncode})"
            )

    async def _call(self, code: str) -> bytes:
        self._check_open()
        if self._state == SessionState.SPAWNED:
            self._state = SessionState.RUNNING
        request = wrap_code(code, self.sentinel)
        self._in_call = True
        try:
            await self._write(request)
            output = await read_frame(self.stdout, self._scanner, self.config.strict_eof)
        except UnexpectedEofError:
            self._state = SessionState.EXITED
            raise
        except asyncio.CancelledError:
            logger.warning("Call cancelled; killing interpreter pid %s", self.pid)
            self._kill_now()
            raise
        finally:
            self._in_call = False
        if self.stdout.at_eof():
            self._state = SessionState.EXITED
        logger.debug("Sent %d bytes, received %d bytes", len(request), len(output))
        return output

    async def _write(self, request: bytes) -> None:
        if self.process.returncode is not None:
            self._state = SessionState.EXITED
            raise WriteError(f"Interpreter already exited with status {self.process.returncode}")
        try:
            self.stdin.write(request)
            await self.stdin.drain()
        except OSError as e:
            self._state = SessionState.EXITED
            raise WriteError(f"Cannot write to interpreter stdin: {e}") from e

    async def _reap(self) -> int:
        # A child blocked writing to a full pipe never exits, and asyncio does
        # not report the exit while a paused pipe still holds unread data.
        # An in-flight call owns stdout and reads it to EOF itself.
        streams = [self.stderr]
        if not self._in_call:
            streams.append(self.stdout)
        await asyncio.gather(*(_discard(stream) for stream in streams))
        return await self.process.wait()

    def _kill_now(self) -> None:
        self._state = SessionState.EXITED
        if self.process.returncode is not None:
            return
        # The child leads its own process group, so this also reaches an
        # interpreter the shell did not exec into.
        try:
            os.killpg(self.process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        except PermissionError:
            self.process.kill()

    def __repr__(self) -> str:
        return f"Session(pid={self.pid}, state={self._state.value}, workspace={self.workspace_path!r})"


async def _discard(stream: asyncio.StreamReader) -> None:
    discarded = 0
    while chunk := await stream.read(READ_CHUNK_SIZE):
        discarded += len(chunk)
    if discarded:
        logger.debug("Discarded %d unread bytes from interpreter", discarded)


async def spawn(config: ReplConfig) -> Session:
    """Start an interpreter running the configured bootstrap script.

    The workspace is removed again if any step fails, and no process is left
    behind.
    """
    workspace = Workspace()
    try:
        script_text = build_script(config)
        logger.debug("Rendered bootstrap script (%d chars)", len(script_text))
        script_path = workspace.write_script(config.script_file_name, script_text)
        await workspace.copy_all(config.copy_paths)
        command = config.build_command(str(workspace.path), str(script_path))
        logger.debug("Launching: %s -c %s", config.shell, command)
        try:
            process = await asyncio.create_subprocess_exec(
                config.shell,
                "-c",
                command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(workspace.path),
                env={**os.environ, **config.env},
                start_new_session=True,
            )
        except OSError as e:
            raise SpawnExecError(f"Cannot start shell {config.shell!r}: {e}") from e
    except BaseException:
        workspace.cleanup()
        raise

    logger.info("Spawned interpreter pid %s in %s", process.pid, workspace.path)
    return Session(config, workspace, process, command)


@contextlib.asynccontextmanager
async def open_session(config: ReplConfig) -> AsyncIterator[Session]:
    """Spawn a session and close it when the block exits."""
    session = await spawn(config)
    try:
        yield session
    finally:
        await session.close()
