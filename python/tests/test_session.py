"""Tests for process supervision and the Session API.

These tests stand in small shell programs for the interpreter through a
custom command builder, so they need neither Node.js nor the bootstrap loop.
"""

import asyncio
import os
import tempfile

import pytest

from node_repl.config import ReplConfig
from node_repl.errors import (
    CopyFailedError,
    SessionClosedError,
    SpawnExecError,
    UnexpectedEofError,
    WriteError,
)
from node_repl.session import Session, SessionState, open_session, spawn

# printf octal escapes for the default sentinel b"\x00\x01\x00"
SENTINEL = "\\000\\001\\000"
DISCARD_STDIN = "cat > /dev/null"


def shell_config(command: str, **options) -> ReplConfig:
    return ReplConfig.build(command_builder=lambda config, workspace, script: command, **options)


@pytest.fixture
def isolated_tempdir(monkeypatch, tmp_path):
    """Create workspaces under tmp_path so leftovers can be detected."""
    root = tmp_path / "workspaces"
    root.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(root))
    return root


class TestSpawn:
    """Tests for spawning sessions."""

    async def test_spawn_returns_session(self):
        session = await spawn(shell_config(DISCARD_STDIN))
        try:
            assert isinstance(session, Session)
            assert session.state == SessionState.SPAWNED
            assert session.returncode is None
            assert os.path.isdir(session.workspace_path)
            assert session.command == DISCARD_STDIN
        finally:
            await session.close()

    async def test_script_written_before_launch(self):
        seen = {}

        def builder(config, workspace_path, script_path):
            seen["workspace"] = workspace_path
            seen["script"] = script_path
            with open(script_path) as f:
                seen["text"] = f.read()
            return DISCARD_STDIN

        config = ReplConfig.build(
            command_builder=builder, script_file_name="boot.js", imports=["const marker = 1"]
        )
        async with open_session(config) as session:
            assert seen["workspace"] == session.workspace_path
            assert seen["script"] == os.path.join(session.workspace_path, "boot.js")
            assert "const marker = 1" in seen["text"]
            assert "await repl();" in seen["text"]

    async def test_runs_inside_workspace(self):
        config = shell_config(f"pwd; printf '{SENTINEL}'; {DISCARD_STDIN}")
        async with open_session(config) as session:
            output = await session.run("ignored")
            cwd = output.decode().strip()
            assert os.path.realpath(cwd) == os.path.realpath(session.workspace_path)

    async def test_extra_environment(self):
        config = shell_config(
            f'printf "$GREETING{SENTINEL}"; {DISCARD_STDIN}', env={"GREETING": "hey"}
        )
        async with open_session(config) as session:
            assert await session.run("ignored") == b"hey"

    async def test_copy_paths_land_in_workspace(self, tmp_path):
        helpers = tmp_path / "helpers"
        helpers.mkdir()
        (helpers / "index.js").write_text("module.exports = {}")

        async with open_session(shell_config(DISCARD_STDIN, copy_paths=[str(helpers)])) as session:
            copied = os.path.join(session.workspace_path, "helpers", "index.js")
            assert os.path.isfile(copied)

    async def test_copy_failure_aborts_spawn(self, isolated_tempdir, tmp_path):
        launched = []

        def builder(config, workspace_path, script_path):
            launched.append(workspace_path)
            return DISCARD_STDIN

        config = ReplConfig.build(
            command_builder=builder, copy_paths=[str(tmp_path / "does-not-exist")]
        )
        with pytest.raises(CopyFailedError) as exc_info:
            await spawn(config)
        assert exc_info.value.path == str(tmp_path / "does-not-exist")
        assert exc_info.value.exit_code != 0
        assert launched == []
        assert list(isolated_tempdir.iterdir()) == []

    async def test_shell_not_found(self, isolated_tempdir):
        config = shell_config(DISCARD_STDIN, shell="/nonexistent/bin/sh")
        with pytest.raises(SpawnExecError):
            await spawn(config)
        assert list(isolated_tempdir.iterdir()) == []

    async def test_builder_error_cleans_workspace(self, isolated_tempdir):
        def builder(config, workspace_path, script_path):
            raise RuntimeError("no command for you")

        with pytest.raises(RuntimeError):
            await spawn(ReplConfig.build(command_builder=builder))
        assert list(isolated_tempdir.iterdir()) == []


class TestRun:
    """Tests for the request/response cycle."""

    async def test_returns_output_before_sentinel(self):
        config = shell_config(f"printf 'Hello, world!\\n{SENTINEL}'; {DISCARD_STDIN}")
        async with open_session(config) as session:
            assert await session.run("console.log('Hello, world!');") == b"Hello, world!\n"
            assert session.state == SessionState.RUNNING

    async def test_consecutive_frames(self):
        config = shell_config(f"printf 'one{SENTINEL}two{SENTINEL}'; {DISCARD_STDIN}")
        async with open_session(config) as session:
            assert await session.run("first") == b"one"
            assert await session.run("second") == b"two"

    async def test_custom_sentinel(self):
        config = shell_config(f"printf '73<<done>>'; {DISCARD_STDIN}", sentinel=b"<<done>>")
        async with open_session(config) as session:
            assert await session.run("x") == b"73"

    async def test_concurrent_calls_are_serialised(self):
        config = shell_config(f"printf 'one{SENTINEL}two{SENTINEL}'; {DISCARD_STDIN}")
        async with open_session(config) as session:
            results = await asyncio.gather(session.run("a"), session.run("b"))
            assert results == [b"one", b"two"]

    async def test_request_reaches_stdin(self, tmp_path):
        received = tmp_path / "received.js"
        config = shell_config(f"read -r _line; printf '{SENTINEL}'; cat > {received}")
        async with open_session(config) as session:
            await session.run("process.stdout.write('hi')")
            session.stdin.close()
            assert await session.wait() == 0
        text = received.read_text()
        assert "process.stdout.write('hi')" in text
        assert "Buffer.from([0, 1, 0])" in text

    async def test_eof_before_sentinel_raises(self):
        config = shell_config("printf 'partial'; read -r _line")
        async with open_session(config) as session:
            with pytest.raises(UnexpectedEofError) as exc_info:
                await session.run("x")
            assert exc_info.value.partial == b"partial"
            assert session.state == SessionState.EXITED
            with pytest.raises(SessionClosedError):
                await session.run("y")

    async def test_eof_returns_partial_when_not_strict(self):
        config = shell_config("printf 'partial'; read -r _line", strict_eof=False)
        async with open_session(config) as session:
            assert await session.run("x") == b"partial"
            assert session.state == SessionState.EXITED

    async def test_write_after_exit_raises(self):
        async with open_session(shell_config("exit 3")) as session:
            await session.process.wait()
            with pytest.raises(WriteError):
                await session.run("x")
            assert session.state == SessionState.EXITED
            assert session.returncode == 3

    async def test_cancelled_call_kills_interpreter(self):
        async with open_session(shell_config(DISCARD_STDIN)) as session:
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(session.run("while (true) {}"), timeout=0.2)
            assert session.state == SessionState.EXITED
            assert await session.wait() != 0
            with pytest.raises(SessionClosedError):
                await session.run("x")


class TestShutdown:
    """Tests for stopping and disposing of sessions."""

    async def test_stop_sends_loop_exit_and_reaps(self, tmp_path):
        received = tmp_path / "received.js"
        config = shell_config(
            f"read -r _line; printf 'bye{SENTINEL}'; cat > {received}; exit 0"
        )
        async with open_session(config) as session:
            assert await session.stop() == b"bye"
            assert session.state == SessionState.EXITED
            assert session.returncode == 0
            assert os.path.isdir(session.workspace_path)
        assert "queue.done()" in received.read_text()

    async def test_close_removes_workspace(self):
        session = await spawn(shell_config(DISCARD_STDIN))
        workspace = session.workspace_path
        assert os.path.isdir(workspace)
        await session.close()
        assert not os.path.exists(workspace)
        assert session.closed
        assert session.returncode is not None
        await session.close()

    async def test_close_after_child_died(self):
        session = await spawn(shell_config("exit 0"))
        workspace = session.workspace_path
        await session.wait()
        await session.close()
        assert not os.path.exists(workspace)
        assert session.returncode == 0

    async def test_context_manager_cleans_up_on_error(self):
        with pytest.raises(ValueError):
            async with await spawn(shell_config(DISCARD_STDIN)) as session:
                workspace = session.workspace_path
                raise ValueError("caller failed")
        assert not os.path.exists(workspace)
        assert session.returncode is not None

    async def test_run_after_close(self):
        session = await spawn(shell_config(DISCARD_STDIN))
        await session.close()
        with pytest.raises(SessionClosedError):
            await session.run("x")
        with pytest.raises(SessionClosedError):
            await session.stop()

    async def test_kill(self):
        async with open_session(shell_config(DISCARD_STDIN)) as session:
            returncode = await session.kill()
            assert returncode != 0
            assert session.state == SessionState.EXITED

    async def test_sessions_are_independent(self):
        first = shell_config(f"printf 'A{SENTINEL}'; {DISCARD_STDIN}")
        second = shell_config(f"printf 'B{SENTINEL}'; {DISCARD_STDIN}")
        async with open_session(first) as a, open_session(second) as b:
            assert a.workspace_path != b.workspace_path
            assert await asyncio.gather(a.run("x"), b.run("x")) == [b"A", b"B"]

    async def test_stop_discards_output_left_after_the_stop_call(self):
        # Writes far more than a pipe holds once its stdin closes.
        flood = "head -c 1048576 /dev/zero"
        config = shell_config(
            f"read -r _line; printf 'bye{SENTINEL}'; {DISCARD_STDIN}; {flood}; {flood} >&2"
        )
        session = await spawn(config)
        workspace = session.workspace_path
        try:
            assert await asyncio.wait_for(session.stop(), timeout=10) == b"bye"
            assert session.state == SessionState.EXITED
            assert session.returncode == 0
        finally:
            await asyncio.wait_for(session.close(), timeout=10)
        assert not os.path.exists(workspace)

    async def test_close_with_unread_stderr_backlog(self):
        config = shell_config(f"head -c 1048576 /dev/zero >&2; {DISCARD_STDIN}")
        session = await spawn(config)
        workspace = session.workspace_path
        # Let the child fill the stderr pipe and the reader's buffer.
        await asyncio.sleep(0.3)
        await asyncio.wait_for(session.close(), timeout=10)
        assert not os.path.exists(workspace)
        assert session.returncode is not None

    async def test_wait_reaps_child_blocked_on_stdout(self):
        config = shell_config("head -c 1048576 /dev/zero; exit 4")
        async with open_session(config) as session:
            assert await asyncio.wait_for(session.wait(), timeout=10) == 4
            assert session.state == SessionState.EXITED
