"""Disposable working directory for a session."""

from __future__ import annotations

import asyncio
import logging
import tempfile
from pathlib import Path

from node_repl.errors import CopyFailedError, ScriptWriteError, WorkspaceError

logger = logging.getLogger(__name__)

WORKSPACE_PREFIX = "node-repl-"


class Workspace:
    """A temporary directory holding the bootstrap script and copied-in assets.

    The directory is deleted by cleanup(), which is safe to call more than
    once. TemporaryDirectory's finalizer removes it as a last resort if the
    owner is garbage collected without cleaning up.
    """

    def __init__(self, prefix: str = WORKSPACE_PREFIX):
        try:
            self._tmp = tempfile.TemporaryDirectory(prefix=prefix)
        except OSError as e:
            raise WorkspaceError(f"Cannot create workspace directory: {e}") from e
        self.path = Path(self._tmp.name)
        self._cleaned = False

    def write_script(self, file_name: str, text: str) -> Path:
        """Write the rendered script and return its path."""
        script_path = self.path / file_name
        try:
            script_path.write_text(text, encoding="utf-8")
        except OSError as e:
            raise ScriptWriteError(f"Cannot write script {script_path}: {e}") from e
        return script_path

    async def copy_in(self, source: str) -> None:
        """Recursively copy a file or directory into the workspace root."""
        try:
            proc = await asyncio.create_subprocess_exec(
                "cp",
                "-r",
                source,
                str(self.path),
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise CopyFailedError(source, None, str(e)) from e
        _, stderr = await proc.communicate()
        if proc.returncode != 0:
            raise CopyFailedError(source, proc.returncode, stderr.decode(errors="replace"))
        logger.debug("Copied %s into %s", source, self.path)

    async def copy_all(self, sources: tuple[str, ...] | list[str]) -> None:
        """Copy each source in order, stopping at the first failure."""
        for source in sources:
            await self.copy_in(source)

    @property
    def cleaned(self) -> bool:
        return self._cleaned

    def cleanup(self) -> None:
        if self._cleaned:
            return
        self._cleaned = True
        self._tmp.cleanup()
        logger.debug("Removed workspace %s", self.path)

    def __repr__(self) -> str:
        state = "cleaned" if self._cleaned else "live"
        return f"Workspace({str(self.path)!r}, {state})"
