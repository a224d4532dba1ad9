"""Session configuration.

A ReplConfig describes everything needed to start a session: the fragments
rendered into the bootstrap script, the files copied next to it, and how the
interpreter is launched. Configurations are immutable and validated when they
are built:

    config = ReplConfig.build(
        imports=["const fs = require('fs')"],
        teardown=["console.error('bye')"],
        module_path="/srv/app/node_modules",
    )
    session = await config.start()

Validation failures are raised as ProtocolConfigError before any process or
directory exists.
"""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from node_repl.errors import ProtocolConfigError
from node_repl.script import load_bootstrap

if TYPE_CHECKING:
    from node_repl.session import Session

DEFAULT_SCRIPT_FILE_NAME = "script.js"
DEFAULT_INTERPRETER_BINARY = "node"
DEFAULT_SHELL = "sh"
# Must never appear in a call's legitimate output.
DEFAULT_SENTINEL = b"\x00\x01\x00"
MODULE_PATH_ENV_VAR = "NODE_PATH"


@runtime_checkable
class CommandBuilder(Protocol):
    """Strategy producing the shell command that launches the interpreter."""

    def build(self, config: ReplConfig, workspace_path: str, script_path: str) -> str: ...


@dataclass(frozen=True)
class DefaultCommandBuilder:
    """Builds ``NODE_PATH=<module_path> <interpreter_binary> <script_path>``.

    The module path variable is left out when no module path is configured.
    The interpreter binary is used verbatim so it may carry extra flags.
    """

    def build(self, config: ReplConfig, workspace_path: str, script_path: str) -> str:
        parts = []
        if config.module_path is not None:
            parts.append(f"{MODULE_PATH_ENV_VAR}={shlex.quote(config.module_path)}")
        parts.append(config.interpreter_binary)
        parts.append(shlex.quote(script_path))
        return " ".join(parts)


@dataclass(frozen=True)
class FunctionCommandBuilder:
    """Adapts a plain ``(config, workspace_path, script_path) -> str`` callable."""

    func: Callable[[ReplConfig, str, str], str]

    def build(self, config: ReplConfig, workspace_path: str, script_path: str) -> str:
        return self.func(config, workspace_path, script_path)


class ReplConfig(BaseModel):
    """Immutable configuration for one REPL session."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    imports: tuple[str, ...] = Field(default=(), description="Top-level fragments, emitted first")
    setup: tuple[str, ...] = Field(
        default=(), description="Fragments run once before the loop, in the async block"
    )
    loop_bootstrap: str = Field(
        default_factory=load_bootstrap, description="Source defining the repl() loop entry point"
    )
    teardown: tuple[str, ...] = Field(
        default=(), description="Fragments run after the loop exits, last registered first"
    )
    script_file_name: str = Field(default=DEFAULT_SCRIPT_FILE_NAME)
    command_builder: CommandBuilder = Field(default_factory=DefaultCommandBuilder)
    copy_paths: tuple[str, ...] = Field(
        default=(), description="Paths copied recursively into the workspace before launch"
    )
    module_path: str | None = Field(default=None, description="Forwarded as NODE_PATH")
    interpreter_binary: str = Field(default=DEFAULT_INTERPRETER_BINARY)
    sentinel: bytes = Field(default=DEFAULT_SENTINEL, description="End-of-output marker")
    shell: str = Field(default=DEFAULT_SHELL, description="Shell used as '<shell> -c <command>'")
    env: dict[str, str] = Field(
        default_factory=dict, description="Extra environment variables for the child"
    )
    strict_eof: bool = Field(
        default=True,
        description="Raise UnexpectedEofError when stdout closes before the sentinel",
    )

    @field_validator("command_builder", mode="before")
    @classmethod
    def _adapt_command_builder(cls, value: Any) -> Any:
        if value is None:
            return DefaultCommandBuilder()
        if isinstance(value, CommandBuilder):
            return value
        if callable(value):
            return FunctionCommandBuilder(value)
        raise ValueError(f"command_builder must be a CommandBuilder or callable, got {value!r}")

    @field_validator("sentinel")
    @classmethod
    def _check_sentinel(cls, value: bytes) -> bytes:
        if not value:
            raise ValueError("sentinel must not be empty")
        return value

    @field_validator("script_file_name")
    @classmethod
    def _check_script_file_name(cls, value: str) -> str:
        if value in ("", ".", "..") or os.sep in value or (os.altsep and os.altsep in value):
            raise ValueError(f"script_file_name must be a bare file name, got {value!r}")
        return value

    @field_validator("interpreter_binary", "shell")
    @classmethod
    def _check_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value

    @classmethod
    def build(cls, **options: Any) -> ReplConfig:
        """Build a configuration, raising ProtocolConfigError on invalid options."""
        try:
            return cls(**options)
        except ValidationError as e:
            raise ProtocolConfigError(str(e)) from e

    def replace(self, **changes: Any) -> ReplConfig:
        """Return a validated copy with some options changed."""
        return type(self).build(**{**dict(self), **changes})

    def build_command(self, workspace_path: str, script_path: str) -> str:
        return self.command_builder.build(self, workspace_path, script_path)

    async def start(self) -> Session:
        """Spawn a session running this configuration."""
        from node_repl.session import spawn

        return await spawn(self)
