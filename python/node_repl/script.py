"""Bootstrap script assembly.

The rendered script looks like:

    <imports>
    ;
    (async () => {
      <setup>
      ;
      <loop bootstrap, defines repl()>
      await repl();
      <teardown, last registered first>
      ;
    })();

Fragments are joined with a separator on its own line and each group is
closed with one, so a fragment that lacks a trailing semicolon or ends in a
line comment cannot run into the next statement.
"""

from __future__ import annotations

import functools
import importlib.resources
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from node_repl.config import ReplConfig

STATEMENT_SEPARATOR = "\n;\n"
BOOTSTRAP_ASSET = "repl.js"


@functools.lru_cache(maxsize=None)
def load_bootstrap() -> str:
    """Return the bundled loop bootstrap source."""
    return (
        importlib.resources.files("node_repl")
        .joinpath("assets")
        .joinpath(BOOTSTRAP_ASSET)
        .read_text(encoding="utf-8")
    )


def join_fragments(fragments: Iterable[str]) -> str:
    return STATEMENT_SEPARATOR.join(fragments)


def build_script(config: ReplConfig) -> str:
    """Render the program text the interpreter runs for a session."""
    imports = join_fragments(config.imports)
    setup = join_fragments(config.setup)
    teardown = join_fragments(reversed(config.teardown))
    return f"""
{imports}
;
(async () => {{
{setup}
;
  {config.loop_bootstrap}
  await repl();
{teardown}
;
}})();
"""
