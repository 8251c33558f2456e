from __future__ import annotations

import shlex
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Sequence

# Called once per stdout line (newline stripped), in output order.
LineCallback = Callable[[str], Awaitable[None]]


@dataclass
class CommandResult:
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


def escape_heredoc(content: str) -> str:
    """
    Escape text for the body of an *unquoted* heredoc.

    Inside such a body bash only treats backslash, `$` and backtick as
    special; escaping those three makes the body expand back to `content`.
    """
    return (
        content.replace("\\", "\\\\")
        .replace("$", "\\$")
        .replace("`", "\\`")
    )


def heredoc_write_script(path: str, content: str) -> str:
    """
    Build a bash script that writes `content` to `path` byte for byte.

    The heredoc always appends one newline; it is read into a variable and
    dropped again with ${var%?}, so files without a trailing newline (or
    with several) survive unchanged.
    """
    delim = f"DECK_EOF_{uuid.uuid4().hex}"
    return (
        f"IFS= read -r -d '' __deck_doc <<{delim} || true\n"
        f"{escape_heredoc(content)}\n"
        f"{delim}\n"
        f"printf '%s' \"${{__deck_doc%?}}\" > {shlex.quote(path)}\n"
    )


class Environment(ABC):
    """One live, ephemeral execution environment."""

    def __init__(self, environment_id: str):
        self.id = environment_id

    @abstractmethod
    async def run(
        self,
        cmd: str,
        args: Sequence[str] = (),
        env: Optional[Dict[str, str]] = None,
        on_line: Optional[LineCallback] = None,
    ) -> CommandResult:
        """Run a command to completion; stdout lines go to `on_line` as they become available."""

    async def bash(self, script: str, **kwargs) -> CommandResult:
        return await self.run("bash", ["-c", script], **kwargs)

    async def write_file(self, path: str, content: str) -> CommandResult:
        return await self.bash(heredoc_write_script(path, content))

    async def read_file(self, path: str) -> CommandResult:
        return await self.run("cat", [path])


class EnvironmentProvider(ABC):
    @abstractmethod
    async def create(self, *, vcpus: int, timeout_sec: int, runtime: str) -> Environment:
        """Create a new environment. Raises EnvironmentUnavailable."""

    @abstractmethod
    async def resolve(self, environment_id: str) -> Environment:
        """Attach to a live environment. Raises EnvironmentUnavailable if it is gone."""

    async def aclose(self) -> None:
        return None
