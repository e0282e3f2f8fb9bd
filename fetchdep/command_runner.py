"""Synchronous execution of git, cmake and pkg-config."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Sequence
import logging
import os
import shlex
import subprocess

logger = logging.getLogger(__name__)


def format_command(command: Sequence[str]) -> str:
    return " ".join(shlex.quote(str(part)) for part in command)


@dataclass
class CommandResult:
    """Exit status and captured output of one command."""

    command: Sequence[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return self.stdout.strip()


class CommandError(RuntimeError):
    """A checked command exited with a nonzero status.

    ``note`` names the operation ("clone zlib", "build Lib (Release)") and
    prefixes the message.
    """

    def __init__(self, result: CommandResult, *, note: str | None = None):
        summary = f"Command failed with exit code {result.returncode}: {format_command(result.command)}"
        if note:
            summary = f"{note}: {summary}"
        super().__init__(f"{summary}\nstdout: {result.stdout}\nstderr: {result.stderr}")
        self.result = result
        self.note = note


class CommandRunner:
    """Runs one command to completion.

    With ``check`` set (the default) a nonzero exit raises
    :class:`CommandError`; otherwise the result is handed back for the caller
    to inspect. ``env`` entries are added on top of the current environment.
    """

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        note: str | None = None,
    ) -> CommandResult:
        raise NotImplementedError

    @staticmethod
    def _checked(result: CommandResult, *, check: bool, note: str | None) -> CommandResult:
        if check and not result.ok:
            raise CommandError(result, note=note)
        return result


class SubprocessCommandRunner(CommandRunner):
    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        note: str | None = None,
    ) -> CommandResult:
        argv = [str(part) for part in command]
        logger.debug("Running %s%s", format_command(argv), f" (cwd={cwd})" if cwd else "")
        completed = subprocess.run(
            argv,
            cwd=os.fspath(cwd) if cwd else None,
            env={**os.environ, **env} if env else None,
            capture_output=True,
            text=True,
            check=False,
        )
        if completed.returncode != 0:
            logger.debug("%s exited with %d", argv[0], completed.returncode)
        result = CommandResult(argv, completed.returncode, completed.stdout, completed.stderr)
        return self._checked(result, check=check, note=note)


@dataclass(slots=True)
class RecordedCommand:
    command: List[str]
    cwd: str | None
    env: Dict[str, str]
    note: str | None


class RecordingCommandRunner(CommandRunner):
    """Records every command instead of executing it.

    Subclasses override :meth:`respond` to simulate specific commands; the
    default answer is a successful run with no output.
    """

    def __init__(self) -> None:
        self.commands: List[RecordedCommand] = []

    def respond(self, command: List[str], *, cwd: Path | None) -> CommandResult:
        return CommandResult(command, 0, "", "")

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        note: str | None = None,
    ) -> CommandResult:
        argv = [str(part) for part in command]
        self.commands.append(RecordedCommand(argv, os.fspath(cwd) if cwd else None, dict(env or {}), note))
        return self._checked(self.respond(argv, cwd=cwd), check=check, note=note)

    def commands_for(self, executable: str) -> List[List[str]]:
        """Recorded command lines whose program is *executable*."""
        return [record.command for record in self.commands if record.command[:1] == [executable]]


__all__ = [
    "CommandError",
    "CommandResult",
    "CommandRunner",
    "RecordedCommand",
    "RecordingCommandRunner",
    "SubprocessCommandRunner",
    "format_command",
]
