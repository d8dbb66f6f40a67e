"""Execution of the external tools the build strategies delegate to."""
from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence

from .exceptions import CommandError

_LOG = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Outcome of one external command."""

    success: bool
    stdout: str
    stderr: str
    returncode: int

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


class CommandRunner:
    """Low-level command executor with consistent result handling."""

    def __init__(self, working_directory: Optional[Path] = None) -> None:
        self.working_directory = working_directory

    def run(
        self,
        cmd: Sequence[str],
        *,
        cwd: Optional[Path] = None,
        input_text: Optional[str] = None,
        check: bool = False,
    ) -> CommandResult:
        """Execute ``cmd`` and capture its output.

        Raises ``CommandError`` when ``check`` is set and the command fails.
        """

        _LOG.debug("Running %s", " ".join(cmd))
        completed = subprocess.run(
            list(cmd),
            cwd=cwd or self.working_directory,
            input=input_text,
            capture_output=True,
            text=True,
            check=False,
        )
        result = CommandResult(
            success=completed.returncode == 0,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
            returncode=completed.returncode,
        )
        if check and not result.success:
            raise CommandError(
                f"Command '{' '.join(cmd)}' failed with exit code {result.returncode}: {result.output.strip()}",
                result,
            )
        return result

    def run_streaming(
        self,
        cmd: Sequence[str],
        *,
        cwd: Optional[Path] = None,
        on_output: Optional[Callable[[str], None]] = None,
        check: bool = False,
    ) -> CommandResult:
        """Execute ``cmd`` and hand each output line to ``on_output`` as it arrives."""

        _LOG.debug("Running %s", " ".join(cmd))
        process = subprocess.Popen(
            list(cmd),
            cwd=cwd or self.working_directory,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
        )
        lines = []
        if process.stdout:
            for line in iter(process.stdout.readline, ""):
                line = line.rstrip("\n")
                if line:
                    lines.append(line)
                    if on_output:
                        on_output(line)
        process.wait()
        result = CommandResult(
            success=process.returncode == 0,
            stdout="\n".join(lines),
            stderr="",
            returncode=process.returncode or 0,
        )
        if check and not result.success:
            raise CommandError(
                f"Command '{' '.join(cmd)}' failed with exit code {result.returncode}",
                result,
            )
        return result
