"""Execution of external programs (docker, aws) with exit code checking."""
from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
from dataclasses import dataclass, field
from typing import IO, List, Optional, Sequence

from .utils import mask_sensitive

LOGGER = logging.getLogger(__name__)

# Seconds between SIGTERM and SIGKILL once a command has timed out.
KILL_GRACE_PERIOD = 5.0


class CommandError(Exception):
    """Raised when an external command cannot be run or exits with an error."""


@dataclass
class CommandResult:
    command: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""


def require_commands(*names: str) -> None:
    """Fail when any of *names* is not available on ``PATH``."""

    missing = [name for name in names if shutil.which(name) is None]
    if missing:
        raise CommandError(
            f"Command(s) not found: {', '.join(missing)}. "
            "Install them and ensure they are in your PATH."
        )


@dataclass
class CommandRunner:
    """Run argument lists (never shell strings) one at a time.

    ``secrets`` holds values that must never show up in logs or error
    messages; they are masked in the rendered command and in stderr.
    """

    timeout: Optional[float] = None
    kill_grace: float = KILL_GRACE_PERIOD
    secrets: List[str] = field(default_factory=list)
    logger: logging.Logger = LOGGER

    def add_secret(self, value: Optional[str]) -> None:
        if value and value not in self.secrets:
            self.secrets.append(value)

    def mask(self, value: str) -> str:
        return mask_sensitive(value, self.secrets)

    def run(
        self,
        command: Sequence[str],
        *,
        description: str,
        stdin: Optional[IO[bytes]] = None,
        input: Optional[bytes] = None,
        stdout: Optional[IO[bytes]] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """Run *command* to completion and return its result.

        ``stdin`` is an open binary file fed to the process, ``input`` raw
        bytes written to it; only one of them may be given. When ``stdout`` is
        a file the output goes there instead of being captured.
        """

        if stdin is not None and input is not None:
            raise ValueError("stdin and input are mutually exclusive")
        argv = [str(part) for part in command]
        timeout = self.timeout if timeout is None else timeout
        rendered = self.mask(shlex.join(argv))
        self.logger.info("Running %s: %s", description, rendered)

        try:
            process = subprocess.Popen(
                argv,
                stdin=subprocess.PIPE if input is not None else stdin,
                stdout=stdout if stdout is not None else subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise CommandError(f"{description} failed: '{argv[0]}' not found.") from exc
        except OSError as exc:
            raise CommandError(f"{description} failed to start: {exc}") from exc

        try:
            out, err = process.communicate(input=input, timeout=timeout)
        except subprocess.TimeoutExpired as exc:
            self._terminate(process, description)
            raise CommandError(f"{description} timed out after {timeout} seconds.") from exc

        result = CommandResult(
            command=argv,
            returncode=process.returncode,
            stdout=self._decode(out),
            stderr=self.mask(self._decode(err)),
        )
        if result.stdout:
            self.logger.debug("STDOUT: %s", self.mask(result.stdout))
        if result.stderr:
            self.logger.debug("STDERR: %s", result.stderr)
        if result.returncode != 0:
            raise CommandError(
                f"{description} failed with exit code {result.returncode}: {result.stderr}"
            )
        return result

    # ------------------------------------------------------------------
    def _terminate(self, process: subprocess.Popen, description: str) -> None:
        self.logger.error("%s timed out, sending SIGTERM.", description)
        process.terminate()
        try:
            process.communicate(timeout=self.kill_grace)
        except subprocess.TimeoutExpired:
            self.logger.error("%s ignored SIGTERM, sending SIGKILL.", description)
            process.kill()
            process.communicate()

    @staticmethod
    def _decode(data: Optional[bytes]) -> str:
        if not data:
            return ""
        return data.decode(errors="replace").strip()


__all__ = [
    "CommandError",
    "CommandResult",
    "CommandRunner",
    "require_commands",
]
