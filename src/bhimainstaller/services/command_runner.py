"""Subprocess execution service for the BHIMA installer."""

import os
import subprocess
from typing import Dict, Iterable, List, Optional

from bhimainstaller.models import CommandResult

EXIT_CANNOT_EXECUTE = 126
EXIT_NOT_FOUND = 127
EXIT_TIMEOUT = 124


class CommandRunner:
    """Runs external commands and reports the outcome as a ``CommandResult``.

    A non-zero exit is never raised; the caller decides how severe it is.
    """

    def __init__(self, logger, default_timeout: Optional[float] = None):
        self.logger = logger
        self.default_timeout = default_timeout

    def run(
        self,
        cmd: List[str],
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        input_text: Optional[str] = None,
        redact: Iterable[str] = (),
    ) -> CommandResult:
        cmd_str = self._mask(" ".join(cmd), redact)
        self.logger.debug("Executing: %s", cmd_str)

        effective_timeout = timeout if timeout is not None else self.default_timeout
        effective_env = None
        if env:
            effective_env = dict(os.environ)
            effective_env.update(env)

        try:
            completed = subprocess.run(
                cmd,
                cwd=cwd,
                env=effective_env,
                input=input_text,
                text=True,
                encoding="utf-8",
                errors="replace",
                capture_output=True,
                timeout=effective_timeout,
            )
        except FileNotFoundError:
            message = f"Required command not found: {cmd[0]}"
            self.logger.debug(message)
            return CommandResult(tuple(cmd), EXIT_NOT_FOUND, stderr=message)
        except subprocess.TimeoutExpired:
            message = f"Command timed out after {effective_timeout}s: {cmd_str}"
            self.logger.debug(message)
            return CommandResult(tuple(cmd), EXIT_TIMEOUT, stderr=message, timed_out=True)
        except Exception as exc:
            message = f"Failed to execute command: {cmd_str}. {exc}"
            self.logger.debug(message)
            return CommandResult(tuple(cmd), EXIT_CANNOT_EXECUTE, stderr=message)

        stdout = completed.stdout or ""
        stderr = completed.stderr or ""
        if stdout.strip():
            self.logger.debug("Command output: %s", self._mask(stdout.strip(), redact))
        if completed.returncode != 0:
            self.logger.debug(
                "Command exited with %s: %s\n%s",
                completed.returncode,
                cmd_str,
                self._mask(stderr.strip(), redact),
            )

        return CommandResult(tuple(cmd), completed.returncode, stdout=stdout, stderr=stderr)

    @staticmethod
    def _mask(text: str, redact: Iterable[str]) -> str:
        for value in redact:
            if value:
                text = text.replace(value, "***")
        return text
