from __future__ import annotations

import json
import logging
import shutil
import subprocess
from pathlib import Path
from typing import Any, Optional, Sequence, Union

logger = logging.getLogger(__name__)


class MissingPrerequisiteError(Exception):
    """A required external binary is not installed."""

    def __init__(self, binary: str, hint: str = ""):
        self.binary = binary
        message = f"{binary} is not installed."
        if hint:
            message = f"{message} {hint}"
        super().__init__(message)


class CommandError(Exception):
    """An external command exited non-zero or could not be started."""

    def __init__(self, cmd: Sequence[str], returncode: int, stdout: str = "", stderr: str = ""):
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stdout = stdout or ""
        self.stderr = stderr or ""
        detail = self.stderr.strip() or self.stdout.strip() or f"exit code {returncode}"
        super().__init__(f"{' '.join(self.cmd)} failed: {detail}")


def require_binary(name: str, hint: str = "") -> str:
    path = shutil.which(name)
    if not path:
        raise MissingPrerequisiteError(name, hint)
    return path


class CommandRunner:
    """Runs terraform/az as child processes.

    Without `capture` the child inherits the terminal so long-running
    terraform output streams straight to the operator.
    """

    def run(
        self,
        cmd: Sequence[str],
        cwd: Optional[Union[str, Path]] = None,
        capture: bool = False,
        check: bool = True,
    ) -> subprocess.CompletedProcess:
        logger.debug("running %s (cwd=%s)", " ".join(cmd), cwd)
        try:
            completed = subprocess.run(
                list(cmd),
                cwd=cwd,
                text=True,
                capture_output=capture,
                check=False,
            )
        except OSError as exc:
            raise CommandError(cmd, 127, stderr=str(exc)) from exc

        if check and completed.returncode != 0:
            raise CommandError(cmd, completed.returncode, completed.stdout, completed.stderr)
        return completed

    def succeeds(self, cmd: Sequence[str], cwd: Optional[Union[str, Path]] = None) -> bool:
        try:
            self.run(cmd, cwd=cwd, capture=True)
        except CommandError:
            return False
        return True

    def json(self, cmd: Sequence[str], cwd: Optional[Union[str, Path]] = None) -> Any:
        completed = self.run(cmd, cwd=cwd, capture=True)
        output = (completed.stdout or "").strip()
        if not output:
            return None
        try:
            return json.loads(output)
        except ValueError as exc:
            raise CommandError(cmd, completed.returncode, output, f"invalid JSON output: {exc}") from exc

    def which(self, name: str) -> Optional[str]:
        return shutil.which(name)
