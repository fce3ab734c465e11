from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Dict, List, Optional

from zero_trust_lab.commands import CommandError, CommandRunner


class FakeRunner(CommandRunner):
    """Records commands instead of executing them.

    `fail(pattern, times)` makes the next `times` commands containing
    `pattern` exit non-zero (forever when times is None). `respond` sets the
    captured stdout for matching commands.
    """

    def __init__(self, binaries=("terraform", "az")):
        self.calls: List[List[str]] = []
        self.cwds: List[Optional[Path]] = []
        self.binaries = set(binaries)
        self._failures: Dict[str, Optional[int]] = {}
        self._outputs: Dict[str, str] = {}

    def fail(self, pattern: str, times: Optional[int] = None) -> None:
        self._failures[pattern] = times

    def respond(self, pattern: str, stdout: str) -> None:
        self._outputs[pattern] = stdout

    def run(self, cmd, cwd=None, capture=False, check=True):
        cmd = list(cmd)
        self.calls.append(cmd)
        self.cwds.append(Path(cwd) if cwd else None)
        line = " ".join(cmd)
        for pattern, remaining in list(self._failures.items()):
            if pattern in line and (remaining is None or remaining > 0):
                if remaining is not None:
                    self._failures[pattern] = remaining - 1
                if check:
                    raise CommandError(cmd, 1, stderr="boom")
                return subprocess.CompletedProcess(cmd, 1, stdout="", stderr="boom")
        stdout = next((out for pattern, out in self._outputs.items() if pattern in line), "")
        return subprocess.CompletedProcess(cmd, 0, stdout=stdout, stderr="")

    def which(self, name):
        return f"/usr/bin/{name}" if name in self.binaries else None

    def commands(self, fragment: str) -> List[List[str]]:
        return [cmd for cmd in self.calls if fragment in " ".join(cmd)]


class ScriptedPrompt:
    def __init__(self, *answers: str):
        self.answers = list(answers)
        self.questions: List[str] = []

    def __call__(self, question: str) -> str:
        self.questions.append(question)
        if not self.answers:
            raise AssertionError(f"unexpected prompt: {question!r}")
        return self.answers.pop(0)
