from __future__ import annotations

import sys
from typing import Callable, Optional, TextIO

from termcolor import colored

Prompt = Callable[[str], str]


class Console:
    """Operator-facing status lines: [+] ok, [!] warning, [-] error, [*] info."""

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream or sys.stdout

    def _emit(self, marker: str, color: str, message: str) -> None:
        print(f"{colored(marker, color)} {message}", file=self.stream)

    def status(self, message: str) -> None:
        self._emit("[+]", "green", message)

    def warning(self, message: str) -> None:
        self._emit("[!]", "yellow", message)

    def error(self, message: str) -> None:
        self._emit("[-]", "red", message)

    def info(self, message: str) -> None:
        self._emit("[*]", "blue", message)

    def banner(self, message: str) -> None:
        rule = "=" * 40
        self.info(rule)
        self.info(message)
        self.info(rule)

    def echo(self, message: str = "") -> None:
        print(message, file=self.stream)


class Confirmer:
    """Gates destructive steps behind a typed answer.

    Answers are trimmed of surrounding whitespace and then compared to the
    expected literal case-sensitively. With `assume_yes` every gate passes
    without prompting.
    """

    def __init__(self, prompt: Prompt = input, assume_yes: bool = False):
        self.prompt = prompt
        self.assume_yes = assume_yes

    def ask(self, question: str) -> str:
        return self.prompt(question).strip()

    def confirm_phrase(self, question: str, phrase: str) -> bool:
        if self.assume_yes:
            return True
        lead = f"{question} " if question else ""
        return self.ask(f"{lead}Type '{phrase}' to confirm: ") == phrase

    def confirm(self, question: str) -> bool:
        if self.assume_yes:
            return True
        return self.ask(f"{question} (yes/no): ") == "yes"
