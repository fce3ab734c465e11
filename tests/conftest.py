from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import List

import pytest

from helpers import FakeRunner, ScriptedPrompt
from zero_trust_lab.audit import InMemoryAuditStore, JsonAuditLogger
from zero_trust_lab.config import LabConfig
from zero_trust_lab.console import Confirmer, Console
from zero_trust_lab.lab_manager import LabManager

GENERATORS = ("azure_ad", "storage", "managed_identity")


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def output() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def console(output) -> Console:
    return Console(stream=output)


@pytest.fixture
def audit_store() -> InMemoryAuditStore:
    return InMemoryAuditStore()


@pytest.fixture
def audit(audit_store) -> JsonAuditLogger:
    return JsonAuditLogger(
        name="zero_trust_lab.tests",
        level=logging.WARNING,
        store=audit_store,
        stream=io.StringIO(),
    )


@pytest.fixture
def lab_root(tmp_path) -> Path:
    for name in GENERATORS:
        directory = tmp_path / "generators" / name
        directory.mkdir(parents=True)
        (directory / "main.tf").write_text("terraform {}\n", encoding="utf-8")
    return tmp_path


@pytest.fixture
def lab_config(lab_root) -> LabConfig:
    return LabConfig(root=lab_root)


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def make_manager(lab_config, runner, console, audit, sleeps):
    def factory(*answers: str, assume_yes: bool = False) -> LabManager:
        prompt = ScriptedPrompt(*answers)
        manager = LabManager(
            lab_config,
            runner=runner,
            console=console,
            confirmer=Confirmer(prompt=prompt, assume_yes=assume_yes),
            audit_logger=audit,
            sleep=sleeps.append,
        )
        manager.prompt = prompt  # type: ignore[attr-defined]
        return manager

    return factory
