from __future__ import annotations

import json
import logging
import shutil
from pathlib import Path
from typing import List, Set

from .commands import CommandRunner

logger = logging.getLogger(__name__)

STATE_FILE = "terraform.tfstate"
PLAN_FILE = "tfplan"


class TerraformWorkspace:
    """A single generator directory driven through the terraform CLI."""

    def __init__(self, name: str, path: Path, runner: CommandRunner, binary: str = "terraform"):
        self.name = name
        self.path = Path(path)
        self.runner = runner
        self.binary = binary

    def exists(self) -> bool:
        return self.path.is_dir()

    def has_configuration(self) -> bool:
        return self.exists() and any(self.path.glob("*.tf"))

    def has_state(self) -> bool:
        return (self.path / STATE_FILE).is_file()

    def _terraform(self, *args: str, capture: bool = False):
        return self.runner.run([self.binary, *args], cwd=self.path, capture=capture)

    def init(self) -> None:
        self._terraform("init", "-input=false")

    def plan(self) -> None:
        self._terraform("plan", "-input=false", f"-out={PLAN_FILE}")

    def apply(self) -> None:
        # Not the saved plan: a retry after a partial apply would find it stale.
        self._terraform("apply", "-input=false", "-auto-approve")

    def show(self) -> None:
        self._terraform("show")

    def destroy(self) -> None:
        self._terraform("destroy", "-input=false", "-auto-approve")

    def tracked_resource_groups(self) -> Set[str]:
        """Resource group names referenced by this workspace's local state."""
        state_path = self.path / STATE_FILE
        if not state_path.is_file():
            return set()
        try:
            state = json.loads(state_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("unreadable terraform state %s: %s", state_path, exc)
            return set()

        names: Set[str] = set()
        for resource in state.get("resources", []) or []:
            for instance in resource.get("instances", []) or []:
                attributes = instance.get("attributes") or {}
                if resource.get("type") == "azurerm_resource_group" and attributes.get("name"):
                    names.add(attributes["name"])
                if attributes.get("resource_group_name"):
                    names.add(attributes["resource_group_name"])
        return names

    def clean_state(self) -> List[Path]:
        """Remove local state, provider caches and saved plans. Returns what was removed."""
        if not self.exists():
            return []

        removed: List[Path] = []
        for pattern in (f"{STATE_FILE}*", "*.tfplan", PLAN_FILE):
            for candidate in sorted(self.path.rglob(pattern)):
                if candidate.is_file() and candidate not in removed:
                    candidate.unlink()
                    removed.append(candidate)
        for cache_dir in sorted(self.path.rglob(".terraform")):
            if cache_dir.is_dir():
                shutil.rmtree(cache_dir)
                removed.append(cache_dir)
        return removed
