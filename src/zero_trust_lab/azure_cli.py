from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .commands import CommandError, CommandRunner

logger = logging.getLogger(__name__)

POLICY_QUERY = "{displayName:displayName, description:description, parameters:parameters}"


class AzureCli:
    """Thin wrapper over the `az` commands the lab needs."""

    def __init__(self, runner: CommandRunner, binary: str = "az"):
        self.runner = runner
        self.binary = binary

    def _az(self, *args: str) -> List[str]:
        return [self.binary, *args]

    def is_available(self) -> bool:
        return self.runner.which(self.binary) is not None

    def is_logged_in(self) -> bool:
        return self.runner.succeeds(self._az("account", "show", "-o", "none"))

    def list_resource_groups(self) -> List[str]:
        groups = self.runner.json(self._az("group", "list", "-o", "json")) or []
        return [group["name"] for group in groups if group.get("name")]

    def delete_resource_group(self, name: str) -> None:
        self.runner.run(
            self._az("group", "delete", "--name", name, "--yes", "--no-wait"),
            capture=True,
        )

    def list_policy_assignments(self) -> List[Dict[str, Any]]:
        return self.runner.json(self._az("policy", "assignment", "list", "-o", "json")) or []

    def show_policy(self, policy_id: str) -> Optional[Dict[str, Any]]:
        kind = "set-definition" if is_policy_set(policy_id) else "definition"
        try:
            return self.runner.json(
                self._az("policy", kind, "show", "--id", policy_id, "--query", POLICY_QUERY, "-o", "json")
            )
        except CommandError as exc:
            logger.warning("could not read policy %s: %s", policy_id, exc)
            return None


def is_policy_set(policy_id: str) -> bool:
    return "policySetDefinitions" in policy_id
