from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set

from .audit import JsonAuditLogger
from .azure_cli import AzureCli
from .commands import CommandError
from .config import OrphanRules
from .console import Confirmer, Console


def find_orphaned_resource_groups(
    names: Iterable[str],
    rules: OrphanRules,
    tracked: Optional[Set[str]] = None,
) -> List[str]:
    """Lab-named resource groups that no known Terraform state accounts for."""
    tracked = tracked or set()
    return [name for name in names if rules.matches(name) and name not in tracked]


@dataclass
class OrphanCleanupResult:
    found: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped_reason: Optional[str] = None


class OrphanCleaner:
    def __init__(
        self,
        azure: AzureCli,
        rules: OrphanRules,
        console: Console,
        audit: JsonAuditLogger,
    ):
        self.azure = azure
        self.rules = rules
        self.console = console
        self.audit = audit

    def azure_ready(self) -> bool:
        if not self.azure.is_available():
            self.console.warning("Azure CLI not found. Orphaned resource cleanup will be skipped.")
            return False
        if not self.azure.is_logged_in():
            self.console.warning("Not logged into Azure CLI. Run 'az login' first.")
            return False
        return True

    def run(self, confirmer: Confirmer, tracked: Optional[Set[str]] = None) -> OrphanCleanupResult:
        result = OrphanCleanupResult()
        if not self.azure_ready():
            result.skipped_reason = "azure_cli_unavailable"
            return result

        self.console.banner("Checking for orphaned Azure resources...")
        self.console.status("Searching for lab resource groups...")
        try:
            groups = self.azure.list_resource_groups()
        except CommandError as exc:
            self.console.error(f"Failed to list resource groups: {exc}")
            self.audit.error("resource_group_list_failed", error=str(exc))
            result.skipped_reason = "list_failed"
            return result

        result.found = find_orphaned_resource_groups(groups, self.rules, tracked)
        if not result.found:
            self.console.status("No orphaned resource groups found.")
            return result

        self.console.warning("Found the following resource groups:")
        for name in result.found:
            self.console.echo(name)
        self.console.echo()

        if not confirmer.confirm("Delete these resource groups?"):
            self.console.info("Skipping orphaned resource cleanup")
            result.skipped_reason = "not_confirmed"
            return result

        for name in result.found:
            self.console.status(f"Deleting resource group: {name}")
            try:
                self.azure.delete_resource_group(name)
            except CommandError as exc:
                self.console.warning(f"Failed to delete {name}")
                self.audit.warning("resource_group_delete_failed", resource_group=name, error=str(exc))
                result.failed.append(name)
                continue
            self.audit.info("resource_group_delete_requested", resource_group=name)
            result.deleted.append(name)

        self.console.status("Resource group deletion initiated (running in background)")
        self.console.info("Use 'az group list' to check deletion progress")
        return result
