from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Set

from .audit import JsonAuditLogger
from .azure_cli import AzureCli
from .commands import CommandError, CommandRunner
from .config import GeneratorConfig, LabConfig
from .console import Confirmer, Console
from .orphans import OrphanCleaner, OrphanCleanupResult
from .terraform import TerraformWorkspace

ALL_TARGETS = "all"


class StepOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class StepResult:
    name: str
    outcome: StepOutcome
    detail: str = ""


class DeploymentError(Exception):
    """A generator marked abort_on_failure could not be applied."""

    def __init__(self, generator: str, attempts: int, cause: Exception):
        self.generator = generator
        self.attempts = attempts
        self.cause = cause
        super().__init__(f"{generator} deployment failed after {attempts} attempt(s): {cause}")


class LabManager:
    """Drives the lab's generators through deploy and every cleanup path."""

    def __init__(
        self,
        config: LabConfig,
        runner: Optional[CommandRunner] = None,
        console: Optional[Console] = None,
        confirmer: Optional[Confirmer] = None,
        audit_logger: Optional[JsonAuditLogger] = None,
        azure: Optional[AzureCli] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.runner = runner or CommandRunner()
        self.console = console or Console()
        self.confirmer = confirmer or Confirmer()
        self.audit = audit_logger or JsonAuditLogger()
        self.azure = azure or AzureCli(self.runner)
        self._sleep = sleep
        self._workspaces: Dict[str, TerraformWorkspace] = {
            generator.name: TerraformWorkspace(generator.name, config.generator_path(generator), self.runner)
            for generator in config.generators
        }

    def workspace(self, name: str) -> TerraformWorkspace:
        workspace = self._workspaces.get(name)
        if not workspace:
            raise KeyError(f"Generator {name} is not configured")
        return workspace

    def select(self, targets: Optional[Sequence[str]] = None) -> List[GeneratorConfig]:
        if not targets or ALL_TARGETS in targets:
            return list(self.config.generators)
        wanted = set(targets)
        unknown = wanted - set(self._workspaces)
        if unknown:
            raise ValueError(f"Unknown generator(s): {', '.join(sorted(unknown))}")
        return [generator for generator in self.config.generators if generator.name in wanted]

    def _usable(self, workspace: TerraformWorkspace) -> Optional[str]:
        if not workspace.exists():
            self.console.warning(f"Directory not found: {workspace.path}")
            return "directory_missing"
        if not workspace.has_configuration():
            self.console.warning(f"No Terraform files found in {workspace.name}, skipping...")
            return "no_configuration"
        return None

    # deploy

    def deploy(self, targets: Optional[Sequence[str]] = None) -> List[StepResult]:
        results = []
        for generator in self.select(targets):
            results.append(self.deploy_generator(generator))
        return results

    def deploy_generator(self, generator: GeneratorConfig) -> StepResult:
        workspace = self.workspace(generator.name)
        self.console.banner(f"Deploying {generator.name}...")

        reason = self._usable(workspace)
        if reason:
            return StepResult(generator.name, StepOutcome.SKIPPED, reason)

        try:
            self.console.status("Initializing Terraform...")
            workspace.init()
            self.console.status("Planning changes...")
            workspace.plan()
        except CommandError as exc:
            self.console.error(f"Failed to prepare {generator.name}: {exc}")
            self.audit.error("terraform_prepare_failed", generator=generator.name, error=str(exc))
            return StepResult(generator.name, StepOutcome.FAILED, str(exc))

        if not self.confirmer.confirm(f"Proceed with deploying {generator.name} resources?"):
            self.console.info(f"Skipping {generator.name}...")
            return StepResult(generator.name, StepOutcome.SKIPPED, "not_confirmed")

        try:
            attempts = self.apply_with_retry(generator, workspace)
        except CommandError as exc:
            self.console.error(f"Failed to deploy {generator.name}: {exc}")
            return StepResult(generator.name, StepOutcome.FAILED, str(exc))

        self.console.status(f"{generator.name} deployment complete!")
        return StepResult(generator.name, StepOutcome.SUCCEEDED, f"attempts={attempts}")

    def apply_with_retry(self, generator: GeneratorConfig, workspace: TerraformWorkspace) -> int:
        """Apply up to `apply_attempts` times with a fixed delay between failures.

        Returns the attempt number that succeeded. When attempts run out the
        last CommandError propagates, wrapped in DeploymentError for
        generators that abort the deploy.
        """
        attempts = generator.apply_attempts
        for attempt in range(1, attempts + 1):
            self.console.status(f"Applying {generator.name} (attempt {attempt}/{attempts})...")
            try:
                workspace.apply()
            except CommandError as exc:
                self.audit.warning(
                    "terraform_apply_failed",
                    generator=generator.name,
                    attempt=attempt,
                    attempts=attempts,
                    error=str(exc),
                )
                if attempt < attempts:
                    self.console.warning(
                        f"Apply failed; retrying in {generator.retry_delay_seconds:g}s "
                        "to let directory replication catch up"
                    )
                    self._sleep(generator.retry_delay_seconds)
                    continue
                if generator.abort_on_failure:
                    self.audit.error("deployment_aborted", generator=generator.name, attempts=attempts)
                    raise DeploymentError(generator.name, attempts, exc) from exc
                raise
            self.audit.info("terraform_apply_succeeded", generator=generator.name, attempt=attempt)
            return attempt
        raise AssertionError("apply_attempts must be at least 1")

    # destroy

    def destroy_generator(self, name: str) -> StepResult:
        workspace = self.workspace(name)
        self.console.banner(f"Cleaning up {name}...")

        reason = self._usable(workspace)
        if reason:
            return StepResult(name, StepOutcome.SKIPPED, reason)

        if not workspace.has_state():
            self.console.warning(f"No Terraform state found for {name}")
            if not self.confirmer.confirm("Attempt destroy without local state?"):
                self.console.info(f"Skipping {name}...")
                return StepResult(name, StepOutcome.SKIPPED, "no_state")

        try:
            self.console.status("Initializing Terraform...")
            workspace.init()
        except CommandError as exc:
            self.console.error(f"Failed to initialize Terraform for {name}")
            self.audit.error("terraform_init_failed", generator=name, error=str(exc))
            return StepResult(name, StepOutcome.FAILED, str(exc))

        self.console.warning("The following resources will be destroyed:")
        try:
            workspace.show()
        except CommandError as exc:
            self.audit.warning("terraform_show_failed", generator=name, error=str(exc))

        self.console.echo()
        if not self.confirmer.confirm(f"Proceed with destroying {name} resources?"):
            self.console.info(f"Skipping {name}...")
            return StepResult(name, StepOutcome.SKIPPED, "not_confirmed")

        self.console.status(f"Destroying {name} resources...")
        try:
            workspace.destroy()
        except CommandError as exc:
            self.console.error(f"Failed to destroy some {name} resources")
            self.console.warning("You may need to manually delete resources in Azure Portal")
            self.audit.error("terraform_destroy_failed", generator=name, error=str(exc))
            return StepResult(name, StepOutcome.FAILED, str(exc))

        self.audit.info("terraform_destroy_succeeded", generator=name)
        self.console.status(f"{name} cleanup complete!")
        return StepResult(name, StepOutcome.SUCCEEDED)

    def destroy_order(self) -> List[str]:
        return self.config.cleanup_sequence()

    def destroy_generators(self, targets: Optional[Sequence[str]] = None) -> List[StepResult]:
        selected = {generator.name for generator in self.select(targets)}
        return [self.destroy_generator(name) for name in self.destroy_order() if name in selected]

    def destroy_all(self) -> List[StepResult]:
        self.console.warning("This will destroy ALL lab resources!")
        if not self.confirmer.confirm_phrase("Are you sure?", "yes"):
            self.console.info("Cancelled")
            return []
        results = self.destroy_generators()
        self.console.status("All resources destroyed!")
        return results

    # orphans and state

    def tracked_resource_groups(self) -> Set[str]:
        tracked: Set[str] = set()
        for workspace in self._workspaces.values():
            tracked |= workspace.tracked_resource_groups()
        return tracked

    def cleanup_orphans(self) -> OrphanCleanupResult:
        cleaner = OrphanCleaner(self.azure, self.config.orphans, self.console, self.audit)
        return cleaner.run(self.confirmer, tracked=self.tracked_resource_groups())

    def delete_state(self) -> StepResult:
        self.console.banner("Delete Terraform State Files")
        self.console.warning("This will delete all Terraform state files!")
        self.console.warning("You will NOT be able to manage resources with Terraform after this.")
        self.console.echo()
        if not self.confirmer.confirm_phrase("Are you sure?", "DELETE"):
            self.console.info("Skipping state file deletion")
            return StepResult("state", StepOutcome.SKIPPED, "not_confirmed")

        self.console.status("Deleting Terraform state files...")
        removed = []
        for workspace in self._workspaces.values():
            try:
                removed.extend(workspace.clean_state())
            except OSError as exc:
                self.console.warning(f"Could not clean {workspace.name}: {exc}")
                self.audit.warning("state_cleanup_failed", generator=workspace.name, error=str(exc))
        self.audit.info("state_deleted", removed=[str(path) for path in removed])
        self.console.status("Terraform state files deleted!")
        return StepResult("state", StepOutcome.SUCCEEDED, f"removed={len(removed)}")

    def full_cleanup(self) -> List[StepResult]:
        self.console.warning("=" * 41)
        self.console.warning("FULL CLEANUP - This will:")
        self.console.warning("  - Destroy all Terraform resources")
        self.console.warning("  - Delete orphaned Azure resource groups")
        self.console.warning("  - Remove all Terraform state files")
        self.console.warning("=" * 41)
        if not self.confirmer.confirm_phrase("", "DESTROY"):
            self.console.error("Cleanup cancelled")
            return []

        self.console.status("Starting full cleanup...")
        results = self.destroy_generators()
        self.cleanup_orphans()
        if self.confirmer.confirm("Also delete Terraform state files?"):
            results.append(self.delete_state())

        self.console.status("=" * 41)
        self.console.status("Full cleanup complete!")
        self.console.status("=" * 41)
        return results

    # interactive

    def menu_entries(self) -> List[tuple]:
        entries = [
            (f"Clean up {name} resources", lambda name=name: self.destroy_generator(name))
            for name in self.destroy_order()
        ]
        entries += [
            ("Clean up ALL resources (recommended)", self.destroy_all),
            ("Check for orphaned Azure resources", self.cleanup_orphans),
            ("Delete Terraform state files", self.delete_state),
            ("Full cleanup (destroy + orphaned + state)", self.full_cleanup),
        ]
        return entries

    def interactive_menu(self) -> None:
        entries = self.menu_entries()
        exit_choice = len(entries) + 1
        self.console.info("Zero Trust Lab Cleanup")
        self.console.info(f"Location: {self.config.root}")

        while True:
            self.console.echo()
            self.console.echo("=" * 41)
            self.console.echo("  Zero Trust Lab Cleanup")
            self.console.echo("=" * 41)
            for number, (label, _) in enumerate(entries, start=1):
                self.console.echo(f"{number}. {label}")
            self.console.echo(f"{exit_choice}. Exit")
            self.console.echo("=" * 41)

            choice = self.confirmer.ask(f"Select an option (1-{exit_choice}): ")
            if choice == str(exit_choice):
                self.console.status("Exiting...")
                return
            if not choice.isdigit() or not 1 <= int(choice) < exit_choice:
                self.console.error(f"Invalid option. Please select 1-{exit_choice}.")
                continue

            _, action = entries[int(choice) - 1]
            action()
            self.console.echo()
            self.confirmer.ask("Press Enter to continue...")
