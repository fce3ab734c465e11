from __future__ import annotations

import argparse
import logging
import sys
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence

import httpx
from dotenv import load_dotenv
from pydantic import ValidationError

from .audit import InMemoryAuditStore, JsonAuditLogger
from .auth import GraphAuthenticator
from .azure_cli import AzureCli
from .commands import CommandError, CommandRunner, MissingPrerequisiteError, require_binary
from .config import ClientSecretAuth, LabConfig, ServicePrincipalCredentials
from .console import Confirmer, Console, Prompt
from .graph_client import GraphClient
from .lab_manager import ALL_TARGETS, DeploymentError, LabManager, StepResult
from .operations import UserOperations
from .policies import DEFAULT_REPORT_PATH, build_policy_report, write_policy_report
from .provisioning import BulkUserProvisioner, ProvisioningSummary, generate_password
from .users import generate_users, read_users, write_users

TERRAFORM_HINT = "Please install Terraform first."
AZ_HINT = "Please install the Azure CLI and run 'az login'."


@dataclass
class CliContext:
    config: LabConfig
    console: Console
    confirmer: Confirmer
    audit: JsonAuditLogger
    runner: CommandRunner
    graph_session: Optional[httpx.Client] = None

    def manager(self) -> LabManager:
        return LabManager(
            self.config,
            runner=self.runner,
            console=self.console,
            confirmer=self.confirmer,
            audit_logger=self.audit,
        )


def _add_yes(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-y",
        "--yes",
        action="store_true",
        help="Skip confirmation prompts",
    )


def _add_targets(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--target",
        action="append",
        dest="targets",
        metavar="GENERATOR",
        help=f"Generator to act on (repeatable): azure_ad, storage, managed_identity or {ALL_TARGETS}",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="zero-trust-lab",
        description="Provision and tear down the Azure Zero Trust Lab",
    )
    parser.add_argument("--config", help="Path to lab configuration YAML")
    parser.add_argument("--env-file", default=".env", help="Service principal .env file (default: .env)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Emit audit events to stderr")
    subparsers = parser.add_subparsers(dest="command")

    deploy = subparsers.add_parser("deploy", help="terraform init/plan/apply each generator")
    _add_targets(deploy)
    _add_yes(deploy)
    deploy.set_defaults(handler=cmd_deploy)

    destroy = subparsers.add_parser("destroy", help="terraform destroy selected generators")
    _add_targets(destroy)
    _add_yes(destroy)
    destroy.set_defaults(handler=cmd_destroy)

    orphans = subparsers.add_parser("orphans", help="Delete lab resource groups no state tracks")
    _add_yes(orphans)
    orphans.set_defaults(handler=cmd_orphans)

    delete_state = subparsers.add_parser("delete-state", help="Remove local Terraform state files")
    _add_yes(delete_state)
    delete_state.set_defaults(handler=cmd_delete_state)

    full = subparsers.add_parser("full-cleanup", help="Destroy everything, orphans, then state")
    _add_yes(full)
    full.set_defaults(handler=cmd_full_cleanup)

    menu = subparsers.add_parser("menu", help="Interactive cleanup menu")
    menu.set_defaults(handler=cmd_menu)

    users = subparsers.add_parser("users", help="Graph-based user provisioning from CSV")
    users.set_defaults(handler=None, users_parser=users)
    user_commands = users.add_subparsers(dest="users_command")

    create = user_commands.add_parser("create", help="Create every user listed in the CSV")
    create.add_argument("--csv", required=True, type=Path, help="DisplayName,MailNickname,UserPrincipalName rows")
    create.add_argument("--throttle", type=int, help="Maximum parallel Graph requests")
    create.set_defaults(handler=cmd_users_create)

    delete = user_commands.add_parser("delete", help="Delete every user listed in the CSV")
    delete.add_argument("--csv", required=True, type=Path, help="DisplayName,MailNickname,UserPrincipalName rows")
    delete.add_argument("--throttle", type=int, help="Maximum parallel Graph requests")
    _add_yes(delete)
    delete.set_defaults(handler=cmd_users_delete)

    generate = user_commands.add_parser("generate", help="Write a CSV of sequential lab users")
    generate.add_argument("--count", type=int, required=True)
    generate.add_argument("--domain", required=True, help="UPN suffix, e.g. contoso.onmicrosoft.com")
    generate.add_argument("--output", type=Path, required=True)
    generate.add_argument("--prefix", default="Lab User", help="Display name prefix")
    generate.set_defaults(handler=cmd_users_generate)

    policies = subparsers.add_parser("policies", help="Document Azure Policy assignments as markdown")
    policies.add_argument("--output", type=Path, default=Path(DEFAULT_REPORT_PATH))
    policies.set_defaults(handler=cmd_policies)

    return parser


def print_results(console: Console, results: Iterable[StepResult]) -> None:
    results = list(results)
    if not results:
        return
    tally = Counter(result.outcome.value for result in results)
    for result in results:
        suffix = f" ({result.detail})" if result.detail else ""
        console.info(f"{result.name}: {result.outcome.value}{suffix}")
    console.info(
        f"Summary: {tally['succeeded']} succeeded, {tally['failed']} failed, {tally['skipped']} skipped"
    )


def print_summary(console: Console, action: str, summary: ProvisioningSummary, invalid_rows: int) -> None:
    for upn, message in summary.errors:
        console.error(f"{upn}: {message}")
    console.status(
        f"{action}: {summary.succeeded} succeeded, {summary.failed} failed, "
        f"{summary.skipped} skipped, {invalid_rows} invalid row(s) ignored"
    )


def cmd_deploy(args: argparse.Namespace, ctx: CliContext) -> int:
    require_binary("terraform", TERRAFORM_HINT)
    print_results(ctx.console, ctx.manager().deploy(args.targets))
    return 0


def cmd_destroy(args: argparse.Namespace, ctx: CliContext) -> int:
    require_binary("terraform", TERRAFORM_HINT)
    print_results(ctx.console, ctx.manager().destroy_generators(args.targets))
    return 0


def cmd_orphans(args: argparse.Namespace, ctx: CliContext) -> int:
    result = ctx.manager().cleanup_orphans()
    if result.failed:
        ctx.console.warning(f"{len(result.failed)} resource group deletion(s) could not be requested")
    return 0


def cmd_delete_state(args: argparse.Namespace, ctx: CliContext) -> int:
    ctx.manager().delete_state()
    return 0


def cmd_full_cleanup(args: argparse.Namespace, ctx: CliContext) -> int:
    require_binary("terraform", TERRAFORM_HINT)
    print_results(ctx.console, ctx.manager().full_cleanup())
    return 0


def cmd_menu(args: argparse.Namespace, ctx: CliContext) -> int:
    require_binary("terraform", TERRAFORM_HINT)
    ctx.manager().interactive_menu()
    return 0


def build_provisioner(ctx: CliContext, throttle: Optional[int]) -> BulkUserProvisioner:
    settings = ctx.config.graph
    credentials = None
    if isinstance(settings.auth, ClientSecretAuth):
        credentials = ServicePrincipalCredentials.from_environ()
    authenticator = GraphAuthenticator(settings, ctx.audit, credentials=credentials)
    graph = GraphClient(settings, authenticator, ctx.audit, session=ctx.graph_session)
    return BulkUserProvisioner(
        UserOperations(graph),
        ctx.audit,
        throttle_limit=throttle if throttle is not None else settings.throttle_limit,
    )


def cmd_users_create(args: argparse.Namespace, ctx: CliContext) -> int:
    users, invalid_rows = read_users(args.csv)
    ctx.console.info(f"Loaded {len(users)} user(s) from {args.csv}")
    if not users:
        ctx.console.warning("Nothing to create")
        return 0

    settings = ctx.config.graph
    provisioner = build_provisioner(ctx, args.throttle)
    if settings.user_password:
        password = settings.user_password.resolve()
    else:
        password = generate_password()
        ctx.console.warning(f"No user password configured; generated initial password: {password}")

    try:
        summary = provisioner.create_users(users, password, force_change=settings.force_change_password)
    finally:
        provisioner.operations.graph.close()
    print_summary(ctx.console, "User creation", summary, invalid_rows)
    return 0


def cmd_users_delete(args: argparse.Namespace, ctx: CliContext) -> int:
    users, invalid_rows = read_users(args.csv)
    ctx.console.warning(f"This will delete {len(users)} user(s) listed in {args.csv}")
    if not users:
        return 0
    if not ctx.confirmer.confirm_phrase("Are you sure?", "DELETE"):
        ctx.console.info("Skipping user deletion")
        return 0

    provisioner = build_provisioner(ctx, args.throttle)
    try:
        summary = provisioner.delete_users(users)
    finally:
        provisioner.operations.graph.close()
    print_summary(ctx.console, "User deletion", summary, invalid_rows)
    return 0


def cmd_users_generate(args: argparse.Namespace, ctx: CliContext) -> int:
    count = write_users(args.output, generate_users(args.count, args.domain, prefix=args.prefix))
    ctx.console.status(f"Wrote {count} user(s) to {args.output}")
    return 0


def cmd_policies(args: argparse.Namespace, ctx: CliContext) -> int:
    require_binary("az", AZ_HINT)
    markdown = build_policy_report(AzureCli(ctx.runner))
    path = write_policy_report(args.output, markdown)
    ctx.console.status(f"Policy documentation generated in {path}")
    return 0


def load_context(
    args: argparse.Namespace,
    console: Console,
    prompt: Prompt,
    audit_stream=None,
) -> CliContext:
    if args.env_file and Path(args.env_file).is_file():
        load_dotenv(args.env_file, override=False)
    config = LabConfig.load(args.config) if args.config else LabConfig()
    audit = JsonAuditLogger(
        level=logging.INFO if args.verbose else logging.ERROR,
        store=InMemoryAuditStore(),
        stream=audit_stream or sys.stderr,
    )
    return CliContext(
        config=config,
        console=console,
        confirmer=Confirmer(prompt=prompt, assume_yes=getattr(args, "yes", False)),
        audit=audit,
        runner=CommandRunner(),
    )


def report_suppressed_warnings(ctx: CliContext) -> None:
    store = ctx.audit.store
    if store is None:
        return
    warnings = [event for event in store.list(limit=1000) if event.level == "WARNING"]
    if warnings:
        ctx.console.info(f"{len(warnings)} warning event(s) recorded; rerun with --verbose for the audit trail")


FATAL_ERRORS = (
    MissingPrerequisiteError,
    DeploymentError,
    CommandError,
    FileNotFoundError,
    ValidationError,
    ValueError,
    KeyError,
    RuntimeError,
    httpx.HTTPError,
)


def main(
    argv: Optional[Sequence[str]] = None,
    prompt: Prompt = input,
    console: Optional[Console] = None,
    context_factory: Callable[..., CliContext] = load_context,
) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    console = console or Console()

    if not args.command:
        parser.print_help()
        return 0
    if args.handler is None:
        args.users_parser.print_help()
        return 0

    try:
        ctx = context_factory(args, console, prompt)
        code = args.handler(args, ctx)
    except FATAL_ERRORS as exc:
        console.error(str(exc))
        return 1
    except (KeyboardInterrupt, EOFError):
        console.echo()
        console.error("Interrupted")
        return 1

    if not args.verbose:
        report_suppressed_warnings(ctx)
    return code


def run() -> None:
    sys.exit(main())
