from __future__ import annotations

import concurrent.futures
import secrets
import string
from dataclasses import dataclass, field
from threading import Lock
from typing import Callable, List, Sequence, Tuple

import httpx
from tqdm import tqdm

from .audit import JsonAuditLogger
from .operations import UserOperations
from .users import LabUser

DEFAULT_THROTTLE_LIMIT = 20


@dataclass
class ProvisioningSummary:
    """Per-row tally for one fan-out. Rows never affect each other."""

    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    errors: List[Tuple[str, str]] = field(default_factory=list)
    _lock: Lock = field(default_factory=Lock, repr=False, compare=False)

    def record_success(self) -> None:
        with self._lock:
            self.succeeded += 1

    def record_skip(self) -> None:
        with self._lock:
            self.skipped += 1

    def record_failure(self, upn: str, message: str) -> None:
        with self._lock:
            self.failed += 1
            self.errors.append((upn, message))

    @property
    def total(self) -> int:
        return self.succeeded + self.failed + self.skipped


def generate_password(length: int = 16) -> str:
    """Random password that satisfies Entra ID's default complexity rules."""
    if length < 8:
        raise ValueError("Entra ID passwords must be at least 8 characters")
    symbols = "!@#$%^&*"
    pools = (string.ascii_lowercase, string.ascii_uppercase, string.digits, symbols)
    alphabet = "".join(pools)
    chars = [secrets.choice(pool) for pool in pools]
    chars += [secrets.choice(alphabet) for _ in range(length - len(chars))]
    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)


def _describe(exc: Exception) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        return f"HTTP {exc.response.status_code}: {exc.response.text[:200]}"
    return str(exc) or exc.__class__.__name__


class BulkUserProvisioner:
    """Creates or deletes CSV users against Graph with bounded parallelism.

    Each row is an independent request. A failed row is counted and reported,
    never retried here (GraphClient already retries throttling), and never
    rolls back other rows.
    """

    def __init__(
        self,
        operations: UserOperations,
        audit_logger: JsonAuditLogger,
        throttle_limit: int = DEFAULT_THROTTLE_LIMIT,
        show_progress: bool = True,
    ):
        if throttle_limit < 1:
            raise ValueError("throttle_limit must be at least 1")
        self.operations = operations
        self.audit = audit_logger
        self.throttle_limit = throttle_limit
        self.show_progress = show_progress

    def _fan_out(
        self,
        users: Sequence[LabUser],
        task: Callable[[LabUser, ProvisioningSummary], None],
        description: str,
    ) -> ProvisioningSummary:
        summary = ProvisioningSummary()
        if not users:
            return summary

        workers = min(self.throttle_limit, len(users))
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
            progress_bar = tqdm(total=len(users), desc=description, disable=not self.show_progress)
            futures = {executor.submit(task, user, summary): user for user in users}
            for future in concurrent.futures.as_completed(futures):
                user = futures[future]
                try:
                    future.result()
                except Exception as exc:
                    message = _describe(exc)
                    self.audit.warning(
                        "user_operation_failed",
                        user_principal_name=user.user_principal_name,
                        error=message,
                    )
                    summary.record_failure(user.user_principal_name, message)
                progress_bar.update(1)
            progress_bar.close()
        return summary

    def create_users(self, users: Sequence[LabUser], password: str, force_change: bool = True) -> ProvisioningSummary:
        def create(user: LabUser, summary: ProvisioningSummary) -> None:
            self.operations.create_user(user, password=password, force_change=force_change)
            self.audit.info("user_created", user_principal_name=user.user_principal_name)
            summary.record_success()

        summary = self._fan_out(users, create, "Creating users")
        self.audit.info(
            "user_creation_completed",
            succeeded=summary.succeeded,
            failed=summary.failed,
        )
        return summary

    def delete_users(self, users: Sequence[LabUser]) -> ProvisioningSummary:
        def delete(user: LabUser, summary: ProvisioningSummary) -> None:
            try:
                self.operations.delete_user(user.user_principal_name)
            except httpx.HTTPStatusError as exc:
                if exc.response.status_code != 404:
                    raise
                self.audit.info("user_already_absent", user_principal_name=user.user_principal_name)
                summary.record_skip()
                return
            self.audit.info("user_deleted", user_principal_name=user.user_principal_name)
            summary.record_success()

        summary = self._fan_out(users, delete, "Deleting users")
        self.audit.info(
            "user_deletion_completed",
            succeeded=summary.succeeded,
            failed=summary.failed,
            skipped=summary.skipped,
        )
        return summary
