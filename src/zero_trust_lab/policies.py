"""Markdown report of the Azure Policy assignments that constrain the lab subscription."""
from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Union

from .azure_cli import AzureCli, is_policy_set

DEFAULT_REPORT_PATH = "azure_policy_restrictions.md"


def _cell(value: object) -> str:
    return str(value if value is not None else "").replace("|", "\\|").replace("\n", " ")


def build_policy_report(azure: AzureCli, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    assignments = azure.list_policy_assignments()

    lines: List[str] = [
        "# Azure Policy Restrictions",
        "",
        f"Generated on: {now.isoformat()}",
        "",
        "## Active Policy Assignments",
        "",
        "| Display Name | Policy Definition ID | Enforcement Mode |",
        "|---|---|---|",
    ]
    for assignment in assignments:
        lines.append(
            f"| {_cell(assignment.get('displayName'))} "
            f"| `{_cell(assignment.get('policyDefinitionId'))}` "
            f"| {_cell(assignment.get('enforcementMode'))} |"
        )

    lines += ["", "## Detailed Policy Definitions", ""]
    policy_ids = sorted({a["policyDefinitionId"] for a in assignments if a.get("policyDefinitionId")})
    for policy_id in policy_ids:
        lines += [f"### Policy ID: `{policy_id}`", ""]
        if is_policy_set(policy_id):
            lines.append("**Type:** Initiative (Policy Set)")
        else:
            lines.append("**Type:** Policy Definition")

        definition = azure.show_policy(policy_id)
        if definition:
            lines += [
                f"**Name:** {definition.get('displayName')}",
                "",
                f"**Description:** {definition.get('description')}",
                "",
            ]
        else:
            lines.append("Could not retrieve definition details. (Check permissions or ID validity)")
        lines.append("---")

    return "\n".join(lines) + "\n"


def write_policy_report(path: Union[str, Path], markdown: str) -> Path:
    report_path = Path(path)
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(markdown, encoding="utf-8")
    return report_path
