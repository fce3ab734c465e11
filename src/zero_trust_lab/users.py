"""Flat user lists for Graph-based provisioning.

One user per line as ``DisplayName,MailNickname,UserPrincipalName``. There is
no header row and no quoting: a field can never contain a comma.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

FIELD_COUNT = 3


@dataclass(frozen=True)
class LabUser:
    display_name: str
    mail_nickname: str
    user_principal_name: str

    def to_line(self) -> str:
        return ",".join((self.display_name, self.mail_nickname, self.user_principal_name))


def parse_line(line: str) -> Optional[LabUser]:
    fields = [field.strip() for field in line.strip().split(",")]
    if len(fields) < FIELD_COUNT or not all(fields[:FIELD_COUNT]):
        return None
    return LabUser(*fields[:FIELD_COUNT])


def read_users(path: Union[str, Path]) -> Tuple[List[LabUser], int]:
    """Return the parsed users and the number of malformed rows skipped."""
    csv_path = Path(path)
    if not csv_path.exists():
        raise FileNotFoundError(f"User CSV not found: {csv_path}")

    users: List[LabUser] = []
    skipped = 0
    with csv_path.open("r", encoding="utf-8-sig") as handle:
        for line in handle:
            if not line.strip():
                continue
            user = parse_line(line)
            if user is None:
                skipped += 1
                continue
            users.append(user)
    return users, skipped


def write_users(path: Union[str, Path], users: Iterable[LabUser]) -> int:
    csv_path = Path(path)
    csv_path.parent.mkdir(parents=True, exist_ok=True)
    count = 0
    with csv_path.open("w", encoding="utf-8", newline="\n") as handle:
        for user in users:
            handle.write(user.to_line() + "\n")
            count += 1
    return count


def generate_users(count: int, domain: str, prefix: str = "Lab User") -> List[LabUser]:
    if count < 0:
        raise ValueError("count must not be negative")
    domain = domain.lstrip("@").strip()
    if not domain:
        raise ValueError("A domain is required to build user principal names")

    width = max(3, len(str(count)))
    nickname_base = "".join(ch for ch in prefix.lower() if ch.isalnum()) or "labuser"
    users = []
    for index in range(1, count + 1):
        number = str(index).zfill(width)
        nickname = f"{nickname_base}{number}"
        users.append(LabUser(f"{prefix} {number}", nickname, f"{nickname}@{domain}"))
    return users
