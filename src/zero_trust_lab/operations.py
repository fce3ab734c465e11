from __future__ import annotations

from typing import Any, Dict
from urllib.parse import quote

from .graph_client import GraphClient
from .users import LabUser


class UserOperations:
    """Graph user calls used by the lab's identity provisioning path."""

    def __init__(self, graph: GraphClient):
        self.graph = graph

    def create_user(self, user: LabUser, password: str, force_change: bool = True) -> Dict[str, Any]:
        payload = {
            "accountEnabled": True,
            "displayName": user.display_name,
            "mailNickname": user.mail_nickname,
            "userPrincipalName": user.user_principal_name,
            "passwordProfile": {
                "forceChangePasswordNextSignIn": force_change,
                "password": password,
            },
        }
        response = self.graph.post("/v1.0/users", json=payload)
        return response.json()

    def delete_user(self, user_principal_name: str) -> None:
        self.graph.delete(f"/v1.0/users/{quote(user_principal_name, safe='@')}")
