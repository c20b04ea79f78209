from __future__ import annotations

from typing import Optional

from vledger.domain.errors import AuthorizationError
from vledger.domain.models import Actor

ROLES = ("admin", "seller", "viewer")

PERMISSIONS: dict[str, set[str]] = {
    "transfer_packages": {"admin"},
    "allocate_sale": {"admin", "seller"},
    "restore_sale": {"admin"},
    "import_rows": {"admin"},
    "view_reports": {"admin", "seller", "viewer"},
}

# Actions a trusted system caller (no actor) may run, e.g. the sale submission flow.
SYSTEM_ACTIONS = {"allocate_sale", "restore_sale", "import_rows", "view_reports"}


class AuthService:
    def can(self, actor: Optional[Actor], action: str) -> bool:
        if actor is None:
            return action in SYSTEM_ACTIONS
        allowed_roles = PERMISSIONS.get(action)
        if not allowed_roles:
            return False
        return actor.role in allowed_roles

    def require_action(self, actor: Optional[Actor], action: str) -> None:
        if self.can(actor, action):
            return
        if actor is None:
            raise AuthorizationError(f"An identified user is required to perform '{action}'.")
        raise AuthorizationError(f"Role '{actor.role}' is not allowed to perform '{action}'.")
