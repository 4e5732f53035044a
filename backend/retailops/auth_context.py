# Overview: Request-scoped capability passed explicitly into services.

from __future__ import annotations

from dataclasses import dataclass

ROLE_ADMIN = "admin"
ROLE_MANAGER = "manager"
ROLE_OUTLET = "outlet"
ROLE_CASHIER = "cashier"

ROLES = (ROLE_ADMIN, ROLE_MANAGER, ROLE_OUTLET, ROLE_CASHIER)


@dataclass(frozen=True)
class AuthContext:
    """
    Who is acting, in which role, for which outlet.

    Built once per request by the require_context decorator; services receive
    it as an argument and never look it up themselves.
    """
    role: str
    store_id: int | None
    user_name: str

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def to_dict(self) -> dict:
        return {"role": self.role, "storeId": self.store_id, "userName": self.user_name}
