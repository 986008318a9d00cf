from __future__ import annotations

from typing import Literal

from pydantic import BaseModel


class AuthPrincipal(BaseModel):
    user_id: str
    role: Literal["client", "agent", "tax_office", "admin"]
    jwt_token: str
    client_id: str | None = None
    token_issued_at: int | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def is_staff(self) -> bool:
        return self.role in ("agent", "tax_office", "admin")

    @property
    def is_client(self) -> bool:
        return self.role == "client"

    @property
    def owner_id(self) -> str:
        """The document owner a client principal acts as."""
        return self.client_id or self.user_id

    def can_access_owner(self, owner_id: str) -> bool:
        if self.is_staff:
            return True
        return self.owner_id == owner_id
