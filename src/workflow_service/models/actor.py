"""Identity of the caller performing an operation."""

from typing import FrozenSet

from pydantic import BaseModel, Field


class Actor(BaseModel):
    """User id and role ids as forwarded by the API gateway."""

    user_id: str = Field(min_length=1)
    roles: FrozenSet[str] = Field(default_factory=frozenset)

    def has_any_role(self, role_ids) -> bool:
        return bool(self.roles & set(role_ids))
