import uuid
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class AuthUser(BaseModel):
    """
    Represents an authenticated caller decoded from a bearer token.
    """

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="sub")
    email: Optional[EmailStr] = None
    role: str = "customer"

    @property
    def is_admin(self) -> bool:
        return self.role in ("admin", "service_role")

    @property
    def member_id(self) -> Optional[uuid.UUID]:
        """The member id carried in ``sub``; None for service tokens."""
        try:
            return uuid.UUID(self.user_id)
        except ValueError:
            return None
