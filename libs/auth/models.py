from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

Role = Literal["customer", "admin", "moderator"]


class Actor(BaseModel):
    """
    The caller of a store operation, as resolved by the authentication layer.

    The core never parses tokens; whoever verified the credentials hands over
    the account id and role. Token claims use ``sub`` for the id.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    user_id: str = Field(..., alias="sub")
    email: Optional[EmailStr] = None
    role: Role = "customer"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def owns(self, owner_id: Optional[str]) -> bool:
        return owner_id is not None and owner_id == self.user_id
