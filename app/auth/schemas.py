from typing import List
from uuid import UUID

from pydantic import BaseModel, Field


class CurrentUser(BaseModel):
    """Authenticated actor resolved from the access token."""

    id: UUID
    user_type: str
    email: str
    full_name: str
    # Exeat role names held (staff only)
    roles: List[str] = Field(default_factory=list)

    @property
    def is_staff(self) -> bool:
        return self.user_type == "staff"

    @property
    def is_student(self) -> bool:
        return self.user_type == "student"
