from typing import Optional

from pydantic import BaseModel

from app.api.v1.exeats.schemas import ExeatRequestResponse, ParentConsentResponse


class ConsentView(BaseModel):
    """What the parent sees for a token: the consent and the request it is about."""

    parent_consent: ParentConsentResponse
    exeat_request: ExeatRequestResponse
    student_name: Optional[str] = None


class ConsentActionResponse(BaseModel):
    message: str
    # False when the token had already been resolved and nothing changed
    changed: bool
    parent_consent: ParentConsentResponse
    exeat_request: ExeatRequestResponse
