"""Request and response payloads for the account API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from .user_profile import MAX_AGE, MIN_AGE, AgeGroup, User, age_group_for


class _Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SignUpRequest(_Payload):
    email: str = Field(..., min_length=3, max_length=254)
    password: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=80)
    age: int = Field(..., ge=MIN_AGE, le=MAX_AGE)
    age_group: Optional[AgeGroup] = None

    @model_validator(mode="after")
    def _derive_age_group(self) -> "SignUpRequest":
        if self.age_group is None:
            self.age_group = age_group_for(self.age)
        return self


class SignInRequest(_Payload):
    email: str = Field(..., min_length=3, max_length=254)
    password: str = Field(..., min_length=1)


class AuthResponse(_Payload):
    user: Optional[User] = None
    message: Optional[str] = None


class SessionStatusResponse(_Payload):
    authenticated: bool
    user_id: Optional[str] = None
    expires_at: Optional[datetime] = None


class SignOutResponse(_Payload):
    status: str = "signed_out"
