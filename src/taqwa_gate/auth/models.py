"""
Identity Models

The rate-limiting and attribution key for a request: an authenticated user id
or an anonymous fallback derived from the client address.
"""

from __future__ import annotations

import re
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


IDENTITY_PATTERN = re.compile(r"^[A-Za-z0-9_.:@\[\]-]{1,191}$")

ANONYMOUS = "anonymous"


class InvalidIdentityError(ValueError):
    """Raised when an identity key is empty, too long, or carries unsafe characters."""


class Identity(BaseModel):
    """
    Resolved caller identity.

    `key` is what the admission controller sees. User ids are used as-is;
    address fallbacks are prefixed with `ip:`.
    """

    key: str = Field(..., min_length=1, max_length=191)
    kind: Literal["user", "ip", "anonymous"]

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("key")
    @classmethod
    def _validate_key(cls, v: str) -> str:
        v = v.strip()
        if not IDENTITY_PATTERN.fullmatch(v):
            raise InvalidIdentityError(f"Invalid identity key: {v!r}")
        return v

    @classmethod
    def user(cls, user_id: str) -> "Identity":
        return cls(key=user_id, kind="user")

    @classmethod
    def from_address(cls, address: str) -> "Identity":
        return cls(key=f"ip:{address}", kind="ip")

    @classmethod
    def anonymous(cls) -> "Identity":
        return cls(key=ANONYMOUS, kind="anonymous")
