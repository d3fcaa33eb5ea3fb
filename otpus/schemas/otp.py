from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class OTPEvent(BaseModel):
    """Body posted by the deployed phone actions for every OTP they deliver."""

    model_config = ConfigDict(extra="ignore")

    tenant_id: str = ""
    domain: str = ""
    code: str = ""
    message: str = ""
    phone_number: str = ""
    raw_event: dict[str, Any] = Field(default_factory=dict)
