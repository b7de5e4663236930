from typing import Optional

from pydantic import BaseModel, Field


class PhoneRequest(BaseModel):
    phone: str = Field(..., description="Country code + number, e.g. 919876543210")

    class Config:
        json_schema_extra = {"example": {"phone": "919876543210"}}


class VerifyResetRequest(BaseModel):
    phone: str
    otp: str = Field(..., description="6-digit code")
    new_password: str = Field(..., alias="newPassword")

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {"phone": "919876543210", "otp": "482913", "newPassword": "new-secret"}
        }


class DebugInfo(BaseModel):
    otp: str
    note: str = "Debug echo is enabled for this local environment. Never enable it in production."


class ChallengeResponse(BaseModel):
    success: bool = True
    message: str
    phone: str
    delivered: bool
    debug: Optional[DebugInfo] = None


class ResetResponse(BaseModel):
    success: bool = True
    message: str
