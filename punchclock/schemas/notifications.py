from pydantic import BaseModel, Field, field_validator
from typing import Optional
import uuid
from datetime import datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from punchclock.services.preferences import parse_time_of_day


class NotificationPreferencesResponse(BaseModel):
    push_enabled: bool
    email_enabled: bool
    sms_enabled: bool
    webhook_enabled: bool
    fallback_email: Optional[str] = None
    sms_number: Optional[str] = None
    webhook_url: Optional[str] = None
    quiet_hours_start: Optional[str] = None
    quiet_hours_end: Optional[str] = None
    timezone: Optional[str] = None
    escalation_delay_minutes: int
    do_not_disturb: bool

    model_config = {"from_attributes": True}


class NotificationPreferencesUpdate(BaseModel):
    """Partial update; only fields present in the request body are applied."""

    push_enabled: Optional[bool] = None
    email_enabled: Optional[bool] = None
    sms_enabled: Optional[bool] = None
    webhook_enabled: Optional[bool] = None
    fallback_email: Optional[str] = Field(default=None, max_length=320)
    sms_number: Optional[str] = Field(default=None, max_length=32)
    webhook_url: Optional[str] = Field(default=None, max_length=2000)
    quiet_hours_start: Optional[str] = Field(default=None, description="HH:MM in the user's timezone")
    quiet_hours_end: Optional[str] = Field(default=None, description="HH:MM in the user's timezone")
    timezone: Optional[str] = Field(default=None, description="IANA zone name, e.g. Europe/Berlin")
    escalation_delay_minutes: Optional[int] = Field(default=None, ge=0, le=240)
    do_not_disturb: Optional[bool] = None

    @field_validator("quiet_hours_start", "quiet_hours_end")
    @classmethod
    def _valid_time_of_day(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == "":
            return v
        try:
            parse_time_of_day(v)
        except ValueError:
            raise ValueError("must be HH:MM")
        return v

    @field_validator("timezone")
    @classmethod
    def _valid_zone(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == "":
            return v
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError("unknown timezone")
        return v

    @field_validator("webhook_url")
    @classmethod
    def _https_only(cls, v: Optional[str]) -> Optional[str]:
        if v and not v.startswith("https://"):
            raise ValueError("webhook_url must use https")
        return v


class PushSubscriptionKeys(BaseModel):
    p256dh: str
    auth: str


class PushSubscriptionCreate(BaseModel):
    endpoint: str = Field(max_length=2000)
    keys: PushSubscriptionKeys
    user_agent: Optional[str] = Field(default=None, max_length=500)


class PushSubscriptionDelete(BaseModel):
    endpoint: str = Field(max_length=2000)


class PushSubscriptionResponse(BaseModel):
    id: uuid.UUID
    endpoint: str
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}
