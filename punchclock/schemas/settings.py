from pydantic import BaseModel, Field, field_validator
from typing import Optional


class UserSettingsResponse(BaseModel):
    interrupt_enabled: bool
    interrupt_interval_minutes: float
    budget_warning_enabled: bool
    budget_warning_threshold_hours: Optional[float] = None
    budget_warning_threshold_amount: Optional[float] = None
    pomodoro_enabled: bool
    pomodoro_work_minutes: float
    pomodoro_break_minutes: float

    model_config = {"from_attributes": True}


class UserSettingsUpdate(BaseModel):
    """Partial update; only fields present in the request body are applied.

    The warning thresholds accept null, which turns that kind of warning off.
    """

    interrupt_enabled: Optional[bool] = None
    interrupt_interval_minutes: Optional[float] = Field(
        default=None, ge=0.0833, le=480, description="Minutes between interrupt prompts"
    )
    budget_warning_enabled: Optional[bool] = None
    budget_warning_threshold_hours: Optional[float] = Field(default=None, gt=0, le=1000)
    budget_warning_threshold_amount: Optional[float] = Field(default=None, gt=0, le=1_000_000)
    pomodoro_enabled: Optional[bool] = None
    pomodoro_work_minutes: Optional[float] = Field(default=None, ge=1, le=240)
    pomodoro_break_minutes: Optional[float] = Field(default=None, ge=1, le=120)

    @field_validator(
        "interrupt_enabled",
        "interrupt_interval_minutes",
        "budget_warning_enabled",
        "pomodoro_enabled",
        "pomodoro_work_minutes",
        "pomodoro_break_minutes",
    )
    @classmethod
    def _not_null(cls, v):
        if v is None:
            raise ValueError("may not be null")
        return v
