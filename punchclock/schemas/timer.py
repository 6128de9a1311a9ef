from pydantic import BaseModel, Field
from typing import Literal, Optional
import uuid
from datetime import datetime


class TimerStartRequest(BaseModel):
    project_id: uuid.UUID
    pomodoro: Optional[bool] = Field(default=None, description="Force Pomodoro mode on/off (defaults to the user setting)")


class TimerStartResponse(BaseModel):
    success: bool
    timer_id: uuid.UUID
    next_interrupt_at: Optional[datetime] = None
    pomodoro_transition_at: Optional[datetime] = None


class TimerStopRequest(BaseModel):
    source: Literal["manual", "timer"] = "timer"


class TimerStopResponse(BaseModel):
    success: bool
    message: Optional[str] = None
    entry_id: Optional[uuid.UUID] = None
    seconds: Optional[int] = None


class HeartbeatResponse(BaseModel):
    success: bool


class InterruptResponse(BaseModel):
    should_show_interrupt: bool
    timer_id: Optional[uuid.UUID] = None
    ack_deadline: Optional[datetime] = None


class InterruptAckRequest(BaseModel):
    continue_: bool = Field(alias="continue")

    model_config = {"populate_by_name": True}


class InterruptAckResponse(BaseModel):
    success: bool
    action: Literal["continued", "stopped", "already_acked"]
    next_interrupt_at: Optional[datetime] = None


class MergeOverrunRequest(BaseModel):
    target_id: uuid.UUID


class MergeOverrunResponse(BaseModel):
    entry_id: uuid.UUID
    merged_seconds: int
    total_seconds: int


class PomodoroState(BaseModel):
    phase: Optional[str] = None
    transition_at: Optional[datetime] = None
    work_minutes: Optional[float] = None
    break_minutes: Optional[float] = None
    current_cycle: Optional[int] = None
    completed_cycles: Optional[int] = None


class RunningTimerResponse(BaseModel):
    id: uuid.UUID
    project_id: uuid.UUID
    project_name: Optional[str] = None
    client_name: Optional[str] = None
    started_at: datetime
    last_heartbeat_at: datetime
    awaiting_ack: bool
    ack_shown_at: Optional[datetime] = None
    next_interrupt_at: Optional[datetime] = None
    total_seconds: int  # tracked on the project, including this timer
    budget_type: Optional[str] = None
    budget_remaining: Optional[float] = None
    budget_remaining_formatted: str
    pomodoro: Optional[PomodoroState] = None
