"""Timer router: start/stop, heartbeat and the interrupt protocol."""

import uuid
from typing import Optional

from fastapi import APIRouter

from punchclock.dependencies import CurrentIdentity, Timers
from punchclock.models.time_entry import TimeEntrySource
from punchclock.schemas.timer import (
    HeartbeatResponse,
    InterruptAckRequest,
    InterruptAckResponse,
    InterruptResponse,
    MergeOverrunRequest,
    MergeOverrunResponse,
    PomodoroState,
    RunningTimerResponse,
    TimerStartRequest,
    TimerStartResponse,
    TimerStopRequest,
    TimerStopResponse,
)

router = APIRouter(prefix="/api/v1/timer", tags=["timer"])


@router.get("", response_model=Optional[RunningTimerResponse])
async def get_running_timer(identity: CurrentIdentity, timers: Timers) -> Optional[RunningTimerResponse]:
    """Current timer with project/client names and budget remaining, or null."""
    view = await timers.get_running_timer(identity)
    if view is None:
        return None
    timer = view.timer
    pomodoro = None
    if timer.pomodoro_enabled:
        pomodoro = PomodoroState(
            phase=timer.pomodoro_phase,
            transition_at=timer.pomodoro_transition_at,
            work_minutes=timer.pomodoro_work_minutes,
            break_minutes=timer.pomodoro_break_minutes,
            current_cycle=timer.pomodoro_current_cycle,
            completed_cycles=timer.pomodoro_completed_cycles,
        )
    return RunningTimerResponse(
        id=timer.id,
        project_id=timer.project_id,
        project_name=view.project_name,
        client_name=view.client_name,
        started_at=timer.started_at,
        last_heartbeat_at=timer.last_heartbeat_at,
        awaiting_ack=timer.awaiting_ack,
        ack_shown_at=timer.ack_shown_at,
        next_interrupt_at=timer.next_interrupt_at,
        total_seconds=view.total_seconds,
        budget_type=view.budget_type,
        budget_remaining=view.budget_remaining,
        budget_remaining_formatted=view.budget_remaining_formatted,
        pomodoro=pomodoro,
    )


@router.post("/start", response_model=TimerStartResponse)
async def start_timer(
    body: TimerStartRequest, identity: CurrentIdentity, timers: Timers
) -> TimerStartResponse:
    """Start a timer; an already running timer is stopped first."""
    result = await timers.start(identity, body.project_id, pomodoro=body.pomodoro)
    return TimerStartResponse(
        success=result.success,
        timer_id=result.timer_id,
        next_interrupt_at=result.next_interrupt_at,
        pomodoro_transition_at=result.pomodoro_transition_at,
    )


@router.post("/stop", response_model=TimerStopResponse)
async def stop_timer(
    identity: CurrentIdentity, timers: Timers, body: Optional[TimerStopRequest] = None
) -> TimerStopResponse:
    """Stop the running timer. Calling it with no timer is not an error."""
    source = TimeEntrySource(body.source) if body else TimeEntrySource.timer
    result = await timers.stop(identity, source=source)
    return TimerStopResponse(
        success=result.success,
        message=result.message,
        entry_id=result.entry_id,
        seconds=result.seconds,
    )


@router.post("/heartbeat", response_model=HeartbeatResponse)
async def heartbeat(identity: CurrentIdentity, timers: Timers) -> HeartbeatResponse:
    return HeartbeatResponse(success=await timers.heartbeat(identity))


@router.post("/interrupt", response_model=InterruptResponse)
async def request_interrupt(identity: CurrentIdentity, timers: Timers) -> InterruptResponse:
    result = await timers.request_interrupt(identity)
    return InterruptResponse(
        should_show_interrupt=result.should_show_interrupt,
        timer_id=result.timer_id,
        ack_deadline=result.ack_deadline,
    )


@router.post("/interrupt/ack", response_model=InterruptAckResponse)
async def ack_interrupt(
    body: InterruptAckRequest, identity: CurrentIdentity, timers: Timers
) -> InterruptAckResponse:
    result = await timers.ack_interrupt(identity, body.continue_)
    return InterruptAckResponse(
        success=result.success,
        action=result.action,
        next_interrupt_at=result.next_interrupt_at,
    )


@router.post("/overruns/{overrun_id}/merge", response_model=MergeOverrunResponse)
async def merge_overrun(
    overrun_id: uuid.UUID,
    body: MergeOverrunRequest,
    identity: CurrentIdentity,
    timers: Timers,
) -> MergeOverrunResponse:
    """Fold an overrun placeholder into a finished entry of the same user."""
    result = await timers.merge_overrun(identity, overrun_id, body.target_id)
    return MergeOverrunResponse(
        entry_id=result.entry_id,
        merged_seconds=result.merged_seconds,
        total_seconds=result.total_seconds,
    )
