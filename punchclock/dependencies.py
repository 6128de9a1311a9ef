"""FastAPI dependencies: caller identity, DB session, scheduler, timer service.

Authentication happens upstream; the gateway forwards the resolved tenant
and user as headers. Requests without both (or with malformed ids) are
rejected with 401 before touching the database.
"""

import uuid
from typing import Annotated, Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from punchclock.database import get_db
from punchclock.errors import Unauthenticated
from punchclock.identity import Identity
from punchclock.scheduler import Scheduler
from punchclock.services.timer import TimerService


async def get_identity(
    x_tenant_id: Annotated[Optional[str], Header()] = None,
    x_user_id: Annotated[Optional[str], Header()] = None,
) -> Identity:
    if not x_tenant_id or not x_user_id:
        raise Unauthenticated("Missing tenant or user identity")
    try:
        return Identity(tenant_id=uuid.UUID(x_tenant_id), user_id=uuid.UUID(x_user_id))
    except ValueError:
        raise Unauthenticated("Malformed tenant or user identity")


def get_scheduler(request: Request) -> Scheduler:
    return request.app.state.scheduler


DbSession = Annotated[AsyncSession, Depends(get_db)]
CurrentIdentity = Annotated[Identity, Depends(get_identity)]
TaskScheduler = Annotated[Scheduler, Depends(get_scheduler)]


def get_timer_service(db: DbSession, scheduler: TaskScheduler) -> TimerService:
    return TimerService(db, scheduler)


Timers = Annotated[TimerService, Depends(get_timer_service)]
