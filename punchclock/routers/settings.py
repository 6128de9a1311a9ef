"""Timer settings router: interrupt cadence, budget warnings and Pomodoro."""

import structlog
from fastapi import APIRouter

from punchclock.dependencies import CurrentIdentity, DbSession
from punchclock.schemas.settings import UserSettingsResponse, UserSettingsUpdate
from punchclock.services.user_settings import ensure_user_settings

log = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/settings", tags=["settings"])


@router.get("", response_model=UserSettingsResponse)
async def get_settings(identity: CurrentIdentity, db: DbSession) -> UserSettingsResponse:
    row = await ensure_user_settings(db, identity.tenant_id, identity.user_id)
    return UserSettingsResponse.model_validate(row)


@router.patch("", response_model=UserSettingsResponse)
async def update_settings(
    body: UserSettingsUpdate, identity: CurrentIdentity, db: DbSession
) -> UserSettingsResponse:
    """Apply a partial update. Running timers pick the change up on their next transition."""
    row = await ensure_user_settings(db, identity.tenant_id, identity.user_id)
    changes = body.model_dump(exclude_unset=True)
    for field, value in changes.items():
        setattr(row, field, value)
    await db.commit()
    log.info("user_settings_updated", user_id=str(identity.user_id), fields=sorted(changes))
    return UserSettingsResponse.model_validate(row)
