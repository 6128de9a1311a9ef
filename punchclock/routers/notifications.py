"""Notification settings router: channel preferences and push subscriptions."""

import structlog
from fastapi import APIRouter, Response
from sqlalchemy import select

from punchclock.dependencies import CurrentIdentity, DbSession
from punchclock.errors import NotFound
from punchclock.models.notification_prefs import PushSubscription
from punchclock.schemas.notifications import (
    NotificationPreferencesResponse,
    NotificationPreferencesUpdate,
    PushSubscriptionCreate,
    PushSubscriptionDelete,
    PushSubscriptionResponse,
)
from punchclock.services.preferences import ensure_preferences

log = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/notifications", tags=["notifications"])


@router.get("/preferences", response_model=NotificationPreferencesResponse)
async def get_preferences(identity: CurrentIdentity, db: DbSession) -> NotificationPreferencesResponse:
    """Return the caller's preferences, creating the defaults on first access."""
    prefs = await ensure_preferences(db, identity.tenant_id, identity.user_id)
    return NotificationPreferencesResponse.model_validate(prefs)


@router.patch("/preferences", response_model=NotificationPreferencesResponse)
async def update_preferences(
    body: NotificationPreferencesUpdate, identity: CurrentIdentity, db: DbSession
) -> NotificationPreferencesResponse:
    prefs = await ensure_preferences(db, identity.tenant_id, identity.user_id)
    changes = body.model_dump(exclude_unset=True)
    for field, value in changes.items():
        # Empty strings clear optional text settings
        setattr(prefs, field, value if value != "" else None)
    await db.commit()
    log.info("notification_prefs_updated", user_id=str(identity.user_id), fields=sorted(changes))
    return NotificationPreferencesResponse.model_validate(prefs)


@router.post("/subscriptions", response_model=PushSubscriptionResponse, status_code=201)
async def subscribe(
    body: PushSubscriptionCreate, identity: CurrentIdentity, db: DbSession
) -> PushSubscriptionResponse:
    """Register (or re-activate) a browser push endpoint for the caller.

    Endpoints are globally unique; re-registering an endpoint moves it to
    the current user and refreshes its keys.
    """
    result = await db.execute(
        select(PushSubscription).where(PushSubscription.endpoint == body.endpoint)
    )
    sub = result.scalar_one_or_none()
    if sub is None:
        sub = PushSubscription(
            tenant_id=identity.tenant_id,
            user_id=identity.user_id,
            endpoint=body.endpoint,
            p256dh_key=body.keys.p256dh,
            auth_key=body.keys.auth,
            user_agent=body.user_agent,
            is_active=True,
        )
        db.add(sub)
    else:
        sub.tenant_id = identity.tenant_id
        sub.user_id = identity.user_id
        sub.p256dh_key = body.keys.p256dh
        sub.auth_key = body.keys.auth
        sub.user_agent = body.user_agent
        sub.is_active = True
    await db.commit()
    log.info("push_subscription_registered", user_id=str(identity.user_id), subscription_id=str(sub.id))
    return PushSubscriptionResponse.model_validate(sub)


@router.delete("/subscriptions", status_code=204)
async def unsubscribe(
    body: PushSubscriptionDelete, identity: CurrentIdentity, db: DbSession
) -> Response:
    result = await db.execute(
        select(PushSubscription).where(
            PushSubscription.endpoint == body.endpoint,
            PushSubscription.tenant_id == identity.tenant_id,
            PushSubscription.user_id == identity.user_id,
        )
    )
    sub = result.scalar_one_or_none()
    if sub is None:
        raise NotFound("Subscription not found")
    sub.is_active = False
    await db.commit()
    log.info("push_subscription_removed", user_id=str(identity.user_id), subscription_id=str(sub.id))
    return Response(status_code=204)
