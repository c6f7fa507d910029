from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_notification_dispatcher
from app.schemas.common import ListResponse
from app.schemas.subscription import (
    AutoRenewRequest,
    CapacityRead,
    ChangePlanRequest,
    EntitlementCheck,
    EntitlementResponse,
    ListingPublish,
    ListingRead,
    PlanRead,
    SubscriptionRead,
    SweepResult,
)
from app.services import entitlements as entitlements_service
from app.services import listings as listings_service
from app.services import subscriptions as subscriptions_service
from app.services import users as users_service

router = APIRouter(tags=["subscriptions"])


@router.get("/plans", response_model=list[PlanRead])
def list_plans(db: Session = Depends(get_db)):
    return subscriptions_service.plans.list(db)


@router.get("/plans/{tier}", response_model=PlanRead)
def get_plan(tier: str, db: Session = Depends(get_db)):
    return subscriptions_service.plans.get(db, tier)


@router.post("/entitlements/check", response_model=EntitlementResponse)
def check_entitlement(payload: EntitlementCheck, db: Session = Depends(get_db)):
    decision = entitlements_service.entitlements.check(
        db, payload.user_id, wants_featured=payload.wants_featured
    )
    return EntitlementResponse(
        allowed=decision.allowed, reason=decision.reason, limit=decision.limit
    )


@router.get("/users/{user_id}/subscription", response_model=SubscriptionRead)
def get_subscription(user_id: str, db: Session = Depends(get_db)):
    return subscriptions_service.subscriptions.get_or_create(db, user_id)


@router.get("/users/{user_id}/capacity", response_model=CapacityRead)
def get_capacity(user_id: str, db: Session = Depends(get_db)):
    return entitlements_service.entitlements.capacity(db, user_id)


@router.post("/users/{user_id}/subscription/change-plan", response_model=SubscriptionRead)
def change_plan(user_id: str, payload: ChangePlanRequest, db: Session = Depends(get_db)):
    return subscriptions_service.subscriptions.change_plan(db, user_id, payload.tier)


@router.post("/users/{user_id}/subscription/cancel", response_model=SubscriptionRead)
def cancel_subscription(
    user_id: str,
    reason: str | None = None,
    db: Session = Depends(get_db),
    notifier=Depends(get_notification_dispatcher),
):
    return subscriptions_service.subscriptions.cancel(db, user_id, notifier, reason)


@router.post("/users/{user_id}/subscription/auto-renew", response_model=SubscriptionRead)
def set_auto_renew(user_id: str, payload: AutoRenewRequest, db: Session = Depends(get_db)):
    return subscriptions_service.subscriptions.set_auto_renew(db, user_id, payload.enabled)


@router.get("/users/{user_id}/listings", response_model=ListResponse[ListingRead])
def list_listings(
    user_id: str,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return listings_service.listing_store.list_response(db, user_id, limit, offset)


@router.post(
    "/users/{user_id}/listings",
    response_model=ListingRead,
    status_code=status.HTTP_201_CREATED,
)
def publish_listing(user_id: str, payload: ListingPublish, db: Session = Depends(get_db)):
    return entitlements_service.entitlements.publish_listing(
        db,
        user_id,
        title=payload.title,
        description=payload.description,
        featured=payload.featured,
    )


@router.post("/users/{user_id}/listings/{listing_id}/archive", response_model=ListingRead)
def archive_listing(user_id: str, listing_id: str, db: Session = Depends(get_db)):
    return entitlements_service.entitlements.archive_listing(db, user_id, listing_id)


# --- Scheduler triggers ---


@router.post("/admin/cron/expire-subscriptions", response_model=SweepResult)
def run_expiry_sweep(admin_id: UUID, db: Session = Depends(get_db)):
    users_service.require_admin(db, admin_id)
    return SweepResult(processed=subscriptions_service.subscriptions.expire_due(db))


@router.post("/admin/cron/expiry-reminders", response_model=SweepResult)
def run_reminder_sweep(
    admin_id: UUID,
    db: Session = Depends(get_db),
    notifier=Depends(get_notification_dispatcher),
):
    users_service.require_admin(db, admin_id)
    return SweepResult(
        processed=subscriptions_service.subscriptions.send_expiry_reminders(db, notifier)
    )


@router.post("/admin/cron/auto-renew", response_model=SweepResult)
def run_renewal_sweep(
    admin_id: UUID,
    db: Session = Depends(get_db),
    notifier=Depends(get_notification_dispatcher),
):
    users_service.require_admin(db, admin_id)
    return SweepResult(processed=subscriptions_service.subscriptions.renew_due(db, notifier))
