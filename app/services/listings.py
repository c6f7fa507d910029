"""Listing store used by the entitlement engine.

Only the narrow surface the quota checks need: counting the listings that
occupy a plan slot, inserting a listing and archiving one.
"""

from __future__ import annotations

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.listing import QUOTA_STATUSES, Listing, ListingStatus
from app.services.common import coerce_uuid, get_or_404, utcnow
from app.services.errors import ConflictError, NotFoundError, PermissionDenied
from app.services.response import ListResponseMixin


class ListingStore(ListResponseMixin):
    @staticmethod
    def count_active_or_pending(db: Session, user_id) -> int:
        return (
            db.query(func.count(Listing.id))
            .filter(Listing.agent_id == coerce_uuid(user_id))
            .filter(Listing.status.in_(QUOTA_STATUSES))
            .scalar()
        ) or 0

    @staticmethod
    def count_featured(db: Session, user_id) -> int:
        return (
            db.query(func.count(Listing.id))
            .filter(Listing.agent_id == coerce_uuid(user_id))
            .filter(Listing.is_featured.is_(True))
            .filter(Listing.status.in_(QUOTA_STATUSES))
            .scalar()
        ) or 0

    @staticmethod
    def create(db: Session, listing: Listing) -> Listing:
        db.add(listing)
        db.flush()
        return listing

    @staticmethod
    def get(db: Session, listing_id) -> Listing:
        return get_or_404(db, Listing, listing_id, detail="Listing not found")

    @staticmethod
    def list(db: Session, user_id, limit: int = 50, offset: int = 0):
        return (
            db.query(Listing)
            .filter(Listing.agent_id == coerce_uuid(user_id))
            .order_by(Listing.created_at.desc())
            .limit(limit)
            .offset(offset)
            .all()
        )

    @staticmethod
    def archive(db: Session, user_id, listing_id) -> tuple[Listing, bool]:
        """Archive a listing; returns (listing, freed_slot)."""
        listing = (
            db.query(Listing)
            .filter(Listing.id == coerce_uuid(listing_id))
            .with_for_update()
            .first()
        )
        if not listing:
            raise NotFoundError("Listing not found")
        if listing.agent_id != coerce_uuid(user_id):
            raise PermissionDenied("Listing belongs to another agent")
        if listing.status == ListingStatus.archived:
            raise ConflictError("Listing is already archived")
        freed_slot = listing.status in QUOTA_STATUSES
        listing.status = ListingStatus.archived
        listing.is_featured = False
        listing.archived_at = utcnow()
        db.flush()
        return listing, freed_slot


listing_store = ListingStore()
