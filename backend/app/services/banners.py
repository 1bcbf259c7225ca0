"""Banner store & analytics.

Every function takes an open ``Session``; callers own its lifetime (``get_db``
in request handlers, ``SessionLocal()`` elsewhere). Writes commit before
returning. Counter increments and the active toggle are single UPDATE
statements so concurrent requests against the same banner never lose updates.
"""
import logging
import math
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, List, Optional

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import asc, desc, not_, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.banner import Banner, BannerLocation, utcnow
from app.schemas.banner import BannerCreate, BannerFilter, BannerOrderItem, BannerUpdate
from app.services.errors import NotFoundError, StoreError, ValidationError

logger = logging.getLogger(__name__)

ONE_DAY = timedelta(days=1)

# payload field -> model attribute, for plain column copies
_COLUMN_FIELDS = {
    "title": "title",
    "description": "description",
    "image": "image",
    "link": "link",
    "is_active": "is_active",
    "order": "order",
    "category": "category",
    "audience": "audience",
}


@dataclass
class BannerPage:
    items: List[Banner]
    total: int
    page: int
    page_size: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.page_size)


@contextmanager
def _store_guard(db: Session, action: str):
    try:
        yield
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("banner store failure while %s", action)
        raise StoreError(f"Error {action}") from exc
    except Exception:
        db.rollback()
        raise


def _validate(model: type[BaseModel], data: Any):
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data if data is not None else {})
    except PydanticValidationError as exc:
        err = exc.errors()[0]
        field = ".".join(str(p) for p in err.get("loc", ())) or None
        msg = err.get("msg", "Invalid value")
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        raise ValidationError(f"{field}: {msg}" if field else msg, field=field) from exc


def _ordering():
    return asc(Banner.order), desc(Banner.created_at), desc(Banner.id)


def _has_location(location: str):
    return Banner.location_rows.any(BannerLocation.location == location)


def _ctr(clicks: int, impressions: int) -> Decimal:
    # ties round up: 1/32 -> 3.13
    return Decimal(repr(clicks / impressions * 100)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def click_through_rate(clicks: int, impressions: int) -> float:
    if impressions <= 0:
        return 0.0
    return float(_ctr(clicks, impressions))


def format_ctr(clicks: int, impressions: int):
    """CTR as reported to clients: ``"20.00"`` style string, or ``0`` with no impressions."""
    if impressions <= 0:
        return 0
    return str(_ctr(clicks, impressions))


def is_live(banner: Banner, location: Optional[str] = None, now: Optional[datetime] = None) -> bool:
    """Whether ``banner`` is eligible for display right now (at ``location`` if given)."""
    now = now or utcnow()
    if not banner.is_active:
        return False
    if location is not None and location not in banner.locations:
        return False
    if banner.start_at is not None and banner.start_at > now:
        return False
    if banner.end_at is not None and banner.end_at < now:
        return False
    return True


def list_banners(db: Session, filters: Any = None, page: int = 1, page_size: int = 10) -> BannerPage:
    criteria = _validate(BannerFilter, filters)
    if page < 1:
        raise ValidationError("page must be >= 1", field="page")
    if page_size < 1:
        raise ValidationError("limit must be >= 1", field="limit")

    with _store_guard(db, "fetching banners"):
        q = db.query(Banner)
        if criteria.is_active is not None:
            q = q.filter(Banner.is_active == criteria.is_active)
        if criteria.category:
            q = q.filter(Banner.category == criteria.category)
        if criteria.audience:
            q = q.filter(Banner.audience == criteria.audience)
        if criteria.location:
            q = q.filter(_has_location(criteria.location))
        if criteria.start_from is not None:
            q = q.filter(Banner.start_at >= criteria.start_from)
        if criteria.start_to is not None:
            q = q.filter(Banner.start_at <= criteria.start_to)
        total = q.count()
        items = q.order_by(*_ordering()).offset((page - 1) * page_size).limit(page_size).all()
    return BannerPage(items=items, total=total, page=page, page_size=page_size)


def active_for(db: Session, location: str = "home", now: Optional[datetime] = None) -> List[Banner]:
    criteria = _validate(BannerFilter, {"location": location})
    now = now or utcnow()
    with _store_guard(db, "fetching active banners"):
        return (
            db.query(Banner)
            .filter(
                Banner.is_active == True,  # noqa: E712
                _has_location(criteria.location),
                Banner.start_at <= now,
                or_(Banner.end_at.is_(None), Banner.end_at >= now),
            )
            .order_by(*_ordering())
            .all()
        )


def get_banner(db: Session, banner_id: int) -> Banner:
    with _store_guard(db, "fetching banner"):
        banner = db.get(Banner, banner_id)
    if banner is None:
        raise NotFoundError()
    return banner


def create_banner(db: Session, data: Any, creator_id: str) -> Banner:
    if not creator_id:
        raise ValidationError("created_by: creator identity is required", field="created_by")
    payload = _validate(BannerCreate, data)
    banner = Banner(
        title=payload.title,
        description=payload.description,
        image=payload.image,
        link=payload.link,
        is_active=payload.is_active,
        order=payload.order,
        category=payload.category,
        audience=payload.audience,
        start_at=payload.start_date or utcnow(),
        end_at=payload.end_date,
        impressions=0,
        clicks=0,
        created_by=str(creator_id),
    )
    banner.locations = payload.display_location
    with _store_guard(db, "creating banner"):
        db.add(banner)
        db.commit()
        db.refresh(banner)
    logger.info("banner %s created by %s", banner.id, banner.created_by)
    return banner


def update_banner(db: Session, banner_id: int, data: Any) -> Banner:
    payload = _validate(BannerUpdate, data)
    provided = payload.model_fields_set
    with _store_guard(db, "updating banner"):
        banner = db.get(Banner, banner_id)
        if banner is None:
            raise NotFoundError()
        for key, attr in _COLUMN_FIELDS.items():
            if key in provided:
                setattr(banner, attr, getattr(payload, key))
        if payload.start_date is not None:
            banner.start_at = payload.start_date
        if "end_date" in provided:
            banner.end_at = payload.end_date
        if payload.display_location is not None:
            banner.locations = payload.display_location
        banner.updated_at = utcnow()
        db.commit()
        db.refresh(banner)
    logger.info("banner %s updated (%s)", banner_id, ", ".join(sorted(provided)) or "no fields")
    return banner


def delete_banner(db: Session, banner_id: int) -> None:
    with _store_guard(db, "deleting banner"):
        banner = db.get(Banner, banner_id)
        if banner is None:
            raise NotFoundError()
        image = banner.image
        db.delete(banner)
        db.commit()
    # Asset storage is not touched; the image reference is left for the uploader to reclaim.
    logger.info("banner %s deleted, image %r not removed from asset storage", banner_id, image)


def toggle_active(db: Session, banner_id: int) -> tuple[Banner, str]:
    stmt = (
        update(Banner)
        .where(Banner.id == banner_id)
        .values({Banner.is_active: not_(Banner.is_active), Banner.updated_at: utcnow()})
        .execution_options(synchronize_session=False)
    )
    with _store_guard(db, "toggling banner status"):
        result = db.execute(stmt)
        if result.rowcount == 0:
            raise NotFoundError()
        db.commit()
    banner = get_banner(db, banner_id)
    state = "activated" if banner.is_active else "deactivated"
    logger.info("banner %s %s", banner_id, state)
    return banner, state


def _increment(db: Session, banner_id: int, column, action: str) -> None:
    stmt = (
        update(Banner)
        .where(Banner.id == banner_id)
        .values({column: column + 1})
        .execution_options(synchronize_session=False)
    )
    with _store_guard(db, action):
        result = db.execute(stmt)
        if result.rowcount == 0:
            raise NotFoundError()
        db.commit()


def record_impression(db: Session, banner_id: int) -> None:
    _increment(db, banner_id, Banner.impressions, "recording impression")


def record_click(db: Session, banner_id: int) -> None:
    _increment(db, banner_id, Banner.clicks, "recording click")


def banner_analytics(db: Session, banner_id: int, now: Optional[datetime] = None) -> dict:
    banner = get_banner(db, banner_id)
    now = now or utcnow()
    return {
        "impressions": banner.impressions,
        "clicks": banner.clicks,
        "ctr": format_ctr(banner.clicks, banner.impressions),
        "is_active": banner.is_active,
        "created_at": banner.created_at,
        "days_active": math.ceil((now - banner.created_at) / ONE_DAY),
    }


def reorder_banners(db: Session, pairs: Any) -> int:
    """Apply ``[{id, order}, ...]`` one banner at a time.

    Each pair is committed on its own. The first unknown id aborts the loop with
    ``NotFoundError``; pairs applied before it stay applied.
    """
    if not isinstance(pairs, list):
        raise ValidationError("banner_orders must be an array", field="banner_orders")
    items = []
    for idx, raw in enumerate(pairs):
        try:
            items.append(_validate(BannerOrderItem, raw))
        except ValidationError as exc:
            raise ValidationError(f"banner_orders[{idx}] {exc.message}", field="banner_orders") from exc

    applied = 0
    for item in items:
        stmt = (
            update(Banner)
            .where(Banner.id == item.id)
            .values({Banner.order: item.order, Banner.updated_at: utcnow()})
            .execution_options(synchronize_session=False)
        )
        with _store_guard(db, "reordering banners"):
            result = db.execute(stmt)
            if result.rowcount == 0:
                raise NotFoundError(f"Banner {item.id} not found")
            db.commit()
        applied += 1
    logger.info("reordered %d banner(s)", applied)
    return applied
