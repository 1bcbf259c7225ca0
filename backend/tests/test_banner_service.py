from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from app.db.init_db import seed_demo_banners
from app.db.session import SessionLocal
from app.models.banner import Banner, BannerLocation
from app.services import banners as svc
from app.services.errors import NotFoundError, StoreError, ValidationError

NOW = datetime(2030, 6, 15, 12, 0, 0)


def make(db, title="Banner", **fields):
    data = {"title": title, "image": "img1"}
    data.update(fields)
    return svc.create_banner(db, data, creator_id="u1")


def test_click_through_rate():
    assert svc.click_through_rate(0, 0) == 0
    assert svc.click_through_rate(3, 0) == 0
    assert svc.click_through_rate(1, 5) == 20.0
    assert svc.click_through_rate(1, 3) == 33.33
    assert svc.format_ctr(0, 0) == 0
    assert svc.format_ctr(1, 5) == "20.00"
    assert svc.format_ctr(2, 3) == "66.67"
    # exact ties round up
    assert svc.click_through_rate(1, 32) == 3.13
    assert svc.format_ctr(1, 32) == "3.13"
    assert svc.format_ctr(1, 160) == "0.63"
    assert svc.format_ctr(1, 800) == "0.13"


def test_create_applies_defaults(db):
    b = svc.create_banner(db, {"title": "Summer Sale", "image": "img1", "display_location": ["home", "search"]}, creator_id="u1")
    assert b.id is not None
    assert b.order == 0
    assert b.is_active is True
    assert b.audience == "all"
    assert b.category == "promotional"
    assert b.locations == ["home", "search"]
    assert b.created_by == "u1"
    assert b.impressions == 0 and b.clicks == 0
    assert b.start_at is not None
    assert b.end_at is None


def test_create_defaults_location_to_home(db):
    assert make(db).locations == ["home"]


def test_create_normalizes_single_location(db):
    assert make(db, display_location="search").locations == ["search"]
    assert make(db, display_location=["booking", "booking"]).locations == ["booking"]


def test_create_parses_iso_dates(db):
    b = make(db, start_date="2030-01-01T00:00:00Z", end_date="2030-02-01T03:00:00+03:00")
    assert b.start_at == datetime(2030, 1, 1)
    assert b.end_at == datetime(2030, 2, 1)


def test_create_end_before_start_is_accepted(db):
    b = make(db, start_date="2030-02-01T00:00:00", end_date="2030-01-01T00:00:00")
    assert b.end_at < b.start_at


@pytest.mark.parametrize(
    "fields",
    [
        {"title": "x" * 101},
        {"title": "   "},
        {"image": None},
        {"image": ""},
        {"link": "not-a-url"},
        {"description": "d" * 501},
        {"order": -1},
        {"category": "banner"},
        {"audience": "everyone"},
        {"display_location": ["sidebar"]},
        {"display_location": []},
        {"start_date": "next tuesday"},
    ],
)
def test_create_rejects_invalid_fields(db, fields):
    data = {"title": "Summer Sale", "image": "img1"}
    data.update(fields)
    if data["image"] is None:
        del data["image"]
    with pytest.raises(ValidationError):
        svc.create_banner(db, data, creator_id="u1")
    assert db.query(Banner).count() == 0


def test_create_error_names_the_field(db):
    with pytest.raises(ValidationError) as exc:
        svc.create_banner(db, {"title": "Sale", "image": "img1", "link": "not-a-url"}, creator_id="u1")
    assert exc.value.field == "link"
    assert "valid URL" in exc.value.message


def test_create_accepts_http_link(db):
    assert make(db, link="https://x.com").link == "https://x.com"


def test_create_requires_creator(db):
    with pytest.raises(ValidationError):
        svc.create_banner(db, {"title": "Sale", "image": "img1"}, creator_id="")


def test_update_changes_only_provided_fields(db):
    b = make(db, title="Old", start_date="2030-01-01T00:00:00", end_date="2030-03-01T00:00:00", display_location=["home"])
    updated = svc.update_banner(db, b.id, {"title": "New", "display_location": ["search", "profile"]})
    assert updated.title == "New"
    assert updated.image == "img1"
    assert updated.start_at == datetime(2030, 1, 1)
    assert updated.end_at == datetime(2030, 3, 1)
    assert updated.locations == ["search", "profile"]
    assert db.query(BannerLocation).filter(BannerLocation.banner_id == b.id).count() == 2


def test_update_null_end_date_opens_window(db):
    b = make(db, end_date="2030-03-01T00:00:00")
    assert svc.update_banner(db, b.id, {"end_date": None}).end_at is None


def test_update_null_start_date_keeps_previous(db):
    b = make(db, start_date="2030-01-01T00:00:00")
    assert svc.update_banner(db, b.id, {"start_date": None}).start_at == datetime(2030, 1, 1)


def test_update_blank_description_is_cleared(db):
    b = make(db, description="Up to 30% off")
    assert b.description == "Up to 30% off"
    assert svc.update_banner(db, b.id, {"description": ""}).description is None
    assert make(db, description="   ").description is None


def test_update_validation(db):
    b = make(db)
    with pytest.raises(ValidationError):
        svc.update_banner(db, b.id, {"link": "ftp//broken"})
    with pytest.raises(ValidationError):
        svc.update_banner(db, b.id, {"title": None})
    with pytest.raises(ValidationError):
        svc.update_banner(db, b.id, {"order": -5})


def test_update_unknown_banner(db):
    with pytest.raises(NotFoundError):
        svc.update_banner(db, 9999, {"title": "Nope"})


def test_update_does_not_touch_counters(db):
    b = make(db)
    svc.record_impression(db, b.id)
    svc.record_click(db, b.id)
    updated = svc.update_banner(db, b.id, {"impressions": 0, "clicks": 0, "order": 3})
    assert updated.order == 3
    assert (updated.impressions, updated.clicks) == (1, 1)


def test_delete_then_get_is_not_found(db):
    b = make(db, display_location=["home", "search"])
    svc.delete_banner(db, b.id)
    with pytest.raises(NotFoundError):
        svc.get_banner(db, b.id)
    assert db.query(BannerLocation).count() == 0


def test_delete_unknown_banner(db):
    with pytest.raises(NotFoundError):
        svc.delete_banner(db, 424242)


def test_toggle_flips_state(db):
    b = make(db)
    toggled, state = svc.toggle_active(db, b.id)
    assert toggled.is_active is False
    assert state == "deactivated"
    toggled, state = svc.toggle_active(db, b.id)
    assert toggled.is_active is True
    assert state == "activated"


def test_toggle_unknown_banner(db):
    with pytest.raises(NotFoundError):
        svc.toggle_active(db, 777)


def test_counters_and_analytics(db):
    b = svc.create_banner(db, {"title": "Summer Sale", "image": "img1", "display_location": ["home", "search"]}, creator_id="u1")
    for _ in range(5):
        svc.record_impression(db, b.id)
    svc.record_click(db, b.id)
    data = svc.banner_analytics(db, b.id)
    assert data["impressions"] == 5
    assert data["clicks"] == 1
    assert data["ctr"] == "20.00"
    assert data["is_active"] is True
    assert data["days_active"] == 1


def test_analytics_without_impressions(db):
    b = make(db)
    data = svc.banner_analytics(db, b.id, now=b.created_at + timedelta(hours=36))
    assert data["ctr"] == 0
    assert data["days_active"] == 2


def test_counters_unknown_banner(db):
    with pytest.raises(NotFoundError):
        svc.record_impression(db, 555)
    with pytest.raises(NotFoundError):
        svc.record_click(db, 555)
    with pytest.raises(NotFoundError):
        svc.banner_analytics(db, 555)


def test_concurrent_impressions_are_not_lost(db):
    b = make(db)
    hits = 40

    def hit():
        session = SessionLocal()
        try:
            svc.record_impression(session, b.id)
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=8) as pool:
        futures = [pool.submit(hit) for _ in range(hits)]
        for f in futures:
            f.result()

    db.expire_all()
    assert svc.get_banner(db, b.id).impressions == hits


def test_is_live_predicate():
    b = Banner(title="t", image="i", is_active=True, start_at=NOW - timedelta(days=1), end_at=None)
    b.locations = ["home"]
    assert svc.is_live(b, "home", NOW)
    assert svc.is_live(b, None, NOW)
    assert not svc.is_live(b, "search", NOW)
    b.end_at = NOW - timedelta(seconds=1)
    assert not svc.is_live(b, "home", NOW)
    b.end_at = NOW
    assert svc.is_live(b, "home", NOW)
    b.start_at = NOW + timedelta(minutes=1)
    assert not svc.is_live(b, "home", NOW)
    b.start_at = NOW - timedelta(days=1)
    b.is_active = False
    assert not svc.is_live(b, "home", NOW)


def test_active_for_window_and_location(db):
    day = timedelta(days=1)
    make(db, "live", start_date=NOW - day)
    make(db, "live-until-tomorrow", start_date=NOW - day, end_date=NOW + day)
    make(db, "inactive", start_date=NOW - day, is_active=False)
    make(db, "search-only", start_date=NOW - day, display_location=["search"])
    make(db, "not-started", start_date=NOW + day)
    make(db, "expired", start_date=NOW - 3 * day, end_date=NOW - day)

    titles = {b.title for b in svc.active_for(db, "home", now=NOW)}
    assert titles == {"live", "live-until-tomorrow"}
    assert [b.title for b in svc.active_for(db, "search", now=NOW)] == ["search-only"]
    assert svc.active_for(db, "profile", now=NOW) == []


def test_active_for_is_repeatable(db):
    make(db, "live", start_date=NOW - timedelta(days=1))
    first = [b.id for b in svc.active_for(db, "home", now=NOW)]
    assert first == [b.id for b in svc.active_for(db, "home", now=NOW)]


def test_active_for_rejects_unknown_location(db):
    with pytest.raises(ValidationError):
        svc.active_for(db, "sidebar", now=NOW)


def test_ordering_by_order_then_newest(db):
    start = NOW - timedelta(days=1)
    make(db, "a", order=1, start_date=start)
    make(db, "b", order=0, start_date=start)
    make(db, "c", order=0, start_date=start)
    assert [b.title for b in svc.active_for(db, "home", now=NOW)] == ["c", "b", "a"]
    assert [b.title for b in svc.list_banners(db).items] == ["c", "b", "a"]


def test_list_without_filters_returns_everything(db):
    for i in range(3):
        make(db, f"b{i}", is_active=bool(i % 2))
    page = svc.list_banners(db)
    assert page.total == 3
    assert len(page.items) == 3
    assert page.pages == 1


def test_list_filters(db):
    make(db, "hero-home", category="hero", start_date="2030-01-10T00:00:00")
    make(db, "promo-search", display_location=["search"], start_date="2030-02-10T00:00:00")
    make(db, "premium", audience="premium_users", is_active=False, start_date="2030-03-10T00:00:00")

    def titles(**filters):
        return {b.title for b in svc.list_banners(db, filters).items}

    assert titles(is_active=True) == {"hero-home", "promo-search"}
    assert titles(is_active=False) == {"premium"}
    assert titles(category="hero") == {"hero-home"}
    assert titles(audience="premium_users") == {"premium"}
    assert titles(location="search") == {"promo-search"}
    assert titles(start_from="2030-02-01T00:00:00") == {"promo-search", "premium"}
    assert titles(start_to="2030-02-01T00:00:00") == {"hero-home"}
    assert titles(start_from="2030-02-01T00:00:00", start_to="2030-03-01T00:00:00") == {"promo-search"}
    assert titles(is_active=True, category="promotional", location="home") == set()


def test_list_rejects_unknown_filter_values(db):
    with pytest.raises(ValidationError):
        svc.list_banners(db, {"category": "popup"})
    with pytest.raises(ValidationError):
        svc.list_banners(db, page=0)


def test_list_blank_filter_values_are_ignored(db):
    for i in range(3):
        make(db, f"b{i}")
    page = svc.list_banners(db, {"category": "", "audience": " ", "location": "", "start_from": "", "start_to": ""})
    assert page.total == 3


def test_list_pagination(db):
    for i in range(12):
        make(db, f"b{i:02d}", order=i)
    page = svc.list_banners(db, page=2, page_size=10)
    assert page.total == 12
    assert page.pages == 2
    assert [b.title for b in page.items] == ["b10", "b11"]
    assert svc.list_banners(db, page=3, page_size=10).items == []


def test_reorder_applies_each_pair(db):
    a, b = make(db, "a"), make(db, "b", order=5)
    assert svc.reorder_banners(db, [{"id": a.id, "order": 2}, {"id": b.id, "order": 2}]) == 2
    db.expire_all()
    assert svc.get_banner(db, a.id).order == 2
    assert svc.get_banner(db, b.id).order == 2


def test_reorder_validates_input_before_applying(db):
    a = make(db, "a")
    with pytest.raises(ValidationError):
        svc.reorder_banners(db, {"id": a.id, "order": 1})
    with pytest.raises(ValidationError):
        svc.reorder_banners(db, [{"id": a.id, "order": 3}, {"id": a.id, "order": -1}])
    db.expire_all()
    assert svc.get_banner(db, a.id).order == 0


def test_reorder_partial_failure_keeps_earlier_updates(db):
    a, c = make(db, "a"), make(db, "c")
    with pytest.raises(NotFoundError):
        svc.reorder_banners(db, [{"id": a.id, "order": 7}, {"id": 31337, "order": 1}, {"id": c.id, "order": 9}])
    db.expire_all()
    assert svc.get_banner(db, a.id).order == 7
    assert svc.get_banner(db, c.id).order == 0


def test_store_failure_is_wrapped(db, monkeypatch):
    def broken(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("connection refused"))

    monkeypatch.setattr(db, "get", broken)
    with pytest.raises(StoreError) as exc:
        svc.get_banner(db, 1)
    assert str(exc.value) == "Error fetching banner"


def test_seed_demo_banners_is_idempotent(db):
    assert seed_demo_banners() == 3
    assert seed_demo_banners() == 0
    premium = db.query(Banner).filter(Banner.audience == "premium_users").one()
    assert premium.locations == ["booking"]
    assert premium.created_by == "system"
