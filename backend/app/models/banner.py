from datetime import datetime, timezone

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base

LOCATIONS = ("home", "search", "property_detail", "booking", "profile")


def utcnow() -> datetime:
    # Naive UTC everywhere; SQLite drops tzinfo anyway.
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Banner(Base):
    __tablename__ = "banners"
    __table_args__ = (
        Index("ix_banners_window", "start_at", "end_at"),
        CheckConstraint("display_order >= 0", name="ck_banners_order_non_negative"),
        CheckConstraint("impressions >= 0 AND clicks >= 0", name="ck_banners_counters_non_negative"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    title: Mapped[str] = mapped_column(String(100))
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    # Opaque reference into the asset storage (CDN url, public id...)
    image: Mapped[str] = mapped_column(Text)
    link: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    order: Mapped[int] = mapped_column("display_order", Integer, default=0, index=True)
    category: Mapped[str] = mapped_column(String(32), default="promotional", index=True)
    audience: Mapped[str] = mapped_column(String(32), default="all")
    start_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    end_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    impressions: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    clicks: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    created_by: Mapped[str] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    location_rows: Mapped[list["BannerLocation"]] = relationship(
        back_populates="banner",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )

    @property
    def locations(self) -> list[str]:
        present = {row.location for row in self.location_rows}
        return [loc for loc in LOCATIONS if loc in present]

    @locations.setter
    def locations(self, values) -> None:
        wanted = set(values)
        # keep rows that survive so the unit of work only touches the delta
        self.location_rows = [row for row in self.location_rows if row.location in wanted]
        have = {row.location for row in self.location_rows}
        for loc in LOCATIONS:
            if loc in wanted and loc not in have:
                self.location_rows.append(BannerLocation(location=loc))


class BannerLocation(Base):
    __tablename__ = "banner_locations"

    banner_id: Mapped[int] = mapped_column(ForeignKey("banners.id", ondelete="CASCADE"), primary_key=True)
    location: Mapped[str] = mapped_column(String(32), primary_key=True, index=True)

    banner: Mapped[Banner] = relationship(back_populates="location_rows")
