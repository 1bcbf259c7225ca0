import re
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

Category = Literal["hero", "promotional", "informational", "featured"]
Audience = Literal["all", "new_users", "existing_users", "premium_users"]
Location = Literal["home", "search", "property_detail", "booking", "profile"]

LINK_RE = re.compile(r"^https?://.+")
NOT_NULLABLE = ("title", "image", "is_active", "order", "category", "audience", "display_location")


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class _BannerFields(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    @field_validator("title", check_fields=False)
    @classmethod
    def _title_not_blank(cls, v):
        if v is not None and not v:
            raise ValueError("Banner title is required")
        return v

    @field_validator("image", check_fields=False)
    @classmethod
    def _image_not_blank(cls, v):
        if v is not None and not v:
            raise ValueError("Banner image is required")
        return v

    @field_validator("link", check_fields=False)
    @classmethod
    def _link_shape(cls, v):
        if v and not LINK_RE.match(v):
            raise ValueError("Please provide a valid URL")
        return v or None

    @field_validator("description", check_fields=False)
    @classmethod
    def _blank_description(cls, v):
        return v or None

    @field_validator("display_location", mode="before", check_fields=False)
    @classmethod
    def _locations_as_list(cls, v):
        # a single location may be sent as a bare string
        if isinstance(v, str):
            return [v]
        return v

    @field_validator("display_location", check_fields=False)
    @classmethod
    def _locations_unique(cls, v):
        if v is None:
            return v
        if not v:
            raise ValueError("At least one display location is required")
        return list(dict.fromkeys(v))

    @field_validator("start_date", "end_date", check_fields=False)
    @classmethod
    def _to_naive_utc(cls, v):
        return _naive_utc(v)


class BannerCreate(_BannerFields):
    title: str = Field(max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    image: str
    link: Optional[str] = None
    is_active: bool = True
    order: int = Field(default=0, ge=0)
    category: Category = "promotional"
    audience: Audience = "all"
    display_location: List[Location] = Field(default_factory=lambda: ["home"])
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class BannerUpdate(_BannerFields):
    title: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    image: Optional[str] = None
    link: Optional[str] = None
    is_active: Optional[bool] = None
    order: Optional[int] = Field(default=None, ge=0)
    category: Optional[Category] = None
    audience: Optional[Audience] = None
    display_location: Optional[List[Location]] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @model_validator(mode="after")
    def _no_null_required(self):
        # description, link and end_date may be cleared; everything else only replaced
        for name in NOT_NULLABLE:
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self


class BannerOrderItem(BaseModel):
    id: int
    order: int = Field(ge=0)


class BannerFilter(BaseModel):
    is_active: Optional[bool] = None
    category: Optional[Category] = None
    audience: Optional[Audience] = None
    location: Optional[Location] = None
    start_from: Optional[datetime] = None
    start_to: Optional[datetime] = None

    @field_validator("category", "audience", "location", "start_from", "start_to", mode="before")
    @classmethod
    def _blank_is_absent(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("start_from", "start_to")
    @classmethod
    def _to_naive_utc(cls, v):
        return _naive_utc(v)

