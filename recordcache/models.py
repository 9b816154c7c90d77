from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field, model_validator

MAX_BATCH_SIZE = 50

class ContactStatus(StrEnum):
    lead = "lead"
    prospect = "prospect"
    qualified = "qualified"
    customer = "customer"
    churned = "churned"


class InterestLevel(StrEnum):
    hot = "hot"
    warm = "warm"
    medium = "medium"
    cold = "cold"


class ContactBase(BaseModel):
    first_name: str = Field(min_length=1)
    last_name: str = ""
    email: str = Field(min_length=3)
    phone: str | None = None
    title: str | None = None
    company: str | None = None
    industry: str | None = None
    status: ContactStatus = ContactStatus.lead
    interest_level: InterestLevel = InterestLevel.medium
    sources: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    ai_score: int | None = Field(default=None, ge=0, le=100)

    @model_validator(mode="after")
    def normalize_fields(self) -> "ContactBase":
        self.first_name = self.first_name.strip()
        self.last_name = self.last_name.strip()
        self.email = self.email.strip().lower()
        if "@" not in self.email:
            raise ValueError(f"Invalid email address: {self.email}")
        self.tags = [tag.strip() for tag in self.tags if tag.strip()]
        self.sources = [source.strip() for source in self.sources if source.strip()]
        return self


class ContactCreate(ContactBase):
    pass


class ContactUpdate(BaseModel):
    first_name: str | None = Field(default=None, min_length=1)
    last_name: str | None = None
    email: str | None = Field(default=None, min_length=3)
    phone: str | None = None
    title: str | None = None
    company: str | None = None
    industry: str | None = None
    status: ContactStatus | None = None
    interest_level: InterestLevel | None = None
    sources: list[str] | None = None
    tags: list[str] | None = None
    ai_score: int | None = Field(default=None, ge=0, le=100)


class Contact(ContactBase):
    id: str
    created_at: datetime
    updated_at: datetime

    @property
    def name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)


class ContactFilters(BaseModel):
    status: ContactStatus | None = None
    interest_level: InterestLevel | None = None
    company: str | None = None
    search: str | None = None
    limit: int = Field(default=50, ge=1, le=500)
    offset: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def normalize_text(self) -> "ContactFilters":
        if self.company is not None:
            self.company = self.company.strip() or None
        if self.search is not None:
            self.search = " ".join(self.search.split()) or None
        return self


class ContactListResponse(BaseModel):
    results: list[Contact]
    cached: bool = False


class ContactBatchCreate(BaseModel):
    contacts: list[ContactCreate] = Field(min_length=1, max_length=MAX_BATCH_SIZE)


class ContactBatchUpdateItem(BaseModel):
    id: str = Field(min_length=1)
    changes: ContactUpdate


class ContactBatchUpdate(BaseModel):
    updates: list[ContactBatchUpdateItem] = Field(min_length=1, max_length=MAX_BATCH_SIZE)


class ContactBatchResponse(BaseModel):
    results: list[Contact]


class CacheStatsResponse(BaseModel):
    hits: int
    misses: int
    size: int
    hit_rate: float
    last_cleanup: datetime | None = None
    evictions: int = 0
    expirations: int = 0
    max_size: int
    namespaces: dict[str, int] = Field(default_factory=dict)


class CleanupResponse(BaseModel):
    removed: int
    size: int


class InvalidateResponse(BaseModel):
    tag: str
    removed: int
