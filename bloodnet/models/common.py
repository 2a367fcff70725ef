"""
Shared model plumbing: camelCase wire format and UTC timestamp handling.
"""
from datetime import datetime, timezone
from typing import Annotated, Generic, List, TypeVar

from pydantic import AfterValidator, BaseModel, ConfigDict, PlainSerializer
from pydantic.alias_generators import to_camel

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat(value: datetime) -> str:
    # Fixed width so that stored strings sort in time order
    return as_utc(value).strftime(ISO_FORMAT)


UTCDateTime = Annotated[
    datetime,
    AfterValidator(as_utc),
    PlainSerializer(isoformat, return_type=str),
]


class CamelModel(BaseModel):
    model_config = ConfigDict(
        extra="ignore",
        alias_generator=to_camel,
        populate_by_name=True,
    )


T = TypeVar("T")


class Page(CamelModel, Generic[T]):
    results: List[T]
    total_results: int
    page: int
    limit: int
    total_pages: int
