"""
Concurrency tokens (ETags) for collection metadata.

Every write to a sentinel record stamps a fresh BSON ObjectId in its
@etag field. The ObjectId doubles as:
- an optimistic-concurrency token, compared on delete
- a coarse clock, read back as the @lastupdated_on display value

Invariants:
    - Tokens issued by this process are strictly increasing
    - The embedded timestamp has one-second resolution (UTC)
    - Malformed tokens never raise; they parse to None
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from bson import ObjectId


def new_etag() -> ObjectId:
    """Issue a fresh concurrency token."""
    return ObjectId()


def parse_etag(value: Any) -> ObjectId | None:
    """Normalise a stored or caller-supplied token.

    Accepts an ObjectId or its 24-character hex form. Anything else,
    including None, legacy values and garbage, yields None.
    """
    if isinstance(value, ObjectId):
        return value
    if value is None:
        return None
    text = str(value)
    if not ObjectId.is_valid(text):
        return None
    return ObjectId(text)


def etag_timestamp(value: Any) -> datetime | None:
    """Extract the UTC creation time embedded in a token, or None."""
    etag = parse_etag(value)
    if etag is None:
        return None
    return etag.generation_time


def format_timestamp(when: datetime) -> str:
    """Render a timestamp as ISO-8601 UTC with second resolution."""
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return when.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
