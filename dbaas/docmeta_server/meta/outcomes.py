"""
Outcome vocabulary of metadata operations.

Preconditions and concurrency conflicts are reported as outcomes, not
exceptions. Each outcome carries the HTTP status an API layer should
answer with.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from http import HTTPStatus

from bson import ObjectId


class MetadataOutcome(Enum):
    """Result codes surfaced to callers."""

    CREATED = "created"
    UPDATED = "updated"
    NOT_FOUND = "not_found"
    NOT_ACCEPTABLE = "not_acceptable"
    GONE = "gone"
    PRECONDITION_FAILED = "precondition_failed"
    OK_NO_SENTINEL = "ok_no_sentinel"

    @property
    def http_status(self) -> HTTPStatus:
        return _HTTP_STATUS[self]

    @property
    def is_success(self) -> bool:
        return self in (
            MetadataOutcome.CREATED,
            MetadataOutcome.UPDATED,
            MetadataOutcome.GONE,
            MetadataOutcome.OK_NO_SENTINEL,
        )


_HTTP_STATUS = {
    MetadataOutcome.CREATED: HTTPStatus.CREATED,
    MetadataOutcome.UPDATED: HTTPStatus.OK,
    MetadataOutcome.NOT_FOUND: HTTPStatus.NOT_FOUND,
    MetadataOutcome.NOT_ACCEPTABLE: HTTPStatus.NOT_ACCEPTABLE,
    MetadataOutcome.GONE: HTTPStatus.GONE,
    MetadataOutcome.PRECONDITION_FAILED: HTTPStatus.PRECONDITION_FAILED,
    # A collection without metadata is dropped like any other
    MetadataOutcome.OK_NO_SENTINEL: HTTPStatus.GONE,
}


@dataclass(frozen=True)
class UpsertResult:
    """Result of upsert_sentinel.

    Attributes:
        outcome: CREATED, UPDATED or NOT_FOUND
        etag: Token stamped by this write (None when nothing was written)
        created_on: @created_on after this write's correction. For a writer
            that lost a creation race and corrected before the creating
            writer did, an upper bound of the final value.
    """

    outcome: MetadataOutcome
    etag: ObjectId | None = None
    created_on: str | None = None


@dataclass(frozen=True)
class DeleteResult:
    """Result of delete_collection.

    Attributes:
        outcome: GONE, OK_NO_SENTINEL, NOT_ACCEPTABLE or PRECONDITION_FAILED
        restored: For PRECONDITION_FAILED, whether the removed sentinel
            was written back. False means the collection lost its metadata
            and needs operator attention.
    """

    outcome: MetadataOutcome
    restored: bool = True
