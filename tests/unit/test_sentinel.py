"""
Unit tests for the sentinel record helpers and outcome vocabulary.

Tests cover:
- Sentinel and data filters
- Reserved field stripping
- Row decoration with @lastupdated_on
- Outcome HTTP status mapping
"""

from datetime import datetime, timezone
from http import HTTPStatus

from bson import ObjectId

from dbaas.docmeta_server.meta.etag import format_timestamp
from dbaas.docmeta_server.meta.outcomes import DeleteResult, MetadataOutcome, UpsertResult
from dbaas.docmeta_server.meta.sentinel import (
    CREATED_ON_FIELD,
    ETAG_FIELD,
    LAST_UPDATED_FIELD,
    PENDING_CREATED_ON,
    SENTINEL_ID,
    data_filter,
    decorate_last_updated,
    is_sentinel,
    sentinel_filter,
    user_properties,
)


class TestFilters:
    """Tests for the partitioning filters."""

    def test_sentinel_filter(self):
        """Sentinel filter matches the reserved id."""
        assert sentinel_filter() == {"_id": SENTINEL_ID}

    def test_data_filter(self):
        """Data filter excludes the reserved id."""
        assert data_filter() == {"_id": {"$ne": SENTINEL_ID}}

    def test_filters_are_fresh_copies(self):
        """Mutating a returned filter does not leak into later calls."""
        f = data_filter()
        f["_id"]["$ne"] = "other"
        assert data_filter() == {"_id": {"$ne": SENTINEL_ID}}

    def test_is_sentinel(self):
        """Only the reserved id is the sentinel."""
        assert is_sentinel({"_id": SENTINEL_ID})
        assert not is_sentinel({"_id": "metadata"})
        assert not is_sentinel({"_id": ObjectId()})
        assert not is_sentinel({})
        assert not is_sentinel(None)

    def test_pending_created_on_sorts_last(self):
        """The creation placeholder sorts after any formatted timestamp."""
        latest = format_timestamp(datetime(9999, 12, 31, 23, 59, 58, tzinfo=timezone.utc))
        assert format_timestamp(datetime.now(timezone.utc)) < PENDING_CREATED_ON
        assert latest < PENDING_CREATED_ON


class TestUserProperties:
    """Tests for reserved field stripping."""

    def test_strips_reserved_fields(self):
        """Reserved fields never reach the store from a payload."""
        payload = {
            "_id": "x",
            CREATED_ON_FIELD: "1999-01-01T00:00:00Z",
            ETAG_FIELD: "abc",
            LAST_UPDATED_FIELD: "1999-01-01T00:00:00Z",
            "description": "kept",
        }
        assert user_properties(payload) == {"description": "kept"}

    def test_empty_payload(self):
        """None and empty payloads give an empty dict."""
        assert user_properties(None) == {}
        assert user_properties({}) == {}

    def test_does_not_mutate_input(self):
        """Caller payload is left untouched."""
        payload = {CREATED_ON_FIELD: "x", "a": 1}
        user_properties(payload)
        assert payload == {CREATED_ON_FIELD: "x", "a": 1}


class TestDecorateLastUpdated:
    """Tests for @lastupdated_on derivation."""

    def test_adds_derived_field(self):
        """Well-formed @etag yields @lastupdated_on."""
        when = datetime(2024, 2, 3, 4, 5, 6, tzinfo=timezone.utc)
        doc = {ETAG_FIELD: ObjectId.from_datetime(when)}
        assert decorate_last_updated(doc)[LAST_UPDATED_FIELD] == "2024-02-03T04:05:06Z"

    def test_string_etag(self):
        """Hex-string @etag is accepted too."""
        when = datetime(2024, 2, 3, 4, 5, 6, tzinfo=timezone.utc)
        doc = {ETAG_FIELD: str(ObjectId.from_datetime(when))}
        assert decorate_last_updated(doc)[LAST_UPDATED_FIELD] == "2024-02-03T04:05:06Z"

    def test_malformed_etag_is_ignored(self):
        """Garbage @etag leaves the document unchanged."""
        doc = {ETAG_FIELD: "garbage", "a": 1}
        assert decorate_last_updated(doc) == {ETAG_FIELD: "garbage", "a": 1}

    def test_missing_etag(self):
        """Documents without @etag are unchanged."""
        assert decorate_last_updated({"a": 1}) == {"a": 1}


class TestOutcomes:
    """Tests for outcome vocabulary."""

    def test_http_status_mapping(self):
        """Each outcome maps to the status an API should answer with."""
        assert MetadataOutcome.CREATED.http_status == HTTPStatus.CREATED
        assert MetadataOutcome.UPDATED.http_status == HTTPStatus.OK
        assert MetadataOutcome.NOT_FOUND.http_status == HTTPStatus.NOT_FOUND
        assert MetadataOutcome.NOT_ACCEPTABLE.http_status == HTTPStatus.NOT_ACCEPTABLE
        assert MetadataOutcome.GONE.http_status == HTTPStatus.GONE
        assert MetadataOutcome.PRECONDITION_FAILED.http_status == HTTPStatus.PRECONDITION_FAILED
        assert MetadataOutcome.OK_NO_SENTINEL.http_status == HTTPStatus.GONE

    def test_every_outcome_has_status(self):
        """No outcome is left unmapped."""
        for outcome in MetadataOutcome:
            assert isinstance(outcome.http_status, HTTPStatus)

    def test_success_flags(self):
        """Preconditions and conflicts are not successes."""
        assert MetadataOutcome.CREATED.is_success
        assert MetadataOutcome.OK_NO_SENTINEL.is_success
        assert not MetadataOutcome.NOT_FOUND.is_success
        assert not MetadataOutcome.NOT_ACCEPTABLE.is_success
        assert not MetadataOutcome.PRECONDITION_FAILED.is_success

    def test_result_defaults(self):
        """Result dataclasses default to empty details."""
        assert UpsertResult(MetadataOutcome.NOT_FOUND).etag is None
        assert DeleteResult(MetadataOutcome.GONE).restored is True
