"""
Collection metadata manager for DocMeta.

This module owns the lifecycle of the sentinel record that carries a
collection's metadata:
- Existence check and read with a derived @lastupdated_on
- Patch (merge) and full upsert (replace) with @created_on preserved
- Delete of a whole collection, guarded by an ETag check

No single store primitive can insert-or-replace, keep one field of the
old document and report whether it inserted. A full upsert is therefore
an explicit two-step transition:

    step 1  find_one_and_replace(upsert=True) returning the pre-image
            -> PendingCorrection, stage REPLACED
               The sentinel is committed with the caller's content, a
               fresh @etag and a @created_on guess: the value the
               existence check saw, else PENDING_CREATED_ON, which sorts
               after every real timestamp.
    step 2  $min @created_on with the value recovered in step 1
            -> stage CORRECTED (indexes provisioned if step 1 inserted)

Step 2 is idempotent and may be re-issued at any time from the
PendingCorrection. Because it only ever lowers @created_on and every
guess is an upper bound, corrections converge on the creating writer's
timestamp in any order, including when several writers race to create.
A writer whose pre-image still holds PENDING_CREATED_ON recovers "now":
that instant follows the creating insert, so it is an upper bound too.

Invariants:
    - At most one sentinel per collection (fixed _id)
    - @created_on is written once and restored after every full replace
    - Every successful write stamps a fresh @etag
    - Data queries never match the sentinel (see sentinel.data_filter)

How to change safely:
    - Keep the two upsert steps separate and observable
    - Test every branch against InMemoryDocumentStore with forced races
    - Never hold in-process locks across store calls
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

from bson import ObjectId

from ..config import MetadataConfig
from ..store.base import (
    ASCENDING,
    CollectionRef,
    DocumentStore,
    StoreCollection,
    StoreError,
)
from .etag import format_timestamp, new_etag, parse_etag
from .outcomes import DeleteResult, MetadataOutcome, UpsertResult
from .sentinel import (
    CREATED_ON_FIELD,
    ETAG_FIELD,
    ID_FIELD,
    PENDING_CREATED_ON,
    SENTINEL_ID,
    data_filter,
    decorate_last_updated,
    sentinel_filter,
    user_properties,
)

logger = logging.getLogger(__name__)

DEFAULT_INDEXES = (
    ("@_id_etag_idx", [(ID_FIELD, ASCENDING), (ETAG_FIELD, ASCENDING)]),
    ("@etag_idx", [(ETAG_FIELD, ASCENDING)]),
    ("@created_on_idx", [(CREATED_ON_FIELD, ASCENDING)]),
)


class UpsertStage(Enum):
    """Progress of a full upsert."""

    REPLACED = "replaced"
    CORRECTED = "corrected"


@dataclass
class PendingCorrection:
    """State of a full upsert between its two steps.

    Attributes:
        ref: Collection whose sentinel was replaced
        etag: Token stamped by the replace
        created_on: @created_on value step 2 lowers the sentinel to
        created: Whether step 1 inserted the sentinel
        provisional: created_on is only an upper bound (the pre-image was
            another writer's uncorrected insert); step 2 reads back the
            settled value
        stage: REPLACED until step 2 has been applied
        indexes_ready: Whether default indexes have been provisioned
    """

    ref: CollectionRef
    etag: ObjectId
    created_on: Any
    created: bool
    provisional: bool = False
    stage: UpsertStage = UpsertStage.REPLACED
    indexes_ready: bool = False

    def result(self) -> UpsertResult:
        outcome = MetadataOutcome.CREATED if self.created else MetadataOutcome.UPDATED
        return UpsertResult(outcome=outcome, etag=self.etag, created_on=self.created_on)


class MetadataManager:
    """Atomic-looking metadata operations over a shared document store.

    The manager holds no state of its own besides the store handle it is
    given, so one instance can serve any number of concurrent callers.

    Example:
        >>> manager = MetadataManager(store)
        >>> ref = CollectionRef("shop", "orders")
        >>> result = await manager.upsert_sentinel(ref, {"description": "Orders"})
        >>> result.outcome
        <MetadataOutcome.CREATED: 'created'>
        >>> await manager.read_sentinel(ref)
        {'description': 'Orders', '@created_on': '...', '@etag': ObjectId('...'), ...}
    """

    def __init__(self, store: DocumentStore, config: MetadataConfig | None = None) -> None:
        """Initialize the metadata manager.

        Args:
            store: Connected document store shared by the process
            config: Metadata configuration (defaults if omitted)
        """
        self.store = store
        self.config = config or MetadataConfig()
        self._background: set[asyncio.Task] = set()

    def _collection(self, ref: CollectionRef) -> StoreCollection:
        return self.store.collection(ref)

    # Collection-level checks

    async def collection_exists(self, ref: CollectionRef) -> bool:
        """Whether the underlying collection exists, sentinel or not."""
        if not ref.db_name or " " in ref.db_name:
            return False
        return await self.store.collection_exists(ref)

    async def is_collection_empty(self, ref: CollectionRef) -> bool:
        """Whether the collection holds no data records (the sentinel is ignored)."""
        return await self._collection(ref).count(data_filter()) == 0

    async def drop_collection(self, ref: CollectionRef) -> None:
        """Drop a collection unconditionally."""
        await self._collection(ref).drop()
        logger.info("Collection dropped", extra={"collection": str(ref)})

    # Sentinel reads

    async def exists_sentinel(self, ref: CollectionRef) -> bool:
        """Whether the collection has a sentinel record."""
        found = await self._collection(ref).find_one(sentinel_filter(), {ID_FIELD: 1})
        return found is not None

    async def read_sentinel(self, ref: CollectionRef) -> dict[str, Any]:
        """Read collection metadata.

        Returns:
            The sentinel's fields without _id, plus @lastupdated_on when
            its @etag is well-formed. An empty dict if there is no sentinel.
        """
        document = await self._collection(ref).find_one(sentinel_filter(), {ID_FIELD: 0})
        if document is None:
            return {}
        return decorate_last_updated(document)

    # Sentinel writes

    async def upsert_sentinel(
        self,
        ref: CollectionRef,
        payload: Mapping[str, Any] | None,
        patch: bool = False,
    ) -> UpsertResult:
        """Create, replace or patch collection metadata.

        Reserved fields (_id, @created_on, @etag, @lastupdated_on) in the
        payload are ignored.

        Args:
            ref: Target collection
            payload: User metadata properties
            patch: Merge into the existing sentinel instead of replacing it

        Returns:
            UpsertResult with CREATED, UPDATED or NOT_FOUND (patch without
            a sentinel; nothing is written)

        Raises:
            StoreError: If a store call fails
        """
        current = await self._collection(ref).find_one(
            sentinel_filter(), {ID_FIELD: 1, CREATED_ON_FIELD: 1}
        )
        existed = current is not None

        if patch:
            if not existed:
                return UpsertResult(outcome=MetadataOutcome.NOT_FOUND)
            return await self._patch_sentinel(ref, payload)

        known_created_on = current.get(CREATED_ON_FIELD) if existed else None
        pending = await self.replace_sentinel(ref, payload, known_created_on)
        if existed and pending.created:
            logger.info(
                "Sentinel vanished before replace; recreated",
                extra={"collection": str(ref)},
            )
        elif not existed and not pending.created:
            logger.info(
                "Sentinel created concurrently; keeping the other writer's @created_on",
                extra={"collection": str(ref), "created_on": pending.created_on},
            )

        return await self._finish(pending)

    async def _patch_sentinel(
        self,
        ref: CollectionRef,
        payload: Mapping[str, Any] | None,
    ) -> UpsertResult:
        etag = new_etag()
        fields = user_properties(payload)
        fields[ETAG_FIELD] = etag

        matched = await self._collection(ref).update_one(
            sentinel_filter(), {"$set": fields}, upsert=False
        )
        if not matched:
            # Removed between the existence check and the update
            return UpsertResult(outcome=MetadataOutcome.NOT_FOUND)

        logger.debug("Sentinel patched", extra={"collection": str(ref), "etag": str(etag)})
        return UpsertResult(outcome=MetadataOutcome.UPDATED, etag=etag)

    async def replace_sentinel(
        self,
        ref: CollectionRef,
        payload: Mapping[str, Any] | None,
        known_created_on: Any = None,
    ) -> PendingCorrection:
        """Step 1 of a full upsert: replace or insert the sentinel.

        Args:
            ref: Target collection
            payload: User metadata properties
            known_created_on: @created_on read before the call, written as
                the guess so that later writers' pre-images carry it

        Returns:
            PendingCorrection in stage REPLACED
        """
        etag = new_etag()
        now = format_timestamp(etag.generation_time)

        candidate: dict[str, Any] = {ID_FIELD: SENTINEL_ID}
        candidate.update(user_properties(payload))
        candidate[CREATED_ON_FIELD] = known_created_on or PENDING_CREATED_ON
        candidate[ETAG_FIELD] = etag

        previous = await self._collection(ref).find_one_and_replace(
            sentinel_filter(),
            candidate,
            upsert=True,
            projection={ID_FIELD: 1, CREATED_ON_FIELD: 1},
        )

        if previous is None:
            return PendingCorrection(ref=ref, etag=etag, created_on=now, created=True)

        created_on = previous.get(CREATED_ON_FIELD)
        if created_on is None:
            logger.warning(
                "Metadata of collection %s had no %s field; set to now",
                ref,
                CREATED_ON_FIELD,
                extra={"collection": str(ref), "created_on": now},
            )
            return PendingCorrection(ref=ref, etag=etag, created_on=now, created=False)

        if created_on == PENDING_CREATED_ON:
            # The creating writer has not corrected yet. Its insert precedes
            # this instant, so now bounds its timestamp from above.
            return PendingCorrection(
                ref=ref,
                etag=etag,
                created_on=format_timestamp(datetime.now(timezone.utc)),
                created=False,
                provisional=True,
            )

        return PendingCorrection(ref=ref, etag=etag, created_on=created_on, created=False)

    async def apply_correction(self, pending: PendingCorrection) -> UpsertResult:
        """Step 2 of a full upsert: lower @created_on to the recovered value.

        Idempotent: re-issuing it for the same PendingCorrection never
        raises @created_on and never provisions indexes twice.
        """
        coll = self._collection(pending.ref)

        await coll.update_one(
            sentinel_filter(),
            {"$min": {CREATED_ON_FIELD: pending.created_on}},
            upsert=False,
        )

        if pending.provisional:
            current = await coll.find_one(sentinel_filter(), {CREATED_ON_FIELD: 1})
            if current is not None and current.get(CREATED_ON_FIELD) is not None:
                pending.created_on = current[CREATED_ON_FIELD]
            pending.provisional = False

        if pending.created and not pending.indexes_ready:
            if self.config.create_indexes:
                await self._create_default_indexes(coll)
            pending.indexes_ready = True

        pending.stage = UpsertStage.CORRECTED
        logger.debug(
            "Sentinel written",
            extra={
                "collection": str(pending.ref),
                "inserted": pending.created,
                "etag": str(pending.etag),
            },
        )
        return pending.result()

    async def _finish(self, pending: PendingCorrection) -> UpsertResult:
        # Once step 1 has committed, cancelling the caller must not abandon step 2.
        correction = asyncio.ensure_future(self.apply_correction(pending))
        try:
            return await asyncio.shield(correction)
        except asyncio.CancelledError:
            if not correction.done():
                logger.info(
                    "Upsert cancelled between steps; correction continues",
                    extra={"collection": str(pending.ref), "etag": str(pending.etag)},
                )
                self._background.add(correction)
                correction.add_done_callback(self._correction_done)
            raise

    def _correction_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            logger.warning("Background sentinel correction cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "Background sentinel correction failed; re-issue apply_correction",
                exc_info=error,
            )

    async def wait_for_background(self) -> None:
        """Wait for corrections detached from cancelled callers."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _create_default_indexes(self, coll: StoreCollection) -> None:
        for name, keys in DEFAULT_INDEXES:
            await coll.create_index(keys, name=name)

    # Collection deletion

    async def delete_collection(self, ref: CollectionRef, supplied_etag: Any) -> DeleteResult:
        """Drop an empty collection if the caller's ETag matches.

        Args:
            ref: Collection to drop
            supplied_etag: ETag the caller last read (ObjectId or hex string)

        Returns:
            DeleteResult with:
            - NOT_ACCEPTABLE if data records remain (nothing is changed)
            - OK_NO_SENTINEL if there was no sentinel (dropped)
            - GONE if the ETag matched or the sentinel had none (dropped)
            - PRECONDITION_FAILED on mismatch (sentinel written back)

        Raises:
            StoreError: If a store call other than the restore fails
        """
        coll = self._collection(ref)

        if await coll.count(data_filter()) > 0:
            return DeleteResult(outcome=MetadataOutcome.NOT_ACCEPTABLE)

        removed = await coll.find_one_and_delete(sentinel_filter())

        if removed is None:
            await coll.drop()
            logger.info("Collection without metadata dropped", extra={"collection": str(ref)})
            return DeleteResult(outcome=MetadataOutcome.OK_NO_SENTINEL)

        stored = parse_etag(removed.get(ETAG_FIELD))
        if stored is None or stored == parse_etag(supplied_etag):
            await coll.drop()
            logger.info("Collection dropped", extra={"collection": str(ref)})
            return DeleteResult(outcome=MetadataOutcome.GONE)

        logger.info(
            "ETag mismatch on delete; restoring metadata",
            extra={"collection": str(ref), "etag": str(stored)},
        )
        restored = await self._restore(coll, ref, removed)
        return DeleteResult(outcome=MetadataOutcome.PRECONDITION_FAILED, restored=restored)

    async def _restore(
        self,
        coll: StoreCollection,
        ref: CollectionRef,
        document: dict[str, Any],
    ) -> bool:
        attempts = self.config.restore_attempts
        for attempt in range(1, attempts + 1):
            try:
                await coll.save(document)
                return True
            except StoreError as e:
                logger.warning(
                    f"Restoring metadata failed (attempt {attempt}/{attempts}): {e}",
                    extra={"collection": str(ref)},
                )
            if attempt < attempts:
                await asyncio.sleep(self.config.restore_retry_delay_ms / 1000)

        logger.error(
            "Metadata removed by a rejected delete could not be restored",
            extra={"collection": str(ref), "sentinel": repr(document)},
        )
        return False
