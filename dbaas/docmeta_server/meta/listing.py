"""
Data-record listing for DocMeta collections.

Lists and counts the data records of a collection. Every query here goes
through sentinel.data_filter(), so the metadata record is never returned
or counted, whatever the sort and paging parameters.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

from ..config import ListingConfig
from ..store.base import ASCENDING, DESCENDING, CollectionRef, DocumentStore
from .sentinel import ID_FIELD, data_filter, decorate_last_updated, is_sentinel

logger = logging.getLogger(__name__)


def parse_sort(sort_by: Sequence[str] | None) -> list[tuple[str, int]]:
    """Turn sort tokens into (field, direction) pairs.

    "-field" sorts descending, "+field" and a bare "field" ascending.
    Blank tokens are skipped; with no usable token the order is _id
    ascending.

    Raises:
        ValueError: If a token is a bare direction prefix
    """
    sort: list[tuple[str, int]] = []
    for raw in sort_by or ():
        token = raw.strip()
        if not token:
            continue
        if token[0] == "-":
            name, direction = token[1:], DESCENDING
        elif token[0] == "+":
            name, direction = token[1:], ASCENDING
        else:
            name, direction = token, ASCENDING
        name = name.strip()
        if not name:
            raise ValueError(f"Invalid sort field: {raw!r}")
        sort.append((name, direction))

    return sort or [(ID_FIELD, ASCENDING)]


class DataLister:
    """Paged listing of data records.

    Example:
        >>> lister = DataLister(store)
        >>> rows = await lister.list_data(ref, page=2, page_size=20, sort_by=["-price"])
    """

    def __init__(self, store: DocumentStore, config: ListingConfig | None = None) -> None:
        self.store = store
        self.config = config or ListingConfig()

    async def collection_size(self, ref: CollectionRef) -> int:
        """Number of data records in the collection."""
        return await self.store.collection(ref).count(data_filter())

    async def list_data(
        self,
        ref: CollectionRef,
        page: int = 1,
        page_size: int | None = None,
        sort_by: Sequence[str] | None = None,
    ) -> list[dict[str, Any]]:
        """List one page of data records.

        Each row with a well-formed @etag gets a derived @lastupdated_on.

        Args:
            ref: Collection to list
            page: 1-based page number
            page_size: Rows per page (configured default if omitted)
            sort_by: Sort tokens, see parse_sort()

        Raises:
            ValueError: If page or page_size is out of range
        """
        if page_size is None:
            page_size = self.config.default_page_size
        if page < 1:
            raise ValueError(f"page must be >= 1, got {page}")
        if not 1 <= page_size <= self.config.max_page_size:
            raise ValueError(
                f"page_size must be between 1 and {self.config.max_page_size}, got {page_size}"
            )

        sort = parse_sort(sort_by)
        rows = await self.store.collection(ref).find(
            data_filter(),
            sort=sort,
            skip=page_size * (page - 1),
            limit=page_size,
        )
        if any(is_sentinel(row) for row in rows):
            logger.error(
                "Data query returned the sentinel; dropped from listing",
                extra={"collection": str(ref)},
            )
            rows = [row for row in rows if not is_sentinel(row)]

        logger.debug(
            "Listed data records",
            extra={"collection": str(ref), "page": page, "rows": len(rows)},
        )
        return [decorate_last_updated(row) for row in rows]
